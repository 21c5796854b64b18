from __future__ import annotations

from backend.internal_core.config import AppConfig

from .base import Summarizer, SummarizerError


class FailingSummarizer(Summarizer):
    """Fails every call; stands in for a backend that is disabled or could not be built."""

    def __init__(self, inner_name: str, code: str, message: str) -> None:
        self._inner_name = inner_name
        self._code = code
        self._message = message

    async def summarize(self, text: str) -> str:
        raise SummarizerError(self._code, self._message, self._inner_name)

    def name(self) -> str:
        return self._inner_name


def build_summarizer(cfg: AppConfig) -> Summarizer:
    backend = cfg.NOTES_SUMMARY_BACKEND
    if cfg.NOTES_TEST_INJECT_SUMMARY_FAIL:
        return FailingSummarizer(backend, "INJECTED_FAILURE", "Injected summarizer failure.")

    if backend == "gemini":
        from .gemini import GeminiSummarizer

        return GeminiSummarizer(
            cfg.NOTES_GEMINI_API_KEY,
            cfg.NOTES_GEMINI_MODEL,
            max_tokens=cfg.NOTES_LLM_MAX_TOKENS,
            temperature=cfg.NOTES_LLM_TEMPERATURE,
        )
    if backend == "llama_cpp":
        from .local_llama import LocalLlamaSummarizer

        return LocalLlamaSummarizer(
            cfg.NOTES_LLAMA_CPP_MODEL,
            chat_format=cfg.NOTES_LLAMA_CPP_CHAT_FORMAT,
            n_ctx=cfg.NOTES_LLAMA_CPP_N_CTX,
            max_tokens=cfg.NOTES_LLM_MAX_TOKENS,
            temperature=cfg.NOTES_LLM_TEMPERATURE,
        )
    if backend == "mock":
        from .mock import MockSummarizer

        return MockSummarizer()
    raise ValueError(f"Unsupported NOTES_SUMMARY_BACKEND: {backend!r}")

from __future__ import annotations

import asyncio
import os
import threading
from typing import Any, Optional

from backend.utils.model_paths import resolve_llama_gguf_path

from .base import Summarizer, SummarizerError, build_summary_prompt


class LocalLlamaSummarizer(Summarizer):
    """Local GGUF summarizer; the model is loaded once on first use."""

    def __init__(
        self,
        model_path: str = "",
        *,
        chat_format: str = "gemma",
        n_ctx: int = 2048,
        n_gpu_layers: int = -1,
        max_tokens: int = 320,
        temperature: float = 0.2,
    ) -> None:
        self._model_path = model_path
        self._chat_format = chat_format
        self._n_ctx = int(n_ctx)
        self._n_gpu_layers = int(n_gpu_layers)
        self._max_tokens = int(max_tokens)
        self._temperature = float(temperature)
        self._llm: Optional[Any] = None
        self._load_lock = threading.Lock()

    async def summarize(self, text: str) -> str:
        prompt = build_summary_prompt(text)
        return await asyncio.to_thread(self._summarize_blocking, prompt)

    def name(self) -> str:
        return "llama_cpp"

    def _summarize_blocking(self, prompt: str) -> str:
        llm = self._ensure_model()
        try:
            response = llm.create_chat_completion(
                messages=[{"role": "user", "content": prompt}],
                temperature=self._temperature,
                top_p=1.0,
                max_tokens=self._max_tokens,
                stop=["<end_of_turn>", "</s>"],
            )
            raw = str(response["choices"][0]["message"]["content"] or "").strip()
        except Exception as exc:
            raise SummarizerError("GENERATION_FAILED", str(exc), self.name()) from exc
        if not raw:
            raise SummarizerError("EMPTY_RESPONSE", "llama_cpp returned no summary text.", self.name())
        return raw

    def _ensure_model(self) -> Any:
        with self._load_lock:
            if self._llm is not None:
                return self._llm

            resolved = resolve_llama_gguf_path(self._model_path).strip()
            if not resolved:
                raise SummarizerError(
                    "MODEL_PATH_MISSING",
                    "Summary model path is missing. Set NOTES_LLAMA_CPP_MODEL "
                    "or place a GGUF model under NOTES_MODEL_ROOT.",
                    self.name(),
                )
            if not os.path.exists(resolved):
                raise SummarizerError("MODEL_NOT_FOUND", f"Summary model file not found: {resolved}", self.name())

            try:
                from llama_cpp import Llama  # type: ignore
            except Exception as exc:
                raise SummarizerError("IMPORT_FAILED", f"llama_cpp import failed: {exc}", self.name()) from exc

            llm_kwargs: dict[str, Any] = {
                "model_path": resolved,
                "n_ctx": self._n_ctx,
                "n_gpu_layers": self._n_gpu_layers,
                "verbose": False,
                "chat_format": self._chat_format,
            }
            try:
                try:
                    self._llm = Llama(**llm_kwargs)
                except TypeError as exc:
                    if "chat_format" not in str(exc):
                        raise
                    llm_kwargs.pop("chat_format", None)
                    self._llm = Llama(**llm_kwargs)
            except Exception as exc:
                raise SummarizerError("MODEL_LOAD_FAILED", str(exc), self.name()) from exc
            return self._llm

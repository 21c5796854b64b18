from __future__ import annotations

"""
Hosted Gemini summarizer.

Design intent:
- One prompt, one call, forward the text; no retry or backoff here.
- Any failure (transport, safety block, empty text) surfaces as SummarizerError.
"""

import logging
import time

import google.generativeai as genai

from .base import Summarizer, SummarizerError, build_summary_prompt

logger = logging.getLogger(__name__)


class GeminiSummarizer(Summarizer):
    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-1.5-pro",
        *,
        max_tokens: int = 320,
        temperature: float = 0.2,
    ) -> None:
        if not str(api_key or "").strip():
            raise SummarizerError(
                "MISSING_API_KEY",
                "Gemini API key is missing. Set NOTES_GEMINI_API_KEY (or GEMINI_API_KEY).",
                self.name(),
            )
        genai.configure(api_key=api_key)
        self._model_name = model_name
        self._model = genai.GenerativeModel(model_name=model_name)
        self._generation_config = {
            "max_output_tokens": int(max_tokens),
            "temperature": float(temperature),
        }

    async def summarize(self, text: str) -> str:
        prompt = build_summary_prompt(text)
        started = time.perf_counter()
        try:
            response = await self._model.generate_content_async(
                prompt,
                generation_config=self._generation_config,
            )
        except Exception as exc:
            raise SummarizerError("GENERATION_FAILED", str(exc), self.name()) from exc

        try:
            summary = str(response.text or "").strip()
        except ValueError as exc:
            # response.text raises when the candidate was blocked or has no parts.
            raise SummarizerError("EMPTY_RESPONSE", str(exc), self.name()) from exc
        if not summary:
            raise SummarizerError("EMPTY_RESPONSE", "Gemini returned no summary text.", self.name())

        logger.info(
            "summary_generated provider=%s model=%s elapsed_ms=%.1f chars=%d",
            self.name(),
            self._model_name,
            (time.perf_counter() - started) * 1000.0,
            len(summary),
        )
        return summary

    def name(self) -> str:
        return "gemini"

from __future__ import annotations

import re

from .base import Summarizer, SummarizerError

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+|\n+")


class MockSummarizer(Summarizer):
    def __init__(self, max_points: int = 4) -> None:
        self._max_points = max(1, int(max_points))
        self._counter = 0

    @property
    def calls(self) -> int:
        return self._counter

    async def summarize(self, text: str) -> str:
        self._counter += 1
        parts = [part.strip() for part in _SENTENCE_SPLIT_RE.split(text or "") if part.strip()]
        if not parts:
            raise SummarizerError("EMPTY_INPUT", "Nothing to summarize.", self.name())
        return "\n".join(f"- {part}" for part in parts[: self._max_points])

    def name(self) -> str:
        return "mock"

from __future__ import annotations

from .base import Summarizer, SummarizerError, build_summary_prompt
from .factory import FailingSummarizer, build_summarizer
from .mock import MockSummarizer

__all__ = [
    "FailingSummarizer",
    "MockSummarizer",
    "Summarizer",
    "SummarizerError",
    "build_summarizer",
    "build_summary_prompt",
]

from __future__ import annotations

from abc import ABC, abstractmethod

SUMMARY_PROMPT_PREFIX = (
    "Please summarize the following note in 3-4 clear, concise bullet points:"
)


def build_summary_prompt(content: str) -> str:
    return f"{SUMMARY_PROMPT_PREFIX}\n\n{content}"


class SummarizerError(RuntimeError):
    def __init__(self, code: str, message: str, provider_name: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.provider_name = provider_name


class Summarizer(ABC):
    @abstractmethod
    async def summarize(self, text: str) -> str: ...

    @abstractmethod
    def name(self) -> str: ...

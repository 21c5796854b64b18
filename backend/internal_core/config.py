from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _getenv_log_level(name: str, default: str) -> str:
    level = _getenv_str(name, default).strip().upper()
    # getLevelName maps unknown names to the string "Level <name>".
    if not level or not isinstance(logging.getLevelName(level), int):
        return default
    return level


def _getenv_opt_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


@dataclass(frozen=True)
class AppConfig:
    NOTES_AUTOSAVE_DELAY_MS: int
    NOTES_DEFAULT_TITLE: str
    NOTES_SESSION_TTL_SECONDS: int
    NOTES_SUMMARY_BACKEND: str
    NOTES_GEMINI_API_KEY: str
    NOTES_GEMINI_MODEL: str
    NOTES_LLAMA_CPP_MODEL: str
    NOTES_LLAMA_CPP_CHAT_FORMAT: str
    NOTES_LLAMA_CPP_N_CTX: int
    NOTES_LLM_MAX_TOKENS: int
    NOTES_LLM_TEMPERATURE: float
    NOTES_CORS_ORIGINS: str
    NOTES_LOG_LEVEL: str
    NOTES_TEST_INJECT_SUMMARY_FAIL: bool

    def cors_origins(self) -> list[str]:
        items = [item.strip() for item in self.NOTES_CORS_ORIGINS.split(",")]
        return [item for item in items if item] or ["*"]


def load_config() -> AppConfig:
    autosave_delay_ms = max(0, _getenv_int("NOTES_AUTOSAVE_DELAY_MS", 750))
    default_title = _getenv_str("NOTES_DEFAULT_TITLE", "New Note").strip() or "New Note"
    gemini_key = _getenv_opt_str("NOTES_GEMINI_API_KEY") or _getenv_str("GEMINI_API_KEY", "")

    return AppConfig(
        NOTES_AUTOSAVE_DELAY_MS=autosave_delay_ms,
        NOTES_DEFAULT_TITLE=default_title,
        NOTES_SESSION_TTL_SECONDS=_getenv_int("NOTES_SESSION_TTL_SECONDS", 14400),
        NOTES_SUMMARY_BACKEND=_getenv_str("NOTES_SUMMARY_BACKEND", "gemini").strip().lower(),
        NOTES_GEMINI_API_KEY=gemini_key.strip(),
        NOTES_GEMINI_MODEL=_getenv_str("NOTES_GEMINI_MODEL", "gemini-1.5-pro"),
        NOTES_LLAMA_CPP_MODEL=_getenv_str("NOTES_LLAMA_CPP_MODEL", ""),
        NOTES_LLAMA_CPP_CHAT_FORMAT=_getenv_str("NOTES_LLAMA_CPP_CHAT_FORMAT", "gemma"),
        NOTES_LLAMA_CPP_N_CTX=_getenv_int("NOTES_LLAMA_CPP_N_CTX", 2048),
        NOTES_LLM_MAX_TOKENS=_getenv_int("NOTES_LLM_MAX_TOKENS", 320),
        NOTES_LLM_TEMPERATURE=_getenv_float("NOTES_LLM_TEMPERATURE", 0.2),
        NOTES_CORS_ORIGINS=_getenv_str("NOTES_CORS_ORIGINS", "*"),
        NOTES_LOG_LEVEL=_getenv_log_level("NOTES_LOG_LEVEL", "INFO"),
        NOTES_TEST_INJECT_SUMMARY_FAIL=_getenv_bool("NOTES_TEST_INJECT_SUMMARY_FAIL", False),
    )

from __future__ import annotations

import os
from pathlib import Path

# Preferred file names, checked before any other *.gguf under a search root.
DEFAULT_GGUF_NAMES = (
    "gemma-2-2b-it-Q5_K_M.gguf",
    "summarizer.gguf",
)


def project_root() -> Path:
    # backend/utils/model_paths.py -> repo root
    return Path(__file__).resolve().parents[2]


def model_search_roots() -> list[Path]:
    configured = os.getenv("NOTES_MODEL_ROOT", "").strip()
    base = project_root()
    roots = [Path(configured).expanduser()] if configured else []
    roots += [base / "models", base.parent / "models"]
    return list(dict.fromkeys(roots))


def _gguf_files(root: Path) -> list[Path]:
    if not root.is_dir():
        return []
    return sorted(path for path in root.glob("*.gguf") if path.is_file())


def discover_llama_gguf() -> str:
    roots = model_search_roots()
    for root in roots:
        for name in DEFAULT_GGUF_NAMES:
            candidate = root / name
            if candidate.is_file():
                return str(candidate.resolve())
    for root in roots:
        found = _gguf_files(root)
        if found:
            return str(found[0].resolve())
    return ""


def resolve_llama_gguf_path(explicit_path: str | None = None) -> str:
    """
    Pick the summarizer model file.

    Order: explicit argument, then NOTES_LLAMA_CPP_MODEL, then the first
    known (or otherwise first sorted) *.gguf under the search roots.
    Returns "" when nothing is found.
    """
    for value in (explicit_path, os.getenv("NOTES_LLAMA_CPP_MODEL")):
        text = str(value or "").strip()
        if text:
            return text
    return discover_llama_gguf()

"""
HTTP boundary for the notes backend.

Design intent:
- Keep route handlers thin; editing semantics live in `backend.note`.
- Resolve the caller's identity once per request and pass it explicitly.
"""

"""
Note editing boundary for the notes backend.

Design intent:
- Own the lifecycle of the note currently open in an editor session.
- Debounce keystroke-level edits into as few store writes as possible.
- Keep sibling note-list views in sync without re-fetching.
"""

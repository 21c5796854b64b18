"""
Notes backend package.

Design intent:
- Keep the editor autosave/reconciliation core independent from the HTTP surface.
- Treat note persistence and summarization as replaceable external collaborators.
"""

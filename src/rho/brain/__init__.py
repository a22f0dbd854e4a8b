"""Brain: one append-only event log as the agent's memory.

Layout:
    ~/.rho/brain/
    ├── brain.jsonl          # One entry per line, never rewritten
    ├── brain.jsonl.lock     # Sidecar write lock: {"pid", "token", "acquired"}
    └── core.jsonl ...       # Legacy per-kind files, read once by migration

The current state is always ``fold(entries)``; nothing else is persisted.
"""

from rho.brain.brain import Brain

__all__ = ["Brain"]

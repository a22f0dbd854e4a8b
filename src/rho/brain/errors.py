"""Error taxonomy for the brain log and the layers built on it.

Stale locks and malformed lines on read are not errors: the first is
reclaimed silently, the second is skipped and counted by the reader.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path


class BrainError(Exception):
    """Base class for brain errors."""


class LockTimeout(BrainError):
    """A live process held the write lock past the timeout. Log untouched."""

    def __init__(self, lock_path: Path, timeout: float, holder_pid: int | None = None) -> None:
        self.lock_path = lock_path
        self.timeout = timeout
        self.holder_pid = holder_pid
        holder = f" (held by pid {holder_pid})" if holder_pid else ""
        super().__init__(f"Timed out after {timeout:.1f}s waiting for {lock_path}{holder}")


class SchemaViolation(BrainError, ValueError):
    """Entry failed validation; rejected before any write."""

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid entry")


class PartialApplyError(BrainError):
    """A merge-apply batch stopped partway.

    ``committed`` holds the semantic keys whose writes landed, ``pending`` the
    ones that did not. Re-planning shows NOOP for the committed keys.
    """

    def __init__(self, committed: list[str], pending: list[str]) -> None:
        self.committed = list(committed)
        self.pending = list(pending)
        super().__init__(
            f"Apply interrupted: {len(self.committed)} committed, "
            f"{len(self.pending)} pending ({', '.join(self.pending)})"
        )


class MigrationError(BrainError):
    """Legacy migration precondition failed."""

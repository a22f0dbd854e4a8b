"""Append-only, file-backed brain log (``brain.jsonl``).

One JSON record per line. Writers take the sidecar lock for a single append;
readers never lock and skip any line that does not parse or validate, which
covers a torn trailing line from a writer that is mid-append or crashed.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from rho.brain.entries import Entry, entry_from_dict, validate_entry
from rho.brain.errors import SchemaViolation
from rho.brain.lock import DEFAULT_TIMEOUT, file_lock

logger = logging.getLogger(__name__)


@dataclass
class ReadResult:
    """Entries in append order, plus the count of skipped lines."""

    entries: list[Entry] = field(default_factory=list)
    malformed: int = 0


class BrainStore:
    """Read/append access to one brain log file."""

    def __init__(self, path: Path, lock_timeout: float = DEFAULT_TIMEOUT) -> None:
        self.path = Path(path)
        self.lock_timeout = lock_timeout

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    # ── Writes ────────────────────────────────────────────────

    def append(self, entry: Entry) -> None:
        """Validate, then append one entry under the write lock.

        Raises ``SchemaViolation`` before touching the file, ``LockTimeout``
        if another live process holds the lock too long.
        """
        errors = validate_entry(entry)
        if errors:
            raise SchemaViolation(errors)
        line = json.dumps(entry.to_dict(), ensure_ascii=False) + "\n"

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with file_lock(self.lock_path, timeout=self.lock_timeout):
            with self.path.open("a+b") as f:
                if f.tell() > 0:
                    f.seek(-1, os.SEEK_END)
                    if f.read(1) != b"\n":
                        # Seal a torn line so it cannot swallow this record.
                        f.write(b"\n")
                f.write(line.encode("utf-8"))
                f.flush()
                os.fsync(f.fileno())

    def append_many(self, entries: Iterable[Entry]) -> int:
        """Append entries one lock at a time. All are validated up front."""
        batch = list(entries)
        for entry in batch:
            errors = validate_entry(entry)
            if errors:
                raise SchemaViolation(errors)
        for entry in batch:
            self.append(entry)
        if batch:
            logger.info("Appended %d entries to %s", len(batch), self.path)
        return len(batch)

    # ── Reads ─────────────────────────────────────────────────

    def read_all(self) -> ReadResult:
        """Parse the whole log without locking. Bad lines are counted, not raised."""
        result = ReadResult()
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return result

        for lineno, chunk in enumerate(raw.splitlines(), start=1):
            if not chunk.strip():
                continue
            try:
                entry = entry_from_dict(json.loads(chunk.decode("utf-8")))
            except (UnicodeDecodeError, json.JSONDecodeError, SchemaViolation):
                result.malformed += 1
                logger.debug("Skipping malformed line %d in %s", lineno, self.path)
                continue
            if validate_entry(entry):
                result.malformed += 1
                logger.debug("Skipping invalid entry on line %d in %s", lineno, self.path)
                continue
            result.entries.append(entry)

        if result.malformed:
            logger.warning("Skipped %d malformed lines in %s", result.malformed, self.path)
        return result

    def entries(self) -> list[Entry]:
        return self.read_all().entries

"""One-time import of the legacy per-kind JSONL files into ``brain.jsonl``.

Legacy layout, next to the brain log:

    core.jsonl      behavior, identity and user records
    memory.jsonl    learning and preference records
    context.jsonl   context records
    tasks.jsonl     task records (no ``type`` field)

Legacy files are only ever read. When the import finishes, the log gets a
``meta`` marker ``migration.v2 = "done"``; with the marker present (or set
to ``"skip"``) ``run`` does nothing.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from rho.brain.entries import (
    BehaviorEntry,
    ContextEntry,
    Entry,
    IdentityEntry,
    LearningEntry,
    MetaEntry,
    PreferenceEntry,
    TaskEntry,
    UserEntry,
    deterministic_id,
    iso,
    normalize_text,
    parse_timestamp,
    utc_now,
    validate_entry,
)
from rho.brain.errors import MigrationError
from rho.brain.fold import fold
from rho.brain.store import BrainStore

logger = logging.getLogger(__name__)

MIGRATION_MARKER = "migration.v2"
_DONE_VALUES = ("done", "skip")


@dataclass(frozen=True)
class MigrationPaths:
    brain: Path
    legacy_core: Path
    legacy_memory: Path
    legacy_context: Path
    legacy_tasks: Path

    @classmethod
    def under(cls, directory: Path) -> MigrationPaths:
        """The standard layout: every file side by side in ``directory``."""
        directory = Path(directory)
        return cls(
            brain=directory / "brain.jsonl",
            legacy_core=directory / "core.jsonl",
            legacy_memory=directory / "memory.jsonl",
            legacy_context=directory / "context.jsonl",
            legacy_tasks=directory / "tasks.jsonl",
        )

    def legacy_files(self) -> list[Path]:
        return [self.legacy_core, self.legacy_memory, self.legacy_context, self.legacy_tasks]


@dataclass
class MigrationStatus:
    has_legacy: bool
    already_migrated: bool
    legacy_files: list[Path] = field(default_factory=list)


@dataclass
class MigrationStats:
    behaviors: int = 0
    identity: int = 0
    user: int = 0
    learnings: int = 0
    preferences: int = 0
    contexts: int = 0
    tasks: int = 0
    skipped: int = 0
    already_migrated: bool = False

    @property
    def imported(self) -> int:
        return (
            self.behaviors
            + self.identity
            + self.user
            + self.learnings
            + self.preferences
            + self.contexts
            + self.tasks
        )


# Entry type -> MigrationStats counter.
_COUNTERS = {
    "behavior": "behaviors",
    "identity": "identity",
    "user": "user",
    "learning": "learnings",
    "preference": "preferences",
    "context": "contexts",
    "task": "tasks",
}


def _has_content(path: Path) -> bool:
    try:
        with path.open("rb") as f:
            return any(line.strip() for line in f)
    except FileNotFoundError:
        return False


def is_migrated(entries: list[Entry]) -> bool:
    marker = fold(entries).meta.get(MIGRATION_MARKER)
    return marker is not None and marker.value in _DONE_VALUES


def detect(paths: MigrationPaths, store: BrainStore | None = None) -> MigrationStatus:
    store = store or BrainStore(paths.brain)
    legacy = [p for p in paths.legacy_files() if _has_content(p)]
    return MigrationStatus(
        has_legacy=bool(legacy),
        already_migrated=is_migrated(store.entries()),
        legacy_files=legacy,
    )


def _read_legacy(path: Path) -> tuple[list[dict[str, Any]], int]:
    """Parsed records and the count of lines that were not JSON objects."""
    records: list[dict[str, Any]] = []
    bad = 0
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return records, bad
    for chunk in raw.splitlines():
        if not chunk.strip():
            continue
        try:
            record = json.loads(chunk.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            bad += 1
            continue
        if isinstance(record, dict):
            records.append(record)
        else:
            bad += 1
    if bad:
        logger.warning("Skipped %d unparseable lines in %s", bad, path)
    return records, bad


def _text(record: dict[str, Any], name: str) -> str:
    value = record.get(name)
    return value.strip() if isinstance(value, str) else ""


def _convert(record: dict[str, Any], entry_type: str, now: datetime) -> Entry:
    created = parse_timestamp(record.get("created"))
    stamp = iso(created or now)
    base: dict[str, Any] = {"created": stamp}

    if entry_type == "behavior":
        entry: Entry = BehaviorEntry(
            id="", **base, category=_text(record, "category"), text=_text(record, "text")
        )
    elif entry_type == "identity":
        entry = IdentityEntry(id="", **base, key=_text(record, "key"), value=record.get("value"))
    elif entry_type == "user":
        entry = UserEntry(id="", **base, key=_text(record, "key"), value=record.get("value"))
    elif entry_type == "learning":
        # Legacy usage counters (used, last_used) do not carry over.
        entry = LearningEntry(
            id="",
            **base,
            text=_text(record, "text"),
            category=record.get("category") if isinstance(record.get("category"), str) else None,
            source="migration",
        )
    elif entry_type == "preference":
        entry = PreferenceEntry(
            id="",
            **base,
            category=_text(record, "category") or "General",
            text=_text(record, "text"),
        )
    elif entry_type == "context":
        entry = ContextEntry(
            id="",
            **base,
            project=_text(record, "project"),
            path=_text(record, "path"),
            content=record.get("content") if isinstance(record.get("content"), str) else "",
        )
    elif entry_type == "task":
        tags = record.get("tags")
        entry = TaskEntry(
            id="",
            **base,
            description=_text(record, "description"),
            status=record.get("status") or "pending",
            priority=record.get("priority") or "normal",
            tags=list(tags) if isinstance(tags, list) else [],
            due=record.get("due"),
            completed_at=record.get("completedAt"),
        )
    else:
        raise TypeError(f"Unhandled legacy kind: {entry_type}")

    legacy_id = record.get("id")
    if isinstance(legacy_id, str) and legacy_id.strip():
        entry_id = legacy_id.strip()
    else:
        entry_id = deterministic_id("migration", f"{entry_type}:{entry.natural_key()}")
    return entry.replace(id=entry_id)


# Legacy file -> the kinds it may hold. Single-kind files may omit ``type``.
def _sources(paths: MigrationPaths) -> list[tuple[Path, tuple[str, ...]]]:
    return [
        (paths.legacy_core, ("behavior", "identity", "user")),
        (paths.legacy_memory, ("learning", "preference")),
        (paths.legacy_context, ("context",)),
        (paths.legacy_tasks, ("task",)),
    ]


def run(
    paths: MigrationPaths,
    store: BrainStore | None = None,
    now: datetime | None = None,
) -> MigrationStats:
    """Import every legacy record not already in the log, then write the marker."""
    store = store or BrainStore(paths.brain)
    now = now or utc_now()
    existing = store.entries()
    if is_migrated(existing):
        logger.info("Legacy migration already done for %s", paths.brain)
        return MigrationStats(already_migrated=True)

    stats = MigrationStats()
    seen_ids = {e.id for e in existing}
    seen_learnings = {normalize_text(e.text) for e in existing if isinstance(e, LearningEntry)}

    for path, kinds in _sources(paths):
        records, bad = _read_legacy(path)
        stats.skipped += bad
        for record in records:
            entry_type = record.get("type", kinds[0] if len(kinds) == 1 else None)
            if entry_type not in kinds:
                logger.debug("Skipping %r record in %s", entry_type, path)
                stats.skipped += 1
                continue

            entry = _convert(record, entry_type, now)
            if isinstance(entry, LearningEntry):
                duplicate = normalize_text(entry.text) in seen_learnings
            else:
                duplicate = entry.id in seen_ids
            if duplicate:
                stats.skipped += 1
                continue

            errors = validate_entry(entry)
            if errors:
                logger.warning("Skipping invalid legacy record in %s: %s", path, "; ".join(errors))
                stats.skipped += 1
                continue

            store.append(entry)
            seen_ids.add(entry.id)
            if isinstance(entry, LearningEntry):
                seen_learnings.add(normalize_text(entry.text))
            counter = _COUNTERS[entry.TYPE]
            setattr(stats, counter, getattr(stats, counter) + 1)

    store.append(
        MetaEntry(
            id=deterministic_id("meta", MIGRATION_MARKER),
            created=iso(now),
            key=MIGRATION_MARKER,
            value="done",
        )
    )
    logger.info(
        "Migrated %d legacy records into %s (%d skipped)",
        stats.imported,
        paths.brain,
        stats.skipped,
    )
    return stats


def cleanup_legacy_files(paths: MigrationPaths, store: BrainStore | None = None) -> list[Path]:
    """Delete the legacy files. Refuses until the migration marker exists."""
    store = store or BrainStore(paths.brain)
    if not is_migrated(store.entries()):
        raise MigrationError("Cannot remove legacy files: migration has not been completed")
    removed = []
    for path in paths.legacy_files():
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        removed.append(path)
    if removed:
        logger.info("Removed %d legacy files", len(removed))
    return removed

"""Fold the ordered brain log into its current materialized state.

Pure: the result depends only on the sequence of entries, in append order.
``created`` timestamps play no part in the reduction.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from rho.brain.entries import (
    BehaviorEntry,
    ContextEntry,
    Entry,
    IdentityEntry,
    LearningEntry,
    MetaEntry,
    PreferenceEntry,
    ReminderEntry,
    TaskEntry,
    TombstoneEntry,
    UserEntry,
    parse_timestamp,
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Kinds where a new id with an existing key supersedes the old id.
KEYED_TYPES = frozenset({"identity", "user", "meta"})


@dataclass
class MaterializedBrain:
    """Active, non-superseded, non-tombstoned entries grouped by kind."""

    identity: dict[str, IdentityEntry] = field(default_factory=dict)
    user: dict[str, UserEntry] = field(default_factory=dict)
    meta: dict[str, MetaEntry] = field(default_factory=dict)
    behaviors: list[BehaviorEntry] = field(default_factory=list)
    learnings: list[LearningEntry] = field(default_factory=list)
    preferences: list[PreferenceEntry] = field(default_factory=list)
    contexts: list[ContextEntry] = field(default_factory=list)
    tasks: list[TaskEntry] = field(default_factory=list)
    reminders: list[ReminderEntry] = field(default_factory=list)
    tombstoned: set[str] = field(default_factory=set)
    # Last value of each tombstoned id.
    retired: dict[str, Entry] = field(default_factory=dict)
    by_id: dict[str, Entry] = field(default_factory=dict)

    def get(self, entry_id: str) -> Entry | None:
        return self.by_id.get(entry_id)

    def active(self) -> list[Entry]:
        return list(self.by_id.values())

    def is_empty(self) -> bool:
        return not self.by_id


def fold(entries: Iterable[Entry]) -> MaterializedBrain:
    """Reduce ``entries`` (append order) to a ``MaterializedBrain``."""
    active: dict[str, Entry] = {}
    key_to_id: dict[tuple[str, str], str] = {}
    id_to_key: dict[str, tuple[str, str]] = {}
    tombstoned: set[str] = set()
    retired: dict[str, Entry] = {}

    def _forget_key(entry_id: str) -> None:
        slot = id_to_key.pop(entry_id, None)
        if slot is not None and key_to_id.get(slot) == entry_id:
            del key_to_id[slot]

    for entry in entries:
        if isinstance(entry, TombstoneEntry):
            removed = active.pop(entry.target, None)
            if removed is not None:
                retired[entry.target] = removed
            _forget_key(entry.target)
            tombstoned.add(entry.target)
            continue

        if entry.TYPE in KEYED_TYPES:
            slot = (entry.TYPE, entry.natural_key() or "")
            previous = key_to_id.get(slot)
            if previous is not None and previous != entry.id:
                active.pop(previous, None)
                id_to_key.pop(previous, None)
            _forget_key(entry.id)
            key_to_id[slot] = entry.id
            id_to_key[entry.id] = slot

        # Re-inserting moves a rewritten id to the end: latest write last.
        active.pop(entry.id, None)
        active[entry.id] = entry
        tombstoned.discard(entry.id)
        retired.pop(entry.id, None)

    brain = MaterializedBrain(tombstoned=tombstoned, retired=retired, by_id=active)
    # Grouped lists follow (created, id) so the interleaving of unrelated
    # writes does not show through.
    for entry in sorted(active.values(), key=_display_order):
        _place(brain, entry)
    return brain


def _display_order(entry: Entry) -> tuple[datetime, str]:
    return (parse_timestamp(entry.created) or _EPOCH, entry.id)


def _place(brain: MaterializedBrain, entry: Entry) -> None:
    if isinstance(entry, IdentityEntry):
        brain.identity[entry.key] = entry
    elif isinstance(entry, UserEntry):
        brain.user[entry.key] = entry
    elif isinstance(entry, MetaEntry):
        brain.meta[entry.key] = entry
    elif isinstance(entry, BehaviorEntry):
        brain.behaviors.append(entry)
    elif isinstance(entry, LearningEntry):
        brain.learnings.append(entry)
    elif isinstance(entry, PreferenceEntry):
        brain.preferences.append(entry)
    elif isinstance(entry, ContextEntry):
        brain.contexts.append(entry)
    elif isinstance(entry, TaskEntry):
        brain.tasks.append(entry)
    elif isinstance(entry, ReminderEntry):
        brain.reminders.append(entry)
    else:
        raise TypeError(f"Unhandled entry kind: {type(entry).__name__}")

"""Bootstrap lifecycle state, derived from ``meta`` entries.

Status is never stored as its own record. It is read off three meta keys:

    bootstrap.completed    true once a profile was applied and confirmed
    bootstrap.version      the profile version that was applied
    bootstrap.completedAt  ISO-8601 UTC timestamp of completion
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from rho.brain.entries import (
    Entry,
    MetaEntry,
    TombstoneEntry,
    deterministic_id,
    is_iso_timestamp,
    iso,
)
from rho.brain.fold import fold

BootstrapStatus = Literal["not_started", "partial", "completed"]

STATUS_NOT_STARTED: BootstrapStatus = "not_started"
STATUS_PARTIAL: BootstrapStatus = "partial"
STATUS_COMPLETED: BootstrapStatus = "completed"

META_COMPLETED = "bootstrap.completed"
META_VERSION = "bootstrap.version"
META_COMPLETED_AT = "bootstrap.completedAt"
BOOTSTRAP_META_KEYS = (META_COMPLETED, META_VERSION, META_COMPLETED_AT)


@dataclass(frozen=True)
class BootstrapState:
    status: BootstrapStatus
    version: str | None = None
    completed_at: str | None = None


def meta_id(key: str) -> str:
    return deterministic_id("meta", key)


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return None


def validate_bootstrap_meta(
    completed: Any = None, version: Any = None, completed_at: Any = None
) -> list[str]:
    """Check the (completed, version, completedAt) triple. Empty list = valid."""
    errors = []
    if completed is not None and not isinstance(completed, bool):
        errors.append("completed must be boolean when provided")
    if version is not None and (not isinstance(version, str) or not version.strip()):
        errors.append("version must be a non-empty string when provided")
    if completed_at is not None and not is_iso_timestamp(completed_at):
        errors.append("completedAt must be an ISO-8601 timestamp")
    if completed is True:
        if not isinstance(version, str) or not version.strip():
            errors.append("version is required when completed is true")
        if not is_iso_timestamp(completed_at):
            errors.append("completedAt is required when completed is true")
    return errors


def get_state(entries: Iterable[Entry]) -> BootstrapState:
    meta = fold(entries).meta
    present = {key: meta[key].value for key in BOOTSTRAP_META_KEYS if key in meta}
    if not present:
        return BootstrapState(STATUS_NOT_STARTED)

    completed = _as_bool(present.get(META_COMPLETED))
    raw_version = present.get(META_VERSION)
    raw_completed_at = present.get(META_COMPLETED_AT)
    version = raw_version.strip() if isinstance(raw_version, str) and raw_version.strip() else None
    completed_at = raw_completed_at if is_iso_timestamp(raw_completed_at) else None

    if completed is True and not validate_bootstrap_meta(completed, version, completed_at):
        return BootstrapState(STATUS_COMPLETED, version, completed_at)
    return BootstrapState(STATUS_PARTIAL, version, completed_at)


def mark_completed(entries: Iterable[Entry], version: str, now: datetime) -> list[MetaEntry]:
    """Meta upserts recording completion. Same arguments, same folded state.

    ``entries`` is the current log; the upserts do not depend on it because
    each key always lands on the same deterministic id.
    """
    if not isinstance(version, str) or not version.strip():
        raise ValueError("version must be a non-empty string")
    stamp = iso(now)
    values = {META_COMPLETED: True, META_VERSION: version.strip(), META_COMPLETED_AT: stamp}
    return [
        MetaEntry(id=meta_id(key), created=stamp, key=key, value=value)
        for key, value in values.items()
    ]


def reset_entries(entries: Iterable[Entry], now: datetime) -> list[TombstoneEntry]:
    """Tombstones that return bootstrap status to ``not_started``."""
    brain = fold(entries)
    stamp = iso(now)
    tombstones = []
    for key in BOOTSTRAP_META_KEYS:
        entry = brain.meta.get(key)
        if entry is None:
            continue
        tombstones.append(
            TombstoneEntry(
                id=deterministic_id("reset", f"{entry.id}:{stamp}"),
                created=stamp,
                target=entry.id,
                reason="bootstrap-reset",
            )
        )
    return tombstones


def mark_applied(version: str, now: datetime) -> list[MetaEntry]:
    """Meta upserts recording that ``version`` was applied but not yet confirmed.

    Status reads ``partial`` until ``mark_completed`` runs.
    """
    if not isinstance(version, str) or not version.strip():
        raise ValueError("version must be a non-empty string")
    stamp = iso(now)
    values = {META_COMPLETED: False, META_VERSION: version.strip()}
    return [
        MetaEntry(id=meta_id(key), created=stamp, key=key, value=value)
        for key, value in values.items()
    ]

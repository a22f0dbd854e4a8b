"""Tombstone stale, unreinforced learnings.

Only learnings decay. A learning is a candidate when it is active, scores
below ``min_score`` and has gone unused for more than ``after_days``.
Tombstoned learnings are no longer active, so a second pass finds nothing.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from rho.brain.entries import Entry, TombstoneEntry, deterministic_id, iso
from rho.brain.fold import fold
from rho.brain.prompt import days_since_last_use, score_learning

DEFAULT_AFTER_DAYS = 90
DEFAULT_MIN_SCORE = 3.0


def decay(
    entries: Iterable[Entry],
    now: datetime,
    after_days: float = DEFAULT_AFTER_DAYS,
    min_score: float = DEFAULT_MIN_SCORE,
) -> list[TombstoneEntry]:
    """Return the tombstones to append. Pure: nothing is written here."""
    brain = fold(entries)
    created = iso(now)
    tombstones = []
    for learning in brain.learnings:
        if score_learning(learning, now) >= min_score:
            continue
        if days_since_last_use(learning, now) <= after_days:
            continue
        tombstones.append(
            TombstoneEntry(
                id=deterministic_id("decay", learning.id),
                created=created,
                target=learning.id,
                reason="decayed",
            )
        )
    return tombstones

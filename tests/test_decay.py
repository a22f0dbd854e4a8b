"""Tests for learning decay."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from rho.brain.decay import decay
from rho.brain.entries import (
    BehaviorEntry,
    LearningEntry,
    PreferenceEntry,
    deterministic_id,
    iso,
)
from rho.brain.fold import fold

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def _ago(days: float) -> str:
    return iso(NOW - timedelta(days=days))


class TestDecay:
    def test_stale_low_score_learning_is_tombstoned(self):
        # 120 days old, never used: score = min(5, 4) = 4
        old = LearningEntry(id="old", created=_ago(120), text="Old fact")
        tombstones = decay([old], NOW, after_days=90, min_score=5)
        assert len(tombstones) == 1
        tomb = tombstones[0]
        assert tomb.target == "old"
        assert tomb.reason == "decayed"
        assert tomb.id == deterministic_id("decay", "old")
        assert tomb.created == iso(NOW)

    def test_default_thresholds_keep_aged_learnings(self):
        # Past 90 days the age term alone is at least 3
        old = LearningEntry(id="old", created=_ago(120), text="Old fact")
        assert decay([old], NOW) == []

    def test_recent_learning_survives(self):
        recent = LearningEntry(id="recent", created=_ago(5), text="Recent fact")
        assert decay([recent], NOW, after_days=90, min_score=100) == []

    def test_reinforcement_protects(self):
        kept = LearningEntry(id="kept", created=_ago(120), text="Important", reinforced=1)
        assert decay([kept], NOW, after_days=90, min_score=5) == []

    def test_recent_use_protects(self):
        used = LearningEntry(id="used", created=_ago(200), text="Used lately", last_used=_ago(10))
        assert decay([used], NOW, after_days=90, min_score=100) == []

    def test_other_kinds_exempt(self):
        log = [
            BehaviorEntry(id="b1", created=_ago(500), category="do", text="Be direct"),
            PreferenceEntry(id="p1", created=_ago(500), text="Tabs"),
        ]
        assert decay(log, NOW, after_days=0, min_score=1000) == []

    def test_idempotent(self):
        log = [
            LearningEntry(id="a", created=_ago(120), text="A"),
            LearningEntry(id="b", created=_ago(105), text="B"),
            LearningEntry(id="c", created=_ago(2), text="C"),
        ]
        first = decay(log, NOW, after_days=90, min_score=5)
        assert {t.target for t in first} == {"a", "b"}

        log.extend(first)
        assert decay(log, NOW, after_days=90, min_score=5) == []
        assert [l.id for l in fold(log).learnings] == ["c"]

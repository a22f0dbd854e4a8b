"""Tests for folding the brain log into materialized state."""

from __future__ import annotations

import itertools

from rho.brain.entries import (
    BehaviorEntry,
    IdentityEntry,
    LearningEntry,
    MetaEntry,
    TaskEntry,
    TombstoneEntry,
    UserEntry,
)
from rho.brain.fold import fold

T0 = "2024-01-01T00:00:00.000Z"
T1 = "2024-01-02T00:00:00.000Z"
T2 = "2024-01-03T00:00:00.000Z"


def _learning(entry_id: str, text: str, created: str = T0) -> LearningEntry:
    return LearningEntry(id=entry_id, created=created, text=text)


class TestFold:
    def test_empty_log(self):
        brain = fold([])
        assert brain.is_empty()
        assert brain.learnings == []
        assert brain.identity == {}

    def test_groups_by_kind(self):
        brain = fold(
            [
                IdentityEntry(id="i1", created=T0, key="name", value="rho"),
                UserEntry(id="u1", created=T0, key="name", value="Mikey"),
                BehaviorEntry(id="b1", created=T0, category="do", text="Be direct"),
                _learning("l1", "Use pnpm"),
                TaskEntry(id="t1", created=T0, description="Ship it"),
                MetaEntry(id="m1", created=T0, key="schema", value=2),
            ]
        )
        assert brain.identity["name"].value == "rho"
        assert brain.user["name"].value == "Mikey"
        assert [b.text for b in brain.behaviors] == ["Be direct"]
        assert [l.text for l in brain.learnings] == ["Use pnpm"]
        assert [t.description for t in brain.tasks] == ["Ship it"]
        assert brain.meta["schema"].value == 2
        assert len(brain.by_id) == 6

    def test_order_of_unrelated_entries_does_not_matter(self):
        log = [
            IdentityEntry(id="i1", created=T1, key="name", value="rho"),
            UserEntry(id="u1", created=T0, key="tz", value="UTC"),
            BehaviorEntry(id="b1", created=T2, category="do", text="Be direct"),
            _learning("l1", "a", T1),
            _learning("l2", "b", T0),
            TaskEntry(id="t1", created=T0, description="Ship it"),
            MetaEntry(id="m1", created=T2, key="schema", value=2),
        ]
        expected = fold(log)
        for ordering in itertools.permutations(log):
            assert fold(ordering) == expected
        assert [l.id for l in expected.learnings] == ["l2", "l1"]

    def test_rewrite_same_id_replaces(self):
        brain = fold([_learning("l1", "old"), _learning("l1", "new", T1)])
        assert [l.text for l in brain.learnings] == ["new"]


class TestTombstones:
    def test_tombstone_removes_target(self):
        brain = fold([_learning("l1", "a"), TombstoneEntry(id="x1", created=T1, target="l1")])
        assert brain.get("l1") is None
        assert brain.learnings == []
        assert "l1" in brain.tombstoned
        assert brain.retired["l1"].text == "a"

    def test_later_write_reactivates(self):
        brain = fold(
            [
                _learning("l1", "a"),
                TombstoneEntry(id="x1", created=T1, target="l1"),
                _learning("l1", "back", T2),
            ]
        )
        assert brain.get("l1").text == "back"
        assert "l1" not in brain.tombstoned
        assert "l1" not in brain.retired

    def test_tombstone_for_unknown_id_is_harmless(self):
        brain = fold([TombstoneEntry(id="x1", created=T0, target="ghost"), _learning("l1", "a")])
        assert [l.id for l in brain.learnings] == ["l1"]
        assert "ghost" in brain.tombstoned

    def test_tombstones_are_not_active(self):
        brain = fold([TombstoneEntry(id="x1", created=T0, target="ghost")])
        assert brain.is_empty()


class TestKeyedTypes:
    def test_new_id_same_key_supersedes(self):
        brain = fold(
            [
                UserEntry(id="u1", created=T0, key="name", value="Mikey"),
                UserEntry(id="u2", created=T1, key="name", value="Mike"),
            ]
        )
        assert len(brain.user) == 1
        assert brain.user["name"].value == "Mike"
        assert brain.get("u1") is None

    def test_key_change_frees_old_key(self):
        brain = fold(
            [
                IdentityEntry(id="i1", created=T0, key="name", value="rho"),
                IdentityEntry(id="i1", created=T1, key="nickname", value="r"),
                IdentityEntry(id="i2", created=T2, key="name", value="rho-2"),
            ]
        )
        assert brain.identity["nickname"].value == "r"
        assert brain.identity["name"].value == "rho-2"
        assert len(brain.identity) == 2

    def test_same_key_different_kinds_do_not_collide(self):
        brain = fold(
            [
                IdentityEntry(id="i1", created=T0, key="name", value="rho"),
                UserEntry(id="u1", created=T0, key="name", value="Mikey"),
            ]
        )
        assert brain.identity["name"].value == "rho"
        assert brain.user["name"].value == "Mikey"

    def test_tombstoned_keyed_entry_frees_key(self):
        brain = fold(
            [
                UserEntry(id="u1", created=T0, key="name", value="Mikey"),
                TombstoneEntry(id="x1", created=T1, target="u1"),
            ]
        )
        assert brain.user == {}


class TestOrdering:
    def test_lists_follow_created_then_id(self):
        brain = fold(
            [
                _learning("b", "second", T1),
                _learning("c", "third", T2),
                _learning("a", "first", T0),
                _learning("d", "tie", T1),
            ]
        )
        assert [l.id for l in brain.learnings] == ["a", "b", "d", "c"]

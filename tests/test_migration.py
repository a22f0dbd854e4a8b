"""Tests for the legacy JSONL migration."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from rho.brain.entries import LearningEntry, MetaEntry, deterministic_id
from rho.brain.errors import MigrationError
from rho.brain.fold import fold
from rho.brain.migration import (
    MIGRATION_MARKER,
    MigrationPaths,
    cleanup_legacy_files,
    detect,
    is_migrated,
    run,
)
from rho.brain.store import BrainStore

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
STAMP = "2025-06-01T12:00:00.000Z"


def _write_jsonl(path, records):
    lines = [r if isinstance(r, str) else json.dumps(r) for r in records]
    path.write_text("\n".join(lines) + "\n")


@pytest.fixture
def paths(tmp_path):
    return MigrationPaths.under(tmp_path)


@pytest.fixture
def store(paths):
    return BrainStore(paths.brain)


class TestDetect:
    def test_nothing_to_migrate(self, paths):
        status = detect(paths)
        assert not status.has_legacy
        assert not status.already_migrated
        assert status.legacy_files == []

    def test_blank_legacy_file_is_ignored(self, paths):
        paths.legacy_core.write_text("\n  \n")
        assert not detect(paths).has_legacy

    def test_finds_legacy_files(self, paths):
        _write_jsonl(paths.legacy_tasks, [{"description": "Ship it"}])
        status = detect(paths)
        assert status.has_legacy
        assert status.legacy_files == [paths.legacy_tasks]

    def test_skip_marker_counts_as_migrated(self, paths, store):
        store.append(
            MetaEntry(
                id=deterministic_id("meta", MIGRATION_MARKER),
                created=STAMP,
                key=MIGRATION_MARKER,
                value="skip",
            )
        )
        assert detect(paths).already_migrated


class TestRun:
    def test_imports_and_skips_duplicate_learning(self, paths, store):
        store.append(LearningEntry(id="l-existing", created=STAMP, text="Use pnpm, not npm"))
        _write_jsonl(paths.legacy_core, [{"type": "identity", "key": "name", "value": "Mikey"}])
        _write_jsonl(
            paths.legacy_memory,
            [{"type": "learning", "text": "  use PNPM, not NPM ", "used": 7}],
        )

        stats = run(paths, store=store, now=NOW)
        assert stats.identity == 1
        assert stats.learnings == 0
        assert stats.skipped == 1

        appended = store.entries()[1:]
        assert [e.TYPE for e in appended] == ["identity", "meta"]
        assert appended[0].key == "name"
        assert appended[0].value == "Mikey"
        assert appended[1].key == MIGRATION_MARKER
        assert appended[1].value == "done"
        assert is_migrated(store.entries())

        size = len(store.entries())
        again = run(paths, store=store, now=NOW)
        assert again.already_migrated
        assert again.imported == 0
        assert len(store.entries()) == size

    def test_legacy_files_are_left_alone(self, paths, store):
        _write_jsonl(paths.legacy_context, [{"project": "rho", "path": "README", "content": "x"}])
        before = paths.legacy_context.read_text()
        run(paths, store=store, now=NOW)
        assert paths.legacy_context.read_text() == before

    def test_defaults_and_types(self, paths, store):
        _write_jsonl(
            paths.legacy_core,
            [
                {"type": "behavior", "category": "do", "text": "Be direct"},
                {"type": "user", "key": "timezone", "value": "UTC"},
            ],
        )
        _write_jsonl(
            paths.legacy_memory,
            [
                {"type": "preference", "text": "Dark mode"},
                {"type": "learning", "text": "Repo uses pnpm", "created": "2024-03-01T10:00:00Z"},
            ],
        )
        _write_jsonl(
            paths.legacy_tasks,
            [{"id": "task-7", "description": "Ship the release", "tags": ["work"]}],
        )

        stats = run(paths, store=store, now=NOW)
        assert (stats.behaviors, stats.user, stats.preferences, stats.learnings, stats.tasks) == (
            1,
            1,
            1,
            1,
            1,
        )
        brain = fold(store.entries())
        assert brain.preferences[0].category == "General"
        learning = brain.learnings[0]
        assert learning.source == "migration"
        assert learning.reinforced == 0
        assert learning.created == "2024-03-01T10:00:00.000Z"
        task = brain.get("task-7")
        assert task.status == "pending"
        assert task.priority == "normal"
        assert task.tags == ["work"]
        assert task.created == STAMP

    def test_bad_lines_and_wrong_kinds_are_skipped(self, paths, store):
        _write_jsonl(
            paths.legacy_core,
            [
                "{not json",
                "[1, 2]",
                {"type": "learning", "text": "belongs in memory.jsonl"},
                {"type": "behavior", "category": "sometimes", "text": "invalid category"},
                {"type": "behavior", "category": "dont", "text": "Pad answers"},
            ],
        )
        stats = run(paths, store=store, now=NOW)
        assert stats.behaviors == 1
        assert stats.skipped == 4
        assert [b.text for b in fold(store.entries()).behaviors] == ["Pad answers"]

    def test_line_with_invalid_utf8_is_skipped(self, paths, store):
        good = json.dumps({"type": "behavior", "category": "do", "text": "Be direct"})
        garbled = '{"type": "behavior", "category": "do", "text": "caf'.encode() + b'\xe9"}'
        paths.legacy_core.write_bytes(good.encode() + b"\n" + garbled + b"\n")
        stats = run(paths, store=store, now=NOW)
        assert stats.behaviors == 1
        assert stats.skipped == 1
        assert [b.text for b in fold(store.entries()).behaviors] == ["Be direct"]

    def test_ids_are_stable_without_legacy_ids(self, tmp_path):
        first = MigrationPaths.under(tmp_path / "a")
        second = MigrationPaths.under(tmp_path / "b")
        for p in (first, second):
            p.brain.parent.mkdir()
            _write_jsonl(p.legacy_context, [{"project": "rho", "path": "README", "content": "x"}])
            run(p, now=NOW)
        ids_a = [e.id for e in BrainStore(first.brain).entries()]
        ids_b = [e.id for e in BrainStore(second.brain).entries()]
        assert ids_a == ids_b

    def test_empty_legacy_still_marks_done(self, paths, store):
        stats = run(paths, store=store, now=NOW)
        assert stats.imported == 0
        assert is_migrated(store.entries())


class TestCleanup:
    def test_refuses_before_migration(self, paths):
        _write_jsonl(paths.legacy_core, [{"type": "user", "key": "name", "value": "Mikey"}])
        with pytest.raises(MigrationError):
            cleanup_legacy_files(paths)
        assert paths.legacy_core.exists()

    def test_removes_after_migration(self, paths, store):
        _write_jsonl(paths.legacy_core, [{"type": "user", "key": "name", "value": "Mikey"}])
        _write_jsonl(paths.legacy_tasks, [{"description": "Ship it"}])
        run(paths, store=store, now=NOW)

        removed = cleanup_legacy_files(paths, store=store)
        assert removed == [paths.legacy_core, paths.legacy_tasks]
        assert not detect(paths).has_legacy
        assert fold(store.entries()).user["name"].value == "Mikey"

"""Tests for the brain write lock."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from rho.brain import lock as lock_mod
from rho.brain.errors import LockTimeout
from rho.brain.lock import file_lock, is_pid_running


@pytest.fixture
def lock_path(tmp_path: Path) -> Path:
    return tmp_path / "brain.jsonl.lock"


def _write_holder(path: Path, pid: int, token: str = "other") -> None:
    path.write_text(json.dumps({"pid": pid, "token": token, "acquired": 0}))


class TestFileLock:
    def test_creates_and_releases(self, lock_path: Path):
        with file_lock(lock_path, timeout=1):
            holder = json.loads(lock_path.read_text())
            assert holder["pid"] == os.getpid()
            assert holder["token"]
        assert not lock_path.exists()

    def test_released_on_exception(self, lock_path: Path):
        with pytest.raises(RuntimeError):
            with file_lock(lock_path, timeout=1):
                raise RuntimeError("boom")
        assert not lock_path.exists()

    def test_live_holder_times_out(self, lock_path: Path):
        _write_holder(lock_path, os.getpid())
        with pytest.raises(LockTimeout) as exc_info:
            with file_lock(lock_path, timeout=0.05):
                pytest.fail("lock should not be acquired")
        assert exc_info.value.holder_pid == os.getpid()
        # Foreign lock left in place
        assert json.loads(lock_path.read_text())["token"] == "other"

    def test_dead_holder_is_reclaimed(self, lock_path: Path, monkeypatch):
        _write_holder(lock_path, 424242)
        monkeypatch.setattr(lock_mod, "is_pid_running", lambda pid: False)
        with file_lock(lock_path, timeout=0.5):
            assert json.loads(lock_path.read_text())["pid"] == os.getpid()
        assert not lock_path.exists()

    def test_unreadable_lock_reclaimed_after_stale_after(self, lock_path: Path):
        lock_path.write_text("")
        old = os.path.getmtime(lock_path) - 60
        os.utime(lock_path, (old, old))
        with file_lock(lock_path, timeout=0.5, stale_after=1):
            pass
        assert not lock_path.exists()

    def test_reclaim_spares_lock_taken_after_staleness_check(self, lock_path: Path, monkeypatch):
        _write_holder(lock_path, 424242, token="dead")
        monkeypatch.setattr(lock_mod, "is_pid_running", lambda pid: pid != 424242)
        real_is_stale = lock_mod._is_stale
        swapped = []

        def is_stale_then_lose_race(path, stale_after):
            verdict = real_is_stale(path, stale_after)
            if not swapped:
                # A faster waiter reclaims and takes the lock right after our check.
                fresh = path.with_name("fresh")
                _write_holder(fresh, os.getpid(), token="live")
                os.replace(fresh, path)
                swapped.append(True)
            return verdict

        monkeypatch.setattr(lock_mod, "_is_stale", is_stale_then_lose_race)
        with pytest.raises(LockTimeout):
            with file_lock(lock_path, timeout=0.1):
                pytest.fail("lock should not be acquired")
        assert json.loads(lock_path.read_text())["token"] == "live"
        assert sorted(p.name for p in lock_path.parent.iterdir()) == [lock_path.name]

    def test_release_leaves_foreign_lock(self, lock_path: Path):
        with file_lock(lock_path, timeout=1):
            # Simulate another process that reclaimed and re-took the lock
            _write_holder(lock_path, os.getpid(), token="someone-else")
        assert lock_path.exists()


class TestPidLiveness:
    def test_self_is_running(self):
        assert is_pid_running(os.getpid())

    def test_non_positive_pid(self):
        assert not is_pid_running(0)
        assert not is_pid_running(-1)

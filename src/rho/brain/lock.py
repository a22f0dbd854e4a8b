"""Cross-process write lock for the brain log.

The lock is a sidecar file created with ``O_EXCL`` that records the holder's
pid. A holder whose pid is no longer running left a stale lock behind; it is
reclaimed on the spot by renaming it aside and deleting the renamed file,
so a lock that changed hands after the staleness check is never removed.
A live holder is waited on with exponential backoff until the timeout, then
``LockTimeout`` is raised and nothing is written.
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from rho.brain.errors import LockTimeout

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0
_BACKOFF_START = 0.01
_BACKOFF_MAX = 0.2


def is_pid_running(pid: int) -> bool:
    """True if a process with ``pid`` exists (signal 0 check)."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else.
        return True
    return True


def _read_holder(lock_path: Path) -> dict | None:
    try:
        data = json.loads(lock_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _inspect(lock_path: Path) -> tuple[int, dict | None, float] | None:
    """(inode, holder, mtime) of the lock file, read through one descriptor."""
    try:
        with lock_path.open("rb") as f:
            st = os.fstat(f.fileno())
            raw = f.read()
    except FileNotFoundError:
        return None
    try:
        data = json.loads(raw.decode("utf-8"))
    except ValueError:
        data = None
    return st.st_ino, data if isinstance(data, dict) else None, st.st_mtime


def _mark(seen: tuple[int, dict | None, float]) -> tuple[int, object]:
    ino, holder, _ = seen
    return ino, holder.get("token") if holder else None


def _is_stale(lock_path: Path, stale_after: float) -> tuple[bool, int | None, tuple | None]:
    """Decide whether an existing lock file can be reclaimed.

    Returns the verdict, the holder pid, and a mark (inode, token) naming
    the exact file the verdict is about.
    """
    seen = _inspect(lock_path)
    if seen is None:
        return False, None, None
    _, holder, mtime = seen
    mark = _mark(seen)
    pid = holder.get("pid") if holder else None
    if isinstance(pid, int):
        return not is_pid_running(pid), pid, mark
    # Unreadable payload: either a holder mid-write or debris from a crash.
    return time.time() - mtime > stale_after, None, mark


def _reclaim(lock_path: Path, mark: tuple, token: str) -> bool:
    """Move the stale lock aside, then delete it.

    If the file moved aside is not the one judged stale, a new holder took
    the lock in between: it is linked back in place and nothing is deleted.
    """
    aside = lock_path.with_name(f"{lock_path.name}.{token}.stale")
    try:
        os.rename(lock_path, aside)
    except FileNotFoundError:
        return False
    moved = _inspect(aside)
    if moved is not None and _mark(moved) != mark:
        try:
            os.link(aside, lock_path)
        except FileExistsError:
            logger.warning("Lock %s changed hands twice during reclaim", lock_path)
        aside.unlink(missing_ok=True)
        return False
    aside.unlink(missing_ok=True)
    return True


def _try_create(lock_path: Path, token: str) -> bool:
    try:
        fd = os.open(str(lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        return False
    payload = {"pid": os.getpid(), "token": token, "acquired": time.time()}
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(json.dumps(payload))
    return True


def _release(lock_path: Path, token: str) -> None:
    holder = _read_holder(lock_path)
    if holder is not None and holder.get("token") != token:
        logger.warning("Lock %s was taken over by pid %s; not removing", lock_path, holder.get("pid"))
        return
    lock_path.unlink(missing_ok=True)


@contextmanager
def file_lock(
    lock_path: Path,
    timeout: float = DEFAULT_TIMEOUT,
    stale_after: float | None = None,
) -> Iterator[None]:
    """Hold ``lock_path`` exclusively for the duration of the block.

    Released on every exit path, including exceptions raised in the block.
    """
    lock_path = Path(lock_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    stale_after = timeout if stale_after is None else stale_after
    token = uuid.uuid4().hex
    deadline = time.monotonic() + timeout
    delay = _BACKOFF_START
    holder_pid: int | None = None

    while not _try_create(lock_path, token):
        stale, holder_pid, mark = _is_stale(lock_path, stale_after)
        if stale and mark is not None:
            if _reclaim(lock_path, mark, token):
                logger.debug("Reclaimed stale lock %s (pid=%s)", lock_path, holder_pid)
            continue
        now = time.monotonic()
        if now >= deadline:
            raise LockTimeout(lock_path, timeout, holder_pid)
        logger.debug("Lock %s held by pid %s, retrying in %.3fs", lock_path, holder_pid, delay)
        time.sleep(min(delay, deadline - now))
        delay = min(delay * 2, _BACKOFF_MAX)

    try:
        yield
    finally:
        _release(lock_path, token)

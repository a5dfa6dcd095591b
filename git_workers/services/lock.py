"""Repository-scoped lock for mutating worktree operations.

The lock is a marker file created with O_EXCL inside the repository's common
git directory. It is a lease: a marker older than the stale threshold is
considered abandoned by a crashed process and may be reclaimed. Acquisition
never waits.
"""

import json
import logging
import os
import socket
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from git_workers.constants import LOCK_FILE_NAME, STALE_LOCK_TIMEOUT_SECS
from git_workers.errors import Busy

logger = logging.getLogger(__name__)


def lock_path_for(admin_dir: Path | str) -> Path:
    return Path(admin_dir) / LOCK_FILE_NAME


class WorktreeLock:
    """Handle for a held repository lock."""

    def __init__(self, path: Path, payload: dict) -> None:
        self.path = path
        self.payload = payload
        self._held = True

    @property
    def held(self) -> bool:
        return self._held

    def release(self) -> None:
        """Delete the marker. Safe to call more than once."""
        if not self._held:
            return
        self._held = False
        try:
            self.path.unlink()
        except FileNotFoundError:
            # Reclaimed by another process after we went stale.
            logger.debug("Lock marker already gone on release", extra={"lock": str(self.path)})

    def __enter__(self) -> "WorktreeLock":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


def _try_create(path: Path) -> dict | None:
    """Atomically create the marker. Returns its payload, or None if it exists."""
    try:
        fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        return None
    payload = {"pid": os.getpid(), "host": socket.gethostname(), "created_at": time.time()}
    with os.fdopen(fd, "w") as f:
        json.dump(payload, f)
    return payload


def read_lock(admin_dir: Path | str) -> dict | None:
    """Return the holder payload of the current marker, or None if unlocked.

    An unreadable payload yields a dict with only ``created_at`` taken from
    the file's modification time.
    """
    return _read_marker(lock_path_for(admin_dir))


def _read_marker(path: Path) -> dict | None:
    try:
        raw = path.read_text()
        mtime = path.stat().st_mtime
    except FileNotFoundError:
        return None
    try:
        payload = json.loads(raw)
        if not isinstance(payload, dict) or not isinstance(payload.get("created_at"), (int, float)):
            raise ValueError("missing created_at")
    except ValueError:
        payload = {"created_at": mtime}
    return payload


def lock_age(admin_dir: Path | str) -> float | None:
    """Seconds since the current marker was created, or None if unlocked."""
    payload = read_lock(admin_dir)
    if payload is None:
        return None
    return time.time() - payload["created_at"]


def _claim_stale(path: Path, holder: dict) -> bool:
    """Take the stale marker out of the way, if it is still the one we read.

    The marker is renamed aside (atomic) and checked before being deleted, so
    a fresh marker written by a process that reclaimed first is never lost:
    it is linked back in place and False is returned.
    """
    claimed = path.with_name(f"{path.name}.{os.getpid()}.stale")
    try:
        os.rename(path, claimed)
    except FileNotFoundError:
        return False
    taken = _read_marker(claimed)
    if taken is not None and taken.get("created_at") == holder["created_at"]:
        claimed.unlink(missing_ok=True)
        return True

    try:
        os.link(claimed, path)
    except FileExistsError:
        logger.warning("Lock marker replaced while restoring another holder's lock", extra={"lock": str(path)})
    claimed.unlink(missing_ok=True)
    return False


def acquire(admin_dir: Path | str, stale_after: float = STALE_LOCK_TIMEOUT_SECS) -> WorktreeLock:
    """Acquire the repository lock or raise Busy.

    Errors other than "marker already exists" (permissions, missing
    directory) propagate unchanged.
    """
    path = lock_path_for(admin_dir)
    payload = _try_create(path)
    if payload is not None:
        logger.debug("Acquired repository lock", extra={"lock": str(path)})
        return WorktreeLock(path, payload)

    holder = read_lock(admin_dir)
    if holder is None:
        # Released between our attempt and the read; one more try.
        payload = _try_create(path)
        if payload is not None:
            return WorktreeLock(path, payload)
        raise Busy(path, read_lock(admin_dir))

    age = time.time() - holder["created_at"]
    if age <= stale_after:
        raise Busy(path, holder)

    logger.warning(
        "Reclaiming stale repository lock",
        extra={"lock": str(path), "age_s": round(age, 1), "holder_pid": holder.get("pid")},
    )
    if not _claim_stale(path, holder):
        raise Busy(path, read_lock(admin_dir))
    payload = _try_create(path)
    if payload is None:
        # Another process reclaimed it first.
        raise Busy(path, read_lock(admin_dir))
    return WorktreeLock(path, payload)


def release(lock: WorktreeLock) -> None:
    lock.release()


def force_unlock(admin_dir: Path | str) -> bool:
    """Delete the marker regardless of owner. Returns True if one was removed."""
    path = lock_path_for(admin_dir)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    logger.info("Removed repository lock", extra={"lock": str(path)})
    return True


@contextmanager
def repository_lock(
    admin_dir: Path | str, stale_after: float = STALE_LOCK_TIMEOUT_SECS
) -> Iterator[WorktreeLock]:
    lock = acquire(admin_dir, stale_after)
    try:
        yield lock
    finally:
        lock.release()

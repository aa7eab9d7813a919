from __future__ import annotations

import fcntl
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator

logger = logging.getLogger("addonhost.addons.locks")

REBUILD_LOCK_NAME = "__rebuild__"

# flock is per open file description, so two handles in one process would
# deadlock each other; serialize threads on a process-local lock first.
_THREAD_LOCKS: Dict[str, threading.Lock] = {}
_THREAD_LOCKS_GUARD = threading.Lock()


def _thread_lock(path: Path) -> threading.Lock:
    key = str(path.resolve())
    with _THREAD_LOCKS_GUARD:
        lock = _THREAD_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _THREAD_LOCKS[key] = lock
        return lock


@contextmanager
def locked(lock_path: Path) -> Iterator[None]:
    """
    Hold an exclusive advisory lock on a sidecar file.

    Sidecar files live outside the addon directory so the lock survives
    the directory being deleted by uninstall or a failed install.
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with _thread_lock(lock_path):
        with lock_path.open("a+", encoding="utf-8") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            logger.debug("Acquired lock %s", lock_path)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                logger.debug("Released lock %s", lock_path)


class LockManager:
    """Per-addon locks plus the single global lock guarding rebuild writes."""

    def __init__(self, locks_dir: Path) -> None:
        self.locks_dir = locks_dir

    def addon(self, name: str):
        return locked(self.locks_dir / f"{name}.lock")

    def rebuild(self):
        return locked(self.locks_dir / f"{REBUILD_LOCK_NAME}.lock")

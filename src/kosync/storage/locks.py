"""Writer lock for the key-value store."""

from __future__ import annotations

import contextlib
from collections.abc import Generator
from pathlib import Path

from filelock import FileLock, Timeout


class LockTimeout(Exception):
    """Raised when a lock cannot be acquired within the timeout period."""


@contextlib.contextmanager
def writer_lock(lock_path: Path, timeout: float = 10) -> Generator[None, None, None]:
    """Hold the single-writer lock at *lock_path* for the duration of the block.

    The lock is an OS-level file lock, so it serializes writers across
    threads of one process as well as across processes sharing the data
    directory. It is released on every exit path, including exceptions.

    Args:
        lock_path: Path of the lock file (created if missing).
        timeout: Seconds to wait before giving up.

    Raises:
        LockTimeout: If the lock cannot be acquired within *timeout* seconds.
    """
    lock = FileLock(lock_path, timeout=timeout)
    try:
        lock.acquire()
    except Timeout:
        raise LockTimeout(
            f"Could not acquire lock '{lock_path.name}' within {timeout}s"
        ) from None
    try:
        yield
    finally:
        lock.release()

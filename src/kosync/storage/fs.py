"""Atomic file writes, key encoding, and data directory layout."""

from __future__ import annotations

import base64
import contextlib
import os
import tempfile
from pathlib import Path

TABLE_NAMES: tuple[str, ...] = ("users", "progress", "annotations")
LOCK_FILENAME = "write.lock"
JOURNAL_FILENAME = "journal.json"


def _fsync_directory(path: Path) -> None:
    """Make renames and unlinks inside *path* durable, where the OS allows it."""
    try:
        dir_fd = os.open(str(path), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        # Not every filesystem accepts fsync on a directory descriptor.
        pass
    finally:
        os.close(dir_fd)


def atomic_write(path: Path, content: str | bytes) -> None:
    """Replace *path* with *content* so readers see the old or the new file, never a mix.

    Raises:
        FileNotFoundError: If the table or data directory is missing.
    """
    directory = path.parent
    if not directory.is_dir():
        raise FileNotFoundError(f"Parent directory does not exist: {directory}")

    payload = content if isinstance(content, bytes) else content.encode("utf-8")
    fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=".tmp.")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise
    _fsync_directory(directory)


def encode_key(key: str) -> str:
    """Map a record key to a filesystem-safe file name.

    URL-safe base64 without padding: reversible, case-sensitive, and free of
    path separators. Keys may contain ``:`` and arbitrary unicode.
    """
    return base64.urlsafe_b64encode(key.encode("utf-8")).decode("ascii").rstrip("=")


def decode_key(name: str) -> str:
    """Inverse of :func:`encode_key`."""
    padding = "=" * (-len(name) % 4)
    return base64.urlsafe_b64decode(name + padding).decode("utf-8")


def ensure_data_dirs(root: Path) -> None:
    """Create the data directory and one subdirectory per table."""
    root.mkdir(parents=True, exist_ok=True)
    for table in TABLE_NAMES:
        (root / table).mkdir(exist_ok=True)

"""Embedded transactional key-value store on the local filesystem.

Layout under the data directory::

    users/          one file per key, name = encode_key(key)
    progress/
    annotations/
    write.lock      single-writer lock (filelock)
    journal.json    present only while a commit is in flight

Writers are serialized by ``write.lock``.  A commit first persists every
pending write, together with the value it replaces, to ``journal.json``
(atomically), then applies each value with an atomic rename, then removes the
journal.  If applying fails in-process the prior values are restored before
the error reaches the caller, so a failed commit never lands later.  A journal
left behind by a crash is rolled forward (or, when it is marked ``revert``,
rolled back) by the next writer, so a multi-key commit is all-or-nothing.
Readers never take the lock; every value file is replaced atomically, so a
reader sees either the old or the new committed value.
"""

from __future__ import annotations

import base64
import contextlib
import json
import logging
import os
from collections.abc import Generator
from pathlib import Path

from kosync.core.errors import StorageError
from kosync.storage.fs import (
    JOURNAL_FILENAME,
    LOCK_FILENAME,
    TABLE_NAMES,
    _fsync_directory,
    atomic_write,
    encode_key,
    ensure_data_dirs,
)
from kosync.storage.locks import LockTimeout, writer_lock

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Handle to an open store.  Safe to share between threads."""

    def __init__(self, root: Path, *, lock_timeout: float = 10) -> None:
        self.root = root
        self.lock_timeout = lock_timeout

    @classmethod
    def open(cls, root: Path | str, *, lock_timeout: float = 10) -> KeyValueStore:
        """Create the directory layout if needed and recover any pending commit."""
        store = cls(Path(root), lock_timeout=lock_timeout)
        try:
            ensure_data_dirs(store.root)
            with writer_lock(store.lock_path, timeout=lock_timeout):
                store._recover()
        except (OSError, LockTimeout) as exc:
            raise StorageError(f"Database error: {exc}") from exc
        logger.debug("store opened at %s", store.root)
        return store

    @property
    def lock_path(self) -> Path:
        return self.root / LOCK_FILENAME

    @property
    def journal_path(self) -> Path:
        return self.root / JOURNAL_FILENAME

    @contextlib.contextmanager
    def begin_read(self) -> Generator[ReadTransaction, None, None]:
        """Yield a read-only view of the last committed state."""
        yield ReadTransaction(self)

    @contextlib.contextmanager
    def begin_write(self) -> Generator[WriteTransaction, None, None]:
        """Yield a write transaction holding the writer lock.

        Commits when the block exits normally, aborts when it raises.
        The lock is released on every path.  A journal left by an earlier
        failed commit is rolled forward before the transaction starts.
        """
        try:
            with writer_lock(self.lock_path, timeout=self.lock_timeout):
                self._recover()
                txn = WriteTransaction(self)
                try:
                    yield txn
                except BaseException:
                    txn.abort()
                    raise
                if txn.active:
                    txn.commit()
        except (OSError, LockTimeout) as exc:
            raise StorageError(f"Database error: {exc}") from exc

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _value_path(self, table: str, key: str) -> Path:
        if table not in TABLE_NAMES:
            raise StorageError(f"Database table error: unknown table '{table}'")
        return self.root / table / encode_key(key)

    def _read(self, table: str, key: str) -> bytes | None:
        path = self._value_path(table, key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Database storage error: {exc}") from exc

    def _apply(self, writes: list[tuple[str, str, bytes | None]]) -> None:
        """Write each value; a ``None`` value removes the key."""
        for table, key, value in writes:
            path = self._value_path(table, key)
            if value is None:
                path.unlink(missing_ok=True)
                _fsync_directory(path.parent)
            else:
                atomic_write(path, value)

    def _write_journal(self, action: str, entries: list[dict]) -> None:
        atomic_write(self.journal_path, json.dumps({"action": action, "entries": entries}))

    def _clear_journal(self) -> None:
        os.unlink(self.journal_path)
        _fsync_directory(self.root)

    def _revert(self, entries: list[dict]) -> None:
        """Restore the values a failed commit replaced.

        If restoring fails too, the journal is re-marked ``revert`` so the
        next writer finishes the rollback before doing anything else.
        """
        try:
            self._apply(_journal_writes(entries, "previous"))
            self._clear_journal()
        except OSError as exc:
            logger.error("rollback incomplete, deferring to next writer: %s", exc)
            try:
                self._write_journal("revert", entries)
            except OSError as journal_exc:
                logger.error("could not mark journal for rollback: %s", journal_exc)

    def _recover(self) -> None:
        """Finish a commit or rollback left behind by an interrupted writer.

        Caller must hold the writer lock.
        """
        if not self.journal_path.exists():
            return
        try:
            journal = json.loads(self.journal_path.read_text(encoding="utf-8"))
            action = journal["action"]
            field = {"apply": "value", "revert": "previous"}[action]
            writes = _journal_writes(journal["entries"], field)
        except (ValueError, KeyError, TypeError):
            # A journal is written atomically, so an unreadable one was never
            # complete and nothing from it was applied.
            logger.warning("discarding unreadable journal at %s", self.journal_path)
            os.unlink(self.journal_path)
            return
        logger.warning("recovering journal: %s %d write(s)", action, len(writes))
        self._apply(writes)
        self._clear_journal()


def _encode_value(value: bytes | None) -> str | None:
    return None if value is None else base64.b64encode(value).decode("ascii")


def _journal_writes(entries: list[dict], field: str) -> list[tuple[str, str, bytes | None]]:
    """Extract ``(table, key, bytes-or-None)`` writes from journal entries."""
    return [
        (
            entry["table"],
            entry["key"],
            None if entry[field] is None else base64.b64decode(entry[field]),
        )
        for entry in entries
    ]


class ReadTransaction:
    """Snapshot read access.  Each ``get`` returns a fully committed value."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def get(self, table: str, key: str) -> bytes | None:
        return self._store._read(table, key)


class WriteTransaction:
    """Buffered writes applied all-or-nothing on commit.

    Obtained from :meth:`KeyValueStore.begin_write`, which holds the writer
    lock for the transaction's lifetime.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._pending: dict[tuple[str, str], bytes] = {}
        self.active = True

    def get(self, table: str, key: str) -> bytes | None:
        """Read a value, seeing this transaction's own uncommitted writes."""
        self._check_active()
        pending = self._pending.get((table, key))
        if pending is not None:
            return pending
        return self._store._read(table, key)

    def put(self, table: str, key: str, value: bytes) -> None:
        self._check_active()
        # Validates the table name eagerly so errors surface at the call site.
        self._store._value_path(table, key)
        self._pending[(table, key)] = value

    def commit(self) -> None:
        self._check_active()
        self.active = False
        if not self._pending:
            return
        store = self._store
        try:
            writes = [(table, key, value) for (table, key), value in self._pending.items()]
            entries = [
                {
                    "table": table,
                    "key": key,
                    "value": _encode_value(value),
                    "previous": _encode_value(store._read(table, key)),
                }
                for table, key, value in writes
            ]
            try:
                store._write_journal("apply", entries)
            except OSError as exc:
                logger.error("commit failed before journaling: %s", exc)
                raise StorageError(f"Database commit error: {exc}") from exc
            try:
                store._apply(writes)
            except OSError as exc:
                logger.error("commit failed, rolling back: %s", exc)
                store._revert(entries)
                raise StorageError(f"Database commit error: {exc}") from exc
        finally:
            self._pending.clear()
        try:
            store._clear_journal()
        except OSError as exc:
            # Every value is in place; a stale journal only re-applies them.
            logger.warning("could not remove journal after commit: %s", exc)

    def abort(self) -> None:
        """Discard buffered writes.  Safe to call more than once."""
        self._pending.clear()
        self.active = False

    def _check_active(self) -> None:
        if not self.active:
            raise StorageError("Database transaction error: transaction is closed")

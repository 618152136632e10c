"""Synchronization engine: users, reading progress, and versioned annotations.

Every operation runs in exactly one store transaction.  The engine holds no
state of its own beyond the injected store handle, so one engine may serve
many threads.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable

from kosync.core.errors import VersionConflict
from kosync.core.keys import record_key
from kosync.core.merge import merge_annotations, merge_deleted
from kosync.core.records import (
    Annotation,
    DocumentAnnotations,
    Progress,
    decode_document_annotations,
    decode_progress,
    empty_document_annotations,
    empty_progress,
    make_progress,
    serialize_record,
)
from kosync.storage.kv import KeyValueStore, ReadTransaction, WriteTransaction

logger = logging.getLogger(__name__)

USERS = "users"
PROGRESS = "progress"
ANNOTATIONS = "annotations"


def _unix_now() -> int:
    return int(time.time())


class SyncEngine:
    """Progress and annotation operations over a :class:`KeyValueStore`."""

    def __init__(self, store: KeyValueStore, *, clock: Callable[[], int] = _unix_now) -> None:
        self.store = store
        self._clock = clock

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, username: str, password_hash: str) -> bool:
        """Register a user.  Returns ``False`` if the name is taken."""
        with self.store.begin_write() as txn:
            if txn.get(USERS, username) is not None:
                return False
            txn.put(USERS, username, password_hash.encode("utf-8"))
        logger.info("created user %s", username)
        return True

    def verify_user(self, username: str, password_hash: str) -> bool:
        with self.store.begin_read() as txn:
            stored = txn.get(USERS, username)
        return stored is not None and stored == password_hash.encode("utf-8")

    # ------------------------------------------------------------------
    # Progress (last write wins)
    # ------------------------------------------------------------------

    def get_progress(self, username: str, document: str) -> Progress:
        with self.store.begin_read() as txn:
            raw = txn.get(PROGRESS, record_key(username, document))
        if raw is None:
            return empty_progress()
        return decode_progress(raw)

    def set_progress(
        self,
        username: str,
        document: str,
        progress: str,
        percentage: float,
        device: str,
        device_id: str | None = None,
    ) -> int:
        """Replace the stored progress wholesale and return the server timestamp."""
        timestamp = self._clock()
        record = make_progress(document, progress, percentage, device, device_id, timestamp)
        with self.store.begin_write() as txn:
            txn.put(PROGRESS, record_key(username, document), serialize_record(record))
        return timestamp

    # ------------------------------------------------------------------
    # Annotations (versioned merge)
    # ------------------------------------------------------------------

    def get_annotations(self, username: str, document: str) -> DocumentAnnotations:
        with self.store.begin_read() as txn:
            return _read_annotations(txn, record_key(username, document))

    def update_annotations(
        self,
        username: str,
        document: str,
        annotations: Iterable[Annotation],
        deleted: Iterable[str],
        base_version: int | None = None,
    ) -> tuple[int, int]:
        """Merge an uploaded annotation set into the stored one.

        Steps (one write transaction):
        1. Read the current record (or the version-0 default)
        2. Reject a stale *base_version*, unless nothing was stored yet
        3. Merge annotations and union the tombstones
        4. Store ``version + 1`` and commit

        Returns:
            ``(new_version, timestamp)``.

        Raises:
            VersionConflict: If *base_version* is given, the stored version is
                above 0, and the two differ.  Nothing is written.
        """
        key = record_key(username, document)
        incoming = list(annotations)
        incoming_deleted = list(deleted)
        timestamp = self._clock()

        with self.store.begin_write() as txn:
            current = _read_annotations(txn, key)
            current_version = current["version"]

            if (
                base_version is not None
                and current_version > 0
                and base_version != current_version
            ):
                logger.info(
                    "version conflict on %s: base %d, current %d",
                    key,
                    base_version,
                    current_version,
                )
                raise VersionConflict(base_version, current_version)

            updated: DocumentAnnotations = {
                "version": current_version + 1,
                "annotations": merge_annotations(
                    current["annotations"],
                    incoming,
                    current["deleted"],
                    incoming_deleted,
                ),
                "deleted": merge_deleted(current["deleted"], incoming_deleted),
                "updated_at": timestamp,
            }
            txn.put(ANNOTATIONS, key, serialize_record(updated))

        logger.debug(
            "%s now at version %d with %d annotation(s)",
            key,
            updated["version"],
            len(updated["annotations"]),
        )
        return updated["version"], timestamp

    def set_annotations(self, username: str, document: str, record: DocumentAnnotations) -> None:
        """Overwrite a document's annotation record without merging or version checks."""
        with self.store.begin_write() as txn:
            txn.put(ANNOTATIONS, record_key(username, document), serialize_record(record))


def _read_annotations(
    txn: ReadTransaction | WriteTransaction, key: str
) -> DocumentAnnotations:
    raw = txn.get(ANNOTATIONS, key)
    if raw is None:
        return empty_document_annotations()
    return decode_document_annotations(raw)

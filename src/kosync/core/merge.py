"""Annotation merge: reconcile a server set with a set uploaded by one device.

Annotations are matched by position, not by creation time: two annotations
whose ``(page, pos0, pos1)`` triple serializes identically occupy the same
slot, and the one with the later effective time wins.  Deletions travel as
tombstones keyed by ``datetime`` and are never pruned.

Precedence rules:

* A server annotation whose ``datetime`` the client deleted is dropped
  (client wins on delete).
* A client annotation whose ``datetime`` the server already deleted is
  dropped (server deletion wins over a late re-submission).
* For an occupied slot the client entry replaces the server entry only if
  its effective time is strictly greater; ties keep the server entry.
"""

from __future__ import annotations

import json
from collections.abc import Iterable

from kosync.core.records import Annotation


def _canonical(value: object) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def position_key(annotation: Annotation) -> str:
    """Return the identity slot of an annotation.

    An absent ``pos0``/``pos1`` and an explicit ``null`` map to the same slot.
    """
    return "|".join(
        _canonical(annotation.get(field)) for field in ("page", "pos0", "pos1")
    )


def effective_time(annotation: Annotation) -> str:
    """``datetime_updated`` when present, else ``datetime``."""
    updated = annotation.get("datetime_updated")
    return updated if updated is not None else annotation["datetime"]


def merge_annotations(
    server: Iterable[Annotation],
    client: Iterable[Annotation],
    server_deleted: Iterable[str],
    client_deleted: Iterable[str],
) -> list[Annotation]:
    """Merge two annotation sets into one, honoring both deletion sets.

    Timestamps are compared as strings, so callers must send a sortable
    format such as ``YYYY-MM-DD HH:MM:SS``.  The result lists slots in the
    order they were first filled; the order carries no meaning.
    """
    server_tombstones = set(server_deleted)
    client_tombstones = set(client_deleted)
    merged: dict[str, Annotation] = {}

    for annotation in server:
        if annotation["datetime"] not in client_tombstones:
            merged[position_key(annotation)] = annotation

    for annotation in client:
        if annotation["datetime"] in server_tombstones:
            continue
        key = position_key(annotation)
        existing = merged.get(key)
        if existing is None or effective_time(annotation) > effective_time(existing):
            merged[key] = annotation

    return list(merged.values())


def merge_deleted(current: Iterable[str], incoming: Iterable[str]) -> list[str]:
    """Union two tombstone lists, keeping first-seen order and no duplicates."""
    return list(dict.fromkeys([*current, *incoming]))

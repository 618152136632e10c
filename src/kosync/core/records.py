"""Record schema: progress, annotations, and per-document annotation state.

Records are plain dicts serialized as JSON objects.  Field names match the
KOSync wire format so stored records can be returned to clients as-is.
Optional fields are omitted rather than stored as ``null``; absent fields
decode to their documented defaults.
"""

from __future__ import annotations

import json
from typing import Any, TypedDict

from kosync.core.errors import SerializationError


class Progress(TypedDict, total=False):
    document: str
    progress: str
    percentage: float
    device: str
    device_id: str
    timestamp: int


class Annotation(TypedDict, total=False):
    datetime: str
    datetime_updated: str
    page: Any
    pos0: Any
    pos1: Any
    drawer: str
    color: str
    text: str
    text_edited: bool
    note: str
    chapter: str
    pageno: int


class DocumentAnnotations(TypedDict):
    version: int
    annotations: list[Annotation]
    deleted: list[str]
    updated_at: int


_PROGRESS_FIELD_TYPES: dict[str, tuple[type, ...]] = {
    "document": (str,),
    "progress": (str,),
    "percentage": (int, float),
    "device": (str,),
    "device_id": (str,),
    "timestamp": (int,),
}

_NULLABLE_FIELDS = frozenset({"datetime_updated", "pos0", "pos1"})


def empty_progress() -> Progress:
    """Return the record reported when no progress has been stored yet."""
    return {}


def make_progress(
    document: str,
    progress: str,
    percentage: float,
    device: str,
    device_id: str | None,
    timestamp: int,
) -> Progress:
    record: Progress = {
        "document": document,
        "progress": progress,
        "percentage": percentage,
        "device": device,
        "timestamp": timestamp,
    }
    if device_id is not None:
        record["device_id"] = device_id
    return record


def empty_document_annotations() -> DocumentAnnotations:
    """Return the zero-value state of a document that was never written."""
    return {"version": 0, "annotations": [], "deleted": [], "updated_at": 0}


def serialize_record(record: dict) -> bytes:
    """Encode a record as sorted JSON with trailing newline."""
    return (json.dumps(record, sort_keys=True, indent=2) + "\n").encode("utf-8")


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def parse_annotation(obj: object) -> Annotation:
    """Validate one annotation object and return a normalized copy.

    Only the fields the merge depends on are checked; everything else is
    carried through untouched.  A ``null`` ``datetime_updated``/``pos0``/
    ``pos1`` is dropped, matching how an omitted field is treated.

    Raises:
        ValueError: If the object is not a valid annotation.
    """
    if not isinstance(obj, dict):
        raise ValueError("annotation must be an object")
    if not isinstance(obj.get("datetime"), str):
        raise ValueError("annotation 'datetime' must be a string")
    if "page" not in obj:
        raise ValueError("annotation 'page' is required")
    updated = obj.get("datetime_updated")
    if updated is not None and not isinstance(updated, str):
        raise ValueError("annotation 'datetime_updated' must be a string")
    return {k: v for k, v in obj.items() if not (k in _NULLABLE_FIELDS and v is None)}


def parse_deleted(obj: object) -> list[str]:
    """Validate a list of deletion tombstones.

    Raises:
        ValueError: If *obj* is not a list of strings.
    """
    if not isinstance(obj, list) or not all(isinstance(d, str) for d in obj):
        raise ValueError("'deleted' must be a list of strings")
    return list(obj)


def _load_object(raw: bytes) -> dict:
    try:
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SerializationError(f"Serialization error: {exc}") from exc
    if not isinstance(data, dict):
        raise SerializationError("Serialization error: record is not a JSON object")
    return data


def decode_progress(raw: bytes) -> Progress:
    """Decode a stored progress record.

    Raises:
        SerializationError: If the record is corrupt or has mistyped fields.
    """
    data = _load_object(raw)
    record: Progress = {}
    for field, types in _PROGRESS_FIELD_TYPES.items():
        value = data.get(field)
        if value is None:
            continue
        if not isinstance(value, types) or isinstance(value, bool):
            raise SerializationError(
                f"Serialization error: progress field '{field}' has wrong type"
            )
        record[field] = value  # type: ignore[literal-required]
    return record


def decode_document_annotations(raw: bytes) -> DocumentAnnotations:
    """Decode a stored per-document annotation record, filling defaults.

    Raises:
        SerializationError: If the record is corrupt or has mistyped fields.
    """
    data = _load_object(raw)
    version = data.get("version", 0)
    updated_at = data.get("updated_at", 0)
    if not _is_int(version) or version < 0:
        raise SerializationError("Serialization error: 'version' must be a non-negative integer")
    if not _is_int(updated_at):
        raise SerializationError("Serialization error: 'updated_at' must be an integer")
    raw_annotations = data.get("annotations", [])
    if not isinstance(raw_annotations, list):
        raise SerializationError("Serialization error: 'annotations' must be a list")
    try:
        annotations = [parse_annotation(a) for a in raw_annotations]
        deleted = parse_deleted(data.get("deleted", []))
    except ValueError as exc:
        raise SerializationError(f"Serialization error: {exc}") from exc
    return {
        "version": version,
        "annotations": annotations,
        "deleted": deleted,
        "updated_at": updated_at,
    }

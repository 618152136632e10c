"""Tests for record schema encoding and decoding."""

from __future__ import annotations

import json

import pytest

from kosync.core.errors import SerializationError
from kosync.core.records import (
    decode_document_annotations,
    decode_progress,
    empty_document_annotations,
    make_progress,
    parse_annotation,
    parse_deleted,
    serialize_record,
)


class TestProgress:
    def test_device_id_omitted_when_none(self) -> None:
        record = make_progress("doc", "/body/p[3]", 0.25, "kobo", None, 1700000000)
        assert "device_id" not in record

    def test_decode_stored_record(self) -> None:
        record = make_progress("doc", "/body/p[3]", 0.25, "kobo", "dev-1", 1700000000)
        assert decode_progress(serialize_record(record)) == record

    def test_decode_skips_nulls(self) -> None:
        raw = json.dumps({"document": "doc", "device_id": None}).encode()
        assert decode_progress(raw) == {"document": "doc"}

    def test_integer_percentage_accepted(self) -> None:
        assert decode_progress(b'{"percentage": 1}') == {"percentage": 1}

    @pytest.mark.parametrize(
        "raw",
        [
            b"not json",
            b"[1, 2]",
            b'{"timestamp": "yesterday"}',
            b'{"percentage": true}',
            b"\xff\xfe",
        ],
    )
    def test_corrupt_records_raise(self, raw: bytes) -> None:
        with pytest.raises(SerializationError):
            decode_progress(raw)


class TestDocumentAnnotations:
    def test_empty_defaults(self) -> None:
        assert empty_document_annotations() == {
            "version": 0,
            "annotations": [],
            "deleted": [],
            "updated_at": 0,
        }

    def test_absent_fields_take_defaults(self) -> None:
        decoded = decode_document_annotations(b'{"version": 3}')
        assert decoded == {"version": 3, "annotations": [], "deleted": [], "updated_at": 0}

    def test_stored_record_decodes_unchanged(self) -> None:
        record = {
            "version": 2,
            "annotations": [
                {"datetime": "2024-01-01 00:00:00", "page": 4, "text": "x", "pageno": 4}
            ],
            "deleted": ["2023-12-31 23:59:59"],
            "updated_at": 1700000000,
        }
        assert decode_document_annotations(serialize_record(record)) == record

    @pytest.mark.parametrize(
        "raw",
        [
            b'{"version": -1}',
            b'{"version": "2"}',
            b'{"version": true}',
            b'{"updated_at": 1.5}',
            b'{"annotations": {}}',
            b'{"annotations": [{"page": 1}]}',
            b'{"deleted": [1]}',
            b"{",
        ],
    )
    def test_schema_violations_raise(self, raw: bytes) -> None:
        with pytest.raises(SerializationError, match="Serialization error"):
            decode_document_annotations(raw)


class TestParseAnnotation:
    def test_nullable_fields_dropped(self) -> None:
        parsed = parse_annotation(
            {"datetime": "t", "page": 1, "pos0": None, "pos1": None, "datetime_updated": None}
        )
        assert parsed == {"datetime": "t", "page": 1}

    def test_page_may_be_null_but_not_missing(self) -> None:
        assert parse_annotation({"datetime": "t", "page": None}) == {"datetime": "t", "page": None}
        with pytest.raises(ValueError, match="'page' is required"):
            parse_annotation({"datetime": "t"})

    def test_datetime_required(self) -> None:
        with pytest.raises(ValueError, match="'datetime' must be a string"):
            parse_annotation({"page": 1})

    def test_datetime_updated_must_be_string(self) -> None:
        with pytest.raises(ValueError, match="datetime_updated"):
            parse_annotation({"datetime": "t", "page": 1, "datetime_updated": 5})

    def test_not_an_object(self) -> None:
        with pytest.raises(ValueError, match="must be an object"):
            parse_annotation(["t", 1])

    def test_does_not_mutate_input(self) -> None:
        raw = {"datetime": "t", "page": 1, "pos0": None}
        parse_annotation(raw)
        assert raw == {"datetime": "t", "page": 1, "pos0": None}


class TestParseDeleted:
    def test_accepts_strings(self) -> None:
        assert parse_deleted(["a", "b"]) == ["a", "b"]

    @pytest.mark.parametrize("value", ["a", None, [1], [{"datetime": "a"}]])
    def test_rejects_other_shapes(self, value: object) -> None:
        with pytest.raises(ValueError):
            parse_deleted(value)

"""Tests for the annotations CLI commands."""

from __future__ import annotations

import json
from pathlib import Path

from kosync.storage.kv import KeyValueStore
from kosync.sync.engine import SyncEngine
from tests.conftest import make_annotation


def _write(path: Path, payload: object) -> str:
    path.write_text(json.dumps(payload))
    return str(path)


def test_show_empty_document(invoke, invoke_json):
    parsed, code = invoke_json("annotations", "show", "alice", "doc")
    assert code == 0
    assert parsed["data"] == {"version": 0, "annotations": [], "deleted": [], "updated_at": 0}

    result = invoke("annotations", "show", "alice", "doc")
    assert "version 0" in result.output
    assert "0 annotation(s)" in result.output


def test_push_merges_like_a_device(invoke_json, tmp_path):
    first = _write(
        tmp_path / "a.json",
        {"annotations": [make_annotation("2024-01-15 10:00:00", "/p[1]", text="hello")]},
    )
    second = _write(
        tmp_path / "b.json",
        {
            "annotations": [make_annotation("2024-01-16 10:00:00", "/p[2]", text="world")],
            "deleted": ["2024-01-15 10:00:00"],
        },
    )

    parsed, code = invoke_json("annotations", "push", "alice", "doc", first)
    assert code == 0
    assert parsed["data"]["version"] == 1

    parsed, code = invoke_json("annotations", "push", "alice", "doc", second, "--base-version", "1")
    assert code == 0
    assert parsed["data"]["version"] == 2

    shown, _ = invoke_json("annotations", "show", "alice", "doc")
    assert [a["text"] for a in shown["data"]["annotations"]] == ["world"]
    assert shown["data"]["deleted"] == ["2024-01-15 10:00:00"]


def test_push_stale_base_version(invoke_json, tmp_path, data_dir):
    engine = SyncEngine(KeyValueStore.open(data_dir))
    engine.update_annotations("alice", "doc", [], [])
    engine.update_annotations("alice", "doc", [], [])
    payload = _write(tmp_path / "p.json", {"annotations": []})

    parsed, code = invoke_json(
        "annotations", "push", "alice", "doc", payload, "--base-version", "1"
    )

    assert code == 1
    assert parsed["error"] == {"code": "VERSION_CONFLICT", "message": "Version conflict"}


def test_push_invalid_payload(invoke_json, tmp_path):
    payload = _write(tmp_path / "p.json", {"annotations": [{"page": 1}]})

    parsed, code = invoke_json("annotations", "push", "alice", "doc", payload)

    assert code == 1
    assert parsed["error"]["code"] == "INVALID_PAYLOAD"


def test_push_malformed_json(invoke_json, tmp_path):
    payload = tmp_path / "p.json"
    payload.write_text("[")

    parsed, code = invoke_json("annotations", "push", "alice", "doc", str(payload))

    assert code == 1
    assert parsed["error"]["code"] == "INVALID_JSON"


def test_import_replaces_record(invoke, invoke_json, tmp_path):
    record = {
        "version": 7,
        "annotations": [make_annotation("2023-05-05 05:05:05", "/imported", note="kept")],
        "deleted": ["2023-01-01 00:00:00"],
        "updated_at": 1650000000,
    }
    record_file = _write(tmp_path / "record.json", record)

    parsed, code = invoke_json("annotations", "import", "alice", "doc", record_file)
    assert code == 0
    assert parsed["data"] == {"version": 7}

    shown, _ = invoke_json("annotations", "show", "alice", "doc")
    assert shown["data"] == record

    result = invoke("annotations", "show", "alice", "doc")
    assert "2023-05-05 05:05:05  page /imported  kept" in result.output


def test_import_rejects_bad_record(invoke_json, tmp_path):
    record_file = _write(tmp_path / "record.json", {"version": "seven"})

    parsed, code = invoke_json("annotations", "import", "alice", "doc", record_file)

    assert code == 1
    assert parsed["error"]["code"] == "INVALID_PAYLOAD"


def test_push_non_utf8_payload(invoke_json, tmp_path):
    payload = tmp_path / "p.json"
    payload.write_bytes(b'{"annotations": ["\xff\xfe"]}')

    parsed, code = invoke_json("annotations", "push", "alice", "doc", str(payload))

    assert code == 1
    assert parsed["error"]["code"] == "INVALID_JSON"

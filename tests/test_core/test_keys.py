"""Tests for record keys and identifier validation."""

from __future__ import annotations

import pytest

from kosync.core.keys import record_key, validate_identifier


def test_record_key_joins_with_colon() -> None:
    assert record_key("alice", "0b1c2d") == "alice:0b1c2d"


def test_distinct_users_distinct_keys() -> None:
    assert record_key("alice", "doc") != record_key("bob", "doc")


@pytest.mark.parametrize("value", ["alice", "a b", "ünïcode", "x" * 256])
def test_valid_identifiers(value: str) -> None:
    assert validate_identifier(value)


@pytest.mark.parametrize("value", ["", "al:ice", ":", None, 42, b"alice"])
def test_invalid_identifiers(value: object) -> None:
    assert not validate_identifier(value)

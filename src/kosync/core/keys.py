"""Record key derivation and identifier validation."""

from __future__ import annotations

KEY_SEPARATOR = ":"


def record_key(username: str, document: str) -> str:
    """Return the ``progress``/``annotations`` table key for a (user, document) pair.

    No escaping is performed: callers must reject identifiers containing the
    separator (see :func:`validate_identifier`) before they reach the store.

    >>> record_key("alice", "0b1c2d")
    'alice:0b1c2d'
    """
    return f"{username}{KEY_SEPARATOR}{document}"


def validate_identifier(value: object) -> bool:
    """Return ``True`` if *value* is usable as a username or document id."""
    return isinstance(value, str) and bool(value) and KEY_SEPARATOR not in value

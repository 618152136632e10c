"""Versioned annotation and progress synchronization engine."""

from __future__ import annotations

from kosync.sync.engine import SyncEngine

__all__ = ["SyncEngine"]

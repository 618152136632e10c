"""Shared test fixtures."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from kosync.storage.kv import KeyValueStore
from kosync.sync.engine import SyncEngine


class FakeClock:
    """Deterministic replacement for the engine's wall clock."""

    def __init__(self, start: int = 1_700_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        self.now += 1
        return self.now


@pytest.fixture()
def data_dir(tmp_path: Path) -> Path:
    """Return a not-yet-created data directory inside tmp_path."""
    return tmp_path / "kosync.db"


@pytest.fixture()
def store(data_dir: Path) -> KeyValueStore:
    """Return an opened store in a fresh data directory."""
    return KeyValueStore.open(data_dir, lock_timeout=5)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def engine(store: KeyValueStore, clock: FakeClock) -> SyncEngine:
    """Return an engine over the fresh store with a deterministic clock."""
    return SyncEngine(store, clock=clock)


def make_annotation(
    datetime: str,
    page: object = "/body/DocFragment[12]/body/p[1]",
    *,
    pos0: object = None,
    pos1: object = None,
    updated: str | None = None,
    **extra: object,
) -> dict:
    """Build an annotation dict the way a KOReader device uploads it."""
    anno: dict = {"datetime": datetime, "page": page}
    if pos0 is not None:
        anno["pos0"] = pos0
    if pos1 is not None:
        anno["pos1"] = pos1
    if updated is not None:
        anno["datetime_updated"] = updated
    anno.update(extra)
    return anno


@pytest.fixture()
def cli_runner() -> CliRunner:
    """Return a Click CliRunner for invoking CLI commands."""
    return CliRunner()


@pytest.fixture()
def cli_env(data_dir: Path) -> dict[str, str]:
    """Return env dict with KOSYNC_DB_PATH pointing at the test data directory."""
    return {"KOSYNC_DB_PATH": str(data_dir)}


@pytest.fixture()
def invoke(cli_runner: CliRunner, cli_env: dict[str, str]):
    """Return a helper that invokes CLI commands with the right environment.

    Usage::

        result = invoke("user", "create", "alice", "5f4dcc3b")
    """
    from kosync.cli.main import cli

    def _invoke(*args: str, **kwargs):
        return cli_runner.invoke(cli, list(args), env=cli_env, **kwargs)

    return _invoke


@pytest.fixture()
def invoke_json(invoke):
    """Like invoke, but appends --json and parses the response.

    Returns (parsed_dict, exit_code) tuple.
    """

    def _invoke_json(*args: str) -> tuple[dict, int]:
        result = invoke(*args, "--json")
        parsed = json.loads(result.output)
        return parsed, result.exit_code

    return _invoke_json

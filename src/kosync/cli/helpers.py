"""Shared CLI helpers and output utilities."""

from __future__ import annotations

import json
from typing import NoReturn

import click

from kosync.core.config import ServerConfig
from kosync.core.errors import KosyncError
from kosync.storage.kv import KeyValueStore
from kosync.sync.engine import SyncEngine


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def json_envelope(ok: bool, *, data: object = None, error: object = None) -> str:
    """Build a structured JSON output envelope."""
    result: dict = {"ok": ok}
    if data is not None:
        result["data"] = data
    if error is not None:
        result["error"] = error
    return json.dumps(result, sort_keys=True, indent=2) + "\n"


def json_error_obj(code: str, message: str) -> dict:
    """Build an error object for the JSON envelope."""
    return {"code": code, "message": message}


def output_error(message: str, code: str, is_json: bool, exit_code: int = 1) -> NoReturn:
    """Print error and exit. JSON errors go to stdout; human errors to stderr."""
    if is_json:
        click.echo(json_envelope(False, error=json_error_obj(code, message)))
    else:
        click.echo(f"Error: {message}", err=True)
    raise SystemExit(exit_code)


def output_result(*, data: object, human_message: str, is_json: bool) -> None:
    """Print success result in the appropriate format."""
    if is_json:
        click.echo(json_envelope(True, data=data))
    else:
        click.echo(human_message)


def error_code_name(exc: KosyncError) -> str:
    """Map an exception class to an upper-snake error code, e.g. ``VERSION_CONFLICT``."""
    name = type(exc).__name__
    return "".join(f"_{c}" if c.isupper() and i else c for i, c in enumerate(name)).upper()


# ---------------------------------------------------------------------------
# Engine access
# ---------------------------------------------------------------------------


def open_engine(config: ServerConfig, is_json: bool) -> SyncEngine:
    """Open the store named by *config* or exit with a storage error."""
    try:
        store = KeyValueStore.open(config["db_path"], lock_timeout=config["lock_timeout"])
    except KosyncError as exc:
        output_error(str(exc), error_code_name(exc), is_json)
    return SyncEngine(store)


def get_config(ctx: click.Context) -> ServerConfig:
    """Return the config loaded by the root command group."""
    return ctx.find_root().obj["config"]

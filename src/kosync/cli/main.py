"""CLI entry point and commands."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import click

from kosync.cli.helpers import (
    error_code_name,
    get_config,
    open_engine,
    output_error,
    output_result,
)
from kosync.core.config import ConfigError, apply_overrides, load_config
from kosync.core.errors import KosyncError, SerializationError
from kosync.core.keys import validate_identifier
from kosync.core.records import decode_document_annotations, parse_annotation, parse_deleted

logger = logging.getLogger(__name__)


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON config file. KOSYNC_* environment variables override it.",
)
@click.option(
    "--db-path",
    default=None,
    help="Data directory of the store (overrides config and KOSYNC_DB_PATH).",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, db_path: str | None) -> None:
    """kosync: reading progress and annotation sync server."""
    try:
        config = apply_overrides(load_config(config_path), {"db_path": db_path})
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from None
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


def _check_identifier(value: str, what: str, is_json: bool) -> None:
    if not validate_identifier(value):
        output_error(
            f"Invalid {what}: '{value}' (must be non-empty and must not contain ':').",
            "INVALID_ID",
            is_json,
        )


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", default=None, help="Bind address (default 0.0.0.0).")
@click.option("--port", type=int, default=None, help="TCP port (default 7200).")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Logging verbosity.",
)
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, log_level: str | None) -> None:
    """Run the KOSync HTTP server."""
    from kosync.server.api import create_server

    try:
        config = apply_overrides(
            get_config(ctx), {"host": host, "port": port, "log_level": log_level}
        )
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from None

    logging.basicConfig(level=config["log_level"], format="%(levelname)s: %(message)s")
    engine = open_engine(config, is_json=False)
    server = create_server(engine, config["host"], config["port"])
    logger.info(
        "kosync: serving %s on http://%s:%d",
        config["db_path"],
        config["host"],
        config["port"],
    )
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("kosync: shutting down")
    finally:
        server.server_close()


# ---------------------------------------------------------------------------
# user
# ---------------------------------------------------------------------------


@cli.group()
def user() -> None:
    """Manage user credentials."""


@user.command("create")
@click.argument("username")
@click.argument("password_hash")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def user_create(ctx: click.Context, username: str, password_hash: str, output_json: bool) -> None:
    """Register USERNAME with PASSWORD_HASH (the MD5 hex clients send as x-auth-key)."""
    _check_identifier(username, "username", output_json)
    if not password_hash:
        output_error("Password hash must not be empty.", "INVALID_PASSWORD", output_json)
    engine = open_engine(get_config(ctx), output_json)
    try:
        created = engine.create_user(username, password_hash)
    except KosyncError as exc:
        output_error(str(exc), error_code_name(exc), output_json)
    if not created:
        output_error(f"User '{username}' already exists.", "USER_EXISTS", output_json)
    output_result(
        data={"username": username},
        human_message=f"Created user {username}",
        is_json=output_json,
    )


@user.command("verify")
@click.argument("username")
@click.argument("password_hash")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def user_verify(ctx: click.Context, username: str, password_hash: str, output_json: bool) -> None:
    """Check USERNAME / PASSWORD_HASH against the users table."""
    engine = open_engine(get_config(ctx), output_json)
    try:
        ok = engine.verify_user(username, password_hash)
    except KosyncError as exc:
        output_error(str(exc), error_code_name(exc), output_json)
    if not ok:
        output_error("Credentials do not match.", "UNAUTHORIZED", output_json)
    output_result(data={"authorized": "OK"}, human_message="OK", is_json=output_json)


# ---------------------------------------------------------------------------
# progress
# ---------------------------------------------------------------------------


@cli.group()
def progress() -> None:
    """Inspect reading progress."""


@progress.command("show")
@click.argument("username")
@click.argument("document")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def progress_show(ctx: click.Context, username: str, document: str, output_json: bool) -> None:
    """Show the stored progress of USERNAME in DOCUMENT."""
    _check_identifier(username, "username", output_json)
    _check_identifier(document, "document", output_json)
    engine = open_engine(get_config(ctx), output_json)
    try:
        record = engine.get_progress(username, document)
    except KosyncError as exc:
        output_error(str(exc), error_code_name(exc), output_json)

    if not record:
        human = f"No progress stored for {username}:{document}"
    else:
        human = (
            f"{record.get('progress', '')} ({record.get('percentage', 0):.2%}) "
            f"from {record.get('device', '?')} at {record.get('timestamp', 0)}"
        )
    output_result(data=dict(record), human_message=human, is_json=output_json)


# ---------------------------------------------------------------------------
# annotations
# ---------------------------------------------------------------------------


@cli.group()
def annotations() -> None:
    """Inspect and load annotation records."""


@annotations.command("show")
@click.argument("username")
@click.argument("document")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def annotations_show(ctx: click.Context, username: str, document: str, output_json: bool) -> None:
    """Show the annotation record of USERNAME in DOCUMENT."""
    _check_identifier(username, "username", output_json)
    _check_identifier(document, "document", output_json)
    engine = open_engine(get_config(ctx), output_json)
    try:
        record = engine.get_annotations(username, document)
    except KosyncError as exc:
        output_error(str(exc), error_code_name(exc), output_json)

    lines = [
        f"version {record['version']}, updated_at {record['updated_at']}, "
        f"{len(record['annotations'])} annotation(s), {len(record['deleted'])} deleted"
    ]
    for anno in sorted(record["annotations"], key=lambda a: a["datetime"]):
        label = anno.get("text") or anno.get("note") or ""
        lines.append(f"  {anno['datetime']}  page {anno.get('page')}  {str(label)[:60]}")
    output_result(data=dict(record), human_message="\n".join(lines), is_json=output_json)


def _load_json_file(path: Path, is_json: bool) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as exc:
        output_error(f"Invalid JSON in {path}: {exc}", "INVALID_JSON", is_json)
    if not isinstance(data, dict):
        output_error(f"{path} must contain a JSON object.", "INVALID_JSON", is_json)
    return data


@annotations.command("push")
@click.argument("username")
@click.argument("document")
@click.argument("payload", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--base-version", type=int, default=None, help="Version the payload was based on.")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def annotations_push(
    ctx: click.Context,
    username: str,
    document: str,
    payload: Path,
    base_version: int | None,
    output_json: bool,
) -> None:
    """Merge PAYLOAD ({"annotations": [...], "deleted": [...]}) into a document.

    Goes through the same merge and version check as a device upload.
    """
    _check_identifier(username, "username", output_json)
    _check_identifier(document, "document", output_json)
    body = _load_json_file(payload, output_json)
    try:
        incoming = [parse_annotation(a) for a in body.get("annotations", [])]
        deleted = parse_deleted(body.get("deleted", []))
    except (TypeError, ValueError) as exc:
        output_error(str(exc), "INVALID_PAYLOAD", output_json)

    engine = open_engine(get_config(ctx), output_json)
    try:
        version, timestamp = engine.update_annotations(
            username, document, incoming, deleted, base_version
        )
    except KosyncError as exc:
        output_error(str(exc), error_code_name(exc), output_json)
    output_result(
        data={"version": version, "timestamp": timestamp},
        human_message=f"{username}:{document} is now at version {version}",
        is_json=output_json,
    )


@annotations.command("import")
@click.argument("username")
@click.argument("document")
@click.argument("record_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "output_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def annotations_import(
    ctx: click.Context,
    username: str,
    document: str,
    record_file: Path,
    output_json: bool,
) -> None:
    """Replace a document's record with RECORD_FILE verbatim (no merge, no version check).

    RECORD_FILE uses the stored format, e.g. the output of
    ``kosync annotations show --json`` (the ``data`` object).
    """
    _check_identifier(username, "username", output_json)
    _check_identifier(document, "document", output_json)
    try:
        record = decode_document_annotations(record_file.read_bytes())
    except SerializationError as exc:
        output_error(str(exc), "INVALID_PAYLOAD", output_json)

    engine = open_engine(get_config(ctx), output_json)
    try:
        engine.set_annotations(username, document, record)
    except KosyncError as exc:
        output_error(str(exc), error_code_name(exc), output_json)
    output_result(
        data={"version": record["version"]},
        human_message=f"Imported {len(record['annotations'])} annotation(s) "
        f"into {username}:{document} at version {record['version']}",
        is_json=output_json,
    )


def main() -> None:
    cli()


if __name__ == "__main__":
    main()

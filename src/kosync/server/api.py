"""KOSync-compatible HTTP API.

Routes::

    POST /users/create                    register a user
    GET  /users/auth                      check credentials
    PUT  /syncs/progress                  store reading progress
    GET  /syncs/progress/<document>       read reading progress
    GET  /syncs/annotations/<document>    read annotations
    PUT  /syncs/annotations/<document>    merge annotations
    GET  /healthcheck

Authenticated routes expect ``x-auth-user`` and ``x-auth-key`` headers.
Errors are reported as ``{"code": <int>, "message": <str>}``.
"""

from __future__ import annotations

import json
import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import unquote, urlparse

from kosync.core.errors import (
    DocumentMissing,
    InvalidRequest,
    KosyncError,
    Unauthorized,
    UserExists,
)
from kosync.core.keys import validate_identifier
from kosync.core.records import parse_annotation, parse_deleted
from kosync.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

# Maximum allowed request body size (1 MiB) to prevent DoS via oversized payloads.
MAX_REQUEST_BODY_BYTES = 1_048_576

PROGRESS_PREFIX = "/syncs/progress/"
ANNOTATIONS_PREFIX = "/syncs/annotations/"


class PayloadTooLarge(KosyncError):
    code = 2003
    status = 413

    def __init__(self) -> None:
        super().__init__(f"Request body exceeds {MAX_REQUEST_BODY_BYTES} bytes")


# ---------------------------------------------------------------------------
# Body validation helpers
# ---------------------------------------------------------------------------


def _require_str(body: dict, field: str) -> str:
    value = body.get(field)
    if not isinstance(value, str):
        raise InvalidRequest(f"'{field}' must be a string")
    return value


def _optional_str(body: dict, field: str) -> str | None:
    value = body.get(field)
    if value is not None and not isinstance(value, str):
        raise InvalidRequest(f"'{field}' must be a string")
    return value


def _require_number(body: dict, field: str) -> float:
    value = body.get(field)
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise InvalidRequest(f"'{field}' must be a number")
    return value


def _document_from_path(path: str, prefix: str) -> str:
    document = unquote(path[len(prefix) :])
    if not validate_identifier(document):
        raise DocumentMissing()
    return document


# ---------------------------------------------------------------------------
# Request handler
# ---------------------------------------------------------------------------


def _make_handler_class(engine: SyncEngine) -> type:
    """Create a handler class bound to a specific engine."""

    class KosyncHandler(BaseHTTPRequestHandler):
        _engine: SyncEngine = engine

        # Route access logs through logging instead of raw stderr writes.
        def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
            logger.info("%s - %s", self.address_string(), format % args)

        def do_GET(self) -> None:  # noqa: N802
            path = urlparse(self.path).path
            if path == "/healthcheck":
                self._send_json(200, {"state": "OK"})
            elif path == "/users/auth":
                self._dispatch(self._handle_auth)
            elif path.startswith(PROGRESS_PREFIX):
                self._dispatch(self._handle_get_progress, path)
            elif path.startswith(ANNOTATIONS_PREFIX):
                self._dispatch(self._handle_get_annotations, path)
            else:
                self._send_not_found(path)

        def do_POST(self) -> None:  # noqa: N802
            path = urlparse(self.path).path
            if path == "/users/create":
                self._dispatch(self._handle_create_user)
            else:
                self._send_not_found(path)

        def do_PUT(self) -> None:  # noqa: N802
            path = urlparse(self.path).path
            if path == "/syncs/progress":
                self._dispatch(self._handle_put_progress)
            elif path.startswith(ANNOTATIONS_PREFIX):
                self._dispatch(self._handle_put_annotations, path)
            else:
                self._send_not_found(path)

        # ---------------------------------------------------------------
        # Plumbing
        # ---------------------------------------------------------------

        def _dispatch(self, handler, *args: str) -> None:
            """Run *handler* and turn any kosync error into an error response."""
            try:
                status, body = handler(*args)
            except KosyncError as exc:
                if exc.status >= 500:
                    logger.error("%s %s failed: %s", self.command, self.path, exc)
                self._send_json(exc.status, {"code": exc.code, "message": str(exc)})
                return
            self._send_json(status, body)

        def _send_json(self, status: int, body: object) -> None:
            data = json.dumps(body).encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)

        def _send_not_found(self, path: str) -> None:
            self._send_json(404, {"code": 404, "message": f"Not found: {path}"})

        def _read_request_body(self) -> dict:
            """Read and parse a JSON object request body."""
            try:
                content_length = int(self.headers.get("Content-Length", 0))
            except (TypeError, ValueError):
                raise InvalidRequest("missing or invalid Content-Length") from None
            if content_length > MAX_REQUEST_BODY_BYTES:
                raise PayloadTooLarge()
            raw = self.rfile.read(content_length) if content_length > 0 else b""
            try:
                body = json.loads(raw)
            except (UnicodeDecodeError, json.JSONDecodeError, RecursionError):
                raise InvalidRequest("invalid JSON in request body") from None
            if not isinstance(body, dict):
                raise InvalidRequest("request body must be a JSON object")
            return body

        def _authorize(self) -> str:
            """Return the authenticated username or raise :class:`Unauthorized`."""
            user = self.headers.get("x-auth-user", "")
            key = self.headers.get("x-auth-key", "")
            if not validate_identifier(user) or not key:
                raise Unauthorized()
            if not self._engine.verify_user(user, key):
                raise Unauthorized()
            return user

        # ---------------------------------------------------------------
        # Endpoint handlers
        # ---------------------------------------------------------------

        def _handle_create_user(self) -> tuple[int, dict]:
            body = self._read_request_body()
            username = body.get("username")
            password = body.get("password")
            if not validate_identifier(username):
                raise InvalidRequest("invalid username")
            if not isinstance(password, str) or not password:
                raise InvalidRequest("invalid password")
            if not self._engine.create_user(username, password):
                raise UserExists()
            return 201, {"username": username}

        def _handle_auth(self) -> tuple[int, dict]:
            self._authorize()
            return 200, {"authorized": "OK"}

        def _handle_get_progress(self, path: str) -> tuple[int, dict]:
            username = self._authorize()
            document = _document_from_path(path, PROGRESS_PREFIX)
            return 200, dict(self._engine.get_progress(username, document))

        def _handle_put_progress(self) -> tuple[int, dict]:
            username = self._authorize()
            body = self._read_request_body()
            document = body.get("document")
            if not validate_identifier(document):
                raise DocumentMissing()
            progress = _require_str(body, "progress")
            percentage = _require_number(body, "percentage")
            device = _require_str(body, "device")
            device_id = _optional_str(body, "device_id")
            if not progress or not device:
                raise InvalidRequest("missing required fields")
            timestamp = self._engine.set_progress(
                username, document, progress, percentage, device, device_id
            )
            return 200, {"document": document, "timestamp": timestamp}

        def _handle_get_annotations(self, path: str) -> tuple[int, dict]:
            username = self._authorize()
            document = _document_from_path(path, ANNOTATIONS_PREFIX)
            return 200, dict(self._engine.get_annotations(username, document))

        def _handle_put_annotations(self, path: str) -> tuple[int, dict]:
            username = self._authorize()
            document = _document_from_path(path, ANNOTATIONS_PREFIX)
            body = self._read_request_body()

            raw_annotations = body.get("annotations")
            if not isinstance(raw_annotations, list):
                raise InvalidRequest("'annotations' must be a list")
            base_version = body.get("base_version")
            if base_version is not None and (
                not isinstance(base_version, int)
                or isinstance(base_version, bool)
                or base_version < 0
            ):
                raise InvalidRequest("'base_version' must be a non-negative integer")
            try:
                annotations = [parse_annotation(a) for a in raw_annotations]
                deleted = parse_deleted(body.get("deleted") or [])
            except ValueError as exc:
                raise InvalidRequest(str(exc)) from None

            version, timestamp = self._engine.update_annotations(
                username, document, annotations, deleted, base_version
            )
            return 200, {"version": version, "timestamp": timestamp}

    return KosyncHandler


# ---------------------------------------------------------------------------
# Server factory
# ---------------------------------------------------------------------------


def create_server(engine: SyncEngine, host: str, port: int) -> ThreadingHTTPServer:
    """Create a threaded HTTP server bound to *host*:*port* serving the KOSync API.

    Parameters
    ----------
    engine:
        Shared engine; each request thread calls into it directly.
    host:
        Bind address (e.g. ``"0.0.0.0"``).
    port:
        TCP port to listen on (``0`` picks a free port).
    """
    handler_cls = _make_handler_class(engine)
    server = ThreadingHTTPServer((host, port), handler_cls)
    server.daemon_threads = True
    return server

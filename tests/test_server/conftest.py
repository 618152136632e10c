"""Server-specific fixtures."""

from __future__ import annotations

import socket
import threading

import pytest

from kosync.server.api import create_server
from kosync.sync.engine import SyncEngine

PASSWORD_HASH = "5f4dcc3b5aa765d61d8327deb882cf99"


def _get_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture()
def kosync_server(engine: SyncEngine):
    """Start a server on a random port with user ``alice`` registered.

    Yields (base_url, engine).
    """
    engine.create_user("alice", PASSWORD_HASH)
    port = _get_free_port()
    host = "127.0.0.1"
    server = create_server(engine, host, port)

    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    yield f"http://{host}:{port}", engine

    server.shutdown()
    server.server_close()


@pytest.fixture()
def alice_headers() -> dict[str, str]:
    return {"x-auth-user": "alice", "x-auth-key": PASSWORD_HASH}

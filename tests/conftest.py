import os
import socket

import pytest


@pytest.fixture(autouse=True)
def crosstool_env(monkeypatch, tmp_path):
    for key in list(os.environ):
        if key.startswith("CROSSTOOL_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("CROSSTOOL_APP_DIR", str(tmp_path / "app"))
    monkeypatch.setenv("CROSSTOOL_LOG_LEVEL", "WARNING")


@pytest.fixture
def sqlite_store(tmp_path):
    from crosstool.core.db import SqliteItemStore
    store = SqliteItemStore(str(tmp_path / "items.sqlite"))
    yield store
    store.close()


@pytest.fixture(params=["sqlite", "memory"])
def store(request, tmp_path):
    from crosstool.core.db import MemoryItemStore, SqliteItemStore
    if request.param == "sqlite":
        inst = SqliteItemStore(str(tmp_path / "items.sqlite"))
    else:
        inst = MemoryItemStore()
    yield inst
    inst.close()


@pytest.fixture
def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def stub_server():
    """Tiny loopback HTTP server: ``/ping`` answers pong, ``/fail`` answers 400 JSON."""
    import json
    import threading
    from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

    class Handler(BaseHTTPRequestHandler):
        def _send(self, status, body, ctype):
            raw = body.encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", ctype)
            self.send_header("Content-Length", str(len(raw)))
            self.end_headers()
            self.wfile.write(raw)

        def do_GET(self):
            if self.path == "/ping":
                self._send(200, "pong", "text/plain")
            else:
                self._send(404, json.dumps({"error": "Not found"}), "application/json")

        def do_POST(self):
            length = int(self.headers.get("Content-Length") or 0)
            body = self.rfile.read(length).decode("utf-8") if length else ""
            if self.path == "/fail":
                self._send(400, json.dumps({"error": "Item name cannot be empty"}), "application/json")
            else:
                self._send(200, json.dumps({"echo": json.loads(body or "{}")}), "application/json")

        def log_message(self, *args):
            pass

    httpd = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    try:
        yield httpd.server_address[1]
    finally:
        httpd.shutdown()
        httpd.server_close()

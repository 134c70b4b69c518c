import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse

import pytest

from qualitysync.core.sonar_client import HttpError, SonarClient


class _Handler(BaseHTTPRequestHandler):
    # class-level counters so tests can assert retries/calls
    calls = {"ok": 0, "form": 0, "flaky": 0, "bad": 0, "slow": 0, "empty": 0}

    protocol_version = "HTTP/1.1"

    def _auth_ok(self) -> bool:
        return self.headers.get("Authorization", "").strip() == "Bearer TEST"

    def _send_json(self, status: int, obj) -> None:
        raw = json.dumps(obj).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def do_GET(self):  # noqa: N802
        url = urlparse(self.path)
        if not self._auth_ok():
            self._send_json(401, {"errors": [{"msg": "unauthorized"}]})
            return

        if url.path == "/api/ok":
            _Handler.calls["ok"] += 1
            self._send_json(200, {"ok": True, "query": {k: v[0] for k, v in parse_qs(url.query).items()}})
        elif url.path == "/api/flaky":
            _Handler.calls["flaky"] += 1
            if _Handler.calls["flaky"] < 3:
                self._send_json(503, {"errors": [{"msg": "starting"}]})
            else:
                self._send_json(200, {"ok": "finally"})
        elif url.path == "/api/bad":
            _Handler.calls["bad"] += 1
            self._send_json(400, {"errors": [{"msg": "bad request"}]})
        elif url.path == "/api/slow":
            _Handler.calls["slow"] += 1
            time.sleep(0.3)
            self._send_json(200, {"ok": True})
        else:
            self._send_json(404, {"errors": [{"msg": "not found"}]})

    def do_POST(self):  # noqa: N802
        url = urlparse(self.path)
        length = int(self.headers.get("Content-Length", "0"))
        body = self.rfile.read(length).decode("utf-8") if length else ""
        if not self._auth_ok():
            self._send_json(401, {"errors": [{"msg": "unauthorized"}]})
            return

        if url.path == "/api/form":
            _Handler.calls["form"] += 1
            self._send_json(200, {"content_type": self.headers.get("Content-Type", ""), "form": parse_qs(body)})
        elif url.path == "/api/empty":
            _Handler.calls["empty"] += 1
            self.send_response(204)
            self.send_header("Content-Length", "0")
            self.end_headers()
        else:
            self._send_json(404, {"errors": [{"msg": "not found"}]})

    def log_message(self, fmt, *args):  # silence server logs during tests
        return


@pytest.fixture()
def http_server():
    for k in _Handler.calls:
        _Handler.calls[k] = 0
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    host, port = server.server_address
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://{host}:{port}"
    server.shutdown()
    thread.join(timeout=1.0)


def test_get_with_query_params(http_server):
    client = SonarClient(http_server, token="TEST", timeout_sec=2, retries=1)
    data = client.get_json("api/ok", {"name": "Sonar way", "p": 2})
    assert data["ok"] is True
    assert data["query"] == {"name": "Sonar way", "p": "2"}


def test_post_is_form_encoded(http_server):
    client = SonarClient(http_server, token="TEST", timeout_sec=2, retries=1)
    out = client.post_form("/api/form", {"gateName": "Corporate", "metric": "coverage"})
    assert out["content_type"].startswith("application/x-www-form-urlencoded")
    assert out["form"] == {"gateName": ["Corporate"], "metric": ["coverage"]}


def test_no_content_returns_empty_dict(http_server):
    client = SonarClient(http_server, token="TEST", timeout_sec=2, retries=1)
    assert client.post_form("api/empty", {"x": "1"}) == {}
    assert _Handler.calls["empty"] == 1


def test_retry_on_5xx_then_success(http_server):
    client = SonarClient(http_server, token="TEST", timeout_sec=2, retries=3, backoff_base_sec=0.01)
    data = client.get_json("api/flaky")
    assert data["ok"] == "finally"
    assert _Handler.calls["flaky"] == 3  # 2 failures + 1 success


def test_no_retry_on_4xx(http_server):
    client = SonarClient(http_server, token="TEST", timeout_sec=2, retries=3, backoff_base_sec=0.01)
    with pytest.raises(HttpError) as ei:
        client.get_json("api/bad")
    assert ei.value.status == 400
    assert "bad request" in ei.value.body
    assert _Handler.calls["bad"] == 1


def test_wrong_token_is_401(http_server):
    client = SonarClient(http_server, token="WRONG", timeout_sec=2, retries=2, backoff_base_sec=0.01)
    with pytest.raises(HttpError) as ei:
        client.get_json("api/ok")
    assert ei.value.status == 401
    assert _Handler.calls["ok"] == 0


def test_timeout_and_retries(http_server):
    client = SonarClient(http_server, token="TEST", timeout_sec=0.05, retries=2, backoff_base_sec=0.01)
    with pytest.raises(HttpError) as ei:
        client.get_json("api/slow")
    assert ei.value.status == 0
    assert _Handler.calls["slow"] >= 3


def test_base_url_is_required():
    with pytest.raises(ValueError):
        SonarClient("", token="TEST")

import json
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlparse

import pytest

PREFIX = "/apisix/admin/"
API_KEY = "TEST"


class FakeApisix:
    """In-memory APISIX v2 admin API state shared with the handler."""

    def __init__(self):
        self.calls = []          # (method, resource path)
        self.bodies = []         # raw request bodies, in order
        self.upstreams = {}      # id -> value
        self.collections = {}    # kind path -> list of values
        self.plugins = ["limit-count", "mqtt-proxy"]
        self.overrides = {}      # (method, resource path) -> (status, raw body str)

    def count(self, method, path=None):
        return sum(1 for m, p in self.calls if m == method and (path is None or p == path))

    def tree(self, values, kind):
        return {
            "action": "get",
            "node": {
                "dir": True,
                "key": f"/apisix/{kind}",
                "nodes": [{"key": f"/apisix/{kind}/{v.get('id', i)}", "value": v} for i, v in enumerate(values)],
            },
        }


class _Handler(BaseHTTPRequestHandler):
    fake: FakeApisix = None

    protocol_version = "HTTP/1.1"

    def _send_raw(self, status, raw):
        data = raw.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def _send_json(self, status, obj):
        self._send_raw(status, json.dumps(obj))

    def _read_body(self):
        length = int(self.headers.get("Content-Length", "0"))
        return (self.rfile.read(length) if length else b"").decode("utf-8")

    def _dispatch(self, method):
        path = urlparse(self.path).path
        body = self._read_body() if method in ("PUT", "PATCH") else ""
        if not path.startswith(PREFIX):
            self._send_json(404, {"error_msg": "not found"})
            return
        res = path[len(PREFIX):]
        fake = self.fake
        fake.calls.append((method, res))
        fake.bodies.append(body)

        if self.headers.get("X-API-KEY") != API_KEY:
            self._send_json(401, {"error_msg": "failed to check token"})
            return
        if (method, res) in fake.overrides:
            status, raw = fake.overrides[(method, res)]
            self._send_raw(status, raw)
            return

        getattr(self, f"_{method.lower()}")(res, body)

    def _get(self, res, body):
        fake = self.fake
        if res == "plugins/list":
            self._send_json(200, fake.plugins)
        elif res == "upstreams":
            self._send_json(200, fake.tree(list(fake.upstreams.values()), "upstreams"))
        elif res.startswith("upstreams/"):
            uid = res.split("/", 1)[1]
            if uid not in fake.upstreams:
                self._send_json(404, {"action": "get", "message": "Key not found"})
                return
            self._send_json(200, {"action": "get", "node": {"key": f"/apisix/upstreams/{uid}", "value": fake.upstreams[uid]}})
        elif res in fake.collections:
            self._send_json(200, fake.tree(fake.collections[res], res))
        else:
            self._send_json(200, {"action": "get", "node": {"dir": True, "key": f"/apisix/{res}", "nodes": {}}})

    def _put(self, res, body):
        kind, _, uid = res.partition("/")
        if kind != "upstreams" or not uid:
            self._send_json(404, {"error_msg": "not found"})
            return
        value = json.loads(body)
        value["id"] = uid
        self.fake.upstreams[uid] = value
        self._send_json(201, {"action": "set", "node": {"key": f"/apisix/upstreams/{uid}", "value": value}})

    def _patch(self, res, body):
        parts = res.split("/")
        if len(parts) != 3 or parts[0] != "upstreams" or parts[2] != "nodes" or parts[1] not in self.fake.upstreams:
            self._send_json(404, {"error_msg": "not found"})
            return
        value = self.fake.upstreams[parts[1]]
        value["nodes"] = json.loads(body)
        self._send_json(200, {"action": "compareAndSwap", "node": {"value": value}})

    def do_GET(self):  # noqa: N802
        self._dispatch("GET")

    def do_PUT(self):  # noqa: N802
        self._dispatch("PUT")

    def do_PATCH(self):  # noqa: N802
        self._dispatch("PATCH")

    def log_message(self, fmt, *args):  # silence server logs during tests
        return


@pytest.fixture()
def apisix():
    """Yields (fake_state, admin_url) for a fresh fake APISIX admin API."""
    fake = FakeApisix()
    handler = type("Handler", (_Handler,), {"fake": fake})
    srv = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    t = threading.Thread(target=srv.serve_forever, daemon=True)
    t.start()
    admin_url = f"http://{srv.server_address[0]}:{srv.server_address[1]}"
    try:
        yield fake, admin_url
    finally:
        srv.shutdown()
        srv.server_close()
        t.join(timeout=1.0)

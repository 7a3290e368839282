"""
APISIX admin API HTTP client.

- requests.Session transport, one session per thread, one attempt per call (no retries).
- Methods: get_json, put_raw, patch_raw, send.
- URL = admin_url + prefix + resource path (plain concatenation).
- Headers: Accept: application/json, X-API-KEY.
- Errors: TransportError (network/timeout), DecodeError (bad JSON),
  GatewayRejection (HTTP >= 400).

Usage:
    client = AdminClient("http://127.0.0.1:9180", "/apisix/admin/", api_key="...")
    payload = client.get_json("upstreams")
"""

from __future__ import annotations

import json
import logging
import threading
import time
import warnings
from dataclasses import dataclass
from typing import Any, Optional, Union

import requests
import urllib3

__all__ = [
    "AdminClient",
    "GatewayError",
    "TransportError",
    "DecodeError",
    "GatewayRejection",
]


class GatewayError(Exception):
    """Base class for every failure talking to the gateway."""


@dataclass
class TransportError(GatewayError):
    """Connection, DNS or timeout failure. Nothing reached the gateway (or no answer came back)."""
    url: str
    message: str = ""

    def __str__(self) -> str:
        return f"TransportError(url={self.url}): {self.message}"


@dataclass
class DecodeError(GatewayError):
    """The gateway answered but the body is not the JSON we expect."""
    url: str
    body: str = ""
    message: str = ""

    def __str__(self) -> str:
        base = f"DecodeError(url={self.url})"
        if self.message:
            base += f": {self.message}"
        if self.body:
            base += f" body={self.body[:200]}"
        return base


@dataclass
class GatewayRejection(GatewayError):
    """HTTP status >= 400 returned by the admin API."""
    status: int
    url: str
    body: str = ""

    def __str__(self) -> str:
        base = f"GatewayRejection(status={self.status}, url={self.url})"
        if self.body:
            base += f" body={self.body[:200]}"
        return base


class AdminClient:
    """Minimal admin-API client: fixed timeout, no retries."""

    def __init__(
        self,
        admin_url: str,
        prefix: str = "/apisix/admin/",
        *,
        api_key: str = "",
        timeout_sec: float = 30,
        verify_tls: bool = True,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not admin_url:
            raise ValueError("admin_url is required")
        self.admin_url = admin_url.rstrip("/")
        self.prefix = prefix or ""
        self.timeout = float(timeout_sec)
        self.verify_tls = verify_tls
        self.log = logger or logging.getLogger("as.http")

        self._headers = {
            "Accept": "application/json",
            "X-API-KEY": api_key,
            "User-Agent": "apisixsync/HTTPClient",
        }
        # requests.Session is not thread-safe: each thread gets its own.
        self._local = threading.local()
        if session is not None:
            session.headers.update(self._headers)
            self._local.session = session

        if not verify_tls:
            warnings.filterwarnings("ignore", category=urllib3.exceptions.InsecureRequestWarning)

    @property
    def session(self) -> requests.Session:
        """The calling thread's session (a supplied one belongs to the constructing thread)."""
        s = getattr(self._local, "session", None)
        if s is None:
            s = requests.Session()
            s.headers.update(self._headers)
            self._local.session = s
        return s

    # ------------- Public API -------------

    def url_for(self, path: str) -> str:
        prefix = self.prefix if self.prefix.startswith("/") else f"/{self.prefix}"
        return f"{self.admin_url}{prefix}{path}"

    def get_json(self, path: str) -> Any:
        """GET `path` and decode the JSON body (None for an empty body)."""
        resp = self.send("GET", path)
        return self._decode(resp)

    def put_raw(self, path: str, body: str) -> requests.Response:
        return self.send("PUT", path, body)

    def patch_raw(self, path: str, body: str) -> requests.Response:
        return self.send("PATCH", path, body)

    def send(self, method: str, path: str, body: Optional[str] = None) -> requests.Response:
        """
        Issue one request. `body` is sent verbatim as application/json.

        Raises TransportError on network failures and GatewayRejection
        on any status >= 400.
        """
        url = self.url_for(path)
        headers = {"Content-Type": "application/json"} if body is not None else None
        start = time.time()
        try:
            resp = self.session.request(
                method=method.upper(),
                url=url,
                data=body.encode("utf-8") if body is not None else None,
                headers=headers,
                timeout=self.timeout,
                verify=self.verify_tls,
            )
        except requests.RequestException as exc:
            self.log.error("%s %s failed: %s", method, url, exc)
            raise TransportError(url=url, message=str(exc)) from exc

        elapsed = (time.time() - start) * 1000
        if resp.status_code >= 400:
            self.log.warning("%s %s -> %s in %.1fms", method, url, resp.status_code, elapsed)
            raise GatewayRejection(status=resp.status_code, url=url, body=resp.text)

        self.log.debug("%s %s -> %s in %.1fms", method, url, resp.status_code, elapsed)
        return resp

    # ------------- Internal -------------

    def _decode(self, resp: requests.Response) -> Any:
        raw = resp.text
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            self.log.error("decode json error, url:%s err:%s", resp.url, e)
            raise DecodeError(url=resp.url, body=raw, message=str(e)) from e

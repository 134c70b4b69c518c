"""
SonarQube HTTP client.

Read endpoints take query parameters (`get_json`), write endpoints take a
form-encoded body (`post_form`). Authentication is a user token sent as a
Bearer header. Network errors and 5xx answers are retried with exponential
backoff; 4xx answers are raised at once. SonarQube error bodies
(`{"errors": [{"msg": ...}]}`) end up in `HttpError.message`.

Usage:
    client = SonarClient(base_url, token, verify_tls=True, timeout_sec=10, retries=3)
    gate = client.get_json("api/qualitygates/show", {"name": "Sonar way"})
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
import urllib3


@dataclass
class HttpError(Exception):
    """Failed call; status 0 means the request never got an answer."""
    status: int
    url: str
    body: str = ""
    message: str = ""

    @property
    def retryable(self) -> bool:
        return self.status == 0 or self.status >= 500

    def __str__(self) -> str:
        text = f"HTTP {self.status or 'n/a'} on {self.url}"
        if self.message:
            text += f": {self.message}"
        if self.body and self.body not in self.message:
            text += f" (body={self.body[:200]})"
        return text


def _error_message(resp: requests.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return resp.reason or ""
    errors = payload.get("errors") if isinstance(payload, dict) else None
    msgs = [e.get("msg", "") for e in errors or [] if isinstance(e, dict)]
    return "; ".join(m for m in msgs if m) or resp.reason or ""


class SonarClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        verify_tls: bool = True,
        timeout_sec: float = 30,
        retries: int = 3,
        backoff_base_sec: float = 0.05,
        logger: Optional[logging.LoggerAdapter] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.verify_tls = verify_tls
        self.timeout = float(timeout_sec)
        self.retries = max(0, int(retries))
        self.backoff = float(backoff_base_sec)
        self.log = logger or logging.getLogger("qs.http")

        self.session = session or requests.Session()
        self.session.headers["Accept"] = "application/json"
        self.session.headers["User-Agent"] = "qualitysync"
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        if not verify_tls:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._call("GET", path, params=params)

    def post_form(self, path: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._call("POST", path, data=data)

    # ------------- Internal -------------

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _call(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = self._url(path)
        for attempt in range(self.retries + 1):
            try:
                return self._send_once(method, url, **kwargs)
            except HttpError as err:
                self.log.warning("%s %s failed (attempt %d/%d): %s", method, path, attempt + 1, self.retries + 1, err)
                if not err.retryable or attempt == self.retries:
                    raise
                time.sleep(self.backoff * (2 ** attempt))
        raise AssertionError("unreachable")

    def _send_once(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        started = time.monotonic()
        try:
            resp = self.session.request(method, url, timeout=self.timeout, verify=self.verify_tls, **kwargs)
        except requests.RequestException as e:
            raise HttpError(status=0, url=url, message=str(e)) from e

        if resp.status_code >= 400:
            raise HttpError(status=resp.status_code, url=url, body=resp.text or "", message=_error_message(resp))

        self.log.debug("%s %s -> %s in %.1fms", method, url, resp.status_code, (time.monotonic() - started) * 1000)
        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise HttpError(status=resp.status_code, url=url, body=resp.text, message=f"invalid JSON: {e}") from e

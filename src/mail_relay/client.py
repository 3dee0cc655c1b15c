"""Python client for interacting with running mail relay instances.

Usage in REPL:
    >>> from mail_relay.client import RelayClient
    >>> relay = RelayClient("http://localhost:3000", token="secret")
    >>> relay.send("dest@example.com", subject="Hello")
    {'ok': True, 'message': 'Email sent successfully', ...}
    >>> relay.stats()["stats"]["available_apps"]
    3
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import requests


class RelayClientError(RuntimeError):
    """Raised when the relay answers with an error status."""

    def __init__(self, status_code: int, payload: Any):
        self.status_code = status_code
        self.payload = payload
        message = payload.get("error") or payload.get("detail") if isinstance(payload, dict) else payload
        super().__init__(f"HTTP {status_code}: {message}")


class RelayClient:
    """Client for a mail relay server.

    Attributes:
        url: Base URL of the relay.
        token: API token sent in ``X-API-Token``.
        timeout: Request timeout in seconds. Bulk requests may take long,
            since each endpoint's share is sent sequentially.
    """

    def __init__(self, url: str = "http://localhost:3000", token: Optional[str] = None, timeout: float = 300):
        self.url = url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["X-API-Token"] = self.token
        return headers

    @staticmethod
    def _decode(resp: requests.Response) -> Any:
        try:
            payload = resp.json()
        except ValueError:
            payload = resp.text
        if resp.status_code >= 400:
            raise RelayClientError(resp.status_code, payload)
        return payload

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        resp = requests.get(f"{self.url}{path}", headers=self._headers(), params=params, timeout=self.timeout)
        return self._decode(resp)

    def _post(self, path: str, data: Optional[Dict[str, Any]] = None) -> Any:
        resp = requests.post(f"{self.url}{path}", headers=self._headers(), json=data or {}, timeout=self.timeout)
        return self._decode(resp)

    def send(self, to: str, subject: Optional[str] = None, from_name: Optional[str] = None) -> Dict[str, Any]:
        """Send one message."""
        params = {"to": to}
        if subject:
            params["subject"] = subject
        if from_name:
            params["from"] = from_name
        return self._get("/email", params=params)

    def bulk(self, emails: List[str], subject: Optional[str] = None, from_name: Optional[str] = None) -> Dict[str, Any]:
        """Send a batch of messages."""
        data: Dict[str, Any] = {"emails": emails}
        if subject:
            data["subject"] = subject
        if from_name:
            data["from"] = from_name
        return self._post("/bulk", data)

    def stats(self) -> Dict[str, Any]:
        return self._get("/stats")

    def reset(self) -> Dict[str, Any]:
        return self._post("/reset")

    def refresh(self) -> Dict[str, Any]:
        return self._post("/refresh")

    def health(self) -> bool:
        """Check if the server answers its health endpoint."""
        try:
            return bool(self._get("/health").get("ok", False))
        except (requests.RequestException, RelayClientError):
            return False

    def __repr__(self) -> str:
        return f"<RelayClient '{self.url}'>"

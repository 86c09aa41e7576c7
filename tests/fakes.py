"""Fakes shared by the unit tests: tokens, responses, a clock and an in-process Auth API."""

from __future__ import annotations

import base64
import json
import threading
from typing import Any, Callable, Dict, List, Optional

import requests


def _b64url(data: Dict[str, Any]) -> str:
    raw = json.dumps(data).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def make_token(exp: Optional[float] = None, **claims: Any) -> str:
    payload = dict(claims)
    if exp is not None:
        payload["exp"] = exp
    return f"{_b64url({'alg': 'HS256', 'typ': 'JWT'})}.{_b64url(payload)}.sig"


def make_response(status: int, payload: Any = None, url: str = "http://api.test/") -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp.url = url
    resp.encoding = "utf-8"
    resp.headers["Content-Type"] = "application/json"
    resp._content = json.dumps(payload).encode("utf-8") if payload is not None else b""  # type: ignore[attr-defined]
    return resp


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


Handler = Callable[[str, str, Dict[str, str], Any], requests.Response]


class FakeSession:
    """Stands in for requests.Session; routes every call to a handler."""

    def __init__(self, handler: Handler) -> None:
        self.handler = handler
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def request(self, method: str, url: str, headers=None, params=None, timeout=None, json=None, data=None):
        headers = dict(headers or {})
        with self._lock:
            self.calls.append({"method": method, "url": url, "headers": headers, "json": json})
        return self.handler(method, url, headers, json)

    def calls_to(self, suffix: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [c for c in self.calls if c["url"].endswith(suffix)]


class FakeAuthApi:
    """Issues A1, A2, ... access tokens that the clock expires after `lifetime` seconds."""

    def __init__(self, clock: FakeClock, lifetime: float = 3600) -> None:
        self.clock = clock
        self.lifetime = lifetime
        self.refresh_status: Optional[int] = None
        self.refresh_message = "Refresh token expired"
        self.refresh_gate: Optional[threading.Event] = None
        self.protected_message = "Unauthorized"
        self.always_401 = False
        self.role = "superadmin"
        self._lock = threading.Lock()
        self._seq = 0
        self._expires: Dict[str, float] = {}

    def issue(self) -> str:
        with self._lock:
            self._seq += 1
            token = f"A{self._seq}"
            self._expires[token] = self.clock() + self.lifetime
            return token

    def login_payload(self) -> Dict[str, Any]:
        return {
            "success": True,
            "data": {
                "user": {"id": "U1", "role": self.role},
                "tokens": {"accessToken": self.issue(), "refreshToken": "R1", "expiresIn": self.lifetime},
            },
        }

    def __call__(self, method: str, url: str, headers: Dict[str, str], body: Any) -> requests.Response:
        if url.endswith("/auth/login") or url.endswith("-login"):
            return make_response(200, self.login_payload(), url)
        if url.endswith("/auth/refresh"):
            if self.refresh_gate is not None:
                self.refresh_gate.wait(5)
            if self.refresh_status is not None:
                return make_response(self.refresh_status, {"success": False, "message": self.refresh_message}, url)
            return make_response(200, {"success": True, "data": {"accessToken": self.issue(), "expiresIn": self.lifetime}}, url)
        if url.endswith("/auth/logout"):
            return make_response(200, {"success": True}, url)

        token = (headers.get("Authorization") or "").replace("Bearer ", "", 1)
        with self._lock:
            expires = self._expires.get(token)
        if self.always_401 or expires is None or self.clock() >= expires:
            return make_response(401, {"success": False, "message": self.protected_message}, url)
        if url.endswith("/auth/me"):
            return make_response(200, {"success": True, "data": {"user": {"id": "U1", "role": self.role}}}, url)
        if url.endswith("/auth/profile"):
            user = {"id": "U1", "role": self.role, **(body or {})}
            return make_response(200, {"success": True, "data": {"user": user}}, url)
        return make_response(200, {"success": True, "data": {"token": token}}, url)

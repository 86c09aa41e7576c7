"""Minimal stub Auth API for local integration tests.

Routes (all JSON, wrapped in `{success, data, message}`):
- POST /auth/login, /auth/support-login, /auth/sales-login -> user + token pair
- POST /auth/refresh  -> new access token (body `refreshToken`)
- POST /auth/logout   -> ok
- GET  /me            -> protected resource, 401 unless the bearer token is live
- GET  /auth/me       -> profile of the logged-in user (same auth rules)

`state.mode` switches failure behaviour:
ok / refresh_unauthorized / invalid_token / always_401 / refresh_rotates
"""

from __future__ import annotations

import argparse
import json
import threading
import time
from http.server import BaseHTTPRequestHandler, HTTPServer
from socketserver import ThreadingMixIn
from typing import Any, Dict, Optional, Set


class StubState:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.mode = "ok"
            self.role = "superadmin"
            self.refresh_delay = 0.0
            self.refresh_calls = 0
            self.me_calls = 0
            self.logout_calls = 0
            self._access_seq = 0
            self._live_access: Set[str] = set()
            self._refresh_tokens: Set[str] = set()

    def issue_access(self) -> str:
        with self._lock:
            self._access_seq += 1
            token = f"A{self._access_seq}"
            self._live_access.add(token)
            return token

    def issue_refresh(self) -> str:
        with self._lock:
            token = f"R{len(self._refresh_tokens) + 1}"
            self._refresh_tokens.add(token)
            return token

    def expire_access_tokens(self) -> None:
        with self._lock:
            self._live_access.clear()

    def is_live(self, token: Optional[str]) -> bool:
        with self._lock:
            return bool(token) and token in self._live_access

    def knows_refresh(self, token: Optional[str]) -> bool:
        with self._lock:
            return bool(token) and token in self._refresh_tokens

    def count(self, counter: str) -> None:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + 1)


state = StubState()


def _send_json(handler: BaseHTTPRequestHandler, code: int, payload: Dict[str, Any]) -> None:
    body = json.dumps(payload).encode("utf-8")
    handler.send_response(code)
    handler.send_header("Content-Type", "application/json")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def _ok(handler: BaseHTTPRequestHandler, data: Dict[str, Any]) -> None:
    _send_json(handler, 200, {"success": True, "data": data})


def _fail(handler: BaseHTTPRequestHandler, code: int, message: str) -> None:
    _send_json(handler, code, {"success": False, "message": message})


class StubHandler(BaseHTTPRequestHandler):
    def do_POST(self):  # noqa: N802
        try:
            body = self._read_body()
            if self.path.endswith("-login") or self.path.endswith("/auth/login"):
                return self._handle_login()
            if self.path.endswith("/auth/refresh"):
                return self._handle_refresh(body)
            if self.path.endswith("/auth/logout"):
                state.count("logout_calls")
                return _ok(self, {})
            _fail(self, 404, "Not found")
        except Exception as exc:  # noqa: BLE001
            _fail(self, 500, str(exc))

    def do_GET(self):  # noqa: N802
        try:
            if self.path == "/health":
                return _send_json(self, 200, {"ok": True})
            if self.path.endswith("/auth/me"):
                return self._handle_profile()
            if self.path.endswith("/me"):
                return self._handle_me()
            _fail(self, 404, "Not found")
        except Exception as exc:  # noqa: BLE001
            _fail(self, 500, str(exc))

    def _read_body(self) -> Dict[str, Any]:
        length = int(self.headers.get("Content-Length") or 0)
        if not length:
            return {}
        try:
            data = json.loads(self.rfile.read(length))
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _bearer(self) -> Optional[str]:
        header = self.headers.get("Authorization") or ""
        if header.startswith("Bearer "):
            return header[len("Bearer "):]
        return None

    def _handle_login(self):
        access = state.issue_access()
        refresh = state.issue_refresh()
        return _ok(
            self,
            {
                "user": {"id": "U1", "role": state.role},
                "tokens": {"accessToken": access, "refreshToken": refresh, "expiresIn": 3600},
            },
        )

    def _handle_refresh(self, body: Dict[str, Any]):
        state.count("refresh_calls")
        if state.refresh_delay:
            time.sleep(state.refresh_delay)
        if state.mode == "refresh_unauthorized":
            return _fail(self, 401, "Refresh token expired")
        refresh_token = body.get("refreshToken") or self._bearer()
        if not state.knows_refresh(refresh_token):
            return _fail(self, 401, "Refresh token invalid")
        data: Dict[str, Any] = {"accessToken": state.issue_access(), "expiresIn": 3600}
        if state.mode == "refresh_rotates":
            data["refreshToken"] = state.issue_refresh()
        return _ok(self, data)

    def _handle_me(self):
        state.count("me_calls")
        if state.mode == "invalid_token":
            return _fail(self, 401, "Invalid token")
        if state.mode == "always_401":
            return _fail(self, 401, "Unauthorized")
        token = self._bearer()
        if not state.is_live(token):
            return _fail(self, 401, "Unauthorized")
        return _ok(self, {"token": token})

    def _handle_profile(self):
        if not state.is_live(self._bearer()):
            return _fail(self, 401, "Unauthorized")
        return _ok(self, {"user": {"id": "U1", "role": state.role}})

    def log_message(self, format: str, *args):  # noqa: A002
        return  # silence


class ThreadingHTTPServer(ThreadingMixIn, HTTPServer):
    daemon_threads = True
    allow_reuse_address = True


def run_stub_server(host: str = "127.0.0.1", port: int = 8090) -> None:
    httpd = ThreadingHTTPServer((host, port), StubHandler)
    httpd.serve_forever()


def create_server(host: str = "127.0.0.1", port: int = 8090) -> HTTPServer:
    """Server factory for tests; call shutdown() to stop it."""

    return ThreadingHTTPServer((host, port), StubHandler)


if __name__ == "__main__":  # pragma: no cover
    parser = argparse.ArgumentParser(description="Stub Auth API for session-keeper integration tests")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8090)
    args = parser.parse_args()

    run_stub_server(host=args.host, port=args.port)

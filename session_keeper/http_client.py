"""Authenticated HTTP client (client side of the Auth API).

- One requests.Session and one middleware pipeline per client.
- Every call goes through the pipeline: bearer attach, then 401 -> refresh -> replay.
- A dropped connection is retried once; timeouts and HTTP errors are not.
- Terminal 401s raise SessionInvalidError, failed refreshes RefreshFailedError,
  other HTTP errors requests.HTTPError. The logout broadcast fires before either
  session error reaches the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from .error_handling import (
    RefreshFailedError,
    SessionInvalidError,
    UNAUTHORIZED,
    classify_auth_failure,
    describe_error,
    FailureKind,
)
from .lifecycle import TokenLifecycleManager
from .middleware import (
    BearerAuthMiddleware,
    MiddlewarePipeline,
    OutboundRequest,
    RefreshOnUnauthorizedMiddleware,
    response_message,
)


logger = logging.getLogger(__name__)


def unwrap_envelope(body: Any) -> Dict[str, Any]:
    """Strip the `{success, data, message}` envelope the API wraps payloads in."""

    if isinstance(body, dict) and isinstance(body.get("data"), dict):
        return body["data"]
    return body if isinstance(body, dict) else {}


class HttpClient:
    def __init__(
        self,
        base_url: str,
        lifecycle: TokenLifecycleManager,
        *,
        refresh_path: str = "/auth/refresh",
        logout_path: str = "/auth/logout",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.lifecycle = lifecycle
        self.refresh_path = refresh_path
        self.logout_path = logout_path
        self.timeout = timeout
        self.session = session or requests.Session()
        self.pipeline = MiddlewarePipeline(
            [
                BearerAuthMiddleware(lifecycle.store),
                RefreshOnUnauthorizedMiddleware(lifecycle),
            ]
        )
        lifecycle.bind_refresh_call(self.refresh_token)
        lifecycle.logout_handler.bind_api_logout(self.logout)

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _send(self, request: OutboundRequest) -> requests.Response:
        kwargs: Dict[str, Any] = {
            "headers": {"Content-Type": "application/json", **request.headers},
            "params": request.params,
            "timeout": self.timeout,
        }
        if request.json is not None:
            kwargs["json"] = request.json
        if request.data is not None:
            kwargs["data"] = request.data
        try:
            return self.session.request(request.method, request.url, **kwargs)
        except requests.exceptions.ConnectionError:
            logger.info("connection dropped, retrying %s %s once", request.method, request.url)
            return self.session.request(request.method, request.url, **kwargs)

    # --- Public API ---
    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        outbound = OutboundRequest(
            method=method.upper(),
            url=self._url(path),
            headers=dict(headers or {}),
            params=params,
            json=json,
            data=data,
        )
        response = self.pipeline.execute(outbound, self._send)
        if response.status_code == UNAUTHORIZED and not outbound.retried:
            message = response_message(response)
            if classify_auth_failure(response.status_code, message) == FailureKind.TERMINAL:
                raise SessionInvalidError(message, status=response.status_code)
        response.raise_for_status()
        return response

    def request_json(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        response = self.request(method, path, **kwargs)
        if not response.content:
            return {}
        return response.json()

    def get(self, path: str, **kwargs: Any) -> Dict[str, Any]:
        return self.request_json("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> Dict[str, Any]:
        return self.request_json("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> Dict[str, Any]:
        return self.request_json("PUT", path, **kwargs)

    def patch(self, path: str, **kwargs: Any) -> Dict[str, Any]:
        return self.request_json("PATCH", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Dict[str, Any]:
        return self.request_json("DELETE", path, **kwargs)

    # --- Auth API wrappers ---
    def login(self, path: str, credentials: Dict[str, Any]) -> Dict[str, Any]:
        outbound = OutboundRequest(method="POST", url=self._url(path), json=credentials, authenticate=False)
        response = self.pipeline.execute(outbound, self._send)
        response.raise_for_status()
        return unwrap_envelope(response.json() if response.content else {})

    def refresh_token(self, refresh_token: str) -> Dict[str, Any]:
        """POST the refresh token (body and bearer header); returns the token payload.

        Bypasses the refresh middleware so a 401 here can never recurse.
        """

        outbound = OutboundRequest(
            method="POST",
            url=self._url(self.refresh_path),
            headers={"Authorization": f"Bearer {refresh_token}"},
            json={"refreshToken": refresh_token},
            authenticate=False,
            retried=True,
        )
        try:
            response = self.pipeline.execute(outbound, self._send)
        except requests.exceptions.RequestException as exc:
            raise RefreshFailedError(describe_error(None)) from exc

        if response.status_code >= 400:
            message = describe_error(response.status_code, response_message(response))
            raise RefreshFailedError(message, status=response.status_code)

        try:
            payload = unwrap_envelope(response.json())
        except ValueError as exc:
            raise RefreshFailedError("Invalid refresh response") from exc
        tokens = payload.get("tokens")
        return tokens if isinstance(tokens, dict) else payload

    def logout(self) -> None:
        # never refreshes: a 401 here means the server session is already gone
        outbound = OutboundRequest(method="POST", url=self._url(self.logout_path), retried=True)
        self.pipeline.execute(outbound, self._send).raise_for_status()


__all__ = ["HttpClient", "unwrap_envelope"]

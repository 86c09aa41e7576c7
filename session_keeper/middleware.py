"""Ordered request/response transformers around the HTTP transport.

Requests flow through `process_request` front to back, responses through
`process_response` back to front. A response middleware may replay the request
through the whole pipeline, which re-runs every request transformer (so a replay
picks up the refreshed bearer token).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests

from .error_handling import FailureKind, UNAUTHORIZED, classify_auth_failure, extract_message
from .lifecycle import TokenLifecycleManager
from .logout_handler import SESSION_INVALID
from .token_store import TokenStore


logger = logging.getLogger(__name__)


@dataclass
class OutboundRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    params: Optional[Dict[str, Any]] = None
    json: Any = None
    data: Any = None
    # False for calls that carry their own credential (login, refresh)
    authenticate: bool = True
    # set once the request has been through a refresh; never refreshed twice
    retried: bool = False


Transport = Callable[[OutboundRequest], requests.Response]
Replay = Callable[[OutboundRequest], requests.Response]


class Middleware:
    def process_request(self, request: OutboundRequest) -> OutboundRequest:
        return request

    def process_response(
        self, request: OutboundRequest, response: requests.Response, replay: Replay
    ) -> requests.Response:
        return response


class MiddlewarePipeline:
    def __init__(self, middlewares: Sequence[Middleware] = ()) -> None:
        self.middlewares: List[Middleware] = list(middlewares)

    def execute(self, request: OutboundRequest, transport: Transport) -> requests.Response:
        for middleware in self.middlewares:
            request = middleware.process_request(request)
        response = transport(request)

        def replay(again: OutboundRequest) -> requests.Response:
            return self.execute(again, transport)

        for middleware in reversed(self.middlewares):
            response = middleware.process_response(request, response, replay)
        return response


class BearerAuthMiddleware(Middleware):
    """Attach the current access token; never blocks or validates."""

    def __init__(self, store: TokenStore) -> None:
        self._store = store

    def process_request(self, request: OutboundRequest) -> OutboundRequest:
        if not request.authenticate:
            return request
        token = self._store.access_token
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        else:
            request.headers.pop("Authorization", None)
        return request


def response_message(response: requests.Response) -> str:
    if not response.content:
        return ""
    try:
        return extract_message(response.json())
    except ValueError:
        return ""


class RefreshOnUnauthorizedMiddleware(Middleware):
    """React to 401: terminal messages log out, anything else refreshes once and replays."""

    def __init__(self, lifecycle: TokenLifecycleManager) -> None:
        self._lifecycle = lifecycle

    def process_response(
        self, request: OutboundRequest, response: requests.Response, replay: Replay
    ) -> requests.Response:
        if response.status_code != UNAUTHORIZED or request.retried or not request.authenticate:
            return response

        message = response_message(response)
        kind = classify_auth_failure(response.status_code, message)
        if kind == FailureKind.TERMINAL:
            logger.warning("server rejected token as unrecoverable, forcing logout")
            self._lifecycle.force_logout(reason=SESSION_INVALID, message=message, status=response.status_code)
            return response

        request.retried = True
        current = self._lifecycle.store.access_token
        if current and request.headers.get("Authorization") != f"Bearer {current}":
            logger.debug("token replaced since %s %s was sent, replaying", request.method, request.url)
            return replay(request)
        # raises RefreshFailedError after the logout broadcast has fired
        self._lifecycle.refresh()
        logger.debug("replaying %s %s with refreshed token", request.method, request.url)
        return replay(request)


__all__ = [
    "BearerAuthMiddleware",
    "Middleware",
    "MiddlewarePipeline",
    "OutboundRequest",
    "RefreshOnUnauthorizedMiddleware",
    "response_message",
]

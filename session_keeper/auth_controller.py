"""User-facing session operations.

Responsibilities:
- login for each login surface, persisting tokens, expiry and the identity snapshot.
- user-initiated logout (server call is best effort, local cleanup is not).
- an offline "am I still logged in" check that raises the expiry signal.
- profile fetch/update, keeping the identity snapshot used for redirects current.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from .error_handling import DEFAULT_SESSION_MESSAGE, SessionError
from .event_bus import TOKEN_EXPIRED, SessionEvent
from .http_client import HttpClient, unwrap_envelope
from .logout_handler import TOKEN_EXPIRED_REASON
from .token_expiry import DEFAULT_BUFFER_SECONDS, is_expired, is_expiry_passed


logger = logging.getLogger(__name__)


class AuthController:
    def __init__(
        self,
        http: HttpClient,
        *,
        login_paths: Mapping[str, str],
        expiry_buffer_seconds: float = DEFAULT_BUFFER_SECONDS,
        profile_path: str = "/auth/me",
        profile_update_path: str = "/auth/profile",
    ) -> None:
        self.http = http
        self.lifecycle = http.lifecycle
        self.login_paths = dict(login_paths)
        self.profile_path = profile_path
        self.profile_update_path = profile_update_path
        self.expiry_buffer_seconds = expiry_buffer_seconds

    def login(self, credentials: Dict[str, Any], role_class: str = "admin") -> Dict[str, Any]:
        path = self.login_paths.get(role_class)
        if path is None:
            raise ValueError(f"unknown login surface: {role_class}")

        data = self.http.login(path, credentials)
        tokens = data.get("tokens") or {}
        if not tokens.get("accessToken") or not tokens.get("refreshToken"):
            logger.warning("login response for %s missing tokens", role_class)
            raise SessionError("ERR_LOGIN_NO_TOKENS", "Login response did not include tokens")

        user = data.get("user")
        self.lifecycle.start_session(tokens, identity=user if isinstance(user, dict) else None)
        logger.info("login succeeded for %s", role_class)
        return data

    def logout(self) -> None:
        self.lifecycle.logout_handler.logout()

    def is_authenticated(self) -> bool:
        store = self.lifecycle.store
        token = store.access_token
        if not token:
            return False
        expires_at_ms = store.expires_at_ms
        if expires_at_ms is not None:
            expired = is_expiry_passed(expires_at_ms, self.expiry_buffer_seconds)
        else:
            expired = is_expired(token, self.expiry_buffer_seconds)
        if not expired:
            return True

        logger.info("stored access token is expired, clearing session")
        event = SessionEvent(message=DEFAULT_SESSION_MESSAGE, reason=TOKEN_EXPIRED_REASON)
        self.lifecycle.bus.publish(TOKEN_EXPIRED, event.to_dict())
        store.clear()
        return False

    def current_user(self) -> Optional[Dict[str, Any]]:
        return self.lifecycle.store.identity

    def fetch_profile(self) -> Optional[Dict[str, Any]]:
        """Ask the server who we are and refresh the stored identity snapshot."""

        data = unwrap_envelope(self.http.get(self.profile_path))
        return self._remember_user(data)

    def update_profile(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        body = self.http.put(self.profile_update_path, json=changes)
        if body.get("success"):
            self._remember_user(unwrap_envelope(body))
        return body

    def _remember_user(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        user = data.get("user")
        if not isinstance(user, dict):
            return None
        self.lifecycle.store.set_identity(user)
        return user


__all__ = ["AuthController"]

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .error_handling import DEFAULT_SESSION_MESSAGE, RefreshFailedError, UNAUTHORIZED
from .event_bus import EventBus
from .logout_handler import SESSION_INVALID, LogoutHandler
from .refresh_coordinator import DEFAULT_WAIT_TIMEOUT, CoordinatorState, RefreshCall, RefreshCoordinator
from .token_store import CredentialPair, TokenStore


logger = logging.getLogger(__name__)


class TokenLifecycleManager:
    """Per-client owner of the refresh and logout episodes.

    One instance is created for each HTTP client and handed to its middlewares,
    so several independent sessions can live in one process.
    """

    def __init__(
        self,
        store: TokenStore,
        bus: EventBus,
        logout_handler: LogoutHandler,
        *,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
    ) -> None:
        self.store = store
        self.bus = bus
        self.logout_handler = logout_handler
        self.coordinator = RefreshCoordinator(
            store,
            on_failure=self._on_refresh_failure,
            wait_timeout=wait_timeout,
        )

    @property
    def state(self) -> CoordinatorState:
        return self.coordinator.state

    def bind_refresh_call(self, refresh_call: RefreshCall) -> None:
        self.coordinator.bind_refresh_call(refresh_call)

    def refresh(self) -> str:
        return self.coordinator.refresh()

    def try_refresh(self) -> bool:
        try:
            self.coordinator.refresh()
        except RefreshFailedError:
            return False
        return True

    def force_logout(
        self,
        reason: str = SESSION_INVALID,
        message: Optional[str] = None,
        redirect_hint: Optional[str] = None,
        status: Optional[int] = UNAUTHORIZED,
    ) -> bool:
        return self.logout_handler.force_logout(reason, message, redirect_hint, status)

    def start_session(
        self,
        tokens: Dict[str, Any],
        identity: Optional[Dict[str, Any]] = None,
    ) -> Optional[int]:
        """Persist a freshly issued credential pair and re-arm the coordinator."""

        expires_at_ms = self.store.set(
            CredentialPair(access_token=tokens["accessToken"], refresh_token=tokens["refreshToken"]),
            expires_at=tokens.get("expiresAt"),
            expires_in=tokens.get("expiresIn"),
            identity=identity,
        )
        self.coordinator.reset()
        self.bus.broadcast_session_status("active", {"role": (identity or {}).get("role")})
        return expires_at_ms

    def _on_refresh_failure(self, failure: RefreshFailedError) -> None:
        broadcast = self.force_logout(
            reason=SESSION_INVALID,
            message=DEFAULT_SESSION_MESSAGE,
            status=failure.status or UNAUTHORIZED,
        )
        if not broadcast:
            # another caller owns the logout episode; the store must still be empty
            self.store.clear()


__all__ = ["TokenLifecycleManager"]

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from .error_handling import DEFAULT_SESSION_MESSAGE, UNAUTHORIZED
from .event_bus import API_ERROR, TOKEN_EXPIRED, EventBus, SessionEvent
from .token_store import TokenStore


SESSION_INVALID = "session_invalid"
TOKEN_EXPIRED_REASON = "token_expired"
USER_LOGOUT = "user_logout"


def _log_navigation(target: str) -> None:
    logging.getLogger(__name__).info("redirect to %s", target)


class LogoutHandler:
    """Clears the local session and tells the rest of the application about it.

    Collaborators are injected (store, bus, navigation, role -> login route) so the
    same handler serves the forced path, the user-initiated path and tests.
    """

    def __init__(
        self,
        store: TokenStore,
        bus: EventBus,
        *,
        login_route_for: Callable[[Optional[Dict[str, Any]]], str],
        navigate: Callable[[str], None] = _log_navigation,
        api_logout: Optional[Callable[[], None]] = None,
        cooldown_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._bus = bus
        self._login_route_for = login_route_for
        self._navigate = navigate
        self._api_logout = api_logout
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._episode_started_at: Optional[float] = None
        self._last_identity: Optional[Dict[str, Any]] = None
        self._logger = logging.getLogger(__name__)

    @property
    def in_progress(self) -> bool:
        with self._lock:
            return self._episode_active()

    @property
    def last_identity(self) -> Optional[Dict[str, Any]]:
        return self._last_identity

    def bind_api_logout(self, api_logout: Callable[[], None]) -> None:
        self._api_logout = api_logout

    def force_logout(
        self,
        reason: str = SESSION_INVALID,
        message: Optional[str] = None,
        redirect_hint: Optional[str] = None,
        status: Optional[int] = UNAUTHORIZED,
    ) -> bool:
        """Clear storage, broadcast and redirect once per invalidation episode.

        A call while an episode is inside its cooldown window is a no-op and
        returns False.
        """

        with self._lock:
            if self._episode_active():
                self._logger.debug("forced logout already in progress, ignoring (%s)", reason)
                return False
            self._episode_started_at = self._clock()

        identity = self._store.identity
        if identity is not None:
            self._last_identity = identity
        self._store.clear()

        event = SessionEvent(
            message=message or DEFAULT_SESSION_MESSAGE,
            reason=reason,
            status=status or UNAUTHORIZED,
        )
        self._logger.warning("forced logout: reason=%s status=%s", event.reason, event.status)
        detail = event.to_dict()
        self._bus.publish(TOKEN_EXPIRED, detail)
        self._bus.publish(API_ERROR, detail)

        self._navigate(redirect_hint or self._login_route_for(identity))
        return True

    def end_session(self, redirect_hint: Optional[str] = None) -> str:
        """Unguarded clear + redirect, used by the notice's "log in again" action."""

        identity = self._store.identity or self._last_identity
        self._store.clear()
        target = redirect_hint or self._login_route_for(identity)
        self._navigate(target)
        return target

    def logout(self) -> None:
        """User-initiated logout: call the API, always clear locally, broadcast none."""

        self._last_identity = self._store.identity
        try:
            if self._api_logout is not None and self._store.access_token:
                self._api_logout()
        except Exception as exc:  # noqa: BLE001
            # the server call is advisory; local state must not survive it
            self._logger.warning("API logout failed, proceeding with local cleanup: %s", exc)
        finally:
            self._store.clear()
            self._bus.broadcast_session_status("none", {"reason": USER_LOGOUT})

    def _episode_active(self) -> bool:
        if self._episode_started_at is None:
            return False
        if self._clock() - self._episode_started_at < self._cooldown:
            return True
        self._episode_started_at = None
        return False


__all__ = ["LogoutHandler", "SESSION_INVALID", "TOKEN_EXPIRED_REASON", "USER_LOGOUT"]

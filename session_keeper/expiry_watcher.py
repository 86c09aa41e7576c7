"""Proactive expiry detection.

Checks run immediately on start, on every navigation and on a coarse interval.
Any check that finds the access token expired (or inside the buffer) publishes
the same `tokenExpired` signal the forced-logout path uses; the watcher's own
subscription to that signal (and to authorization-class `apiError`s) is the only
place that raises the session-expiring callback, once per expiry episode.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from .error_handling import DEFAULT_SESSION_MESSAGE, is_auth_error_detail
from .event_bus import API_ERROR, SESSION_STATUS, TOKEN_EXPIRED, EventBus, SessionEvent
from .logout_handler import TOKEN_EXPIRED_REASON
from .token_expiry import DEFAULT_BUFFER_SECONDS, is_expired, is_expiry_passed, token_expiry_ms
from .token_store import TokenStore


WATCH_INTERVAL_SECONDS = 30 * 60

logger = logging.getLogger(__name__)


class ExpiryWatcher:
    def __init__(
        self,
        store: TokenStore,
        bus: EventBus,
        *,
        on_session_expiring: Callable[[Dict[str, Any]], None],
        buffer_seconds: float = DEFAULT_BUFFER_SECONDS,
        interval_seconds: float = WATCH_INTERVAL_SECONDS,
        refresh: Optional[Callable[[], bool]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """refresh: when given, an expiring token is refreshed before anyone is told."""

        self._store = store
        self._bus = bus
        self._on_session_expiring = on_session_expiring
        self._buffer = buffer_seconds
        self._interval = interval_seconds
        self._refresh = refresh
        self._clock = clock
        self._lock = threading.Lock()
        self._signalled = False
        self._next_check_at: Optional[float] = None
        self._unsubscribers: List[Callable[[], None]] = []
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def signalled(self) -> bool:
        return self._signalled

    @property
    def next_check_at(self) -> Optional[float]:
        return self._next_check_at

    # --- Lifecycle ---
    def start(self, run_thread: bool = True) -> None:
        if not self._unsubscribers:
            self._unsubscribers = [
                self._bus.subscribe(TOKEN_EXPIRED, self._handle_token_expired),
                self._bus.subscribe(API_ERROR, self._handle_api_error),
                self._bus.subscribe(SESSION_STATUS, self._handle_session_status),
            ]
        self.check()
        self._next_check_at = self._clock() + self._interval

        if run_thread and self._thread is None:
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name="expiry-watcher", daemon=True)
            self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=1)
            self._thread = None
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._next_check_at = None

    def tick(self, now: Optional[float] = None) -> None:
        if self._next_check_at is None:
            return
        now = self._clock() if now is None else now
        if now < self._next_check_at:
            return
        self.check(now)
        self._next_check_at = now + self._interval

    def on_navigation(self, route: Optional[str] = None) -> bool:
        logger.debug("navigation to %s, checking token expiry", route)
        return self.check()

    # --- Checks ---
    def check(self, now: Optional[float] = None) -> bool:
        """Return True when the session is (or was just) reported as expiring."""

        token = self._store.access_token
        if not token:
            return False

        now = self._clock() if now is None else now
        expires_at_ms = self._store.expires_at_ms
        if expires_at_ms is not None:
            expired = is_expiry_passed(expires_at_ms, self._buffer, now)
        elif token_expiry_ms(token) is not None:
            expired = is_expired(token, self._buffer, now)
        else:
            logger.debug("access token freshness unknown, leaving it to the next request")
            return False

        if not expired:
            with self._lock:
                self._signalled = False
            return False

        if self._refresh is not None and self._store.refresh_token:
            if self._refresh():
                logger.info("access token refreshed ahead of expiry")
                return False
            # a failed refresh has already gone through the forced logout broadcast
            return True

        logger.info("access token expired or expiring within %ss", self._buffer)
        event = SessionEvent(message=DEFAULT_SESSION_MESSAGE, reason=TOKEN_EXPIRED_REASON)
        self._bus.publish(TOKEN_EXPIRED, event.to_dict())
        return True

    # --- Internal ---
    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.tick()
            except Exception:  # noqa: BLE001
                logger.exception("expiry check failed")

    def _raise_expiring(self, detail: Dict[str, Any]) -> None:
        with self._lock:
            if self._signalled:
                return
            self._signalled = True
        self._on_session_expiring(detail)

    def _handle_token_expired(self, detail: Any) -> None:
        logger.info("token expiry signal received")
        self._raise_expiring(detail if isinstance(detail, dict) else {})

    def _handle_api_error(self, detail: Any) -> None:
        if isinstance(detail, dict) and is_auth_error_detail(detail):
            logger.info("API error indicates token expiry: status=%s", detail.get("status"))
            self._raise_expiring(detail)

    def _handle_session_status(self, payload: Any) -> None:
        if isinstance(payload, dict) and payload.get("status") == "active":
            with self._lock:
                self._signalled = False


__all__ = ["ExpiryWatcher", "WATCH_INTERVAL_SECONDS"]

"""UI-facing contract of the "session expired" notice.

HIDDEN -> VISIBLE(counting) -> VISIBLE(paused) | HIDDEN (refreshed) | LOGGED_OUT

No widgets live here: a view renders `state`, `countdown` and `message` and wires
its buttons to `cancel`, `refresh` and `log_in_again`. `tick()` advances the
countdown by one second; `start_timer()` drives it from a daemon thread.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .error_handling import DEFAULT_SESSION_MESSAGE


DEFAULT_COUNTDOWN_SECONDS = 10

logger = logging.getLogger(__name__)


class NoticeState(str, Enum):
    HIDDEN = "hidden"
    COUNTING = "counting"
    PAUSED = "paused"
    LOGGED_OUT = "logged_out"


class SessionNotice:
    def __init__(
        self,
        *,
        log_in_again: Callable[[], Any],
        refresh: Optional[Callable[[], bool]] = None,
        countdown_seconds: int = DEFAULT_COUNTDOWN_SECONDS,
    ) -> None:
        """
        log_in_again: clears the session and redirects to the right login surface.
        refresh: optional; True when the session was refreshed.
        """

        self._log_in_again = log_in_again
        self._refresh = refresh
        self.countdown_seconds = countdown_seconds
        self._lock = threading.RLock()
        self.state = NoticeState.HIDDEN
        self.countdown = countdown_seconds
        self.message = DEFAULT_SESSION_MESSAGE
        self.reason: Optional[str] = None
        self._timer_stop: Optional[threading.Event] = None

    @property
    def visible(self) -> bool:
        return self.state in (NoticeState.COUNTING, NoticeState.PAUSED)

    @property
    def can_refresh(self) -> bool:
        return self._refresh is not None

    def show(self, detail: Optional[Dict[str, Any]] = None) -> None:
        """Make the notice visible; a second signal only updates the message."""

        detail = detail or {}
        with self._lock:
            if detail.get("message"):
                self.message = str(detail["message"])
            if detail.get("reason"):
                self.reason = str(detail["reason"])
            if self.visible:
                return
            self.state = NoticeState.COUNTING
            self.countdown = self.countdown_seconds
        logger.info("session notice shown: %s", self.reason)

    def tick(self) -> None:
        with self._lock:
            if self.state != NoticeState.COUNTING:
                return
            self.countdown = max(self.countdown - 1, 0)
            expired = self.countdown == 0
        if expired:
            logger.info("session notice countdown reached zero, logging out")
            self.log_in_again()

    def cancel(self) -> None:
        """Halt the countdown; the notice stays up and credentials are untouched."""

        with self._lock:
            if self.state == NoticeState.COUNTING:
                self.state = NoticeState.PAUSED

    def refresh(self) -> bool:
        if self._refresh is None:
            return False
        with self._lock:
            if not self.visible:
                return False
        try:
            refreshed = self._refresh()
        except Exception as exc:  # noqa: BLE001
            logger.warning("session refresh from notice failed: %s", exc)
            refreshed = False

        if refreshed:
            with self._lock:
                self.state = NoticeState.HIDDEN
                self.countdown = self.countdown_seconds
            self.stop_timer()
            logger.info("session refreshed from notice")
            return True

        self.log_in_again()
        return False

    def log_in_again(self) -> None:
        with self._lock:
            if self.state == NoticeState.LOGGED_OUT:
                return
            self.state = NoticeState.LOGGED_OUT
            self.countdown = 0
        self.stop_timer()
        self._log_in_again()

    def reset(self) -> None:
        """Back to HIDDEN, e.g. after a new login."""

        with self._lock:
            self.state = NoticeState.HIDDEN
            self.countdown = self.countdown_seconds
            self.message = DEFAULT_SESSION_MESSAGE
            self.reason = None

    # --- Timer ---
    def start_timer(self, interval: float = 1.0) -> None:
        with self._lock:
            if self._timer_stop is not None:
                return
            stop = threading.Event()
            self._timer_stop = stop

        def runner() -> None:
            while not stop.wait(interval):
                self.tick()
                if not self.visible:
                    break
            with self._lock:
                if self._timer_stop is stop:
                    self._timer_stop = None

        threading.Thread(target=runner, name="session-notice", daemon=True).start()

    def stop_timer(self) -> None:
        with self._lock:
            stop, self._timer_stop = self._timer_stop, None
        if stop is not None:
            stop.set()


__all__ = ["DEFAULT_COUNTDOWN_SECONDS", "NoticeState", "SessionNotice"]

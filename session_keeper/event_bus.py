"""In-process publish/subscribe channel for session signals.

- publish(event, payload): record the event and deliver it to every subscriber.
- subscribe(event, handler): register a handler; returns a callable that unsubscribes.
- TOKEN_EXPIRED / API_ERROR: the two signals any part of the application may emit.
- SESSION_STATUS: lifecycle status changes ("active", "none").

A handler that raises is logged and skipped so one bad listener cannot stop delivery.
Swap for a cross-process channel when several processes share one session.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional


TOKEN_EXPIRED = "tokenExpired"
API_ERROR = "apiError"
SESSION_STATUS = "sessionStatus"

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class SessionEvent:
    message: str
    reason: str
    status: Optional[int] = None
    timestamp: str = field(default_factory=_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EventBus:
    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []
        self._handlers: Dict[str, List[Handler]] = {}
        self._lock = threading.Lock()

    def publish(self, event: str, payload: Any = None) -> None:
        with self._lock:
            self.events.append({"event": event, "payload": payload})
            handlers = list(self._handlers.get(event, []))
        for handler in handlers:
            try:
                handler(payload)
            except Exception:  # noqa: BLE001
                logger.exception("handler for %s failed", event)

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        with self._lock:
            self._handlers.setdefault(event, []).append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def broadcast_session_status(self, status: str, payload: Any = None) -> None:
        self.publish(SESSION_STATUS, {"status": status, "payload": payload})


__all__ = [
    "API_ERROR",
    "EventBus",
    "SESSION_STATUS",
    "SessionEvent",
    "TOKEN_EXPIRED",
]

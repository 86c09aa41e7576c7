"""Single-flight token refresh.

IDLE -> REFRESHING -> IDLE (success) | LOGGED_OUT (failure).

The first caller to observe an authorization failure becomes the leader of a
refresh episode and performs the network call; every caller arriving while the
episode is open becomes a waiter and receives the leader's outcome. Waiters are
released in arrival order. Callers may be on different threads, so the episode
is guarded by a lock rather than relying on a single event loop.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional

from .error_handling import RefreshFailedError, SessionError
from .token_store import TokenStore


logger = logging.getLogger(__name__)

# how long a waiter sits quietly before logging that the refresh is slow
DEFAULT_WAIT_TIMEOUT = 60.0


class CoordinatorState(str, Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"
    LOGGED_OUT = "logged_out"


class Waiter:
    def __init__(self) -> None:
        self._done = threading.Event()
        self._token: Optional[str] = None
        self._error: Optional[BaseException] = None

    def resolve(self, token: str) -> None:
        self._token = token
        self._done.set()

    def reject(self, error: BaseException) -> None:
        self._error = error
        self._done.set()

    def wait(self, timeout: Optional[float] = None) -> str:
        """Block until the leader settles the episode.

        A waiter never gives up on its own: only the leader decides failure, so
        a rejection always comes after the logout broadcast. `timeout` only
        paces the slow-refresh warning.
        """

        while not self._done.wait(timeout):
            logger.warning("token refresh still in flight after %ss, waiting for its outcome", timeout)
        if self._error is not None:
            raise self._error
        if self._token is None:
            raise RefreshFailedError("Refresh settled without a token")
        return self._token


@dataclass
class RefreshEpisode:
    waiters: Deque[Waiter] = field(default_factory=deque)

    def enqueue(self) -> Waiter:
        waiter = Waiter()
        self.waiters.append(waiter)
        return waiter

    def settle(self, token: Optional[str] = None, error: Optional[BaseException] = None) -> None:
        while self.waiters:
            waiter = self.waiters.popleft()
            if error is not None:
                waiter.reject(error)
            elif token is None:
                waiter.reject(RefreshFailedError("Refresh settled without a token"))
            else:
                waiter.resolve(token)


RefreshCall = Callable[[str], Dict[str, Any]]


class RefreshCoordinator:
    def __init__(
        self,
        store: TokenStore,
        *,
        on_failure: Callable[[RefreshFailedError], None],
        refresh_call: Optional[RefreshCall] = None,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
    ) -> None:
        """
        refresh_call: sends the refresh token to the Auth API and returns the
        unwrapped token payload ({accessToken, refreshToken?, expiresAt?, expiresIn?}).
        on_failure: invoked once per failed episode, before any waiter is rejected.
        """

        self._store = store
        self._on_failure = on_failure
        self._refresh_call = refresh_call
        self._wait_timeout = wait_timeout
        self._lock = threading.Lock()
        self._episode: Optional[RefreshEpisode] = None
        self._state = CoordinatorState.IDLE
        self.refresh_count = 0

    @property
    def state(self) -> CoordinatorState:
        with self._lock:
            return self._state

    @property
    def pending_waiters(self) -> int:
        with self._lock:
            return len(self._episode.waiters) if self._episode else 0

    def bind_refresh_call(self, refresh_call: RefreshCall) -> None:
        self._refresh_call = refresh_call

    def refresh(self) -> str:
        """Return a fresh access token, joining an in-flight refresh if there is one.

        Raises RefreshFailedError when the refresh is rejected, times out or no
        refresh token is stored; the session has been logged out by then.
        """

        with self._lock:
            episode = self._episode
            if episode is not None:
                waiter = episode.enqueue()
            else:
                episode = RefreshEpisode()
                self._episode = episode
                self._state = CoordinatorState.REFRESHING
                waiter = None

        if waiter is not None:
            logger.debug("refresh in flight, queued as waiter")
            return waiter.wait(self._wait_timeout)

        return self._lead(episode)

    def reset(self) -> None:
        """Back to IDLE after a new login."""

        with self._lock:
            if self._episode is None:
                self._state = CoordinatorState.IDLE

    # --- Internal ---
    def _lead(self, episode: RefreshEpisode) -> str:
        try:
            token = self._perform_refresh()
        except Exception as exc:  # noqa: BLE001
            failure = exc if isinstance(exc, RefreshFailedError) else self._as_refresh_failure(exc)
            self._fail(episode, failure)
            if failure is exc:
                raise
            raise failure from exc

        with self._lock:
            self._episode = None
            self._state = CoordinatorState.IDLE
        episode.settle(token=token)
        return token

    def _fail(self, episode: RefreshEpisode, failure: RefreshFailedError) -> None:
        logger.warning("token refresh failed: %s", failure.message)
        with self._lock:
            self._episode = None
            self._state = CoordinatorState.LOGGED_OUT
        try:
            self._on_failure(failure)
        finally:
            episode.settle(error=failure)

    def _perform_refresh(self) -> str:
        if self._refresh_call is None:
            raise RefreshFailedError("No refresh call configured")
        refresh_token = self._store.refresh_token
        if not refresh_token:
            raise RefreshFailedError("No refresh token available")

        logger.info("attempting token refresh")
        self.refresh_count += 1
        payload = self._refresh_call(refresh_token)

        access_token = payload.get("accessToken") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token:
            raise RefreshFailedError("Invalid refresh response")

        rotated = payload.get("refreshToken")
        self._store.update_access_token(
            access_token,
            refresh_token=rotated if isinstance(rotated, str) and rotated else None,
            expires_at=payload.get("expiresAt"),
            expires_in=payload.get("expiresIn"),
        )
        logger.info("token refresh successful")
        return access_token

    @staticmethod
    def _as_refresh_failure(exc: BaseException) -> RefreshFailedError:
        status = exc.status if isinstance(exc, SessionError) else None
        response = getattr(exc, "response", None)
        if status is None and response is not None:
            status = getattr(response, "status_code", None)
        return RefreshFailedError(str(exc) or "Token refresh failed", status=status)


__all__ = [
    "CoordinatorState",
    "RefreshCoordinator",
    "RefreshEpisode",
    "Waiter",
]

"""Application entry point wiring every session component together.

Storage -> TokenStore -> LogoutHandler -> TokenLifecycleManager -> HttpClient
-> AuthController, plus the ExpiryWatcher feeding the SessionNotice.

Broadcast events and redirects are recorded on the instance so integration tests
(and a host UI) can observe them.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

import requests

from .auth_controller import AuthController
from .client_config import ClientConfig, load_client_config
from .event_bus import SESSION_STATUS, EventBus
from .expiry_watcher import ExpiryWatcher
from .http_client import HttpClient
from .lifecycle import TokenLifecycleManager
from .logout_handler import LogoutHandler
from .session_notice import SessionNotice
from .token_storage import FileStorage, StorageBackend
from .token_store import TokenStore


logger = logging.getLogger(__name__)


class SessionApp:
    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        storage: Optional[StorageBackend] = None,
        session: Optional[requests.Session] = None,
        navigate: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.redirects: List[str] = []
        self._host_navigate = navigate
        self._run_threads = False

        self.bus = EventBus()
        self.store = TokenStore(storage if storage is not None else FileStorage(self.config.resolved_storage_path()))
        self.logout_handler = LogoutHandler(
            self.store,
            self.bus,
            login_route_for=self.config.login_route_for,
            navigate=self._navigate,
            cooldown_seconds=self.config.logout_cooldown_seconds,
        )
        self.lifecycle = TokenLifecycleManager(
            self.store,
            self.bus,
            self.logout_handler,
            wait_timeout=self.config.refresh_wait_seconds(),
        )
        self.http = HttpClient(
            self.config.api_base_url,
            self.lifecycle,
            refresh_path=self.config.refresh_path,
            logout_path=self.config.logout_path,
            timeout=self.config.timeout_seconds,
            session=session,
        )
        self.auth = AuthController(
            self.http,
            login_paths=self.config.login_paths,
            expiry_buffer_seconds=self.config.expiry_buffer_seconds,
            profile_path=self.config.profile_path,
            profile_update_path=self.config.profile_update_path,
        )
        self.notice = SessionNotice(
            log_in_again=self.logout_handler.end_session,
            refresh=self._refresh_from_notice,
            countdown_seconds=self.config.countdown_seconds,
        )
        self.watcher = ExpiryWatcher(
            self.store,
            self.bus,
            on_session_expiring=self._on_session_expiring,
            buffer_seconds=self.config.expiry_buffer_seconds,
            interval_seconds=self.config.watch_interval_seconds,
            refresh=self.lifecycle.try_refresh if self.config.preemptive_refresh else None,
        )
        self.bus.subscribe(SESSION_STATUS, self._on_session_status)

    @classmethod
    def from_config(cls, path: Optional[str] = None, **kwargs: Any) -> "SessionApp":
        return cls(load_client_config(path), **kwargs)

    @property
    def events(self) -> List[Dict[str, Any]]:
        return self.bus.events

    # --- Public API ---
    def start(self, run_threads: bool = True) -> None:
        self._run_threads = run_threads
        self.watcher.start(run_thread=run_threads)

    def stop(self) -> None:
        self.watcher.stop()
        self.notice.stop_timer()

    def login(self, credentials: Dict[str, Any], role_class: str = "admin") -> Dict[str, Any]:
        return self.auth.login(credentials, role_class)

    def logout(self) -> None:
        self.auth.logout()

    def navigate(self, route: str) -> None:
        """Host route change: re-check expiry before the new view issues requests."""

        self.watcher.on_navigation(route)

    # --- Helpers ---
    def _navigate(self, target: str) -> None:
        self.redirects.append(target)
        logger.info("redirecting to %s", target)
        if self._host_navigate is not None:
            self._host_navigate(target)

    def _on_session_expiring(self, detail: Dict[str, Any]) -> None:
        self.notice.show(detail)
        if self._run_threads:
            self.notice.start_timer()

    def _refresh_from_notice(self) -> bool:
        if not self.store.refresh_token:
            return False
        return self.lifecycle.try_refresh()

    def _on_session_status(self, payload: Any) -> None:
        if isinstance(payload, dict) and payload.get("status") == "active":
            self.notice.stop_timer()
            self.notice.reset()


__all__ = ["SessionApp"]

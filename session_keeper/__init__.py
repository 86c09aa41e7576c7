"""Client-side session keeping for access/refresh token pairs."""

from .auth_controller import AuthController
from .client_config import ClientConfig, load_client_config
from .error_handling import FailureKind, RefreshFailedError, SessionError, SessionInvalidError
from .event_bus import API_ERROR, SESSION_STATUS, TOKEN_EXPIRED, EventBus, SessionEvent
from .expiry_watcher import ExpiryWatcher
from .http_client import HttpClient
from .lifecycle import TokenLifecycleManager
from .logout_handler import LogoutHandler
from .refresh_coordinator import CoordinatorState, RefreshCoordinator
from .session_notice import NoticeState, SessionNotice
from .shell_entry import SessionApp
from .token_expiry import derive_expiry_ms, is_expired
from .token_storage import FileStorage, MemoryStorage
from .token_store import CredentialPair, TokenStore

__version__ = "0.1.0"

__all__ = [
    "API_ERROR",
    "AuthController",
    "ClientConfig",
    "CoordinatorState",
    "CredentialPair",
    "EventBus",
    "ExpiryWatcher",
    "FailureKind",
    "FileStorage",
    "HttpClient",
    "LogoutHandler",
    "MemoryStorage",
    "NoticeState",
    "RefreshCoordinator",
    "RefreshFailedError",
    "SESSION_STATUS",
    "SessionApp",
    "SessionError",
    "SessionEvent",
    "SessionInvalidError",
    "SessionNotice",
    "TOKEN_EXPIRED",
    "TokenLifecycleManager",
    "TokenStore",
    "derive_expiry_ms",
    "is_expired",
    "load_client_config",
]

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Mapping, Optional

from .token_storage import default_storage_path


CONFIG_FILENAME = "session-keeper.json"

ENV_CONFIG_PATH = "SESSION_KEEPER_CONFIG"
ENV_API_URL = "SESSION_KEEPER_API_URL"
ENV_STORAGE_PATH = "SESSION_KEEPER_STORAGE_PATH"

logger = logging.getLogger(__name__)


def _default_login_paths() -> Dict[str, str]:
    return {
        "admin": "/auth/login",
        "support": "/auth/support-login",
        "sales": "/auth/sales-login",
    }


def _default_login_routes() -> Dict[str, str]:
    return {"superadmin": "/login"}


@dataclass
class ClientConfig:
    api_base_url: str = "http://localhost:5000/api"
    refresh_path: str = "/auth/refresh"
    logout_path: str = "/auth/logout"
    profile_path: str = "/auth/me"
    profile_update_path: str = "/auth/profile"
    login_paths: Dict[str, str] = field(default_factory=_default_login_paths)
    timeout_seconds: float = 10.0
    expiry_buffer_seconds: float = 30.0
    watch_interval_seconds: float = 30 * 60.0
    countdown_seconds: int = 10
    logout_cooldown_seconds: float = 1.0
    preemptive_refresh: bool = False
    login_routes: Dict[str, str] = field(default_factory=_default_login_routes)
    default_login_route: str = "/admin/login"
    storage_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ClientConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("ignoring unknown config keys: %s", ", ".join(unknown))
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def login_route_for(self, identity: Optional[Mapping[str, Any]]) -> str:
        role = identity.get("role") if identity else None
        if isinstance(role, str) and role in self.login_routes:
            return self.login_routes[role]
        return self.default_login_route

    def refresh_wait_seconds(self) -> float:
        """Refresh call plus its one connection retry, with a margin."""

        return 2 * self.timeout_seconds + 5

    def resolved_storage_path(self) -> str:
        return self.storage_path or default_storage_path()


def default_config_path() -> str:
    base_dir = os.path.dirname(default_storage_path())
    return os.path.join(base_dir, CONFIG_FILENAME)


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    p = (path or "").strip() or os.getenv(ENV_CONFIG_PATH, "").strip() or default_config_path()
    try:
        with open(p, "r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as exc:
        logger.warning("config file %s unusable, using defaults: %s", p, exc)
        return {}


def save_config(path: Optional[str], payload: Dict[str, Any]) -> None:
    p = (path or "").strip() or default_config_path()
    os.makedirs(os.path.dirname(p) or ".", exist_ok=True)

    tmp = p + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
    os.replace(tmp, p)


def load_client_config(path: Optional[str] = None) -> ClientConfig:
    """Config file values, then environment overrides, on top of the defaults."""

    config = ClientConfig.from_dict(load_config(path))
    api_url = os.getenv(ENV_API_URL, "").strip()
    if api_url:
        config.api_base_url = api_url
    storage_path = os.getenv(ENV_STORAGE_PATH, "").strip()
    if storage_path:
        config.storage_path = storage_path
    return config


__all__ = [
    "ClientConfig",
    "default_config_path",
    "load_client_config",
    "load_config",
    "save_config",
]

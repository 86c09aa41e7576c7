"""Credential pair, expiry record and identity snapshot over a storage medium.

Every write lands in an in-memory mirror first and is then persisted best effort:
if the medium refuses the write (quota, read-only disk, disabled storage) the
failure is logged and the session keeps working for the life of the process.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .error_handling import FailureKind
from .token_expiry import ExpiresAt, derive_expiry_ms
from .token_storage import MemoryStorage, StorageBackend


logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"
IDENTITY_KEY = "user"
EXPIRY_KEY = "tokenExpiry"

_ALL_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, IDENTITY_KEY, EXPIRY_KEY)


@dataclass(frozen=True)
class CredentialPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class StoredSession:
    access_token: Optional[str]
    refresh_token: Optional[str]
    expires_at_ms: Optional[int]
    identity: Optional[Dict[str, Any]]

    @property
    def role(self) -> Optional[str]:
        if not self.identity:
            return None
        role = self.identity.get("role")
        return role if isinstance(role, str) else None


class TokenStore:
    def __init__(self, storage: Optional[StorageBackend] = None) -> None:
        self._storage: StorageBackend = storage if storage is not None else MemoryStorage()
        self._lock = threading.RLock()
        self._mirror: Dict[str, str] = {}
        self._load()

    # --- Public API ---
    def get(self) -> Optional[StoredSession]:
        with self._lock:
            if not any(key in self._mirror for key in _ALL_KEYS):
                return None
            return StoredSession(
                access_token=self._mirror.get(ACCESS_TOKEN_KEY),
                refresh_token=self._mirror.get(REFRESH_TOKEN_KEY),
                expires_at_ms=self._expiry(),
                identity=self._identity(),
            )

    def set(
        self,
        pair: CredentialPair,
        *,
        expires_at: ExpiresAt = None,
        expires_in: Optional[float] = None,
        identity: Optional[Dict[str, Any]] = None,
    ) -> Optional[int]:
        """Replace the credential pair and its expiry record in one step.

        Returns the derived expiry (epoch ms) or None when freshness is unknown.
        """

        with self._lock:
            self._put(REFRESH_TOKEN_KEY, pair.refresh_token)
            expires_at_ms = self._put_access_token(pair.access_token, expires_at, expires_in)
            if identity is not None:
                self._put(IDENTITY_KEY, json.dumps(identity, ensure_ascii=False))
            return expires_at_ms

    def update_access_token(
        self,
        access_token: str,
        *,
        refresh_token: Optional[str] = None,
        expires_at: ExpiresAt = None,
        expires_in: Optional[float] = None,
    ) -> Optional[int]:
        with self._lock:
            if refresh_token:
                self._put(REFRESH_TOKEN_KEY, refresh_token)
            return self._put_access_token(access_token, expires_at, expires_in)

    def set_identity(self, identity: Optional[Dict[str, Any]]) -> None:
        with self._lock:
            if identity is None:
                self._remove(IDENTITY_KEY)
            else:
                self._put(IDENTITY_KEY, json.dumps(identity, ensure_ascii=False))

    def clear(self) -> None:
        with self._lock:
            for key in _ALL_KEYS:
                self._remove(key)

    @property
    def access_token(self) -> Optional[str]:
        with self._lock:
            return self._mirror.get(ACCESS_TOKEN_KEY)

    @property
    def refresh_token(self) -> Optional[str]:
        with self._lock:
            return self._mirror.get(REFRESH_TOKEN_KEY)

    @property
    def expires_at_ms(self) -> Optional[int]:
        with self._lock:
            return self._expiry()

    @property
    def identity(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._identity()

    # --- Internal ---
    def _load(self) -> None:
        for key in _ALL_KEYS:
            try:
                value = self._storage.get(key)
            except (OSError, ValueError) as exc:
                logger.warning("storage read failed for %s (%s): %s", key, FailureKind.STORAGE_FAILED.value, exc)
                continue
            if value is not None:
                self._mirror[key] = value

    def _put_access_token(
        self, access_token: str, expires_at: ExpiresAt, expires_in: Optional[float]
    ) -> Optional[int]:
        self._put(ACCESS_TOKEN_KEY, access_token)
        expires_at_ms = derive_expiry_ms(access_token, expires_at=expires_at, expires_in=expires_in)
        if expires_at_ms is None:
            # freshness unknown: never keep a stale expiry next to a new token
            self._remove(EXPIRY_KEY)
        else:
            self._put(EXPIRY_KEY, str(expires_at_ms))
        return expires_at_ms

    def _put(self, key: str, value: str) -> None:
        self._mirror[key] = value
        try:
            self._storage.set(key, value)
        except (OSError, ValueError) as exc:
            logger.warning(
                "storage write failed for %s (%s), keeping it in memory only: %s",
                key,
                FailureKind.STORAGE_FAILED.value,
                exc,
            )

    def _remove(self, key: str) -> None:
        self._mirror.pop(key, None)
        try:
            self._storage.remove(key)
        except (OSError, ValueError) as exc:
            logger.warning("storage remove failed for %s (%s): %s", key, FailureKind.STORAGE_FAILED.value, exc)

    def _expiry(self) -> Optional[int]:
        raw = self._mirror.get(EXPIRY_KEY)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def _identity(self) -> Optional[Dict[str, Any]]:
        raw = self._mirror.get(IDENTITY_KEY)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            return None
        return data if isinstance(data, dict) else None


__all__ = ["CredentialPair", "StoredSession", "TokenStore"]

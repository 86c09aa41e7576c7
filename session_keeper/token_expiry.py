"""Offline expiry checks for compact (JWT-style) access tokens.

Nothing here verifies signatures: the payload segment is only read to find `exp`.
Any decode problem is reported as "expired" so callers fail safe.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from .error_handling import FailureKind


UTC = timezone.utc

DEFAULT_BUFFER_SECONDS = 30

# epoch numbers below this are seconds, above it milliseconds
_EPOCH_MS_THRESHOLD = 10 ** 11

logger = logging.getLogger(__name__)

ExpiresAt = Union[str, int, float, datetime, None]


def now_ms() -> int:
    return int(time.time() * 1000)


def decode_token_payload(token: Optional[str]) -> Optional[Dict[str, Any]]:
    if not token:
        return None
    try:
        parts = token.split(".")
        if len(parts) < 2:
            return None
        payload_b64 = parts[1]
        padding = -len(payload_b64) % 4
        payload_bytes = base64.urlsafe_b64decode(payload_b64 + "=" * padding)
        claims = json.loads(payload_bytes)
    except (binascii.Error, ValueError) as exc:
        logger.debug("token payload not decodable (%s): %s", FailureKind.DECODE_FAILED.value, exc)
        return None
    return claims if isinstance(claims, dict) else None


def _as_ms(value: Any, scale: int = 1000) -> Optional[int]:
    # json.loads accepts Infinity, NaN and 1e308
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        if not math.isfinite(value):
            return None
        return int(value * scale)
    except (OverflowError, ValueError):
        return None


def token_expiry_ms(token: Optional[str]) -> Optional[int]:
    claims = decode_token_payload(token)
    if not claims:
        return None
    return _as_ms(claims.get("exp"))


def is_expired(
    token: Optional[str],
    buffer_seconds: float = DEFAULT_BUFFER_SECONDS,
    now: Optional[float] = None,
) -> bool:
    """True when the token is expired or will expire within `buffer_seconds`.

    `now` is epoch seconds (defaults to the wall clock). Missing, malformed or
    exp-less tokens are reported expired.
    """

    expires_at_ms = token_expiry_ms(token)
    if expires_at_ms is None:
        return True
    return is_expiry_passed(expires_at_ms, buffer_seconds, now)


def is_expiry_passed(
    expires_at_ms: int,
    buffer_seconds: float = DEFAULT_BUFFER_SECONDS,
    now: Optional[float] = None,
) -> bool:
    current = time.time() if now is None else now
    return current >= expires_at_ms / 1000.0 - buffer_seconds


def _absolute_expiry_ms(expires_at: ExpiresAt) -> Optional[int]:
    if expires_at is None or isinstance(expires_at, bool):
        return None
    if isinstance(expires_at, datetime):
        dt = expires_at if expires_at.tzinfo else expires_at.replace(tzinfo=UTC)
        return int(dt.timestamp() * 1000)
    if isinstance(expires_at, (int, float)):
        if not expires_at > 0:
            return None
        return _as_ms(expires_at, 1000 if expires_at < _EPOCH_MS_THRESHOLD else 1)
    if isinstance(expires_at, str) and expires_at.strip():
        try:
            dt = datetime.fromisoformat(expires_at.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return _absolute_expiry_ms(dt)
    return None


def derive_expiry_ms(
    access_token: Optional[str],
    expires_at: ExpiresAt = None,
    expires_in: Optional[float] = None,
    now: Optional[int] = None,
) -> Optional[int]:
    """Resolve the access token expiry in epoch milliseconds.

    Priority: absolute `expires_at`, then `expires_in` seconds from now, then the
    token's own `exp` claim. None means freshness is unknown. `now` is
    epoch milliseconds.
    """

    absolute = _absolute_expiry_ms(expires_at)
    if absolute is not None:
        return absolute

    if expires_in is not None and not isinstance(expires_in, bool):
        try:
            seconds = float(expires_in)
        except (TypeError, ValueError):
            seconds = 0.0
        lifetime_ms = _as_ms(seconds) if seconds > 0 else None
        if lifetime_ms is not None:
            return (now_ms() if now is None else now) + lifetime_ms

    return token_expiry_ms(access_token)


__all__ = [
    "DEFAULT_BUFFER_SECONDS",
    "decode_token_payload",
    "derive_expiry_ms",
    "is_expired",
    "is_expiry_passed",
    "now_ms",
    "token_expiry_ms",
]

"""Authorization failure taxonomy, session exceptions and user-facing error text.

- TRANSIENT: access token merely expired, recovered via refresh.
- TERMINAL: server says the token is invalid/expired in a way refresh cannot fix.
- REFRESH_FAILED: refresh token invalid, expired or missing.
- DECODE_FAILED / STORAGE_FAILED: local problems, never raised past their boundary.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, Optional


UNAUTHORIZED = 401

TERMINAL_MARKERS = ("invalid token", "token expired")

DEFAULT_SESSION_MESSAGE = "Your session has expired. Please log in again."


class FailureKind(str, Enum):
    TRANSIENT = "transient"
    TERMINAL = "terminal"
    REFRESH_FAILED = "refresh_failed"
    DECODE_FAILED = "decode_failed"
    STORAGE_FAILED = "storage_failed"
    NOT_AUTH = "not_auth"


class SessionError(Exception):
    """Base class for session errors, carries a code and the HTTP status if any."""

    def __init__(self, code: str, message: str = "", status: Optional[int] = None) -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code
        self.status = status


class RefreshFailedError(SessionError):
    def __init__(self, message: str = "Token refresh failed", status: Optional[int] = None) -> None:
        super().__init__("ERR_REFRESH_FAILED", message, status)


class SessionInvalidError(SessionError):
    def __init__(self, message: str = DEFAULT_SESSION_MESSAGE, status: Optional[int] = UNAUTHORIZED) -> None:
        super().__init__("ERR_SESSION_INVALID", message, status)


def is_terminal_message(message: Optional[str]) -> bool:
    normalized = (message or "").lower()
    return any(marker in normalized for marker in TERMINAL_MARKERS)


def classify_auth_failure(status: Optional[int], message: Optional[str] = None) -> FailureKind:
    if status != UNAUTHORIZED:
        return FailureKind.NOT_AUTH
    if is_terminal_message(message):
        return FailureKind.TERMINAL
    return FailureKind.TRANSIENT


def is_auth_error_detail(detail: Optional[Mapping[str, Any]]) -> bool:
    """True when an `apiError` payload describes an authorization-class failure."""

    if not detail:
        return False
    if detail.get("status") == UNAUTHORIZED:
        return True
    message = str(detail.get("message") or "")
    return any(marker in message for marker in ("Invalid token", "Token expired", "Unauthorized"))


def extract_message(payload: Any) -> str:
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error") or ""
        return message if isinstance(message, str) else ""
    return ""


_STATUS_MESSAGES = {
    400: "Bad request. Please check your input.",
    401: "Authentication failed. Please log in again.",
    403: "Access denied. You do not have permission.",
    404: "Resource not found.",
    429: "Too many requests. Please try again later.",
    500: "Server error. Please try again later.",
}


def describe_error(status: Optional[int], message: Optional[str] = None) -> str:
    """Human-readable text for an API failure; the server's own message wins."""

    if message:
        return message
    if status is None:
        return "Network error. Please check your connection."
    return _STATUS_MESSAGES.get(status, "An unexpected error occurred.")


__all__ = [
    "DEFAULT_SESSION_MESSAGE",
    "FailureKind",
    "RefreshFailedError",
    "SessionError",
    "SessionInvalidError",
    "UNAUTHORIZED",
    "classify_auth_failure",
    "describe_error",
    "extract_message",
    "is_auth_error_detail",
    "is_terminal_message",
]

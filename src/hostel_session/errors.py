"""
Failure taxonomy and classification for the session layer.

Every failed request ends up as one of four outcomes. Only AUTH_INVALID
clears the session; TRANSIENT failures (network, 5xx) must never log the
user out.
"""

import asyncio
from enum import Enum
from typing import Any, Optional

import aiohttp


LOGIN_PATH = "/auth/login"
LOGOUT_PATH = "/auth/logout"
REFRESH_PATH = "/auth/refresh"
VERIFY_PATH = "/auth/me"

# Endpoints that must never enter the refresh coordinator
SESSION_ENDPOINTS = (LOGIN_PATH, LOGOUT_PATH, REFRESH_PATH, VERIFY_PATH)


class FailureClass(str, Enum):
    """Outcome of classifying a failed request."""
    RETRYABLE = "retryable"
    AUTH_EXPIRED = "auth_expired"
    AUTH_INVALID = "auth_invalid"
    TRANSIENT = "transient"


class SessionError(Exception):
    """Base class for session layer errors."""
    pass


class ApiError(SessionError):
    """Raised when the API answers with a non-2xx status."""

    def __init__(self, status: int, path: str, data: Any = None, message: str = ""):
        self.status = status
        self.path = path
        self.data = data
        super().__init__(message or f"{path} failed with status {status}")


class NetworkError(SessionError):
    """Raised when the request never got an HTTP response."""

    def __init__(self, path: str, message: str = ""):
        self.path = path
        super().__init__(message or f"{path}: network error")


class RenewalError(SessionError):
    """Raised to queued requests when a renewal was abandoned."""
    pass


class RenewalTimeoutError(RenewalError):
    """Raised when the renewal call exceeded the configured timeout."""
    pass


def _strip_query(path: str) -> str:
    return path.split("?", 1)[0].split("#", 1)[0]


def endpoint_matches(path: str, endpoint: str) -> bool:
    """Check whether a request path targets the given endpoint.

    Matching is by fragment so both ``/auth/me`` and ``/api/auth/me`` hit.
    """
    return endpoint in _strip_query(path)


def is_session_endpoint(path: str) -> bool:
    """True for login, logout, refresh and verify calls."""
    return any(endpoint_matches(path, ep) for ep in SESSION_ENDPOINTS)


def failure_status(failure: BaseException) -> Optional[int]:
    """Return the HTTP status carried by a failure, if any."""
    if isinstance(failure, ApiError):
        return failure.status
    if isinstance(failure, aiohttp.ClientResponseError):
        return failure.status
    return None


def _failure_path(failure: BaseException) -> str:
    path = getattr(failure, "path", None)
    if path:
        return path
    if isinstance(failure, aiohttp.ClientResponseError) and failure.request_info:
        return failure.request_info.url.path
    return ""


def classify(failure: BaseException) -> FailureClass:
    """
    Map a failed request to its FailureClass.

    Rules, in priority order:
        1. network failure or 5xx -> TRANSIENT
        2. 401 outside login/logout/verify/refresh -> AUTH_EXPIRED
        3. 400 or 403 from the refresh endpoint -> AUTH_INVALID
        4. 403 from the verify endpoint -> AUTH_INVALID
        5. anything else -> RETRYABLE

    A renewal that timed out counts as AUTH_INVALID; a renewal abandoned for
    any other reason is TRANSIENT.
    """
    if isinstance(failure, RenewalTimeoutError):
        return FailureClass.AUTH_INVALID
    if isinstance(failure, RenewalError):
        return FailureClass.TRANSIENT

    status = failure_status(failure)
    if status is None:
        if isinstance(failure, (NetworkError, aiohttp.ClientError, asyncio.TimeoutError, OSError)):
            return FailureClass.TRANSIENT
        return FailureClass.RETRYABLE

    if status >= 500:
        return FailureClass.TRANSIENT

    path = _failure_path(failure)
    if status == 401 and not is_session_endpoint(path):
        return FailureClass.AUTH_EXPIRED
    if status in (400, 403) and endpoint_matches(path, REFRESH_PATH):
        return FailureClass.AUTH_INVALID
    if status == 403 and endpoint_matches(path, VERIFY_PATH):
        return FailureClass.AUTH_INVALID
    return FailureClass.RETRYABLE

"""
Session authentication and credential renewal for the hostel console.

Keeps a logged-in identity valid across concurrent API calls: renews
short-lived credentials once for any number of failing requests, and only
logs out when the identity provider rejects the session outright.
"""

__version__ = "1.0.0"

from .identity import Identity, Role, LOGIN_ROUTE, HOME_ROUTES
from .errors import (
    FailureClass,
    classify,
    SessionError,
    ApiError,
    NetworkError,
    RenewalError,
    RenewalTimeoutError,
    LOGIN_PATH,
    LOGOUT_PATH,
    REFRESH_PATH,
    VERIFY_PATH,
)
from .store import CredentialStore, JsonFileBackend, STORAGE_KEY
from .policy import DegradedResourcePolicy, DegradedRule, DEFAULT_RULES
from .coordinator import RefreshCoordinator
from .client import ApiClient, ApiResponse
from .config import SessionConfig, get_int_env, DEFAULT_API_URL, RENEW_INTERVAL
from .session import SessionManager, SessionState, Lifecycle

__all__ = [
    "__version__",
    # Identity
    "Identity",
    "Role",
    "LOGIN_ROUTE",
    "HOME_ROUTES",
    # Failure classification
    "FailureClass",
    "classify",
    "SessionError",
    "ApiError",
    "NetworkError",
    "RenewalError",
    "RenewalTimeoutError",
    "LOGIN_PATH",
    "LOGOUT_PATH",
    "REFRESH_PATH",
    "VERIFY_PATH",
    # Persistence
    "CredentialStore",
    "JsonFileBackend",
    "STORAGE_KEY",
    # Degraded resources
    "DegradedResourcePolicy",
    "DegradedRule",
    "DEFAULT_RULES",
    # Renewal and transport
    "RefreshCoordinator",
    "ApiClient",
    "ApiResponse",
    # Configuration
    "SessionConfig",
    "get_int_env",
    "DEFAULT_API_URL",
    "RENEW_INTERVAL",
    # Session management
    "SessionManager",
    "SessionState",
    "Lifecycle",
]

"""
API client for the hostel console backend.

Credentials travel in the aiohttp cookie jar; this layer attaches no auth
headers. A failed request is routed, in order, through:

1. session endpoints (login/logout/refresh/verify): failure returned as-is
2. the degraded-resource policy: 401/403 becomes a neutral success
3. the refresh coordinator: a 401 triggers one shared renewal and one replay
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

import aiohttp

from .config import normalize_api_url
from .connection import create_connector, create_cookie_jar, create_timeout
from .coordinator import RefreshCoordinator
from .errors import (
    ApiError,
    FailureClass,
    NetworkError,
    classify,
    is_session_endpoint,
)
from .policy import DegradedResourcePolicy

logger = logging.getLogger(__name__)

AuthInvalidCallback = Callable[[BaseException], None]


@dataclass
class ApiResponse:
    """A successful (or synthesized) API response."""
    status: int
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    synthetic: bool = False


class ApiClient:
    """Issues console API requests with transparent credential renewal."""

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        policy: Optional[DegradedResourcePolicy] = None,
        coordinator: Optional[RefreshCoordinator] = None,
        on_auth_invalid: Optional[AuthInvalidCallback] = None,
        request_timeout: float = 30,
        cookie_path: Optional[Path] = None,
    ):
        """
        Args:
            base_url: API root, e.g. https://host/api
            session: Existing aiohttp session. If None, one is created on first
                     use and closed by close().
            policy: Degraded-resource rules. Defaults to DEFAULT_RULES.
            coordinator: Renewal coordinator. Without one, 401s are returned
                         to the caller unchanged.
            on_auth_invalid: Called when a renewal fails fatally.
            request_timeout: Per-request timeout in seconds for an owned session.
            cookie_path: Cookie file to load into an owned session's jar.
        """
        self.base_url = normalize_api_url(base_url)
        self.policy = policy or DegradedResourcePolicy()
        self.coordinator = coordinator
        self.on_auth_invalid = on_auth_invalid
        self._session = session
        self._owns_session = session is None
        self._request_timeout = request_timeout
        self._cookie_path = cookie_path

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector=create_connector(),
                timeout=create_timeout(self._request_timeout),
                cookie_jar=create_cookie_jar(self._cookie_path),
            )
            self._owns_session = True
        return self._session

    def url(self, path: str) -> str:
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.base_url}{path}"

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    def save_cookies(self, path: Path) -> None:
        """Persist the cookie jar so the next process keeps the session."""
        if self._session is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        self._session.cookie_jar.save(path)

    def clear_cookies(self) -> None:
        if self._session is not None:
            self._session.cookie_jar.clear()

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def get(self, path: str, params: Optional[dict] = None) -> ApiResponse:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, payload: Any = None) -> ApiResponse:
        return await self.request("POST", path, payload=payload)

    async def put(self, path: str, payload: Any = None) -> ApiResponse:
        return await self.request("PUT", path, payload=payload)

    async def delete(self, path: str) -> ApiResponse:
        return await self.request("DELETE", path)

    async def request(
        self,
        method: str,
        path: str,
        payload: Any = None,
        params: Optional[dict] = None,
    ) -> ApiResponse:
        """
        Issue a request, renewing credentials once on 401.

        Raises:
            ApiError: Non-2xx response that no policy absorbed.
            NetworkError: No response was received.
        """
        try:
            return await self.send(method, path, payload=payload, params=params)
        except ApiError as e:
            return await self._recover(e, method, path, payload, params)

    async def send(
        self,
        method: str,
        path: str,
        payload: Any = None,
        params: Optional[dict] = None,
    ) -> ApiResponse:
        """Issue exactly one request with no failure handling."""
        try:
            async with self.session.request(
                method, self.url(path), json=payload, params=params
            ) as resp:
                data = await _read_body(resp)
                status = resp.status
                headers = dict(resp.headers)
        except aiohttp.ClientError as e:
            raise NetworkError(path, f"{method} {path}: {e}") from e
        except asyncio.TimeoutError as e:
            raise NetworkError(path, f"{method} {path}: timed out") from e

        if status >= 400:
            raise ApiError(status, path, data)
        return ApiResponse(status=status, data=data, headers=headers)

    async def _recover(
        self,
        error: ApiError,
        method: str,
        path: str,
        payload: Any,
        params: Optional[dict],
    ) -> ApiResponse:
        if is_session_endpoint(path):
            raise error

        if self.policy.applies(path, error.status):
            rule = self.policy.match(path)
            logger.warning(f"{method} {path} denied ({error.status}), serving {rule.neutral}")
            return ApiResponse(status=200, data=rule.neutral_value(), synthetic=True)

        if self.coordinator is None or classify(error) is not FailureClass.AUTH_EXPIRED:
            raise error

        # One renewal per request: the replay goes straight to send()
        try:
            return await self.coordinator.run(
                lambda: self.send(method, path, payload=payload, params=params)
            )
        except Exception as e:
            if classify(e) is FailureClass.AUTH_INVALID:
                self._auth_invalid(e)
            raise

    def _auth_invalid(self, error: BaseException) -> None:
        if self.on_auth_invalid is not None:
            self.on_auth_invalid(error)


async def _read_body(resp: aiohttp.ClientResponse) -> Any:
    text = await resp.text()
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text

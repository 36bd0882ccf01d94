"""
Session manager for the hostel console.

Owns the identity lifecycle: hydrate from the credential store on boot,
verify with the identity provider, renew credentials proactively, and log
out (voluntarily or on a fatal authentication failure).
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from .client import ApiClient, ApiResponse
from .config import RENEW_INTERVAL, SessionConfig
from .coordinator import RefreshCoordinator
from .errors import (
    LOGIN_PATH,
    LOGOUT_PATH,
    REFRESH_PATH,
    VERIFY_PATH,
    ApiError,
    FailureClass,
    SessionError,
    classify,
    endpoint_matches,
)
from .identity import LOGIN_ROUTE, Identity, Role
from .policy import DegradedResourcePolicy
from .store import CredentialStore, JsonFileBackend

logger = logging.getLogger(__name__)

Navigator = Callable[[str], None]
IdentityListener = Callable[[Optional[Identity]], None]


class Lifecycle(str, Enum):
    """One-shot initialization of a SessionManager."""
    UNINITIALIZED = "uninitialized"
    HYDRATING = "hydrating"
    READY = "ready"


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    HYDRATING = "hydrating"
    AUTHENTICATED = "authenticated"
    RENEWING = "renewing"
    ANONYMOUS = "anonymous"


class SessionManager:
    """Keeps the console identity valid and decides when to log out."""

    def __init__(
        self,
        client: ApiClient,
        store: Optional[CredentialStore] = None,
        navigate: Optional[Navigator] = None,
        renew_interval: float = RENEW_INTERVAL,
        renewal_timeout: Optional[float] = None,
    ):
        """
        Args:
            client: API client; the manager installs its coordinator and
                    fatal-failure hook on it.
            store: Where the last-known identity is kept. Defaults to memory.
            navigate: Hard navigation to a route (e.g. "/login"). The caller
                      must discard all in-memory state when it is invoked.
            renew_interval: Seconds between proactive renewals.
            renewal_timeout: Upper bound for one renewal call, None for none.
        """
        self.client = client
        self.store = store or CredentialStore()
        self.renew_interval = renew_interval
        self._navigate = navigate
        self.coordinator = RefreshCoordinator(self._renew_credentials, timeout=renewal_timeout)
        client.coordinator = self.coordinator
        client.on_auth_invalid = self._on_auth_invalid

        self.lifecycle = Lifecycle.UNINITIALIZED
        self.state = SessionState.UNINITIALIZED
        self.route: Optional[str] = None
        self._identity: Optional[Identity] = None
        self._listeners: list[IdentityListener] = []
        self._ready = asyncio.Event()
        self._stop_event: Optional[asyncio.Event] = None
        self._renew_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config: SessionConfig, navigate: Optional[Navigator] = None) -> "SessionManager":
        """Build a manager whose identity and cookies live under config.state_dir."""
        if config.degraded_resources is not None:
            policy = DegradedResourcePolicy.from_config(config.degraded_resources)
        else:
            policy = DegradedResourcePolicy()
        client = ApiClient(
            config.api_url,
            policy=policy,
            request_timeout=config.request_timeout,
            cookie_path=config.cookie_path,
        )
        store = CredentialStore(JsonFileBackend(config.identity_path))
        return cls(
            client,
            store,
            navigate=navigate,
            renew_interval=config.renew_interval,
            renewal_timeout=config.renewal_timeout or None,
        )

    # --- Identity exposure ---

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def loading(self) -> bool:
        return self.lifecycle is not Lifecycle.READY

    @property
    def authenticated(self) -> bool:
        return self._identity is not None

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        """Register a callback for identity changes; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_identity(self, identity: Optional[Identity]) -> None:
        if identity == self._identity:
            return
        self._identity = identity
        for listener in list(self._listeners):
            try:
                listener(identity)
            except Exception:
                logger.exception("Identity listener failed")

    # --- Lifecycle ---

    async def boot(self, route: str = "/") -> None:
        """
        Initialize the session once. Later calls are no-ops.

        On the login route nothing is loaded or verified. Otherwise a stored
        identity is adopted immediately and then verified; verification
        errors are logged, never raised.
        """
        if self.lifecycle is not Lifecycle.UNINITIALIZED:
            logger.debug(f"boot() ignored, session is {self.lifecycle.value}")
            return

        self.lifecycle = Lifecycle.HYDRATING
        self.state = SessionState.HYDRATING
        self.route = route
        try:
            if route == LOGIN_ROUTE:
                self._become_anonymous()
                return

            stored = self.store.load()
            if stored is None:
                logger.info("No stored identity, starting anonymous")
                self._become_anonymous()
                return

            logger.info(f"Restored identity {stored.username} ({stored.role.value})")
            self._adopt(stored)
            try:
                await self.verify()
            except SessionError as e:
                logger.warning(f"Session verification failed: {e}")
            except ValueError as e:
                logger.warning(f"Session verification returned a bad identity: {e}")
        finally:
            self.lifecycle = Lifecycle.READY
            self._ready.set()

    async def wait_ready(self) -> None:
        if self.lifecycle is Lifecycle.UNINITIALIZED:
            raise RuntimeError("boot() has not been called")
        await self._ready.wait()

    async def guard(self, required_role: Role) -> Optional[str]:
        """
        Decide whether the current identity may open a role's pages.

        Waits for boot to finish. Returns None when allowed, otherwise the
        route to redirect to.
        """
        await self.wait_ready()
        identity = self._identity
        if identity is None or identity.role is not Role.parse(required_role):
            return LOGIN_ROUTE
        return None

    # --- Identity provider calls ---

    async def login(self, username: str, password: str) -> Identity:
        """
        Log in and adopt the returned identity.

        Raises:
            ApiError / NetworkError: Login was rejected or unreachable.
            ValueError: The server returned a malformed identity.
        """
        response = await self.client.post(LOGIN_PATH, {"username": username, "password": password})
        identity = _identity_from(response)
        self._adopt(identity)
        # Leaving the login surface for the role's landing page
        self.route = identity.home_route
        if self.lifecycle is Lifecycle.UNINITIALIZED:
            self.lifecycle = Lifecycle.READY
            self._ready.set()
        logger.info(f"Logged in as {identity.username} ({identity.role.value})")
        return identity

    async def verify(self) -> Identity:
        """
        Confirm the session with the identity provider.

        A 401 gets one renewal and one retry. A 403, a fatal renewal failure
        or a second 401/403 logs out. Any other failure leaves the session
        untouched and is re-raised.
        """
        try:
            response = await self.client.get(VERIFY_PATH)
        except ApiError as e:
            if e.status == 401:
                return await self._verify_after_renewal()
            if classify(e) is FailureClass.AUTH_INVALID:
                self._on_auth_invalid(e)
            raise
        return self._adopt(_identity_from(response))

    async def _verify_after_renewal(self) -> Identity:
        try:
            response = await self.coordinator.run(lambda: self.client.get(VERIFY_PATH))
        except SessionError as e:
            if _verify_failure_is_fatal(e):
                self._on_auth_invalid(e)
            raise
        return self._adopt(_identity_from(response))

    async def refresh_user(self) -> Optional[Identity]:
        """Re-fetch the identity without ever logging out or raising."""
        try:
            try:
                response = await self.client.get(VERIFY_PATH)
            except ApiError as e:
                if e.status != 401:
                    raise
                response = await self.coordinator.run(lambda: self.client.get(VERIFY_PATH))
            return self._adopt(_identity_from(response))
        except (SessionError, ValueError) as e:
            logger.error(f"Failed to refresh user: {e}")
            return None

    async def renew(self) -> None:
        """Renew credentials now, sharing any renewal already in flight."""
        await self.coordinator.run()

    async def _renew_credentials(self) -> None:
        # Called by the coordinator only; never concurrently
        if self.state is SessionState.AUTHENTICATED:
            self.state = SessionState.RENEWING
        try:
            await self.client.post(REFRESH_PATH, {})
            logger.info("Session credentials renewed")
        finally:
            if self.state is SessionState.RENEWING:
                self.state = SessionState.AUTHENTICATED

    async def logout(self) -> None:
        """Log out. Local state is always cleared, whatever the server says."""
        try:
            await self.client.post(LOGOUT_PATH, {})
        except Exception as e:
            logger.debug(f"Server-side logout failed (ignored): {e}")
        finally:
            who = self._identity.username if self._identity else "anonymous session"
            self._clear_local()
            logger.info(f"Logged out {who}")
            self._go_to_login()

    async def close(self) -> None:
        """Stop background renewal and release the HTTP session."""
        task = self._renew_task
        self._stop_renewal_timer()
        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.client.close()

    # --- State transitions ---

    def _adopt(self, identity: Identity) -> Identity:
        self.store.save(identity)
        self._set_identity(identity)
        if self.state is not SessionState.RENEWING:
            self.state = SessionState.AUTHENTICATED
        self._start_renewal_timer()
        return identity

    def _become_anonymous(self) -> None:
        self._stop_renewal_timer()
        self._set_identity(None)
        self.state = SessionState.ANONYMOUS

    def _clear_local(self) -> None:
        self.store.clear()
        self.client.clear_cookies()
        self._become_anonymous()

    def _on_auth_invalid(self, error: BaseException) -> None:
        """Fatal authentication failure: clear everything and go to login."""
        # Many queued requests may report the same failure; clear only once
        if self._identity is not None or self.state is not SessionState.ANONYMOUS:
            logger.warning(f"Session is no longer valid, logging out: {error}")
            self._clear_local()
        self._go_to_login()

    def _go_to_login(self) -> None:
        if self.route == LOGIN_ROUTE:
            return
        self.route = LOGIN_ROUTE
        if self._navigate is not None:
            self._navigate(LOGIN_ROUTE)

    # --- Proactive renewal ---

    def _start_renewal_timer(self) -> None:
        if self._renew_task is not None and not self._renew_task.done():
            return
        self._stop_event = asyncio.Event()
        self._renew_task = asyncio.create_task(self._renewal_loop(self._stop_event))

    def _stop_renewal_timer(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        task = self._renew_task
        self._renew_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _renewal_loop(self, stop_event: asyncio.Event) -> None:
        """Renew credentials before they expire, best-effort."""
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.renew_interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.coordinator.run()
            except Exception as e:
                # Left for the next request's 401 handling
                logger.debug(f"Proactive renewal failed (will retry on next request): {e}")


def _identity_from(response: ApiResponse) -> Identity:
    data = response.data
    if isinstance(data, dict) and isinstance(data.get("user"), dict):
        data = data["user"]
    return Identity.from_dict(data)


def _verify_failure_is_fatal(error: BaseException) -> bool:
    if classify(error) is FailureClass.AUTH_INVALID:
        return True
    return (
        isinstance(error, ApiError)
        and endpoint_matches(error.path, VERIFY_PATH)
        and error.status in (401, 403)
    )

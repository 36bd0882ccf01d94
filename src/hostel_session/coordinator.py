"""
Single-flight coordination of credential renewal.

When many requests fail with 401 at once, only the first one (the leader)
calls the renewal endpoint. The others park a future on the pending queue
and are released together, in FIFO order, once that renewal settles.

The in-flight flag and the pending queue are only safe on a single event
loop: there is no await between checking and setting the flag. Do not share
a coordinator across threads.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import RenewalError, RenewalTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RenewCallable = Callable[[], Awaitable[None]]


class RefreshCoordinator:
    """Ensures at most one renewal call is in flight at a time."""

    def __init__(self, renew: RenewCallable, timeout: Optional[float] = None):
        """
        Args:
            renew: Coroutine function that performs one renewal call and
                   raises on failure.
            timeout: Upper bound in seconds for a renewal call. None waits
                     forever; a hung renewal then starves every queued request.
        """
        self._renew = renew
        self.timeout = timeout
        self._in_flight = False
        self._pending: list[asyncio.Future] = []
        self.renewals = 0

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def run(self, replay: Optional[Callable[[], Awaitable[T]]] = None) -> Optional[T]:
        """
        Wait for (or perform) one renewal, then replay the request.

        Args:
            replay: Coroutine function re-issuing the failed request. If None,
                    only the renewal is awaited.

        Returns:
            The replayed request's result, or None without a replay.

        Raises:
            The renewal's exception, for the leader and every queued caller.
        """
        if self._in_flight:
            waiter = asyncio.get_running_loop().create_future()
            self._pending.append(waiter)
            logger.debug(f"Renewal in flight, queued request ({len(self._pending)} waiting)")
            await waiter
        else:
            await self._lead()

        if replay is None:
            return None
        return await replay()

    async def _lead(self) -> None:
        self._in_flight = True
        self.renewals += 1
        try:
            try:
                if self.timeout:
                    await self._renew_with_timeout()
                else:
                    await self._renew()
            except RenewalTimeoutError as e:
                logger.warning(str(e))
                self._drain(e)
                raise
            except asyncio.CancelledError:
                self._drain(RenewalError("Renewal was cancelled"))
                raise
            except Exception as e:
                self._drain(e)
                raise
            self._drain(None)
        finally:
            # Nothing may stay parked once the renewal has settled
            if self._pending:
                self._drain(RenewalError("Renewal ended without a result"))
            self._in_flight = False

    async def _renew_with_timeout(self) -> None:
        # Only the deadline set here becomes a RenewalTimeoutError
        renewal = asyncio.ensure_future(self._renew())
        try:
            done, _ = await asyncio.wait({renewal}, timeout=self.timeout)
        except asyncio.CancelledError:
            renewal.cancel()
            raise
        if not done:
            renewal.cancel()
            try:
                await renewal
            except asyncio.CancelledError:
                pass
            raise RenewalTimeoutError(f"Renewal timed out after {self.timeout}s")
        renewal.result()

    def _drain(self, error: Optional[BaseException]) -> None:
        """Release every queued caller, in enqueue order, exactly once."""
        waiters, self._pending = self._pending, []
        if waiters:
            outcome = "failure" if error else "success"
            logger.debug(f"Releasing {len(waiters)} queued request(s) with {outcome}")
        for waiter in waiters:
            if waiter.done():
                # Caller went away while waiting
                continue
            if error is None:
                waiter.set_result(None)
            else:
                waiter.set_exception(error)

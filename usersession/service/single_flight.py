from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from usersession.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


class SingleFlight(Generic[T]):
    """At most one pending operation; concurrent callers share its outcome.

    The first caller starts ``operation`` as a task. Callers arriving while it
    runs attach to the same future instead of starting a second one, and all
    of them receive the identical result object or exception. The pending
    marker is cleared inside the task, after the operation has finished and
    before any waiter resumes, so a caller that observes "not in flight" also
    observes everything the operation wrote.

    Waiters await through ``asyncio.shield``: cancelling one waiter detaches
    it without cancelling the shared operation. Cancelling the operation
    itself cancels every waiter.
    """

    def __init__(self, name: str = "single_flight") -> None:
        self.name = name
        self._future: Optional[asyncio.Future[T]] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._waiters = 0

    @property
    def in_flight(self) -> bool:
        return self._future is not None

    @property
    def waiters(self) -> int:
        """Number of callers currently attached to the pending operation."""
        return self._waiters

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        future = self._future
        if future is None:
            loop = asyncio.get_running_loop()
            future = loop.create_future()
            future.add_done_callback(_consume_exception)
            self._future = future
            task = loop.create_task(self._drive(operation, future))
            task.add_done_callback(lambda t: self._settle_abandoned(future))
            self._task = task
            logger.debug("single_flight_started", name=self.name)
        else:
            logger.debug("single_flight_joined", name=self.name, waiters=self._waiters + 1)

        self._waiters += 1
        try:
            return await asyncio.shield(future)
        finally:
            self._waiters -= 1

    async def _drive(self, operation: Callable[[], Awaitable[T]], future: asyncio.Future[T]) -> None:
        try:
            result = await operation()
        except Exception as exc:
            self._release(future)
            future.set_exception(exc)
            logger.debug("single_flight_failed", name=self.name, error_type=type(exc).__name__)
        except BaseException:
            self._release(future)
            future.cancel()
            raise
        else:
            self._release(future)
            future.set_result(result)
            logger.debug("single_flight_completed", name=self.name)

    def _release(self, future: asyncio.Future[T]) -> None:
        if self._future is future:
            self._future = None
            self._task = None

    def _settle_abandoned(self, future: asyncio.Future[T]) -> None:
        # A task cancelled before its first step never runs _drive
        if not future.done():
            self._release(future)
            future.cancel()

    def cancel(self) -> bool:
        """Cancel the pending operation, if any; every waiter is cancelled."""
        task = self._task
        if task is None or task.done():
            return False
        return task.cancel()


def _consume_exception(future: asyncio.Future) -> None:
    # Mark the exception retrieved when every waiter detached before it landed
    if not future.cancelled():
        future.exception()


__all__ = ["SingleFlight"]

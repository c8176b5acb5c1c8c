"""
Rate-Limited Call Gateway — Global Pacing of Ledger Calls.

Every layer that talks to the ledger submits its calls here, so the RPC
provider's ceiling holds for the whole process, not per caller.

INVARIANTS:
- Calls are issued strictly in submission order (FIFO)
- At most `calls_per_second` calls are issued in any rolling 1-second window
- Consecutive calls are at least 1/calls_per_second seconds apart
- A failing unit of work fails only its own caller; the queue keeps going

MODEL:
Each submission is a WorkItem carrying its own future. A single dispatcher
task drains the queue, waits for a free slot, then starts the unit as its own
task. Issued units run concurrently; only their start is paced.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

WINDOW_SECONDS = 1.0

# Pause between sub-batches in execute_batch
DEFAULT_BATCH_PAUSE_SECONDS = 0.01


class _Missing(Enum):
    MISSING = "missing"

    def __repr__(self) -> str:
        return "MISSING"


# Placeholder for a failed unit in execute_batch results
MISSING = _Missing.MISSING

UnitOfWork = Callable[[], Awaitable[T]]


@dataclass
class WorkItem(Generic[T]):
    """A queued unit of work and the future its caller is waiting on."""

    unit: UnitOfWork[T]
    future: asyncio.Future[T]


class RateLimitedGateway:
    """
    FIFO dispatcher that paces outbound calls against a calls/second ceiling.

    `clock` and `sleep` are injectable so tests can run the pacing logic
    against a fake monotonic clock.
    """

    def __init__(
        self,
        calls_per_second: int = 200,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        batch_pause: float = DEFAULT_BATCH_PAUSE_SECONDS,
    ):
        if calls_per_second <= 0:
            raise ValueError("calls_per_second must be positive")
        self.calls_per_second = calls_per_second
        self.min_interval = WINDOW_SECONDS / calls_per_second
        self.batch_pause = batch_pause
        self._clock = clock
        self._sleep = sleep

        self._queue: asyncio.Queue[WorkItem[Any]] | None = None
        self._dispatcher: asyncio.Task[None] | None = None
        self._running: set[asyncio.Task[None]] = set()

        self._window_start = clock()
        self._window_count = 0
        self._last_issued: float | None = None
        self.issued_count = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def execute(self, unit: UnitOfWork[T], timeout: float | None = None) -> T:
        """
        Run one unit of work once the rate limit allows it.

        Args:
            unit: Zero-argument callable returning an awaitable
            timeout: Optional caller-side limit covering queueing and execution

        Returns:
            Whatever the unit returns

        Raises:
            Whatever the unit raises; asyncio.TimeoutError on timeout
        """
        queue = self._ensure_dispatcher()
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        queue.put_nowait(WorkItem(unit, future))
        if timeout is None:
            return await future
        return await asyncio.wait_for(future, timeout)

    async def execute_batch(
        self,
        units: Sequence[UnitOfWork[T]],
        batch_size: int = 10,
    ) -> list[T | _Missing]:
        """
        Run many units in sub-batches, never failing as a whole.

        Returns:
            One entry per unit, in input order; MISSING where the unit failed
        """
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        results: list[T | _Missing] = []
        failures = 0
        for start in range(0, len(units), batch_size):
            batch = units[start : start + batch_size]
            outcomes = await asyncio.gather(
                *(self.execute(unit) for unit in batch),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    failures += 1
                    results.append(MISSING)
                else:
                    results.append(outcome)

            if start + batch_size < len(units):
                await self._sleep(self.batch_pause)

        if failures:
            logger.debug(
                "GATEWAY_BATCH_PARTIAL_FAILURE",
                extra={"units": len(units), "failures": failures},
            )
        return results

    async def aclose(self) -> None:
        """Stop the dispatcher and cancel queued and running work."""
        tasks = list(self._running)
        if self._dispatcher is not None:
            tasks.append(self._dispatcher)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._queue is not None:
            while not self._queue.empty():
                item = self._queue.get_nowait()
                item.future.cancel()
        self._dispatcher = None
        self._queue = None

    # -------------------------------------------------------------------------
    # Dispatcher
    # -------------------------------------------------------------------------

    def _ensure_dispatcher(self) -> "asyncio.Queue[WorkItem[Any]]":
        loop = asyncio.get_running_loop()
        dispatcher = self._dispatcher
        if dispatcher is None or dispatcher.done() or dispatcher.get_loop() is not loop:
            # A dispatcher bound to another (finished) event loop cannot be reused
            if dispatcher is None or dispatcher.get_loop() is not loop:
                self._queue = asyncio.Queue()
            self._dispatcher = loop.create_task(self._dispatch())
        assert self._queue is not None
        return self._queue

    async def _dispatch(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            item = await queue.get()
            if item.future.done():
                # Caller timed out or was cancelled while queued
                continue
            await self._wait_for_slot()
            if item.future.done():
                continue
            self._issue(item)

    async def _wait_for_slot(self) -> None:
        now = self._clock()
        if now - self._window_start >= WINDOW_SECONDS:
            self._window_start = now
            self._window_count = 0

        if self._window_count >= self.calls_per_second:
            wait = WINDOW_SECONDS - (now - self._window_start)
            logger.debug(
                "RATE_LIMIT_WINDOW_FULL",
                extra={"wait_seconds": round(wait, 4), "limit": self.calls_per_second},
            )
            if wait > 0:
                await self._sleep(wait)
            now = self._clock()
            self._window_start = now
            self._window_count = 0

        if self._last_issued is not None:
            since_last = now - self._last_issued
            if since_last < self.min_interval:
                await self._sleep(self.min_interval - since_last)

    def _issue(self, item: WorkItem[Any]) -> None:
        self._last_issued = self._clock()
        self._window_count += 1
        self.issued_count += 1
        task = asyncio.get_running_loop().create_task(self._run(item))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    @staticmethod
    async def _run(item: WorkItem[Any]) -> None:
        try:
            result = await item.unit()
        except asyncio.CancelledError:
            item.future.cancel()
            raise
        except Exception as e:
            if not item.future.done():
                item.future.set_exception(e)
        else:
            if not item.future.done():
                item.future.set_result(result)

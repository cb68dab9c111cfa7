"""
Refresh Scheduler - the heartbeat of a tracking session.

Drives periodic, cancellable refresh cycles on a fixed cadence.

States:
  IDLE → SCHEDULED(interval) → IDLE (on stop)

At most one cycle is in flight at any time. A tick or run_now() that
arrives while a cycle is running is coalesced, never overlapped, so two
cycles can never race their writes into the History Store.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from trackfence.models.config import SchedulerState

logger = logging.getLogger(__name__)

CycleFunction = Callable[[], Awaitable[Any]]


class RefreshScheduler:
    """
    Runs `cycle` immediately on start, then once per interval until stopped.

    Missed ticks (a cycle that outlasts the interval) are skipped rather than
    queued. An exception escaping a cycle is logged and the cadence continues;
    the next cycle starts from a clean error state.
    """

    def __init__(self, cycle: CycleFunction, interval_seconds: float = 5.0):
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self._cycle = cycle
        self.interval_seconds = float(interval_seconds)

        self._driver: Optional[asyncio.Task] = None
        self._in_flight: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

        self.cycles_run = 0
        self.coalesced_ticks = 0
        self.last_result: Any = None
        self.last_error: Optional[str] = None

    @property
    def state(self) -> SchedulerState:
        if self._driver is not None and not self._driver.done():
            return SchedulerState.SCHEDULED
        return SchedulerState.IDLE

    @property
    def cycle_in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    def start(self, interval_seconds: Optional[float] = None) -> None:
        """Begin the periodic cadence. Must be called from a running event loop."""
        if interval_seconds is not None:
            if interval_seconds <= 0:
                raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
            self.interval_seconds = float(interval_seconds)

        if self.state is SchedulerState.SCHEDULED:
            return

        loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._driver = loop.create_task(self._drive(self._stop_event))
        logger.info("Refresh scheduler started (every %.1fs)", self.interval_seconds)

    async def stop(self) -> None:
        """
        Cancel the cadence and any in-flight cycle, and wait for both to end.

        A cancelled cycle publishes nothing. Stopping an idle scheduler is a no-op.
        """
        driver, self._driver = self._driver, None
        in_flight = self._in_flight
        if self._stop_event is not None:
            self._stop_event.set()

        pending = [t for t in (driver, in_flight) if t is not None and not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        if driver is not None:
            logger.info("Refresh scheduler stopped after %d cycles", self.cycles_run)

    async def reschedule(self, interval_seconds: float) -> None:
        """Change the interval. A running cadence restarts with a fresh cycle."""
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        was_running = self.state is SchedulerState.SCHEDULED
        if was_running:
            await self.stop()
        self.interval_seconds = float(interval_seconds)
        if was_running:
            self.start()

    async def run_now(self) -> bool:
        """
        Run one cycle immediately without moving the next scheduled tick.

        Returns False if a cycle was already in flight (coalesced) or the
        cycle did not complete, True once it completed.
        """
        if self.cycle_in_flight:
            logger.debug("Manual refresh coalesced with the cycle in flight")
            return False
        return await self._execute()

    async def _drive(self, stop_event: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()

        while not stop_event.is_set():
            if self.cycle_in_flight:
                self.coalesced_ticks += 1
                logger.debug("Tick coalesced with the cycle in flight")
            else:
                await self._execute()

            next_tick += self.interval_seconds
            now = loop.time()
            if next_tick <= now:
                missed = int((now - next_tick) // self.interval_seconds) + 1
                self.coalesced_ticks += missed
                next_tick += missed * self.interval_seconds

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=next_tick - now)
            except asyncio.TimeoutError:
                continue

    async def _execute(self) -> bool:
        task = asyncio.get_running_loop().create_task(self._cycle())
        self._in_flight = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self._in_flight is task:
                self._in_flight = None

        if task.cancelled():
            return False

        error = task.exception()
        if error is not None:
            self.last_error = f"{type(error).__name__}: {error}"
            logger.error("Refresh cycle failed: %s", self.last_error, exc_info=error)
            return False

        self.last_result = task.result()
        self.last_error = None
        self.cycles_run += 1
        return True

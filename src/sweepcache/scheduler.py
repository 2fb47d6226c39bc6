"""
Background sweep scheduler.

Runs the eviction engine on a fixed interval inside an asyncio task. The
scheduler moves through IDLE -> RUNNING -> STOPPED exactly once; every
transition happens under a single mutex, so stop() can be called from any
thread, any number of times.

Each tick waits on the stop event with the interval as timeout: whichever
fires first wins. Eviction runs in a worker thread and is always awaited
to completion, so a pass that has started finishes (and releases its
locks) before the stop signal is looked at again.
"""

from __future__ import annotations

import asyncio
import threading
from types import TracebackType

from sweepcache.eviction import EvictionEngine
from sweepcache.exceptions import ConfigurationError, SchedulerStateError, SweepCancelledError
from sweepcache.logging import get_logger
from sweepcache.types import SchedulerState, SweepReport

logger = get_logger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60


class SweepScheduler:
    """Periodic driver for an EvictionEngine."""

    def __init__(
        self,
        engine: EvictionEngine,
        interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        if interval <= 0:
            raise ConfigurationError("interval must be positive", {"interval": interval})

        self.engine = engine
        self.interval = float(interval)

        self._state = SchedulerState.IDLE
        self._state_lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

        self.passes = 0
        self.failures = 0
        self.last_report: SweepReport | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    def start(self) -> None:
        """Start sweeping in the background.

        Must be called from a coroutine or callback running on the event
        loop that will host the sweep task.

        Raises:
            RuntimeError: If no event loop is running.
            SchedulerStateError: If the scheduler has already been stopped.
        """
        loop = asyncio.get_running_loop()

        with self._state_lock:
            if self._state is SchedulerState.RUNNING:
                logger.warning("Cache sweep already running, ignoring start")
                return
            if self._state is SchedulerState.STOPPED:
                raise SchedulerStateError(
                    "A stopped scheduler cannot be restarted", {"state": self._state.value}
                )
            self._loop = loop
            self._stop_event = asyncio.Event()
            self._task = loop.create_task(self._run_loop(self._stop_event), name="sweepcache-sweep")
            self._state = SchedulerState.RUNNING

        logger.info("Started cache sweep", interval_seconds=self.interval)

    def stop(self) -> bool:
        """Signal the background task to finish.

        A pass already in progress runs to completion; no new pass starts.
        Calling stop() on an idle or already stopped scheduler does nothing.

        Returns:
            True if this call moved the scheduler to STOPPED.
        """
        with self._state_lock:
            if self._state is not SchedulerState.RUNNING:
                return False
            self._state = SchedulerState.STOPPED
            loop = self._loop
            stop_event = self._stop_event

        # Both are set in the same critical section that entered RUNNING
        if loop is not None and stop_event is not None and not loop.is_closed():
            loop.call_soon_threadsafe(stop_event.set)
        logger.info("Stopping cache sweep")
        return True

    async def wait_closed(self) -> None:
        """Wait for the background task to exit after stop()."""
        if self._task is not None:
            await self._task

    async def run_once(self) -> SweepReport:
        """Run one eviction pass now, outside the regular schedule.

        Errors propagate to the caller, unlike scheduled passes.

        Raises:
            SweepCancelledError: If the scheduler has been stopped.
        """
        if self._state is SchedulerState.STOPPED:
            raise SweepCancelledError("Sweep scheduler has been stopped")

        report = await asyncio.to_thread(self.engine.run)
        self.passes += 1
        self.last_report = report
        return report

    def _stopping(self, stop_event: asyncio.Event) -> bool:
        return stop_event.is_set() or self._state is SchedulerState.STOPPED

    async def _run_loop(self, stop_event: asyncio.Event) -> None:
        while not self._stopping(stop_event):
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

            if self._stopping(stop_event):
                break

            await self._sweep()

        logger.info("Cache sweep stopped", passes=self.passes, failures=self.failures)

    async def _sweep(self) -> None:
        try:
            report = await asyncio.to_thread(self.engine.run)
        except Exception as exc:
            self.failures += 1
            logger.warning("Failed to clean cached files", error=str(exc))
            return

        self.passes += 1
        self.last_report = report

    async def __aenter__(self) -> SweepScheduler:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.stop()
        await self.wait_closed()

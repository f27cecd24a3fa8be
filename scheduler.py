#!/usr/bin/env python3
"""
Interval scheduler for periodic feed update passes.

A `FeedScheduler` owns one repeating asyncio task (the timer). Every tick
launches one update pass as its own task, so stopping the timer never
interrupts a pass that is already running. Ticks that arrive while the
previous pass is still in flight are skipped.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from config import get_logger
from telemetry import trace_span

# Module-specific logger
logger = get_logger("scheduler")

RunPass = Callable[[], Awaitable[Any]]


class FeedScheduler:
    """Run an update pass every `interval_seconds` until stopped."""

    def __init__(self, run_pass: RunPass):
        """Initialize scheduler.

        Args:
            run_pass: Coroutine function performing one update pass.
        """
        self.run_pass = run_pass
        self.interval_seconds: Optional[float] = None
        self.started_at: Optional[datetime] = None
        self.last_run_at: Optional[datetime] = None
        self.skipped_ticks = 0
        self._timer: Optional[asyncio.Task] = None
        self._current_pass: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def pass_in_flight(self) -> bool:
        return self._current_pass is not None and not self._current_pass.done()

    def start(self, interval_seconds: float, run_immediately: bool = False) -> bool:
        """Start the timer. Returns False (and changes nothing) if already running."""
        if self.is_running:
            logger.warning("Scheduled updates are already running. Ignoring start request.")
            return False
        if interval_seconds <= 0:
            raise ValueError(f"Update interval must be positive, got {interval_seconds}")

        self.interval_seconds = interval_seconds
        self.started_at = datetime.now(timezone.utc)
        self.skipped_ticks = 0
        self._timer = asyncio.create_task(self._loop(run_immediately))
        logger.info(f"Scheduled updates started, every {interval_seconds / 60:.1f} minutes")
        return True

    def stop(self) -> bool:
        """Cancel the timer. A pass already running is left to finish."""
        if self._timer is None:
            return False

        if not self._timer.done():
            self._timer.cancel()
        self._timer = None
        self.interval_seconds = None
        self.started_at = None
        logger.info("Scheduled updates stopped")
        return True

    async def wait_idle(self) -> None:
        """Wait for the in-flight pass, if any, to finish."""
        current = self._current_pass
        if current is not None and not current.done():
            await asyncio.wait({current})

    def get_status(self) -> Dict[str, Any]:
        return {
            'running': self.is_running,
            'interval_seconds': self.interval_seconds,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'last_run_at': self.last_run_at.isoformat() if self.last_run_at else None,
            'pass_in_flight': self.pass_in_flight,
            'skipped_ticks': self.skipped_ticks,
        }

    async def _loop(self, run_immediately: bool) -> None:
        try:
            if run_immediately:
                self._tick()
            while True:
                await asyncio.sleep(self.interval_seconds)
                self._tick()
        except asyncio.CancelledError:
            logger.debug("Scheduler timer cancelled")

    def _tick(self) -> None:
        if self.pass_in_flight:
            self.skipped_ticks += 1
            logger.warning("Previous update pass still running. Skipping this scheduled run.")
            return
        self.last_run_at = datetime.now(timezone.utc)
        self._current_pass = asyncio.create_task(self._run_pass_with_span())

    @trace_span("scheduler.pass_run", tracer_name="scheduler")
    async def _run_pass_with_span(self) -> None:
        started = datetime.now(timezone.utc)
        try:
            await self.run_pass()
        except Exception as e:
            logger.error(f"Error in scheduled update pass: {e}")
            return
        duration = (datetime.now(timezone.utc) - started).total_seconds()
        logger.info(f"Scheduled update pass completed in {duration:.1f}s")

"""
Retention Scheduler for Taweret.

This module triggers evaluation cycles on wall-clock boundaries of a fixed
interval (every 10 minutes by default) and guarantees that two cycles never
overlap.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional

from .retention_manager import RetentionManager, ScheduleEvaluation


@dataclass
class SchedulerStatus:
    """Status information for the scheduler."""
    running: bool
    cycle_in_progress: bool
    last_evaluation: Optional[datetime]
    next_evaluation: Optional[datetime]
    total_cycles: int
    successful_cycles: int
    failed_cycles: int
    skipped_cycles: int
    last_error: Optional[str]
    uptime_seconds: float


def next_boundary(now: datetime, interval_minutes: int) -> datetime:
    """First instant after `now` on the interval grid counted from midnight."""
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    elapsed_minutes = int((now - midnight).total_seconds() // 60)
    next_slot = (elapsed_minutes // interval_minutes + 1) * interval_minutes
    return midnight + timedelta(minutes=next_slot)


class RetentionScheduler:
    """
    Automated scheduler for retention evaluation cycles.

    Features:
    - Cron-style triggering on interval boundaries
    - Mutual exclusion between cycles
    - Cycle statistics for health reporting
    """

    def __init__(self, manager: RetentionManager,
                 interval_minutes: int = 10,
                 evaluate_on_start: bool = False,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.manager = manager
        self.interval_minutes = interval_minutes
        self.evaluate_on_start = evaluate_on_start
        self.logger = logging.getLogger(__name__)
        self._sleep = sleep
        self._clock = clock

        # Scheduler state
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._cycle_lock = asyncio.Lock()
        self._start_time: Optional[datetime] = None
        self._last_evaluation: Optional[datetime] = None
        self._next_evaluation: Optional[datetime] = None
        self._total_cycles = 0
        self._successful_cycles = 0
        self._failed_cycles = 0
        self._skipped_cycles = 0
        self._last_error: Optional[str] = None

    async def start(self):
        """Start the retention scheduler."""
        if self._running:
            self.logger.warning("Retention scheduler is already running")
            return

        self._running = True
        self._start_time = self._clock()
        self._task = asyncio.create_task(self._scheduler_loop())

        self.logger.info(f"Retention scheduler started (interval: {self.interval_minutes} minutes)")

    async def stop(self):
        """Stop the retention scheduler."""
        if not self._running:
            return

        self.logger.info("Stopping retention scheduler...")

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        self.logger.info("Retention scheduler stopped")

    async def wait(self):
        """Block until the scheduler loop ends."""
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def _scheduler_loop(self):
        """Main scheduler loop."""
        if self.evaluate_on_start:
            await self.run_once()

        while self._running:
            now = self._clock()
            self._next_evaluation = next_boundary(now, self.interval_minutes)
            self.logger.info(f"Next evaluation scheduled: {self._next_evaluation.isoformat()}")

            try:
                await self._sleep((self._next_evaluation - now).total_seconds())
                await self.run_once()
            except asyncio.CancelledError:
                break

    async def run_once(self) -> Optional[List[ScheduleEvaluation]]:
        """
        Run one evaluation cycle.

        Returns:
            Per-schedule results, or None if the cycle was skipped or failed
        """
        if self._cycle_lock.locked():
            self._skipped_cycles += 1
            self.logger.warning("Evaluation cycle still in progress, skipping trigger")
            return None

        async with self._cycle_lock:
            cycle_start = self._clock()
            self._total_cycles += 1

            try:
                results = await self.manager.run_evaluation()
            except Exception as e:
                self._failed_cycles += 1
                self._last_error = str(e)
                self.logger.error(f"Evaluation cycle failed: {e}")
                return None

            failed = [r.schedule_name for r in results if r.status == 'failed']
            if failed:
                self._failed_cycles += 1
                self._last_error = f"{len(failed)} schedules failed: {', '.join(failed)}"
            else:
                self._successful_cycles += 1
                self._last_error = None

            self._last_evaluation = cycle_start
            return results

    def get_status(self) -> SchedulerStatus:
        """Get current scheduler status."""
        uptime = 0.0
        if self._start_time:
            uptime = (self._clock() - self._start_time).total_seconds()

        return SchedulerStatus(
            running=self._running,
            cycle_in_progress=self._cycle_lock.locked(),
            last_evaluation=self._last_evaluation,
            next_evaluation=self._next_evaluation if self._running else None,
            total_cycles=self._total_cycles,
            successful_cycles=self._successful_cycles,
            failed_cycles=self._failed_cycles,
            skipped_cycles=self._skipped_cycles,
            last_error=self._last_error,
            uptime_seconds=uptime
        )


def create_retention_scheduler(manager: RetentionManager,
                               interval_minutes: int = 10,
                               evaluate_on_start: bool = False) -> RetentionScheduler:
    """Create a new retention scheduler instance."""
    return RetentionScheduler(manager, interval_minutes, evaluate_on_start)

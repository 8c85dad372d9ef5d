"""
Expiry sweeper for the Scholarship Pipeline.

Removes scholarships whose deadline has passed. The scheduler module runs
a sweep once when the service starts, then every day at a fixed local
time of day. A tick that fires while a sweep is still running (scheduled
or started by the cleanup command) is skipped, not queued.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from apscheduler.triggers.cron import CronTrigger

from scholarship_pipeline.catalog import CatalogStore, ScholarshipRecord
from scholarship_pipeline.utils import get_logger


# Module logger
logger = get_logger("sweeper")


@dataclass
class SweepResult:
    """Outcome of one sweep."""
    started_at: datetime
    removed_count: int = 0
    removed: List[ScholarshipRecord] = field(default_factory=list)


@dataclass
class SweepState:
    """
    Process-lifetime state of the sweeper.

    Attributes:
        in_progress: True while a sweep is running.
        last_run: Start time of the last completed sweep.
        last_result: Result of the last completed sweep.
        skipped_ticks: Ticks dropped because a sweep was still running.
    """
    in_progress: bool = False
    last_run: Optional[datetime] = None
    last_result: Optional[SweepResult] = None
    skipped_ticks: int = 0


class ExpirySweeper:
    """Removal of expired catalog records, guarded against overlapping sweeps."""

    def __init__(
        self,
        catalog: CatalogStore,
        hour: int = 2,
        minute: int = 0,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.catalog = catalog
        self.hour = hour
        self.minute = minute
        self.clock = clock
        self.state = SweepState()
        self._lock = threading.Lock()

    def trigger(self) -> CronTrigger:
        """Daily trigger at the configured local time of day."""
        return CronTrigger(hour=self.hour, minute=self.minute)

    def run_once(self, now: Optional[datetime] = None) -> Optional[SweepResult]:
        """
        Run one sweep unless one is already running.

        Args:
            now: Reference time, defaults to the sweeper's clock.

        Returns:
            SweepResult, or None if the tick was skipped.

        Raises:
            StorageError: If the catalog cannot be reached.
        """
        with self._lock:
            if self.state.in_progress:
                self.state.skipped_ticks += 1
                logger.info("Expiry sweep already running, skipping this tick")
                return None
            self.state.in_progress = True

        started_at = now or self.clock()
        try:
            logger.info(f"Starting expiry sweep at {started_at:%Y-%m-%d %H:%M}")
            removal = self.catalog.remove_expired(now=started_at)
            result = SweepResult(
                started_at=started_at,
                removed_count=removal.removed_count,
                removed=removal.removed
            )
            self.state.last_run = started_at
            self.state.last_result = result
            return result
        finally:
            with self._lock:
                self.state.in_progress = False

    def tick(self) -> None:
        """Scheduled entry point: one sweep, with failures logged."""
        try:
            self.run_once()
        except Exception as e:
            # A failed sweep must not end the schedule
            logger.error(f"Expiry sweep failed: {e}")

"""
Background scheduling for the Scholarship Pipeline.

One APScheduler BackgroundScheduler runs two jobs:
- The expiry sweep: once at start-up, then daily at the configured time
- Scheduled batches (optional): up to batch_size unprocessed links at a
  chosen frequency, started, stopped and inspected by operator commands

Each job runs at most one instance at a time. A scheduled batch that
fires while another batch (scheduled or manual) is running is skipped.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from scholarship_pipeline.batch import BatchInProgressError, BatchOrchestrator, BatchRun
from scholarship_pipeline.sweeper import ExpirySweeper
from scholarship_pipeline.utils import get_logger


# Module logger
logger = get_logger("scheduler")

SWEEP_JOB_ID = "expiry_sweep"
BATCH_JOB_ID = "scheduled_batch"

# Frequency name -> (cron fields, description)
BATCH_FREQUENCIES: Dict[str, Tuple[Dict[str, object], str]] = {
    "hourly": ({"minute": 0}, "every hour"),
    "6_hourly": ({"hour": "*/6", "minute": 0}, "every 6 hours"),
    "daily_9am": ({"hour": 9, "minute": 0}, "daily at 9 AM"),
    "daily_6pm": ({"hour": 18, "minute": 0}, "daily at 6 PM"),
}

JOB_DEFAULTS = {
    "coalesce": True,  # Run a backlog of missed ticks once
    "max_instances": 1,
    "misfire_grace_time": 600,
}


def get_batch_schedule(frequency: str) -> Tuple[CronTrigger, str]:
    """
    Get the cron trigger for a batch frequency name.

    Supported frequencies: hourly, 6_hourly, daily_9am, daily_6pm.

    Raises:
        ValueError: If the frequency is unknown.
    """
    key = (frequency or "").lower().strip()
    if key not in BATCH_FREQUENCIES:
        choices = ", ".join(BATCH_FREQUENCIES)
        raise ValueError(f"Unknown batch frequency {frequency!r}, choose one of: {choices}")

    fields, description = BATCH_FREQUENCIES[key]
    return CronTrigger(**fields), description


@dataclass
class BatchScheduleState:
    """
    State of the scheduled batch job.

    Attributes:
        frequency: Frequency name the schedule was started with.
        description: Human-readable frequency.
        batch_size: Links processed per run.
        runs: Completed scheduled batches.
        skipped_ticks: Ticks dropped because a batch was already running.
        last_run: Result of the last completed scheduled batch.
    """
    frequency: str
    description: str
    batch_size: int
    runs: int = 0
    skipped_ticks: int = 0
    last_run: Optional[BatchRun] = None


class PipelineScheduler:
    """Owns the background scheduler for sweeps and scheduled batches."""

    def __init__(
        self,
        sweeper: ExpirySweeper,
        orchestrator: BatchOrchestrator,
        scheduler: Optional[BackgroundScheduler] = None
    ):
        self.sweeper = sweeper
        self.orchestrator = orchestrator
        self.scheduler = scheduler or BackgroundScheduler(job_defaults=JOB_DEFAULTS)
        self.batch_state: Optional[BatchScheduleState] = None

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    def start(self) -> None:
        """Start the scheduler with the expiry sweep: now, then daily."""
        self.scheduler.add_job(
            self.sweeper.tick,
            trigger=self.sweeper.trigger(),
            id=SWEEP_JOB_ID,
            name="Expiry sweep",
            next_run_time=datetime.now(),  # Sweep once at start-up
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(
            f"Scheduler started, expiry sweep daily at "
            f"{self.sweeper.hour:02d}:{self.sweeper.minute:02d}"
        )

        for job in self.scheduler.get_jobs():
            logger.info(f"Scheduled job: {job.id} - next run: {job.next_run_time}")

    def shutdown(self) -> None:
        """Stop the scheduler without waiting for running jobs."""
        if self.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler shutdown complete")

    def start_batches(self, frequency: str, batch_size: int) -> BatchScheduleState:
        """
        Schedule batch processing, replacing any existing batch schedule.

        Args:
            frequency: Frequency name (see BATCH_FREQUENCIES).
            batch_size: Links per run, already validated by the caller.

        Raises:
            ValueError: If the frequency is unknown.
        """
        trigger, description = get_batch_schedule(frequency)

        self.scheduler.add_job(
            self._run_batch,
            trigger=trigger,
            id=BATCH_JOB_ID,
            name=f"Scheduled batch ({description})",
            replace_existing=True,
        )
        self.batch_state = BatchScheduleState(
            frequency=frequency.lower().strip(),
            description=description,
            batch_size=batch_size,
        )
        logger.info(f"Scheduled batches of up to {batch_size} link(s) {description}")
        return self.batch_state

    def stop_batches(self) -> bool:
        """Remove the batch schedule; False if none was active."""
        if self.batch_state is None:
            return False
        if self.scheduler.get_job(BATCH_JOB_ID) is not None:
            self.scheduler.remove_job(BATCH_JOB_ID)
        self.batch_state = None
        logger.info("Scheduled batches stopped")
        return True

    def next_batch_time(self) -> Optional[datetime]:
        job = self.scheduler.get_job(BATCH_JOB_ID)
        return getattr(job, "next_run_time", None) if job is not None else None

    def _run_batch(self) -> Optional[BatchRun]:
        state = self.batch_state
        if state is None:
            return None

        try:
            run = self.orchestrator.process_batch(state.batch_size)
        except BatchInProgressError:
            state.skipped_ticks += 1
            logger.info("A batch is already running, skipping this scheduled batch")
            return None
        except Exception as e:
            # A failed batch must not end the schedule
            logger.error(f"Scheduled batch failed: {e}")
            return None

        state.runs += 1
        state.last_run = run
        return run

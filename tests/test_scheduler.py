"""
Tests for the scheduler module.

Tests cover:
- Batch frequency names and their cron triggers
- Registering the expiry sweep with a start-up run
- Starting, replacing and stopping scheduled batches
- Scheduled batches skipped while another batch runs
- A real background scheduler running the start-up sweep
"""

import threading
from datetime import datetime

import pytest
from unittest.mock import Mock

from scholarship_pipeline.batch import BatchInProgressError, BatchRun
from scholarship_pipeline.catalog import RemovalResult
from scholarship_pipeline.scheduler import (
    BATCH_JOB_ID,
    SWEEP_JOB_ID,
    PipelineScheduler,
    get_batch_schedule,
)
from scholarship_pipeline.storage import StorageError
from scholarship_pipeline.sweeper import ExpirySweeper


def trigger_fields(trigger):
    return {field.name: str(field) for field in trigger.fields}


def make_scheduler(orchestrator=None, sweeper=None):
    backend = Mock()
    backend.get_jobs.return_value = []
    return PipelineScheduler(
        sweeper or ExpirySweeper(Mock(), hour=4, minute=15),
        orchestrator or Mock(),
        scheduler=backend
    )


class TestGetBatchSchedule:
    """Tests for get_batch_schedule."""

    @pytest.mark.parametrize("frequency,hour,minute,description", [
        ("hourly", "*", "0", "every hour"),
        ("6_hourly", "*/6", "0", "every 6 hours"),
        ("daily_9am", "9", "0", "daily at 9 AM"),
        ("daily_6pm", "18", "0", "daily at 6 PM"),
    ])
    def test_frequencies(self, frequency, hour, minute, description):
        """Test each supported frequency."""
        trigger, desc = get_batch_schedule(frequency)
        fields = trigger_fields(trigger)

        assert (fields["hour"], fields["minute"]) == (hour, minute)
        assert desc == description

    def test_name_is_case_insensitive(self):
        """Test that frequency names ignore case and whitespace."""
        assert get_batch_schedule(" Daily_6PM ")[1] == "daily at 6 PM"

    @pytest.mark.parametrize("frequency", ["weekly", "", None])
    def test_unknown_frequency(self, frequency):
        """Test that unknown frequencies are rejected."""
        with pytest.raises(ValueError, match="Unknown batch frequency"):
            get_batch_schedule(frequency)


class TestSweepJob:
    """Tests for the expiry sweep job."""

    def test_start_registers_sweep(self):
        """Test that start adds the daily sweep with an immediate first run."""
        scheduler = make_scheduler()

        scheduler.start()

        backend = scheduler.scheduler
        backend.add_job.assert_called_once()
        args, kwargs = backend.add_job.call_args
        assert args[0] == scheduler.sweeper.tick
        assert kwargs["id"] == SWEEP_JOB_ID
        assert isinstance(kwargs["next_run_time"], datetime)
        assert trigger_fields(kwargs["trigger"])["hour"] == "4"
        assert trigger_fields(kwargs["trigger"])["minute"] == "15"
        backend.start.assert_called_once()

    def test_shutdown_does_not_wait(self):
        """Test that shutdown leaves running jobs to finish on their own."""
        scheduler = make_scheduler()
        scheduler.scheduler.running = True

        scheduler.shutdown()

        scheduler.scheduler.shutdown.assert_called_once_with(wait=False)

    def test_shutdown_when_not_running(self):
        """Test that shutting down a scheduler that never started is a no-op."""
        scheduler = make_scheduler()
        scheduler.scheduler.running = False

        scheduler.shutdown()

        scheduler.scheduler.shutdown.assert_not_called()


class TestScheduledBatches:
    """Tests for scheduled batch processing."""

    def test_start_batches(self):
        """Test that a batch job is added with the frequency trigger."""
        scheduler = make_scheduler()

        state = scheduler.start_batches("6_hourly", 20)

        args, kwargs = scheduler.scheduler.add_job.call_args
        assert kwargs["id"] == BATCH_JOB_ID
        assert kwargs["replace_existing"] is True
        assert trigger_fields(kwargs["trigger"])["hour"] == "*/6"
        assert state.batch_size == 20
        assert state.description == "every 6 hours"
        assert scheduler.batch_state is state

    def test_unknown_frequency_adds_nothing(self):
        """Test that a bad frequency leaves the schedule unchanged."""
        scheduler = make_scheduler()

        with pytest.raises(ValueError):
            scheduler.start_batches("weekly", 10)

        scheduler.scheduler.add_job.assert_not_called()
        assert scheduler.batch_state is None

    def test_tick_processes_batch(self):
        """Test that a scheduled tick processes up to batch_size links."""
        orchestrator = Mock()
        run = BatchRun(requested_count=5)
        orchestrator.process_batch.return_value = run
        scheduler = make_scheduler(orchestrator=orchestrator)
        scheduler.start_batches("hourly", 5)

        job_func = scheduler.scheduler.add_job.call_args[0][0]
        assert job_func() is run

        orchestrator.process_batch.assert_called_once_with(5)
        assert scheduler.batch_state.runs == 1
        assert scheduler.batch_state.last_run is run

    def test_tick_skipped_while_batch_runs(self):
        """Test that a tick during a running batch is counted as skipped."""
        orchestrator = Mock()
        orchestrator.process_batch.side_effect = BatchInProgressError("A batch is already running")
        scheduler = make_scheduler(orchestrator=orchestrator)
        scheduler.start_batches("hourly", 10)

        assert scheduler._run_batch() is None

        assert scheduler.batch_state.skipped_ticks == 1
        assert scheduler.batch_state.runs == 0

    def test_failed_tick_keeps_schedule(self):
        """Test that a database failure is logged and the schedule stays active."""
        orchestrator = Mock()
        orchestrator.process_batch.side_effect = StorageError("database is locked")
        scheduler = make_scheduler(orchestrator=orchestrator)
        scheduler.start_batches("hourly", 10)

        assert scheduler._run_batch() is None
        assert scheduler.batch_state is not None
        scheduler.scheduler.remove_job.assert_not_called()

    def test_stop_batches(self):
        """Test that stopping removes the job and clears the state."""
        scheduler = make_scheduler()
        scheduler.start_batches("daily_9am", 10)

        assert scheduler.stop_batches() is True

        scheduler.scheduler.remove_job.assert_called_once_with(BATCH_JOB_ID)
        assert scheduler.batch_state is None
        assert scheduler.stop_batches() is False

    def test_tick_after_stop_does_nothing(self):
        """Test that a tick racing a stop does not process links."""
        orchestrator = Mock()
        scheduler = make_scheduler(orchestrator=orchestrator)

        assert scheduler._run_batch() is None
        orchestrator.process_batch.assert_not_called()


class TestBackgroundScheduler:
    """Tests against a real background scheduler."""

    def test_startup_sweep_runs(self):
        """Test that starting the scheduler sweeps once right away."""
        swept = threading.Event()

        def remove(now=None):
            swept.set()
            return RemovalResult()

        catalog = Mock()
        catalog.remove_expired.side_effect = remove
        scheduler = PipelineScheduler(ExpirySweeper(catalog), Mock())

        scheduler.start()
        try:
            assert swept.wait(5)
            assert scheduler.running
        finally:
            scheduler.shutdown()

        assert not scheduler.running
        assert catalog.remove_expired.call_count == 1

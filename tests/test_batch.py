"""
Tests for the batch module.

Tests cover:
- Fetch → extract → upsert for each link, oldest first
- Partial-failure isolation
- Every attempted link is marked processed
- Rate-limit delay between links
- Single active batch
- Dry-run preview
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import Mock

from scholarship_pipeline.batch import (
    OUTCOME_ADDED,
    OUTCOME_FAILED,
    OUTCOME_NOT_SCHOLARSHIP,
    OUTCOME_SKIPPED,
    BatchInProgressError,
    BatchOrchestrator,
)
from scholarship_pipeline.extract import (
    REASON_AI_UNAVAILABLE,
    REASON_NOT_SCHOLARSHIP,
    ExtractionOutcome,
    ExtractionResult,
)
from scholarship_pipeline.fetch import ERROR_TIMEOUT, FetchResult
from scholarship_pipeline.storage import StorageError


T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def submit(link_store, count):
    return [
        link_store.store(f"https://example.edu/{i}", submitted_at=T0 + timedelta(minutes=i)).link
        for i in range(1, count + 1)
    ]


def fetch_ok(url):
    return FetchResult(url=url, ok=True, content=f"HEADING: Scholarship at {url}")


def extract_named(url, page_text):
    name = "Scholarship " + url.rsplit("/", 1)[-1]
    return ExtractionOutcome(ok=True, data=ExtractionResult(name=name, amount="$1,000", link=url))


def make_orchestrator(link_store, catalog, fetcher=None, engine=None, sleep=None):
    if fetcher is None:
        fetcher = Mock()
        fetcher.fetch.side_effect = fetch_ok
    if engine is None:
        engine = Mock()
        engine.extract.side_effect = extract_named
    return BatchOrchestrator(
        link_store,
        fetcher,
        engine,
        catalog,
        link_delay=1.5,
        sleep=sleep or Mock()
    )


class TestProcessBatch:
    """Tests for BatchOrchestrator.process_batch."""

    def test_all_links_added(self, link_store, catalog):
        """Test a clean batch adds every scholarship."""
        submit(link_store, 3)
        orchestrator = make_orchestrator(link_store, catalog)

        run = orchestrator.process_batch(10)

        assert [r.status for r in run.results] == [OUTCOME_ADDED] * 3
        assert catalog.count() == 3
        assert link_store.get_unprocessed_count() == 0

    def test_partial_failure_isolated(self, link_store, catalog):
        """Test that a timeout on link 3 of 5 does not stop the others."""
        links = submit(link_store, 5)

        def fetch(url):
            if url.endswith("/3"):
                return FetchResult(url=url, ok=False, error_kind=ERROR_TIMEOUT, error_message="Request timeout")
            return fetch_ok(url)

        fetcher = Mock()
        fetcher.fetch.side_effect = fetch
        orchestrator = make_orchestrator(link_store, catalog, fetcher=fetcher)

        run = orchestrator.process_batch(5)

        statuses = {r.link_id: r.status for r in run.results}
        assert statuses[links[2].id] == OUTCOME_FAILED
        assert all(statuses[link.id] == OUTCOME_ADDED for i, link in enumerate(links) if i != 2)
        assert "timeout" in run.failed[0].reason
        assert all(link_store.get(link.id).processed for link in links)
        assert catalog.count() == 4

    def test_oldest_links_first_and_limit(self, link_store, catalog):
        """Test FIFO order and the batch limit."""
        submit(link_store, 4)
        orchestrator = make_orchestrator(link_store, catalog)

        run = orchestrator.process_batch(2)

        assert [r.url for r in run.results] == ["https://example.edu/1", "https://example.edu/2"]
        assert run.requested_count == 2
        assert link_store.get_unprocessed_count() == 2

    def test_outcome_kinds(self, link_store, catalog):
        """Test not-a-scholarship, AI failure and duplicate name outcomes."""
        submit(link_store, 4)
        catalog.ingest_payload({"name": "Scholarship 4"})

        def extract(url, page_text):
            if url.endswith("/1"):
                return ExtractionOutcome(ok=False, reason=REASON_NOT_SCHOLARSHIP)
            if url.endswith("/2"):
                return ExtractionOutcome(ok=False, reason=REASON_AI_UNAVAILABLE, error="rate limited")
            return extract_named(url, page_text)

        engine = Mock()
        engine.extract.side_effect = extract
        orchestrator = make_orchestrator(link_store, catalog, engine=engine)

        run = orchestrator.process_batch(10)

        assert [r.status for r in run.results] == [
            OUTCOME_NOT_SCHOLARSHIP,
            OUTCOME_FAILED,
            OUTCOME_ADDED,
            OUTCOME_SKIPPED,
        ]
        assert run.failed[0].reason == REASON_AI_UNAVAILABLE
        assert run.counts() == {
            OUTCOME_ADDED: 1,
            OUTCOME_SKIPPED: 1,
            OUTCOME_FAILED: 1,
            OUTCOME_NOT_SCHOLARSHIP: 1,
        }
        assert link_store.get_unprocessed_count() == 0

    def test_unexpected_exception_is_failure(self, link_store, catalog):
        """Test that an exception in one link is recorded and the batch continues."""
        submit(link_store, 2)
        engine = Mock()
        engine.extract.side_effect = [RuntimeError("parser crashed"), extract_named("https://example.edu/2", "")]
        orchestrator = make_orchestrator(link_store, catalog, engine=engine)

        run = orchestrator.process_batch(10)

        assert [r.status for r in run.results] == [OUTCOME_FAILED, OUTCOME_ADDED]
        assert run.results[0].reason == "parser crashed"

    def test_delay_between_links_only(self, link_store, catalog):
        """Test that the delay is applied between links, not after the last."""
        submit(link_store, 3)
        sleep = Mock()
        orchestrator = make_orchestrator(link_store, catalog, sleep=sleep)

        orchestrator.process_batch(10)

        assert sleep.call_count == 2
        sleep.assert_called_with(1.5)

    def test_empty_batch(self, link_store, catalog):
        """Test a batch with nothing to do."""
        run = make_orchestrator(link_store, catalog).process_batch(10)
        assert run.results == []

    def test_storage_error_propagates(self, link_store, catalog):
        """Test that a database failure aborts the batch."""
        submit(link_store, 2)
        failing_catalog = Mock()
        failing_catalog.upsert.side_effect = StorageError("database is gone")
        orchestrator = make_orchestrator(link_store, failing_catalog)

        with pytest.raises(StorageError):
            orchestrator.process_batch(10)

        assert orchestrator.in_progress is False


class TestSingleActiveBatch:
    """Tests for the one-batch-at-a-time rule."""

    def test_second_batch_rejected_while_running(self, link_store, catalog):
        """Test that a concurrent batch request raises BatchInProgressError."""
        submit(link_store, 1)
        started = threading.Event()
        release = threading.Event()

        def slow_fetch(url):
            started.set()
            release.wait(5)
            return fetch_ok(url)

        fetcher = Mock()
        fetcher.fetch.side_effect = slow_fetch
        orchestrator = make_orchestrator(link_store, catalog, fetcher=fetcher)

        worker = threading.Thread(target=orchestrator.process_batch, args=(10,))
        worker.start()
        assert started.wait(5)

        try:
            assert orchestrator.in_progress is True
            with pytest.raises(BatchInProgressError):
                orchestrator.process_batch(10)
        finally:
            release.set()
            worker.join(5)

        assert orchestrator.in_progress is False


class TestPreview:
    """Tests for dry-run previews."""

    def test_preview_changes_nothing(self, link_store, catalog):
        """Test that a preview lists links without processing them."""
        submit(link_store, 3)
        orchestrator = make_orchestrator(link_store, catalog)

        run = orchestrator.preview(2)

        assert run.dry_run is True
        assert [link.url for link in run.previewed] == ["https://example.edu/1", "https://example.edu/2"]
        assert link_store.get_unprocessed_count() == 3
        assert catalog.count() == 0
        orchestrator.fetcher.fetch.assert_not_called()

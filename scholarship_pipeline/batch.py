"""
Batch module for the Scholarship Pipeline.

This module drives unprocessed links through fetch → extract → catalog,
one link at a time with a fixed delay between links, and reports a
per-link outcome for the whole batch.

Every link that is attempted is marked processed, whether it was added,
skipped or failed, so a dead page is never retried forever. A failure on
one link never stops the remaining links; only a storage error aborts the
batch.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from scholarship_pipeline.catalog import STATUS_ADDED, STATUS_SKIPPED, CatalogStore
from scholarship_pipeline.extract import REASON_CONTENT_FETCH_FAILED, REASON_NOT_SCHOLARSHIP, ExtractionEngine
from scholarship_pipeline.fetch import ContentFetcher
from scholarship_pipeline.links import LinkStore, SubmittedLink
from scholarship_pipeline.storage import StorageError
from scholarship_pipeline.utils import get_logger


# Module logger
logger = get_logger("batch")

DEFAULT_LINK_DELAY = 1.5  # seconds between links

# Per-link states
STATE_QUEUED = "queued"
STATE_FETCHING = "fetching"
STATE_EXTRACTING = "extracting"

# Terminal outcomes
OUTCOME_ADDED = "added"
OUTCOME_SKIPPED = "skipped"
OUTCOME_FAILED = "failed"
OUTCOME_NOT_SCHOLARSHIP = "notAScholarship"

TERMINAL_OUTCOMES = (OUTCOME_ADDED, OUTCOME_SKIPPED, OUTCOME_FAILED, OUTCOME_NOT_SCHOLARSHIP)


class BatchInProgressError(Exception):
    """Raised when a batch is requested while another one is running."""


@dataclass
class LinkOutcome:
    """Terminal outcome of one link in a batch."""
    link_id: int
    url: str
    status: str
    name: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "link_id": self.link_id,
            "url": self.url,
            "status": self.status,
            "name": self.name,
            "reason": self.reason,
        }


@dataclass
class BatchRun:
    """
    Summary of one batch.

    Attributes:
        requested_count: The limit the batch was started with.
        results: One LinkOutcome per attempted link, in processing order.
        dry_run: True when the links were only previewed.
        previewed: Links that would be processed (dry runs only).
    """
    requested_count: int
    results: List[LinkOutcome] = field(default_factory=list)
    dry_run: bool = False
    previewed: List[SubmittedLink] = field(default_factory=list)

    def with_status(self, status: str) -> List[LinkOutcome]:
        return [r for r in self.results if r.status == status]

    @property
    def added(self) -> List[LinkOutcome]:
        return self.with_status(OUTCOME_ADDED)

    @property
    def skipped(self) -> List[LinkOutcome]:
        return self.with_status(OUTCOME_SKIPPED)

    @property
    def failed(self) -> List[LinkOutcome]:
        return self.with_status(OUTCOME_FAILED)

    @property
    def not_scholarships(self) -> List[LinkOutcome]:
        return self.with_status(OUTCOME_NOT_SCHOLARSHIP)

    def counts(self) -> Dict[str, int]:
        """Number of links per terminal outcome."""
        return {status: len(self.with_status(status)) for status in TERMINAL_OUTCOMES}

    def to_dict(self) -> dict:
        return {
            "requested_count": self.requested_count,
            "dry_run": self.dry_run,
            "counts": self.counts(),
            "results": [r.to_dict() for r in self.results],
            "previewed": [link.to_dict() for link in self.previewed],
        }


class BatchOrchestrator:
    """Runs batches of unprocessed links; at most one batch runs at a time."""

    def __init__(
        self,
        link_store: LinkStore,
        fetcher: ContentFetcher,
        engine: ExtractionEngine,
        catalog: CatalogStore,
        link_delay: float = DEFAULT_LINK_DELAY,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.link_store = link_store
        self.fetcher = fetcher
        self.engine = engine
        self.catalog = catalog
        self.link_delay = link_delay
        self.sleep = sleep
        self._lock = threading.Lock()

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    def preview(self, limit: int) -> BatchRun:
        """List the links a batch of this size would process, without changing anything."""
        links = self.link_store.list_unprocessed(limit)
        return BatchRun(requested_count=limit, dry_run=True, previewed=links)

    def process_batch(self, limit: int) -> BatchRun:
        """
        Process up to limit unprocessed links, oldest first.

        Args:
            limit: Maximum number of links to process.

        Returns:
            BatchRun with one terminal outcome per attempted link.

        Raises:
            BatchInProgressError: If another batch is running.
            StorageError: If the database fails; links already handled
                          keep their processed flag.
        """
        if not self._lock.acquire(blocking=False):
            raise BatchInProgressError("A batch is already running")

        try:
            return self._run(limit)
        finally:
            self._lock.release()

    def _run(self, limit: int) -> BatchRun:
        run = BatchRun(requested_count=limit)
        links = self.link_store.list_unprocessed(limit)

        if not links:
            logger.info("No unprocessed links found")
            return run

        logger.info(f"Processing batch of {len(links)} link(s)")

        for index, link in enumerate(links):
            outcome = self._process_link(link)
            run.results.append(outcome)
            self.link_store.mark_processed([link.id])

            logger.info(
                f"[{index + 1}/{len(links)}] {link.url} -> {outcome.status}"
                + (f" ({outcome.reason})" if outcome.reason else "")
            )

            if index < len(links) - 1 and self.link_delay > 0:
                self.sleep(self.link_delay)

        counts = run.counts()
        logger.info(
            f"Batch complete: {counts[OUTCOME_ADDED]} added, {counts[OUTCOME_SKIPPED]} skipped, "
            f"{counts[OUTCOME_FAILED]} failed, {counts[OUTCOME_NOT_SCHOLARSHIP]} not scholarships"
        )
        return run

    def _process_link(self, link: SubmittedLink) -> LinkOutcome:
        state = STATE_QUEUED
        try:
            state = STATE_FETCHING
            fetched = self.fetcher.fetch(link.url)
            if not fetched.ok:
                return LinkOutcome(
                    link_id=link.id,
                    url=link.url,
                    status=OUTCOME_FAILED,
                    reason=f"{REASON_CONTENT_FETCH_FAILED}:{fetched.error_kind}"
                )

            state = STATE_EXTRACTING
            extracted = self.engine.extract(link.url, fetched.content)
            if not extracted.ok:
                status = OUTCOME_NOT_SCHOLARSHIP if extracted.reason == REASON_NOT_SCHOLARSHIP else OUTCOME_FAILED
                return LinkOutcome(link_id=link.id, url=link.url, status=status, reason=extracted.reason)

            upserted = self.catalog.upsert(extracted.data.to_record())
            if upserted.status == STATUS_ADDED:
                return LinkOutcome(link_id=link.id, url=link.url, status=OUTCOME_ADDED, name=upserted.name)
            if upserted.status == STATUS_SKIPPED:
                return LinkOutcome(
                    link_id=link.id,
                    url=link.url,
                    status=OUTCOME_SKIPPED,
                    name=upserted.name,
                    reason=upserted.reason
                )
            return LinkOutcome(
                link_id=link.id,
                url=link.url,
                status=OUTCOME_FAILED,
                name=upserted.name,
                reason=upserted.reason
            )

        except StorageError:
            raise

        except Exception as e:
            logger.exception(f"Unexpected error while {state} {link.url}: {e}")
            return LinkOutcome(link_id=link.id, url=link.url, status=OUTCOME_FAILED, reason=str(e))

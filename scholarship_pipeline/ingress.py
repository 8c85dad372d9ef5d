"""
Ingress module for the Scholarship Pipeline.

Every path by which a URL enters the pipeline ends in LinkIntake.submit:
- Chat messages in the watched channel (MessageScanner)
- Operator commands (batch, schedule, cleanup, search, upload, browsing,
  pending links)
- External automation callbacks (see the webhooks module)

The chat platform itself is not handled here; its adapter converts each
event into a ChatMessage and each command into a call below, and renders
the returned CommandResponse text.
"""

import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from scholarship_pipeline.batch import BatchInProgressError, BatchOrchestrator
from scholarship_pipeline.catalog import CatalogStore
from scholarship_pipeline.links import LinkStore, StoreResult
from scholarship_pipeline.report import (
    PREVIEW_URL_LENGTH,
    format_batch_summary,
    format_cleanup_summary,
    format_dry_run_preview,
    format_scholarship_card,
    format_search_results,
    format_upload_summary,
)
from scholarship_pipeline.scheduler import PipelineScheduler
from scholarship_pipeline.storage import StorageError
from scholarship_pipeline.sweeper import ExpirySweeper
from scholarship_pipeline.utils import get_logger, truncate


# Module logger
logger = get_logger("ingress")

URL_PATTERN = re.compile(r"https?://[^\s<>]+", re.IGNORECASE)
TRAILING_PUNCTUATION = ".,;:!?)]}>'\""

SEEN_MESSAGE_TTL = 300  # seconds

MIN_BATCH_LIMIT = 1
MAX_BATCH_LIMIT = 50
DEFAULT_BATCH_LIMIT = 10


@dataclass
class ChatMessage:
    """A chat message as delivered by the chat platform adapter."""
    id: str
    channel_id: str
    author_id: str
    content: str
    author_is_bot: bool = False


@dataclass
class CommandResponse:
    """Result of an operator command: display text plus the structured result."""
    ok: bool
    text: str
    data: Any = None


def extract_urls(text: Optional[str]) -> List[str]:
    """
    Find every HTTP(S) URL in a message.

    Trailing punctuation is stripped and repeated URLs are returned once,
    in order of first appearance.
    """
    urls = []
    for match in URL_PATTERN.findall(text or ""):
        url = match.rstrip(TRAILING_PUNCTUATION)
        if url and url not in urls:
            urls.append(url)
    return urls


class LinkIntake:
    """Single funnel from all ingress paths into LinkStore.store."""

    def __init__(self, link_store: LinkStore):
        self.link_store = link_store

    def submit(self, url: str, actor: Optional[str] = None, context: Optional[str] = None) -> StoreResult:
        """Store one URL; duplicates come back as ok=False, reason="duplicate"."""
        return self.link_store.store(url, actor=actor, context=context)

    def submit_many(
        self,
        urls: List[str],
        actor: Optional[str] = None,
        context: Optional[str] = None
    ) -> List[StoreResult]:
        return [self.submit(url, actor=actor, context=context) for url in urls]


class MessageScanner:
    """
    Stores links posted in the watched chat channel.

    Each message id is handled at most once within SEEN_MESSAGE_TTL seconds,
    so a redelivered event does not submit its links twice.
    """

    def __init__(
        self,
        intake: LinkIntake,
        channel_id: Optional[str] = None,
        seen_ttl: float = SEEN_MESSAGE_TTL,
        clock: Callable[[], float] = time.monotonic
    ):
        self.intake = intake
        self.channel_id = channel_id
        self.seen_ttl = seen_ttl
        self.clock = clock
        self._seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        expired = [message_id for message_id, seen_at in self._seen.items() if now - seen_at >= self.seen_ttl]
        for message_id in expired:
            del self._seen[message_id]

    def _first_sighting(self, message_id: str) -> bool:
        now = self.clock()
        with self._lock:
            self._prune(now)
            if message_id in self._seen:
                return False
            self._seen[message_id] = now
            return True

    def _forget(self, message_id: str) -> None:
        with self._lock:
            self._seen.pop(message_id, None)

    def handle_message(self, message: ChatMessage) -> List[StoreResult]:
        """
        Scan a chat message and store every URL it contains.

        Args:
            message: Incoming chat message.

        Returns:
            One StoreResult per URL; empty if the message was ignored.

        Raises:
            StorageError: If the link store cannot be reached.
        """
        if message.author_is_bot:
            return []

        if self.channel_id and str(message.channel_id) != str(self.channel_id):
            return []

        urls = extract_urls(message.content)
        if not urls:
            return []

        if not self._first_sighting(str(message.id)):
            logger.debug(f"Ignoring repeated message {message.id}")
            return []

        logger.info(f"Found {len(urls)} link(s) in message {message.id}")
        try:
            return self.intake.submit_many(
                urls,
                actor=str(message.author_id),
                context=f"message:{message.id}"
            )
        except StorageError:
            # Let a redelivery of this message try again
            self._forget(str(message.id))
            raise


def parse_batch_limit(value: Any) -> int:
    """
    Validate a batch size from an operator command.

    Raises:
        ValueError: If the value is not an integer between 1 and 50.
    """
    if value is None:
        return DEFAULT_BATCH_LIMIT
    if isinstance(value, bool):
        raise ValueError("Batch size must be a number")
    try:
        limit = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Batch size must be a number, got {value!r}")
    if not MIN_BATCH_LIMIT <= limit <= MAX_BATCH_LIMIT:
        raise ValueError(f"Batch size must be between {MIN_BATCH_LIMIT} and {MAX_BATCH_LIMIT}")
    return limit


def run_batch_command(
    orchestrator: BatchOrchestrator,
    limit: Any = DEFAULT_BATCH_LIMIT,
    dry_run: bool = False
) -> CommandResponse:
    """
    Operator command: process (or preview) a batch of unprocessed links.

    A dry run only lists the candidate links and changes nothing.
    """
    try:
        limit = parse_batch_limit(limit)
    except ValueError as e:
        return CommandResponse(ok=False, text=str(e))

    try:
        if dry_run:
            run = orchestrator.preview(limit)
            return CommandResponse(ok=True, text=format_dry_run_preview(run.previewed), data=run)

        run = orchestrator.process_batch(limit)
    except BatchInProgressError as e:
        logger.info(f"Batch command rejected: {e}")
        return CommandResponse(ok=False, text="A batch is already running, try again when it finishes.")
    except StorageError as e:
        logger.error(f"Batch command failed: {e}")
        return CommandResponse(ok=False, text=f"Database error: {e}")

    return CommandResponse(ok=True, text=format_batch_summary(run), data=run)


def run_cleanup_command(sweeper: ExpirySweeper) -> CommandResponse:
    """Operator command: remove expired scholarships now."""
    try:
        result = sweeper.run_once()
    except StorageError as e:
        logger.error(f"Cleanup command failed: {e}")
        return CommandResponse(ok=False, text=f"Database error: {e}")

    return CommandResponse(ok=result is not None, text=format_cleanup_summary(result), data=result)


def run_search_command(
    catalog: CatalogStore,
    name: Optional[str] = None,
    min_amount: Any = None
) -> CommandResponse:
    """Operator command: search the catalog by name and minimum amount."""
    try:
        records = catalog.search(name_pattern=name, min_amount=min_amount)
    except StorageError as e:
        logger.error(f"Search command failed: {e}")
        return CommandResponse(ok=False, text=f"Database error: {e}")

    return CommandResponse(ok=True, text=format_search_results(records), data=records)


def run_upload_command(catalog: CatalogStore, payload: Any) -> CommandResponse:
    """
    Operator command: add pre-structured scholarship data to the catalog.

    Args:
        catalog: Catalog to upsert into.
        payload: JSON text, a mapping or a list of mappings.
    """
    if payload is None or (isinstance(payload, str) and not payload.strip()):
        return CommandResponse(ok=False, text="Please provide scholarship data.")

    try:
        results = catalog.ingest_payload(payload)
    except ValueError as e:
        return CommandResponse(ok=False, text=str(e))
    except StorageError as e:
        logger.error(f"Upload command failed: {e}")
        return CommandResponse(ok=False, text=f"Database error: {e}")

    return CommandResponse(ok=True, text=format_upload_summary(results), data=results)


def run_scholarships_command(catalog: CatalogStore, position: int = 1) -> CommandResponse:
    """
    Operator command: show one catalog record as a card.

    The chat layer pages through the catalog by calling this with the
    previous or next position; out-of-range positions are clamped.
    """
    try:
        records = catalog.all()
    except StorageError as e:
        logger.error(f"Scholarships command failed: {e}")
        return CommandResponse(ok=False, text=f"Database error: {e}")

    if not records:
        return CommandResponse(ok=True, text="No scholarships found.")

    position = min(max(1, position), len(records))
    record = records[position - 1]
    return CommandResponse(
        ok=True,
        text=format_scholarship_card(record, position=position, total=len(records)),
        data=record
    )


def run_links_command(link_store: LinkStore) -> CommandResponse:
    """Operator command: list links still waiting to be processed."""
    try:
        links = link_store.list_unprocessed()
    except StorageError as e:
        logger.error(f"Links command failed: {e}")
        return CommandResponse(ok=False, text=f"Database error: {e}")

    if not links:
        return CommandResponse(ok=True, text="No unprocessed links found.", data=links)

    lines = [f"{len(links)} unprocessed link(s):", ""]
    lines.extend(f"{i}. {truncate(link.url, PREVIEW_URL_LENGTH)}" for i, link in enumerate(links, 1))
    return CommandResponse(ok=True, text="\n".join(lines), data=links)


def run_schedule_command(
    scheduler: PipelineScheduler,
    action: str,
    frequency: Optional[str] = None,
    batch_size: Any = None
) -> CommandResponse:
    """
    Operator command: start, stop or inspect scheduled batch processing.

    Args:
        scheduler: The running pipeline scheduler.
        action: "start", "stop" or "status".
        frequency: Frequency name for start (hourly, 6_hourly, daily_9am, daily_6pm).
        batch_size: Links per scheduled batch for start, 1 to 50.
    """
    action = (action or "").lower().strip()

    if action == "start":
        try:
            size = parse_batch_limit(batch_size)
            state = scheduler.start_batches(frequency or "", size)
        except ValueError as e:
            return CommandResponse(ok=False, text=str(e))
        return CommandResponse(
            ok=True,
            text=f"Scheduled automation started! Will process up to {size} links {state.description}.",
            data=state
        )

    if action == "stop":
        if scheduler.stop_batches():
            return CommandResponse(ok=True, text="Scheduled processing stopped.")
        return CommandResponse(ok=False, text="No active schedule found.")

    if action == "status":
        state = scheduler.batch_state
        if state is None:
            return CommandResponse(ok=True, text="No scheduled processing is currently running.")

        lines = [
            "Scheduled processing is active.",
            f"**Frequency:** {state.description}",
            f"**Batch size:** {state.batch_size}",
            f"**Runs:** {state.runs}  **Skipped:** {state.skipped_ticks}",
        ]
        next_time = scheduler.next_batch_time()
        if next_time is not None:
            lines.append(f"**Next run:** {next_time:%Y-%m-%d %H:%M}")
        return CommandResponse(ok=True, text="\n".join(lines), data=state)

    return CommandResponse(ok=False, text=f"Unknown schedule action {action!r}, use start, stop or status.")

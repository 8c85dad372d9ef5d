"""
Link store for the Scholarship Pipeline.

This module records scholarship links submitted through chat messages,
operator commands and automation callbacks. Each normalized URL is stored
once; the database unique constraint decides which concurrent submission
wins, so a repeated URL is reported as a duplicate rather than an error.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from scholarship_pipeline.storage import links_table, transaction
from scholarship_pipeline.utils import get_logger, normalize_link, validate_url


# Module logger
logger = get_logger("links")

# Reasons reported by LinkStore.store
REASON_DUPLICATE = "duplicate"
REASON_INVALID_URL = "invalid_url"


@dataclass
class SubmittedLink:
    """
    A candidate scholarship page awaiting extraction.

    Attributes:
        id: Database identifier.
        url: Normalized URL (unique).
        submitted_by: Opaque id of the user or system that submitted it.
        source_context: Message id, batch tag or callback source.
        created_at: Time of first sighting.
        processed: Whether a batch (or external worker) has handled the link.
    """
    id: int
    url: str
    submitted_by: Optional[str]
    source_context: Optional[str]
    created_at: datetime
    processed: bool = False

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dictionary."""
        return {
            "id": self.id,
            "url": self.url,
            "submitted_by": self.submitted_by,
            "source_context": self.source_context,
            "created_at": self.created_at.isoformat(),
            "processed": self.processed,
        }


@dataclass
class StoreResult:
    """Outcome of LinkStore.store; ok=False with reason "duplicate" is a normal outcome."""
    ok: bool
    url: str
    reason: Optional[str] = None
    link: Optional[SubmittedLink] = None

    @property
    def message(self) -> str:
        if self.ok:
            return "Link stored"
        if self.reason == REASON_DUPLICATE:
            return "Link already exists in database"
        if self.reason == REASON_INVALID_URL:
            return "Invalid URL format"
        return self.reason or "Link not stored"


def _row_to_link(row) -> SubmittedLink:
    return SubmittedLink(
        id=row.id,
        url=row.url,
        submitted_by=row.submitted_by,
        source_context=row.source_context,
        created_at=row.created_at,
        processed=bool(row.processed),
    )


class LinkStore:
    """Durable record of submitted links; every method may raise StorageError."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def store(
        self,
        url: str,
        actor: Optional[str] = None,
        context: Optional[str] = None,
        submitted_at: Optional[datetime] = None
    ) -> StoreResult:
        """
        Store a submitted link if it has not been seen before.

        Args:
            url: Raw URL as submitted.
            actor: Id of the submitting user or system.
            context: Message id, batch tag or callback source.
            submitted_at: Submission time, defaults to now (UTC).

        Returns:
            StoreResult; a repeated URL yields ok=False, reason="duplicate".

        Raises:
            StorageError: If the database cannot be reached.
        """
        normalized = normalize_link(url)

        if not validate_url(normalized):
            logger.warning(f"Rejected invalid link: {url!r}")
            return StoreResult(ok=False, url=normalized, reason=REASON_INVALID_URL)

        created_at = submitted_at or datetime.now(timezone.utc)

        try:
            with transaction(self.engine) as conn:
                result = conn.execute(
                    insert(links_table).values(
                        url=normalized,
                        submitted_by=actor,
                        source_context=context,
                        created_at=created_at,
                        processed=False,
                    )
                )
                link_id = result.inserted_primary_key[0]
        except IntegrityError:
            logger.info(f"Link already exists: {normalized}")
            return StoreResult(ok=False, url=normalized, reason=REASON_DUPLICATE)

        logger.info(f"Stored link: {normalized}")
        return StoreResult(
            ok=True,
            url=normalized,
            link=SubmittedLink(
                id=link_id,
                url=normalized,
                submitted_by=actor,
                source_context=context,
                created_at=created_at,
                processed=False,
            ),
        )

    def list_unprocessed(self, limit: Optional[int] = None) -> List[SubmittedLink]:
        """
        List unprocessed links, oldest first.

        Args:
            limit: Maximum number of links, None for all.

        Returns:
            Links ordered by submission time (ties broken by id).
        """
        query = (
            select(links_table)
            .where(links_table.c.processed.is_(False))
            .order_by(links_table.c.created_at.asc(), links_table.c.id.asc())
        )
        if limit is not None:
            query = query.limit(max(0, limit))

        with transaction(self.engine) as conn:
            rows = conn.execute(query).fetchall()

        return [_row_to_link(row) for row in rows]

    def get_unprocessed_count(self) -> int:
        """Count links still waiting for processing."""
        query = select(func.count()).select_from(links_table).where(
            links_table.c.processed.is_(False)
        )
        with transaction(self.engine) as conn:
            return int(conn.execute(query).scalar_one())

    def get(self, link_id: int) -> Optional[SubmittedLink]:
        """Fetch one link by id, or None."""
        with transaction(self.engine) as conn:
            row = conn.execute(
                select(links_table).where(links_table.c.id == link_id)
            ).first()
        return _row_to_link(row) if row is not None else None

    def mark_processed(self, link_ids: Iterable[int]) -> int:
        """
        Mark links as processed.

        Already-processed and unknown ids are ignored.

        Args:
            link_ids: Ids of the links to mark.

        Returns:
            Number of links that changed from unprocessed to processed.
        """
        ids = sorted({int(link_id) for link_id in link_ids})
        if not ids:
            return 0

        with transaction(self.engine) as conn:
            result = conn.execute(
                update(links_table)
                .where(links_table.c.id.in_(ids))
                .where(links_table.c.processed.is_(False))
                .values(processed=True)
            )

        logger.info(f"Marked {result.rowcount} of {len(ids)} link(s) as processed")
        return result.rowcount

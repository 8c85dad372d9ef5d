"""
Catalog module for the Scholarship Pipeline.

This module keeps the deduplicated scholarship catalog:
- Inserting records, skipping names that already exist
- Searching by name and minimum amount
- Removing scholarships whose deadline has passed

Records are identified by their normalized name (case-insensitive,
whitespace-collapsed) rather than by link, because the same scholarship is
often re-announced under different tracking links.
"""

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import delete, func, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from scholarship_pipeline.dates import is_expired, parse_amount
from scholarship_pipeline.storage import scholarships_table, transaction
from scholarship_pipeline.utils import get_logger, normalize_name, sanitize_text


# Module logger
logger = get_logger("catalog")

NOT_SPECIFIED = "Not specified"

# Upsert statuses
STATUS_ADDED = "added"
STATUS_SKIPPED = "skipped"
STATUS_ERROR = "error"

REASON_ALREADY_EXISTS = "already exists"

Requirements = Union[List[str], str]


@dataclass
class ScholarshipRecord:
    """
    A scholarship stored in the catalog.

    Attributes:
        name: Display name; its normalized form is unique in the catalog.
        deadline: Deadline as written (ISO when known), None if absent.
        amount: Award amount as written.
        description: Short description.
        requirements: Ordered requirement strings, or a single string.
        link: Page the record was extracted from.
        id: Database identifier, None until stored.
    """
    name: str
    deadline: Optional[str] = None
    amount: Optional[str] = NOT_SPECIFIED
    description: Optional[str] = None
    requirements: Requirements = NOT_SPECIFIED
    link: Optional[str] = None
    id: Optional[int] = None

    @property
    def name_key(self) -> str:
        return normalize_name(self.name)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "deadline": self.deadline,
            "amount": self.amount,
            "description": self.description,
            "requirements": self.requirements,
            "link": self.link,
        }


@dataclass
class UpsertResult:
    """Outcome of inserting one record; "skipped" is the normal re-submission outcome."""
    name: str
    status: str
    reason: Optional[str] = None
    record: Optional[ScholarshipRecord] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"name": self.name, "status": self.status}
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class RemovalResult:
    """Outcome of one expiry pass."""
    removed_count: int = 0
    removed: List[ScholarshipRecord] = field(default_factory=list)


def _row_to_record(row) -> ScholarshipRecord:
    return ScholarshipRecord(
        id=row.id,
        name=row.name,
        deadline=row.deadline,
        amount=row.amount,
        description=row.description,
        requirements=row.requirements,
        link=row.link,
    )


def _clean_requirements(value: Any) -> Requirements:
    if isinstance(value, (list, tuple)):
        items = [sanitize_text(str(item)) for item in value if item is not None]
        items = [item for item in items if item]
        return items or NOT_SPECIFIED
    if value is None:
        return NOT_SPECIFIED
    text = sanitize_text(str(value))
    return text or NOT_SPECIFIED


def _text_or(value: Any, default: Optional[str]) -> Optional[str]:
    if value is None:
        return default
    text = sanitize_text(str(value))
    return text or default


def record_from_mapping(data: Dict[str, Any]) -> ScholarshipRecord:
    """
    Coerce an externally supplied mapping into a ScholarshipRecord.

    Missing fields get the catalog defaults: "No Title" for the name,
    "No description" for the description and "Not specified" for amount,
    requirements and link. A "Not specified" deadline is stored as None.

    Args:
        data: Mapping with any of name, deadline, amount, description,
              requirements and link (or url).

    Returns:
        ScholarshipRecord ready for upsert.
    """
    deadline = _text_or(data.get("deadline"), None)
    if deadline and deadline.lower() == NOT_SPECIFIED.lower():
        deadline = None

    amount = data.get("amount")
    if isinstance(amount, (int, float)) and not isinstance(amount, bool):
        amount = f"{amount:g}"

    return ScholarshipRecord(
        name=_text_or(data.get("name"), "No Title"),
        deadline=deadline,
        amount=_text_or(amount, NOT_SPECIFIED),
        description=_text_or(data.get("description"), "No description"),
        requirements=_clean_requirements(data.get("requirements")),
        link=_text_or(data.get("link") or data.get("url"), NOT_SPECIFIED),
    )


class CatalogStore:
    """Deduplicated scholarship catalog; every method may raise StorageError."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def upsert(self, record: ScholarshipRecord) -> UpsertResult:
        """
        Insert a record unless one with the same normalized name exists.

        Args:
            record: Record to insert.

        Returns:
            UpsertResult with status "added", "skipped" (reason "already
            exists") or "error" for records that cannot be stored.

        Raises:
            StorageError: If the database cannot be reached.
        """
        name = sanitize_text(record.name or "")
        name_key = normalize_name(name)

        if not name_key:
            logger.warning("Rejected scholarship without a name")
            return UpsertResult(name=name, status=STATUS_ERROR, reason="missing name")

        try:
            with transaction(self.engine) as conn:
                result = conn.execute(
                    insert(scholarships_table).values(
                        name=name,
                        name_key=name_key,
                        deadline=record.deadline,
                        amount=record.amount,
                        description=record.description,
                        requirements=record.requirements,
                        link=record.link,
                        created_at=datetime.now(timezone.utc),
                    )
                )
                record_id = result.inserted_primary_key[0]
        except IntegrityError:
            logger.info(f"Skipped scholarship (already exists): {name}")
            return UpsertResult(name=name, status=STATUS_SKIPPED, reason=REASON_ALREADY_EXISTS)

        logger.info(f"Added scholarship: {name}")
        stored = ScholarshipRecord(
            id=record_id,
            name=name,
            deadline=record.deadline,
            amount=record.amount,
            description=record.description,
            requirements=record.requirements,
            link=record.link,
        )
        return UpsertResult(name=name, status=STATUS_ADDED, record=stored)

    def ingest_payload(self, payload: Any) -> List[UpsertResult]:
        """
        Upsert pre-structured scholarship data.

        Args:
            payload: JSON text, a single mapping, or a list of mappings.

        Returns:
            One UpsertResult per entry, in input order.

        Raises:
            ValueError: If payload is not valid JSON or not made of mappings.
            StorageError: If the database cannot be reached.
        """
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as e:
                raise ValueError("Invalid JSON format for scholarship data") from e

        entries = payload if isinstance(payload, list) else [payload]

        results = []
        for entry in entries:
            if not isinstance(entry, dict):
                raise ValueError("Scholarship entries must be JSON objects")
            results.append(self.upsert(record_from_mapping(entry)))

        added = sum(1 for r in results if r.status == STATUS_ADDED)
        logger.info(f"Ingested {len(results)} scholarship(s): {added} added")
        return results

    def get_by_name(self, name: str) -> Optional[ScholarshipRecord]:
        """Look up a record by name, ignoring case and extra whitespace."""
        with transaction(self.engine) as conn:
            row = conn.execute(
                select(scholarships_table).where(
                    scholarships_table.c.name_key == normalize_name(name)
                )
            ).first()
        return _row_to_record(row) if row is not None else None

    def all(self) -> List[ScholarshipRecord]:
        """Return every record sorted by name."""
        return self.search()

    def count(self) -> int:
        """Number of records in the catalog."""
        with transaction(self.engine) as conn:
            return int(
                conn.execute(select(func.count()).select_from(scholarships_table)).scalar_one()
            )

    def search(
        self,
        name_pattern: Optional[str] = None,
        min_amount: Any = None
    ) -> List[ScholarshipRecord]:
        """
        Search the catalog.

        Args:
            name_pattern: Case-insensitive substring of the name.
            min_amount: Minimum award amount. Values that cannot be read as
                        a number are ignored rather than failing the search.

        Returns:
            Matching records sorted by name. When a minimum amount applies,
            records whose amount cannot be read as a number are left out.
        """
        query = select(scholarships_table).order_by(
            scholarships_table.c.name_key.asc(), scholarships_table.c.id.asc()
        )

        pattern = sanitize_text(name_pattern or "")
        if pattern:
            query = query.where(scholarships_table.c.name_key.contains(
                normalize_name(pattern), autoescape=True
            ))

        with transaction(self.engine) as conn:
            records = [_row_to_record(row) for row in conn.execute(query)]

        if min_amount is None or (isinstance(min_amount, str) and not min_amount.strip()):
            return records

        threshold = parse_amount(min_amount)
        if threshold is None:
            logger.warning(f"Invalid amount provided for search: {min_amount!r}, ignoring filter")
            return records

        filtered = []
        for record in records:
            value = parse_amount(record.amount)
            if value is not None and value >= threshold:
                filtered.append(record)
        return filtered

    def find_expired(self, today: date) -> List[ScholarshipRecord]:
        """List records whose deadline parses to a day before today."""
        with transaction(self.engine) as conn:
            rows = conn.execute(
                select(scholarships_table).where(scholarships_table.c.deadline.is_not(None))
            ).fetchall()

        expired = []
        for row in rows:
            if is_expired(row.deadline, today):
                expired.append(_row_to_record(row))
            else:
                logger.debug(f"Keeping scholarship {row.name!r} (deadline {row.deadline!r})")
        return expired

    def remove_expired(self, now: Optional[datetime] = None) -> RemovalResult:
        """
        Delete every record whose deadline is strictly before now.

        Deadlines that cannot be parsed are kept.

        Args:
            now: Reference time, defaults to the current local time.

        Returns:
            RemovalResult with the number and copies of the removed records.

        Raises:
            StorageError: If the database cannot be reached.
        """
        today = (now or datetime.now()).date()
        expired = self.find_expired(today)

        if not expired:
            logger.info("No expired scholarships found")
            return RemovalResult()

        ids = [record.id for record in expired]
        with transaction(self.engine) as conn:
            result = conn.execute(
                delete(scholarships_table).where(scholarships_table.c.id.in_(ids))
            )

        removed = expired if result.rowcount == len(expired) else [
            record for record in expired if self.get_by_name(record.name) is None
        ]
        for record in removed:
            logger.info(f"Removed expired scholarship: {record.name} (deadline {record.deadline})")

        logger.info(f"Removed {len(removed)} expired scholarship(s)")
        return RemovalResult(removed_count=len(removed), removed=removed)

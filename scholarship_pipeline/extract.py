"""
Extraction module for the Scholarship Pipeline.

This module turns linearized page text into a structured scholarship:
1. A rule-based pass finds the name, amount, deadline, requirements and
   description with keyword and pattern heuristics.
2. The result is trusted on its own when it is sufficient: a name plus at
   least two of amount, deadline, requirements and description.
3. Otherwise the AI extractor is asked, and its reply is coerced into the
   same shape before use.
4. Rule-based values win; AI values only fill fields the rules left as
   "Not specified".
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Union

from scholarship_pipeline.ai import AIExtractor, AIUnavailableError
from scholarship_pipeline.catalog import NOT_SPECIFIED, ScholarshipRecord
from scholarship_pipeline.dates import find_amount, find_date_spans, format_deadline
from scholarship_pipeline.filter import (
    deadline_cue_positions,
    has_scholarship_signal,
    is_eligibility_item,
    is_likely_false_positive,
    is_title_candidate,
    mentions_deadline,
)
from scholarship_pipeline.parse import (
    LABEL_HEADING,
    LABEL_LIST_ITEM,
    LABEL_META,
    LABEL_PARAGRAPH,
    LABEL_TITLE,
    sections_with_label,
    split_sections,
)
from scholarship_pipeline.utils import get_logger, sanitize_text, truncate


# Module logger
logger = get_logger("extract")

# Failure reasons
REASON_NOT_SCHOLARSHIP = "not_scholarship"
REASON_AI_UNAVAILABLE = "ai_unavailable"
REASON_CONTENT_FETCH_FAILED = "content_fetch_failed"

MIN_NAME_LENGTH = 5
MAX_NAME_LENGTH = 200
MIN_DESCRIPTION_LENGTH = 40
MAX_DESCRIPTION_LENGTH = 500
MAX_REQUIREMENTS = 10
SUFFICIENT_OPTIONAL_FIELDS = 2

# A deadline date must start within this many characters after its cue
DEADLINE_WINDOW = 60

# Separators between a page title and the site name
_TITLE_SEPARATORS = (" | ", " - ", " – ", " :: ")


@dataclass
class ExtractionResult:
    """
    Structured scholarship fields for one page.

    Fields not found on the page hold "Not specified", never None, so an
    absent field can be told apart from one that was not checked.
    """
    name: str = NOT_SPECIFIED
    deadline: str = NOT_SPECIFIED
    amount: str = NOT_SPECIFIED
    description: str = NOT_SPECIFIED
    requirements: Union[List[str], str] = NOT_SPECIFIED
    link: str = NOT_SPECIFIED

    def has(self, field_name: str) -> bool:
        """Whether the field holds a real value."""
        return is_specified(getattr(self, field_name))

    def to_record(self) -> ScholarshipRecord:
        """Convert to a catalog record; a missing deadline is stored as None."""
        return ScholarshipRecord(
            name=self.name,
            deadline=self.deadline if self.has("deadline") else None,
            amount=self.amount,
            description=self.description if self.has("description") else "No description",
            requirements=self.requirements,
            link=self.link,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ExtractionOutcome:
    """Result of ExtractionEngine.extract."""
    ok: bool
    data: Optional[ExtractionResult] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    used_ai: bool = False


def is_specified(value: Any) -> bool:
    """Whether a field value is present (not empty and not "Not specified")."""
    if value is None:
        return False
    if isinstance(value, (list, tuple)):
        return any(is_specified(item) for item in value)
    text = sanitize_text(str(value))
    return bool(text) and text.lower() != NOT_SPECIFIED.lower()


def is_sufficient(data: ExtractionResult) -> bool:
    """
    Decide whether a rule-based result can be used without the AI.

    True iff the name has at least MIN_NAME_LENGTH characters and at least
    two of amount, deadline, requirements and description are present.
    """
    if not data.has("name") or len(sanitize_text(data.name)) < MIN_NAME_LENGTH:
        return False

    present = sum(
        1 for field_name in ("amount", "deadline", "requirements", "description")
        if data.has(field_name)
    )
    return present >= SUFFICIENT_OPTIONAL_FIELDS


def _clean_title(title: str) -> str:
    for separator in _TITLE_SEPARATORS:
        if separator in title:
            parts = [part.strip() for part in title.split(separator)]
            for part in parts:
                if is_title_candidate(part):
                    return part
            return parts[0]
    return title


def _find_name(sections) -> str:
    for heading in sections_with_label(sections, LABEL_HEADING):
        if is_title_candidate(heading) and MIN_NAME_LENGTH <= len(heading) <= MAX_NAME_LENGTH:
            return heading

    for title in sections_with_label(sections, LABEL_TITLE):
        cleaned = _clean_title(title)
        if len(cleaned) >= MIN_NAME_LENGTH and not is_likely_false_positive(cleaned):
            return truncate(cleaned, MAX_NAME_LENGTH)

    return NOT_SPECIFIED


def _find_amount(sections) -> str:
    # Prefer amounts stated next to award words, then any currency amount
    texts = [text for _, text in sections]
    for text in texts:
        if has_scholarship_signal(text) or "amount" in text.lower():
            amount = find_amount(text)
            if amount:
                return amount
    for text in texts:
        amount = find_amount(text)
        if amount:
            return amount
    return NOT_SPECIFIED


def _find_deadline(sections) -> str:
    for _, text in sections:
        if not mentions_deadline(text):
            continue
        spans = find_date_spans(text)
        for cue_end in deadline_cue_positions(text):
            for start, _, raw in spans:
                if cue_end <= start <= cue_end + DEADLINE_WINDOW:
                    return format_deadline(raw) or raw
    return NOT_SPECIFIED


def _find_requirements(sections) -> Union[List[str], str]:
    items = []
    seen = set()
    for item in sections_with_label(sections, LABEL_LIST_ITEM):
        key = item.lower()
        if key in seen or not is_eligibility_item(item):
            continue
        seen.add(key)
        items.append(truncate(item, MAX_DESCRIPTION_LENGTH))
        if len(items) >= MAX_REQUIREMENTS:
            break
    return items or NOT_SPECIFIED


def _find_description(sections) -> str:
    for meta in sections_with_label(sections, LABEL_META):
        if len(meta) >= MIN_DESCRIPTION_LENGTH:
            return truncate(meta, MAX_DESCRIPTION_LENGTH)

    for paragraph in sections_with_label(sections, LABEL_PARAGRAPH):
        if len(paragraph) >= MIN_DESCRIPTION_LENGTH and not is_likely_false_positive(paragraph):
            return truncate(paragraph, MAX_DESCRIPTION_LENGTH)

    return NOT_SPECIFIED


def extract_with_rules(url: str, page_text: str) -> ExtractionResult:
    """
    Rule-based extraction over linearized page text.

    Args:
        url: Source URL, stored as the record's link.
        page_text: Text produced by the parse module (or plain text).

    Returns:
        ExtractionResult with "Not specified" for every field not found.
    """
    sections = split_sections(page_text)
    return ExtractionResult(
        name=_find_name(sections),
        deadline=_find_deadline(sections),
        amount=_find_amount(sections),
        description=_find_description(sections),
        requirements=_find_requirements(sections),
        link=url,
    )


def _coerce_text(value: Any, limit: int = MAX_DESCRIPTION_LENGTH) -> str:
    if value is None or isinstance(value, (dict, list, tuple, bool)):
        return NOT_SPECIFIED
    text = sanitize_text(str(value))
    return truncate(text, limit) if is_specified(text) else NOT_SPECIFIED


def _coerce_requirements(value: Any) -> Union[List[str], str]:
    if isinstance(value, (list, tuple)):
        items = [_coerce_text(item) for item in value if not isinstance(item, (dict, list))]
        items = [item for item in items if is_specified(item)]
        return items[:MAX_REQUIREMENTS] or NOT_SPECIFIED
    return _coerce_text(value)


def coerce_ai_payload(payload: Any, url: str) -> Optional[ExtractionResult]:
    """
    Validate an AI reply and coerce it into an ExtractionResult.

    Args:
        payload: The decoded reply (untrusted).
        url: Source URL, stored as the record's link.

    Returns:
        ExtractionResult, or None when the reply says the page is not a
        scholarship or carries no usable name.
    """
    if not isinstance(payload, dict):
        return None

    flag = payload.get("is_scholarship")
    if flag is False or payload.get("not_a_scholarship") is True:
        return None

    deadline = _coerce_text(payload.get("deadline"), MAX_NAME_LENGTH)
    if is_specified(deadline):
        deadline = format_deadline(deadline) or deadline

    amount = payload.get("amount")
    if isinstance(amount, (int, float)) and not isinstance(amount, bool):
        amount = f"{amount:g}"

    result = ExtractionResult(
        name=_coerce_text(payload.get("name") or payload.get("title"), MAX_NAME_LENGTH),
        deadline=deadline,
        amount=_coerce_text(amount, MAX_NAME_LENGTH),
        description=_coerce_text(payload.get("description")),
        requirements=_coerce_requirements(payload.get("requirements") or payload.get("eligibility")),
        link=url,
    )

    if not result.has("name") or len(result.name) < MIN_NAME_LENGTH:
        return None
    return result


def merge_results(primary: ExtractionResult, fallback: ExtractionResult) -> ExtractionResult:
    """Keep every present field of primary and fill the rest from fallback."""
    merged = ExtractionResult(link=primary.link if primary.has("link") else fallback.link)
    for field_name in ("name", "deadline", "amount", "description", "requirements"):
        value = getattr(primary, field_name)
        if not is_specified(value):
            value = getattr(fallback, field_name)
        setattr(merged, field_name, value)
    return merged


class ExtractionEngine:
    """Rule-based extraction with an AI fallback; has no side effects on storage."""

    def __init__(self, ai: Optional[AIExtractor] = None):
        self.ai = ai

    def extract(self, url: str, page_text: Optional[str]) -> ExtractionOutcome:
        """
        Extract a scholarship from page text.

        Args:
            url: Source URL.
            page_text: Linearized page text.

        Returns:
            ExtractionOutcome. On failure reason is one of
            "content_fetch_failed" (no text), "not_scholarship" (permanent)
            or "ai_unavailable" (worth retrying later).
        """
        if not page_text or not page_text.strip():
            return ExtractionOutcome(
                ok=False,
                reason=REASON_CONTENT_FETCH_FAILED,
                error="No page content"
            )

        if not has_scholarship_signal(page_text):
            logger.info(f"No scholarship signal on {url}")
            return ExtractionOutcome(ok=False, reason=REASON_NOT_SCHOLARSHIP)

        rules = extract_with_rules(url, page_text)
        if is_sufficient(rules):
            logger.info(f"Rule-based extraction sufficient for {url}: {rules.name}")
            return ExtractionOutcome(ok=True, data=rules)

        logger.info(f"Rule-based extraction insufficient for {url}, asking AI")

        if self.ai is None:
            return ExtractionOutcome(
                ok=False,
                reason=REASON_AI_UNAVAILABLE,
                error="AI extraction is not configured"
            )

        try:
            payload = self.ai.extract(url, page_text)
        except AIUnavailableError as e:
            logger.warning(f"AI extraction unavailable for {url}: {e}")
            return ExtractionOutcome(ok=False, reason=REASON_AI_UNAVAILABLE, error=str(e))

        ai_result = coerce_ai_payload(payload, url)
        if ai_result is None:
            logger.info(f"AI found no scholarship on {url}")
            return ExtractionOutcome(ok=False, reason=REASON_NOT_SCHOLARSHIP, used_ai=True)

        merged = merge_results(rules, ai_result)
        logger.info(f"Extracted scholarship from {url}: {merged.name}")
        return ExtractionOutcome(ok=True, data=merged, used_ai=True)

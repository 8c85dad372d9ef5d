"""
Deadline and amount parsing for the Scholarship Pipeline.

Scholarship pages and external feeds write deadlines and award amounts as
free text. This module holds the one parser set used everywhere:

Deadlines are read with dateutil, month first, time zones ignored. A
deadline must name a day, a month and a year; "March 2025" or "May 1"
are unparsable. When the whole string is not a date, the date-shaped
substrings are tried instead:
- 2025-03-01 and ISO datetimes (2025-03-01T12:00:00Z)
- 03/01/2025 and 03-01-2025 (month first)
- March 1, 2025 / Mar 1 2025 / Mar. 1st, 2025
- 1 March 2025 / 1 Mar 2025

A string holding more than one distinct date (a range, or an opening
date next to a closing date) is unparsable.

Amounts: the first currency-marked number ($, £, €, USD, dollars),
with "k" and "million" multipliers.

Anything else is reported as unparsable (None).
"""

import re
from datetime import date, datetime
from typing import List, Optional, Tuple

from dateutil import parser as date_parser


_MONTHS = (
    r"(?:Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|June?|July?|"
    r"Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)"
)

# Date shapes searched for inside longer text
DATE_PATTERNS = [
    re.compile(r"\b\d{4}-\d{2}-\d{2}(?:T\d{2}:\d{2}(?::\d{2})?)?\b"),
    re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b"),
    re.compile(r"\b\d{1,2}-\d{1,2}-\d{4}\b"),
    re.compile(rf"\b{_MONTHS}\.?\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}}\b", re.IGNORECASE),
    re.compile(rf"\b\d{{1,2}}(?:st|nd|rd|th)?\s+{_MONTHS}\.?,?\s+\d{{4}}\b", re.IGNORECASE),
]

# Two defaults that differ in every date field; a component missing from
# the text shows up as a difference between the two parses
_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))

AMOUNT_PATTERN = re.compile(
    r"(?:(?P<symbol>[$£€])\s?(?P<num1>\d[\d,]*(?:\.\d+)?)"
    r"|(?P<num2>\d[\d,]*(?:\.\d+)?)\s?(?:USD|dollars))"
    r"(?:\s?(?P<mult>k\b|K\b|million\b|Million\b))?"
)


def _parse_complete_date(text: str) -> Optional[date]:
    parsed = []
    for default in _DEFAULTS:
        try:
            value = date_parser.parse(text, default=default, dayfirst=False, ignoretz=True)
        except (ValueError, OverflowError):
            return None
        parsed.append(value.date())

    if parsed[0] != parsed[1]:
        return None
    return parsed[0]


def find_date_spans(text: str) -> List[Tuple[int, int, str]]:
    """
    Locate every date-shaped substring of text.

    Returns:
        Non-overlapping (start, end, substring) tuples in text order.
    """
    matches = []
    for pattern in DATE_PATTERNS:
        for match in pattern.finditer(text or ""):
            matches.append((match.start(), match.end(), match.group(0)))

    spans = []
    for start, end, raw in sorted(matches, key=lambda m: (m[0], -m[1])):
        if spans and start < spans[-1][1]:
            continue
        spans.append((start, end, raw))
    return spans


def parse_deadline(value) -> Optional[date]:
    """
    Parse a deadline value into a date.

    Args:
        value: A date, datetime or free-text deadline string.

    Returns:
        The parsed date, or None when the value names no complete date or
        more than one distinct date.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = re.sub(r"\s+", " ", str(value)).strip()
    if not text:
        return None

    spans = find_date_spans(text)
    if len(spans) <= 1:
        parsed = _parse_complete_date(text)
        if parsed is not None:
            return parsed

    found = {_parse_complete_date(raw) for _, _, raw in spans}
    found.discard(None)
    if len(found) != 1:
        return None
    return found.pop()


def format_deadline(value) -> Optional[str]:
    """Return the deadline as YYYY-MM-DD when parsable, otherwise None."""
    parsed = parse_deadline(value)
    return parsed.isoformat() if parsed else None


def is_expired(deadline, today: date) -> bool:
    """
    Decide whether a deadline has passed.

    A deadline is expired only when it parses to a day strictly before
    today. Unparsable or missing deadlines are never expired.
    """
    parsed = parse_deadline(deadline)
    return parsed is not None and parsed < today


def find_amount(text: str) -> Optional[str]:
    """Return the first currency-marked amount in text as written, or None."""
    match = AMOUNT_PATTERN.search(text or "")
    return match.group(0).strip() if match else None


def parse_amount(value) -> Optional[float]:
    """
    Best-effort numeric value of an amount.

    Accepts numbers, currency-marked text ("$5,000", "€2.5k", "$1 million",
    "2,500 USD") and bare numeric strings ("2500").

    Returns:
        The amount as float, or None when no number can be read.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    if not text:
        return None

    match = AMOUNT_PATTERN.search(text)
    if match:
        number = match.group("num1") or match.group("num2")
        multiplier = (match.group("mult") or "").lower()
    else:
        bare = re.fullmatch(r"(\d[\d,]*(?:\.\d+)?)\s*(k|million)?", text, re.IGNORECASE)
        if not bare:
            return None
        number = bare.group(1)
        multiplier = (bare.group(2) or "").lower()

    try:
        amount = float(number.replace(",", ""))
    except ValueError:
        return None

    if multiplier == "k":
        amount *= 1_000
    elif multiplier == "million":
        amount *= 1_000_000
    return amount

"""
Filter module for the Scholarship Pipeline.

This module holds the keyword sets the extraction engine relies on:
- Scholarship signal (is this page about funding at all?)
- Title keywords for picking the scholarship's name
- Deadline cues for locating the application deadline
- Eligibility cues for picking requirement list items
"""

import re
from typing import Iterable, List, Optional, Set


# Words that mark a page as being about a scholarship or similar award
SCHOLARSHIP_KEYWORDS: Set[str] = {
    "scholarship",
    "grant",
    "award",
    "fellowship",
    "bursary",
    "bursaries",
    "stipend",
    "financial aid",
    "tuition assistance",
    "funding opportunity",
}

# Words that make a heading a plausible scholarship name
TITLE_KEYWORDS: Set[str] = {
    "scholarship",
    "grant",
    "award",
    "fellowship",
    "bursary",
}

# Cues that a nearby date is the application deadline
DEADLINE_KEYWORDS: Set[str] = {
    "deadline",
    "due",
    "submit by",
    "closes",
    "closing date",
    "apply by",
    "applications close",
    "last day",
}

# Cues that a list item states an eligibility requirement
ELIGIBILITY_KEYWORDS: Set[str] = {
    "must",
    "eligible",
    "eligibility",
    "require",
    "required",
    "requirement",
    "minimum",
    "gpa",
    "applicant",
    "enrolled",
    "resident",
    "citizen",
}

# Keywords that indicate a page is navigation chrome, not content
FALSE_POSITIVE_KEYWORDS: Set[str] = {
    "login",
    "sign in",
    "sign up",
    "subscribe",
    "newsletter",
    "cookie",
    "privacy policy",
    "terms of service",
    "contact us",
    "add to cart",
    "checkout",
}


def normalize_text_for_matching(text: Optional[str]) -> str:
    """
    Normalize text for case-insensitive keyword matching.

    Args:
        text: Text to normalize. Can be None or empty string.

    Returns:
        Lowercase text with normalized whitespace, or empty string if input is None/empty.
    """
    if not text:
        return ""
    return re.sub(r"\s+", " ", text.lower())


def contains_any_keyword(text: Optional[str], keywords: Iterable[str]) -> bool:
    """
    Check if text contains any of the specified keywords.

    Performs case-insensitive matching on word boundaries (allowing a
    plural "s"), so "due" does not match "residue" and "grant" does not
    match "immigrant".

    Args:
        text: Text to search in.
        keywords: Keywords to look for.

    Returns:
        True if any keyword is found, False otherwise.
    """
    if not text:
        return False

    normalized = normalize_text_for_matching(text)

    for keyword in keywords:
        pattern = rf"\b{re.escape(keyword.lower())}s?\b"
        if re.search(pattern, normalized):
            return True

    return False


def has_scholarship_signal(text: Optional[str]) -> bool:
    """Whether the text mentions any scholarship-type funding at all."""
    return contains_any_keyword(text, SCHOLARSHIP_KEYWORDS)


def is_title_candidate(text: Optional[str]) -> bool:
    """Whether a heading looks like a scholarship name."""
    return contains_any_keyword(text, TITLE_KEYWORDS) and not is_likely_false_positive(text)


def mentions_deadline(text: Optional[str]) -> bool:
    return contains_any_keyword(text, DEADLINE_KEYWORDS)


def is_eligibility_item(text: Optional[str]) -> bool:
    return contains_any_keyword(text, ELIGIBILITY_KEYWORDS)


def is_likely_false_positive(text: Optional[str]) -> bool:
    """Whether text looks like site navigation rather than content."""
    return contains_any_keyword(text, FALSE_POSITIVE_KEYWORDS)


def deadline_cue_positions(text: Optional[str]) -> List[int]:
    """
    Offsets just past each deadline cue in text, in text order.

    Matching follows contains_any_keyword: case-insensitive, on word
    boundaries, plural "s" allowed, any whitespace between words.
    """
    if not text:
        return []

    ends = set()
    for keyword in DEADLINE_KEYWORDS:
        words = r"\s+".join(re.escape(word) for word in keyword.split())
        for match in re.finditer(rf"\b{words}s?\b", text, re.IGNORECASE):
            ends.add(match.end())
    return sorted(ends)

"""
Parse module for the Scholarship Pipeline.

This module turns a fetched HTML page into a flat, labelled text blob for
the extraction engine, and splits that blob back into labelled sections.

Each section is one line of the form "LABEL: text", separated by blank
lines, in document order within each label group:
TITLE, META DESCRIPTION, HEADING, PARAGRAPH, LIST ITEM, TEXT.
"""

from typing import List, Tuple

from bs4 import BeautifulSoup

from scholarship_pipeline.utils import get_logger, sanitize_text


# Module logger
logger = get_logger("parse")

LABEL_TITLE = "TITLE"
LABEL_META = "META DESCRIPTION"
LABEL_HEADING = "HEADING"
LABEL_PARAGRAPH = "PARAGRAPH"
LABEL_LIST_ITEM = "LIST ITEM"
LABEL_TEXT = "TEXT"

LABELS = (LABEL_TITLE, LABEL_META, LABEL_HEADING, LABEL_PARAGRAPH, LABEL_LIST_ITEM, LABEL_TEXT)

# Elements whose content is never page text
STRIP_TAGS = ["script", "style", "noscript", "template", "svg"]

# Minimum length for loose div/span text to be kept
MIN_LOOSE_TEXT_LENGTH = 6


def html_to_text(html: str) -> str:
    """
    Linearize an HTML page into labelled text sections.

    Script and style content is removed. The title, meta description,
    h1-h3 headings, paragraphs, list items and leaf div/span text are kept.

    Args:
        html: Raw HTML content string.

    Returns:
        Labelled text blob, empty string for empty input.
    """
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")

    for tag in soup(STRIP_TAGS):
        tag.decompose()

    sections: List[str] = []

    if soup.title:
        title = sanitize_text(soup.title.get_text())
        if title:
            sections.append(f"{LABEL_TITLE}: {title}")

    meta = soup.find("meta", attrs={"name": "description"})
    if meta and meta.get("content"):
        description = sanitize_text(str(meta["content"]))
        if description:
            sections.append(f"{LABEL_META}: {description}")

    for label, selector in (
        (LABEL_HEADING, ["h1", "h2", "h3"]),
        (LABEL_PARAGRAPH, ["p"]),
        (LABEL_LIST_ITEM, ["li"]),
    ):
        for element in soup.find_all(selector):
            text = sanitize_text(element.get_text(" "))
            if text:
                sections.append(f"{label}: {text}")

    # Leaf containers only, so nested text is not repeated
    for element in soup.find_all(["div", "span"]):
        if element.find(True) is not None:
            continue
        text = sanitize_text(element.get_text())
        if len(text) >= MIN_LOOSE_TEXT_LENGTH:
            sections.append(f"{LABEL_TEXT}: {text}")

    logger.debug(f"Linearized page into {len(sections)} section(s)")
    return "\n\n".join(sections)


def split_sections(page_text: str) -> List[Tuple[str, str]]:
    """
    Split page text into (label, text) pairs.

    Lines without a known label are returned with the TEXT label, so plain
    text from external sources can be processed the same way.

    Args:
        page_text: Text produced by html_to_text, or any plain text.

    Returns:
        List of (label, text) tuples in order.
    """
    sections = []
    for line in (page_text or "").splitlines():
        line = line.strip()
        if not line:
            continue

        for label in LABELS:
            prefix = f"{label}:"
            if line.startswith(prefix):
                text = sanitize_text(line[len(prefix):])
                if text:
                    sections.append((label, text))
                break
        else:
            sections.append((LABEL_TEXT, sanitize_text(line)))

    return sections


def sections_with_label(sections: List[Tuple[str, str]], label: str) -> List[str]:
    """Texts of the sections carrying the given label, in order."""
    return [text for section_label, text in sections if section_label == label]

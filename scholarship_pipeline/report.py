"""
Report module for the Scholarship Pipeline.

This module formats pipeline results as markdown text for the chat layer:
- Batch summaries (added, skipped, failed, not scholarships)
- Upload summaries for pre-structured scholarship data
- Cleanup summaries listing removed scholarships
- Dry-run previews of the links a batch would process
- A single scholarship "card"
"""

from typing import List, Optional, Union

from scholarship_pipeline.batch import BatchRun
from scholarship_pipeline.catalog import (
    NOT_SPECIFIED,
    STATUS_ADDED,
    STATUS_ERROR,
    STATUS_SKIPPED,
    RemovalResult,
    ScholarshipRecord,
    UpsertResult,
)
from scholarship_pipeline.links import SubmittedLink
from scholarship_pipeline.sweeper import SweepResult
from scholarship_pipeline.utils import truncate


PREVIEW_URL_LENGTH = 80
MAX_LISTED_NAMES = 10


def escape_markdown(text: str) -> str:
    """Escape brackets so names render as plain text inside links."""
    return text.replace("[", "\\[").replace("]", "\\]")


def _name_list(names: List[str], limit: int = MAX_LISTED_NAMES) -> List[str]:
    if not names:
        return ["None"]
    lines = [f"• {escape_markdown(name)}" for name in names[:limit]]
    if len(names) > limit:
        lines.append(f"…and {len(names) - limit} more")
    return lines


def format_batch_summary(run: BatchRun) -> str:
    """
    Format the summary of a processed batch.

    Args:
        run: Completed BatchRun.

    Returns:
        Markdown summary separating added, skipped and failed links.
    """
    if run.dry_run:
        return format_dry_run_preview(run.previewed)

    if not run.results:
        return "No unprocessed links found."

    lines = [
        "## Batch Processing Complete",
        "",
        f"**Processed:** {len(run.results)} link(s)",
        "",
        f"### ✅ Added ({len(run.added)})",
    ]
    lines.extend(_name_list([r.name or r.url for r in run.added]))

    lines.extend(["", f"### ⏭️ Already in catalog ({len(run.skipped)})"])
    lines.extend(_name_list([r.name or r.url for r in run.skipped]))

    lines.extend(["", f"### ❌ Failed ({len(run.failed)})"])
    if run.failed:
        for outcome in run.failed[:MAX_LISTED_NAMES]:
            lines.append(f"• {truncate(outcome.url, PREVIEW_URL_LENGTH)}: {outcome.reason or 'unknown error'}")
        if len(run.failed) > MAX_LISTED_NAMES:
            lines.append(f"…and {len(run.failed) - MAX_LISTED_NAMES} more")
    else:
        lines.append("None")

    lines.extend(["", f"### 🚫 Not scholarships ({len(run.not_scholarships)})"])
    lines.append(
        f"{len(run.not_scholarships)} link(s) filtered out" if run.not_scholarships else "None"
    )

    return "\n".join(lines)


def format_dry_run_preview(links: List[SubmittedLink]) -> str:
    """List the links a batch would process, URLs shortened for display."""
    if not links:
        return "No unprocessed links found."

    lines = [
        "## Batch Processing Preview",
        "",
        f"Would process {len(links)} link(s):",
        "",
    ]
    for i, link in enumerate(links, 1):
        lines.append(f"{i}. {truncate(link.url, PREVIEW_URL_LENGTH)}")
    return "\n".join(lines)


def format_upload_summary(results: List[UpsertResult]) -> str:
    """Summarize an upload of pre-structured scholarship data."""
    added = [r.name for r in results if r.status == STATUS_ADDED]
    skipped = [r.name for r in results if r.status == STATUS_SKIPPED]
    errors = [r for r in results if r.status == STATUS_ERROR]

    lines = [
        "## Scholarship Upload Results",
        "",
        f"**Added:** {len(added)}  **Skipped:** {len(skipped)}  **Errors:** {len(errors)}",
        "",
        "### Added",
    ]
    lines.extend(_name_list(added))
    lines.extend(["", "### Skipped (already exists)"])
    lines.extend(_name_list(skipped))

    if errors:
        lines.extend(["", "### Errors"])
        for result in errors:
            lines.append(f"• {escape_markdown(result.name or 'No Title')}: {result.reason}")

    return "\n".join(lines)


def format_cleanup_summary(result: Optional[Union[RemovalResult, SweepResult]]) -> str:
    """Summarize an expiry sweep; None means the sweep was skipped."""
    if result is None:
        return "A cleanup is already running, try again later."

    if result.removed_count == 0:
        return "No expired scholarships found."

    lines = [
        "## Cleanup Complete",
        "",
        f"Removed {result.removed_count} expired scholarship(s):",
        "",
    ]
    for record in result.removed:
        lines.append(f"• {escape_markdown(record.name)} (deadline: {record.deadline})")
    return "\n".join(lines)


def format_search_results(records: List[ScholarshipRecord]) -> str:
    if not records:
        return "No scholarships found matching your criteria."
    lines = [f"Found {len(records)} scholarship(s):", ""]
    for i, record in enumerate(records, 1):
        lines.append(f"{i}. {escape_markdown(record.name)} ({record.amount or NOT_SPECIFIED})")
    return "\n".join(lines)


def format_scholarship_card(record: ScholarshipRecord, position: Optional[int] = None, total: Optional[int] = None) -> str:
    """
    Format one scholarship for display.

    Args:
        record: Catalog record.
        position: 1-based position when paging through results.
        total: Number of results being paged through.

    Returns:
        Markdown card with name, amount, deadline, requirements and link.
    """
    requirements = record.requirements
    if isinstance(requirements, list):
        requirements = "\n".join(requirements) or NOT_SPECIFIED

    lines = [f"## {escape_markdown(record.name)}", ""]
    if record.description:
        lines.extend([record.description, ""])

    lines.extend([
        f"**Amount:** {record.amount or NOT_SPECIFIED}",
        f"**Deadline:** {record.deadline or NOT_SPECIFIED}",
        "**Requirements:**",
        requirements or NOT_SPECIFIED,
    ])

    if record.link and record.link != NOT_SPECIFIED:
        lines.extend(["", f"[Apply here]({record.link})"])

    if position is not None and total is not None:
        lines.extend(["", f"*Scholarship {position} of {total}*"])

    return "\n".join(lines)

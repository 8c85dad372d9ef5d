"""
Webhook handlers for the Scholarship Pipeline.

Framework-free handlers for the automation callback endpoints:

    POST /webhook/links            {"links": [...], "source": "..."}
    POST /webhook/scholarships     {"scholarships": [...] | {...} | "json"}
    GET  /api/links/unprocessed    ?limit=N
    POST /api/links/processed      {"linkIds": [...]}
    POST /api/process-link         {"url": "...", "linkId": N}

Each handler takes the decoded request body (or query values) and returns
a (status_code, payload) tuple for whatever HTTP server hosts them.
"""

import time
from typing import Any, Dict, Optional, Tuple

from scholarship_pipeline.catalog import CatalogStore
from scholarship_pipeline.extract import REASON_CONTENT_FETCH_FAILED, ExtractionEngine
from scholarship_pipeline.fetch import ContentFetcher
from scholarship_pipeline.ingress import LinkIntake
from scholarship_pipeline.links import LinkStore
from scholarship_pipeline.storage import StorageError
from scholarship_pipeline.utils import get_logger


# Module logger
logger = get_logger("webhooks")

DEFAULT_SOURCE = "automation"
DEFAULT_UNPROCESSED_LIMIT = 10

Response = Tuple[int, Dict[str, Any]]


def _bad_request(message: str) -> Response:
    return 400, {"error": message}


def _storage_failure(e: StorageError) -> Response:
    logger.error(f"Webhook storage error: {e}")
    return 500, {"error": str(e)}


def handle_link_webhook(intake: LinkIntake, body: Any) -> Response:
    """
    Store links pushed by an automation workflow.

    Returns:
        200 with one {url, success, message} entry per link, 400 if
        "links" is not a list of strings, 500 on storage failure.
    """
    if not isinstance(body, dict) or not isinstance(body.get("links"), list):
        return _bad_request("Links array is required")

    links = body["links"]
    if not all(isinstance(link, str) for link in links):
        return _bad_request("Links must be strings")

    source = body.get("source") or DEFAULT_SOURCE
    actor = f"{source}-{int(time.time() * 1000)}"

    results = []
    try:
        for link in links:
            stored = intake.submit(link, actor=actor, context=source)
            results.append({"url": stored.url, "success": stored.ok, "message": stored.message})
    except StorageError as e:
        return _storage_failure(e)

    logger.info(f"Received {len(links)} link(s) from {source}")
    return 200, {"success": True, "results": results}


def handle_scholarship_webhook(catalog: CatalogStore, body: Any) -> Response:
    """Upsert pre-structured scholarships, bypassing extraction."""
    if not isinstance(body, dict) or not body.get("scholarships"):
        return _bad_request("Scholarships data is required")

    try:
        results = catalog.ingest_payload(body["scholarships"])
    except ValueError as e:
        return _bad_request(str(e))
    except StorageError as e:
        return _storage_failure(e)

    return 200, {"success": True, "results": [r.to_dict() for r in results]}


def handle_unprocessed_links(link_store: LinkStore, limit: Any = None) -> Response:
    """Let an external worker pull the oldest unprocessed links."""
    try:
        limit = int(limit) if limit not in (None, "") else DEFAULT_UNPROCESSED_LIMIT
    except (TypeError, ValueError):
        return _bad_request("limit must be an integer")
    if limit < 1:
        return _bad_request("limit must be positive")

    try:
        links = link_store.list_unprocessed(limit)
    except StorageError as e:
        return _storage_failure(e)

    return 200, {
        "success": True,
        "links": [
            {"id": link.id, "url": link.url, "created_at": link.created_at.isoformat()}
            for link in links
        ],
    }


def handle_processed_ack(link_store: LinkStore, body: Any) -> Response:
    """Acknowledge links an external worker has finished with."""
    link_ids = body.get("linkIds") if isinstance(body, dict) else None
    if not isinstance(link_ids, list) or not link_ids:
        return _bad_request("linkIds array is required")

    if not all(isinstance(i, int) and not isinstance(i, bool) for i in link_ids):
        return _bad_request("linkIds must be integers")

    try:
        updated = link_store.mark_processed(link_ids)
    except StorageError as e:
        return _storage_failure(e)

    return 200, {"success": True, "updated": updated}


def handle_process_link(
    fetcher: ContentFetcher,
    engine: ExtractionEngine,
    link_store: LinkStore,
    body: Any
) -> Response:
    """
    Fetch and extract one URL for an external worker without storing it.

    When "linkId" is given and extraction succeeds, that link is marked
    processed.
    """
    url = body.get("url") if isinstance(body, dict) else None
    if not isinstance(url, str) or not url.strip():
        return _bad_request("URL is required")

    link_id: Optional[int] = body.get("linkId")
    if link_id is not None and (not isinstance(link_id, int) or isinstance(link_id, bool)):
        return _bad_request("linkId must be an integer")

    fetched = fetcher.fetch(url.strip())
    if not fetched.ok:
        return 200, {
            "success": False,
            "reason": REASON_CONTENT_FETCH_FAILED,
            "error": fetched.error_message or fetched.error_kind,
        }

    extracted = engine.extract(url.strip(), fetched.content)
    if not extracted.ok:
        return 200, {"success": False, "reason": extracted.reason, "error": extracted.error}

    if link_id is not None:
        try:
            link_store.mark_processed([link_id])
        except StorageError as e:
            return _storage_failure(e)

    return 200, {"success": True, "scholarship": extracted.data.to_dict()}

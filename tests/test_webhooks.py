"""
Tests for the webhooks module.

Tests cover:
- Link submission callbacks
- Pre-structured scholarship uploads
- Pull/acknowledge protocol for external workers
- Single-link processing
- Bad request and storage error responses
"""

from unittest.mock import Mock

from scholarship_pipeline.extract import (
    REASON_CONTENT_FETCH_FAILED,
    REASON_NOT_SCHOLARSHIP,
    ExtractionOutcome,
    ExtractionResult,
)
from scholarship_pipeline.fetch import ERROR_FORBIDDEN, FetchResult
from scholarship_pipeline.ingress import LinkIntake
from scholarship_pipeline.storage import StorageError
from scholarship_pipeline.webhooks import (
    handle_link_webhook,
    handle_process_link,
    handle_processed_ack,
    handle_scholarship_webhook,
    handle_unprocessed_links,
)


class TestLinkWebhook:
    """Tests for POST /webhook/links."""

    def test_links_stored_with_per_link_results(self, link_store):
        """Test that each link gets its own result entry."""
        link_store.store("https://example.edu/known")
        body = {"links": ["https://example.edu/new", "https://example.edu/known", "nope"], "source": "n8n"}

        status, payload = handle_link_webhook(LinkIntake(link_store), body)

        assert status == 200
        assert payload["success"] is True
        assert [r["success"] for r in payload["results"]] == [True, False, False]
        assert payload["results"][1]["message"] == "Link already exists in database"
        assert payload["results"][2]["message"] == "Invalid URL format"
        assert link_store.list_unprocessed()[-1].source_context == "n8n"

    def test_missing_links(self, link_store):
        """Test that a body without a links array is rejected."""
        intake = LinkIntake(link_store)
        assert handle_link_webhook(intake, {})[0] == 400
        assert handle_link_webhook(intake, {"links": "https://example.edu"})[0] == 400
        assert handle_link_webhook(intake, {"links": [1, 2]})[0] == 400
        assert handle_link_webhook(intake, None)[0] == 400

    def test_storage_error(self):
        """Test that storage failures give a 500."""
        intake = Mock()
        intake.submit.side_effect = StorageError("database is gone")

        status, payload = handle_link_webhook(intake, {"links": ["https://example.edu/a"]})

        assert status == 500
        assert "database is gone" in payload["error"]


class TestScholarshipWebhook:
    """Tests for POST /webhook/scholarships."""

    def test_upload(self, catalog):
        """Test that scholarships are upserted directly."""
        body = {"scholarships": [{"name": "Alpha Award"}, {"name": "ALPHA award"}]}

        status, payload = handle_scholarship_webhook(catalog, body)

        assert status == 200
        assert [r["status"] for r in payload["results"]] == ["added", "skipped"]
        assert payload["results"][1]["reason"] == "already exists"

    def test_missing_data(self, catalog):
        """Test that a body without scholarships is rejected."""
        assert handle_scholarship_webhook(catalog, {})[0] == 400

    def test_invalid_json_string(self, catalog):
        """Test that malformed JSON text is a bad request."""
        status, payload = handle_scholarship_webhook(catalog, {"scholarships": "{oops"})

        assert status == 400
        assert "Invalid JSON" in payload["error"]


class TestPullAndAck:
    """Tests for the external worker protocol."""

    def test_unprocessed_links(self, link_store):
        """Test pulling the oldest unprocessed links."""
        for i in range(3):
            link_store.store(f"https://example.edu/{i}")

        status, payload = handle_unprocessed_links(link_store, "2")

        assert status == 200
        assert [link["url"] for link in payload["links"]] == [
            "https://example.edu/0",
            "https://example.edu/1",
        ]
        assert set(payload["links"][0]) == {"id", "url", "created_at"}

    def test_default_and_invalid_limit(self, link_store):
        """Test the default limit and rejection of bad values."""
        assert handle_unprocessed_links(link_store)[0] == 200
        assert handle_unprocessed_links(link_store, "ten")[0] == 400
        assert handle_unprocessed_links(link_store, "0")[0] == 400

    def test_ack(self, link_store):
        """Test acknowledging processed links."""
        link = link_store.store("https://example.edu/a").link

        status, payload = handle_processed_ack(link_store, {"linkIds": [link.id]})

        assert status == 200
        assert payload["updated"] == 1
        assert link_store.get_unprocessed_count() == 0

    def test_ack_bad_body(self, link_store):
        """Test that malformed acknowledgements are rejected."""
        assert handle_processed_ack(link_store, {})[0] == 400
        assert handle_processed_ack(link_store, {"linkIds": []})[0] == 400
        assert handle_processed_ack(link_store, {"linkIds": ["1"]})[0] == 400


class TestProcessLink:
    """Tests for POST /api/process-link."""

    def test_success_marks_link(self, link_store):
        """Test that a successful extraction returns the data and marks the link."""
        link = link_store.store("https://example.edu/a").link
        fetcher = Mock()
        fetcher.fetch.return_value = FetchResult(url="https://example.edu/a", ok=True, content="page")
        engine = Mock()
        engine.extract.return_value = ExtractionOutcome(
            ok=True,
            data=ExtractionResult(name="Alpha Scholarship", link="https://example.edu/a")
        )

        status, payload = handle_process_link(
            fetcher, engine, link_store, {"url": "https://example.edu/a", "linkId": link.id}
        )

        assert status == 200
        assert payload["success"] is True
        assert payload["scholarship"]["name"] == "Alpha Scholarship"
        assert link_store.get(link.id).processed is True

    def test_fetch_failure(self, link_store):
        """Test that a failed fetch reports content_fetch_failed and leaves the link."""
        link = link_store.store("https://example.edu/a").link
        fetcher = Mock()
        fetcher.fetch.return_value = FetchResult(
            url="https://example.edu/a", ok=False, error_kind=ERROR_FORBIDDEN, error_message="Website access forbidden"
        )

        status, payload = handle_process_link(
            fetcher, Mock(), link_store, {"url": "https://example.edu/a", "linkId": link.id}
        )

        assert status == 200
        assert payload == {
            "success": False,
            "reason": REASON_CONTENT_FETCH_FAILED,
            "error": "Website access forbidden",
        }
        assert link_store.get(link.id).processed is False

    def test_extraction_failure(self, link_store):
        """Test that the extraction reason is passed through."""
        fetcher = Mock()
        fetcher.fetch.return_value = FetchResult(url="https://example.edu/a", ok=True, content="page")
        engine = Mock()
        engine.extract.return_value = ExtractionOutcome(ok=False, reason=REASON_NOT_SCHOLARSHIP)

        status, payload = handle_process_link(fetcher, engine, link_store, {"url": "https://example.edu/a"})

        assert status == 200
        assert payload["reason"] == REASON_NOT_SCHOLARSHIP

    def test_bad_requests(self, link_store):
        """Test that missing URLs and bad ids are rejected before fetching."""
        fetcher = Mock()

        assert handle_process_link(fetcher, Mock(), link_store, {})[0] == 400
        assert handle_process_link(fetcher, Mock(), link_store, {"url": "  "})[0] == 400
        assert handle_process_link(fetcher, Mock(), link_store, {"url": "https://a.edu", "linkId": "7"})[0] == 400
        fetcher.fetch.assert_not_called()

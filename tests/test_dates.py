"""
Tests for the dates module.

Tests cover:
- Supported deadline formats
- Dates embedded in longer text
- Expiry decisions, including unparsable deadlines
- Amount detection and numeric parsing
"""

from datetime import date, datetime

import pytest

from scholarship_pipeline.dates import (
    find_amount,
    find_date_spans,
    format_deadline,
    is_expired,
    parse_amount,
    parse_deadline,
)


class TestParseDeadline:
    """Tests for deadline parsing."""

    @pytest.mark.parametrize("value", [
        "2025-03-01",
        "2025-03-01T23:59:00Z",
        "2025-03-01T23:59:00+02:00",
        "03/01/2025",
        "03-01-2025",
        "March 1, 2025",
        "March 1 2025",
        "Mar 1, 2025",
        "Mar. 1st, 2025",
        "1 March 2025",
        "1st Mar 2025",
    ])
    def test_supported_formats(self, value):
        """Test that every supported format parses to the same day."""
        assert parse_deadline(value) == date(2025, 3, 1)

    def test_september_abbreviation(self):
        """Test that 'Sept' is understood."""
        assert parse_deadline("Sept 15, 2025") == date(2025, 9, 15)

    def test_date_inside_text(self):
        """Test that a date is found inside a longer deadline string."""
        assert parse_deadline("Applications close on April 30, 2025 at noon") == date(2025, 4, 30)

    @pytest.mark.parametrize("value", [
        "September 1, 2024 - March 1, 2030",
        "Opens 01/05/2026, closes 03/01/2026",
    ])
    def test_several_dates_unparsable(self, value):
        """Test that a string naming more than one date gives None."""
        assert parse_deadline(value) is None

    def test_repeated_date_parses(self):
        """Test that the same date written twice is still one deadline."""
        assert parse_deadline("March 1, 2025 (03/01/2025)") == date(2025, 3, 1)

    @pytest.mark.parametrize("value", ["March 2025", "May 1", "2025", "Friday"])
    def test_incomplete_dates_unparsable(self, value):
        """Test that a deadline missing its day, month or year gives None."""
        assert parse_deadline(value) is None

    @pytest.mark.parametrize("value", ["rolling", "TBD", "", None, "13/45/2025"])
    def test_unparsable(self, value):
        """Test that unknown deadlines give None."""
        assert parse_deadline(value) is None

    def test_date_objects_pass_through(self):
        """Test that date and datetime values are accepted."""
        assert parse_deadline(date(2025, 1, 2)) == date(2025, 1, 2)
        assert parse_deadline(datetime(2025, 1, 2, 8, 30)) == date(2025, 1, 2)

    def test_format_deadline(self):
        """Test ISO formatting of parsable deadlines."""
        assert format_deadline("March 1, 2025") == "2025-03-01"
        assert format_deadline("rolling") is None


class TestFindDateSpans:
    """Tests for locating dates in text."""

    def test_supported_shapes(self):
        """Test that dates are cut out of the surrounding text."""
        text = "Deadline: 2025-05-01 (extended)"
        assert find_date_spans(text) == [(10, 20, "2025-05-01")]
        assert [raw for _, _, raw in find_date_spans("Due by Jan 15, 2026.")] == ["Jan 15, 2026"]

    def test_spans_in_text_order(self):
        """Test that every date shape is located in order."""
        text = "Opens 01/05/2026. Deadline: March 1, 2026."
        assert [raw for _, _, raw in find_date_spans(text)] == ["01/05/2026", "March 1, 2026"]

    def test_no_date(self):
        """Test that text without a date gives no spans."""
        assert find_date_spans("Apply any time") == []


class TestIsExpired:
    """Tests for expiry decisions."""

    def test_past_deadline_expired(self):
        """Test that a deadline before today is expired."""
        assert is_expired("2020-01-01", date(2025, 1, 1)) is True

    def test_deadline_today_not_expired(self):
        """Test that a deadline of today is still open."""
        assert is_expired("2025-01-01", date(2025, 1, 1)) is False

    def test_future_deadline_not_expired(self):
        """Test that a future deadline is not expired."""
        assert is_expired("12/31/2030", date(2025, 1, 1)) is False

    def test_date_range_never_expired(self):
        """Test that a range starting in the past is kept."""
        assert is_expired("September 1, 2024 - March 1, 2030", date(2025, 6, 1)) is False

    @pytest.mark.parametrize("value", ["rolling", "Not specified", None, ""])
    def test_unparsable_never_expired(self, value):
        """Test that unparsable deadlines are kept."""
        assert is_expired(value, date(2099, 1, 1)) is False


class TestAmounts:
    """Tests for amount detection and parsing."""

    def test_find_amount(self):
        """Test currency-marked amounts found in text."""
        assert find_amount("Award of $5,000 per year") == "$5,000"
        assert find_amount("Up to 2,500 USD for tuition") == "2,500 USD"
        assert find_amount("No money mentioned") is None

    @pytest.mark.parametrize("value,expected", [
        ("$5,000", 5000.0),
        ("€2.5k", 2500.0),
        ("$1 million", 1_000_000.0),
        ("2,500 USD", 2500.0),
        ("1000 dollars", 1000.0),
        ("£750.50", 750.5),
        ("2500", 2500.0),
        ("10k", 10000.0),
        (1500, 1500.0),
    ])
    def test_parse_amount(self, value, expected):
        """Test numeric parsing of amounts."""
        assert parse_amount(value) == expected

    @pytest.mark.parametrize("value", ["Not specified", "varies", "", None, True])
    def test_parse_amount_unparsable(self, value):
        """Test that non-numeric amounts give None."""
        assert parse_amount(value) is None

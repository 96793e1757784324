"""Tests for local date normalization."""

from datetime import UTC, date, datetime, timedelta

import pytest

from offlinegate.dates import DateError, format_date_local, parse_date_local


class TestFormatDateLocal:
    """Tests for format_date_local function."""

    def test_local_midnight_keeps_calendar_date(self) -> None:
        """Local midnight in Jakarta is the previous day in UTC but formats as the local day."""
        midnight = parse_date_local("2024-01-04")

        assert midnight.astimezone(UTC).strftime("%Y-%m-%d") == "2024-01-03"
        assert format_date_local(midnight) == "2024-01-04"

    def test_converts_utc_instant_to_local_day(self) -> None:
        """20:00 UTC is already the next day in Jakarta (UTC+7)."""
        instant = datetime(2024, 1, 3, 20, 0, tzinfo=UTC)

        assert format_date_local(instant) == "2024-01-04"
        assert format_date_local(instant, "UTC") == "2024-01-03"

    def test_plain_date(self) -> None:
        assert format_date_local(date(2024, 2, 29)) == "2024-02-29"

    def test_naive_datetime_taken_as_local(self) -> None:
        assert format_date_local(datetime(2024, 1, 4, 23, 59)) == "2024-01-04"


class TestParseDateLocal:
    """Tests for parse_date_local function."""

    def test_returns_aware_local_midnight(self) -> None:
        parsed = parse_date_local("2024-01-04")

        assert parsed.date() == date(2024, 1, 4)
        assert (parsed.hour, parsed.minute) == (0, 0)
        assert parsed.utcoffset() == timedelta(hours=7)

    def test_strips_whitespace(self) -> None:
        assert parse_date_local(" 2024-01-04 ").date() == date(2024, 1, 4)

    @pytest.mark.parametrize("text", ["", "04/01/2024", "2024-02-30", "yesterday"])
    def test_rejects_invalid_dates(self, text: str) -> None:
        with pytest.raises(DateError, match="expected YYYY-MM-DD"):
            parse_date_local(text)

    def test_date_error_is_value_error(self) -> None:
        assert issubclass(DateError, ValueError)


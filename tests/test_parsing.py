"""Tests for tolerant payload parsing helpers."""

from datetime import date, datetime

import pytest

from payer_integrations.utils.parsing import (
    format_date_iso,
    format_date_yyyymmdd,
    parse_amount,
    parse_boolean,
    parse_date_field,
    parse_flexible_date,
)


class TestParseAmount:
    """Tests for monetary amount parsing."""

    def test_numeric_string(self) -> None:
        """Plain numeric strings parse as floats."""
        assert parse_amount("25") == 25.0
        assert parse_amount("0.2") == 0.2

    def test_numbers_pass_through(self) -> None:
        """Ints and floats are returned as floats."""
        assert parse_amount(40) == 40.0
        assert parse_amount(12.5) == 12.5

    def test_currency_formatting(self) -> None:
        """Dollar signs and thousands separators are ignored."""
        assert parse_amount("$1,200.50") == 1200.5

    def test_trailing_text(self) -> None:
        """A leading number is read even with trailing text."""
        assert parse_amount("25 per visit") == 25.0

    def test_missing_or_garbage_is_zero(self) -> None:
        """None, garbage, NaN and booleans all default to 0."""
        assert parse_amount(None) == 0.0
        assert parse_amount("") == 0.0
        assert parse_amount("n/a") == 0.0
        assert parse_amount(float("nan")) == 0.0
        assert parse_amount("NaN") == 0.0
        assert parse_amount(True) == 0.0
        assert parse_amount({"value": 3}) == 0.0


class TestParseBoolean:
    """Tests for loosely typed booleans."""

    @pytest.mark.parametrize("value", ["true", "TRUE", "yes", "Y", "y", "1", " Yes "])
    def test_truthy_strings(self, value: str) -> None:
        """Common truthy spellings are True, case-insensitively."""
        assert parse_boolean(value) is True

    @pytest.mark.parametrize("value", ["false", "no", "N", "0", "", "maybe", None, 1])
    def test_everything_else_is_false(self, value: object) -> None:
        """Anything not recognised as truthy is False."""
        assert parse_boolean(value) is False

    def test_bool_passes_through(self) -> None:
        """Real booleans are returned unchanged."""
        assert parse_boolean(True) is True
        assert parse_boolean(False) is False


class TestDates:
    """Tests for date parsing and formatting."""

    def test_parse_flexible_formats(self) -> None:
        """ISO, US and compact layouts all parse."""
        expected = datetime(2024, 1, 15)
        assert parse_flexible_date("2024-01-15") == expected
        assert parse_flexible_date("01/15/2024") == expected
        assert parse_flexible_date("20240115") == expected

    def test_parse_iso_timestamp(self) -> None:
        """A full timestamp is read by its date part."""
        assert parse_flexible_date("2024-01-15T10:30:00Z") == datetime(2024, 1, 15)

    def test_parse_rejects_out_of_range_and_garbage(self) -> None:
        """Implausible years and unknown layouts return None."""
        assert parse_flexible_date("1850-01-01") is None
        assert parse_flexible_date("not a date") is None
        assert parse_flexible_date(None) is None

    def test_format_yyyymmdd(self) -> None:
        """Dates are formatted in compact X12 form."""
        assert format_date_yyyymmdd("1980-05-15") == "19800515"
        assert format_date_yyyymmdd(date(2024, 2, 29)) == "20240229"

    def test_format_iso(self) -> None:
        """Dates are formatted as YYYY-MM-DD."""
        assert format_date_iso("19800515") == "1980-05-15"
        assert format_date_iso(datetime(2024, 3, 1, 8, 0)) == "2024-03-01"

    def test_format_rejects_garbage(self) -> None:
        """Unparseable input raises instead of producing a bad date."""
        with pytest.raises(ValueError, match="Unrecognized date"):
            format_date_yyyymmdd("someday")

    def test_parse_date_field(self) -> None:
        """Compact dates are expanded and other values kept as-is."""
        assert parse_date_field("20240101") == "2024-01-01"
        assert parse_date_field("2024-01-01") == "2024-01-01"
        assert parse_date_field("") is None
        assert parse_date_field(None) is None

"""
Unit tests for input validation helpers.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from exceptions import ValidationError
from validation import (
    optional_id,
    optional_text,
    parse_money,
    parse_timestamp,
    require_text,
    validate_color,
    validate_id,
    validate_reset_day,
)


class TestParseMoney:
    """Money parsing accepts exact decimals only."""

    @pytest.mark.parametrize("value, expected", [
        ("12.50", Decimal("12.50")),
        ("12.5", Decimal("12.50")),
        ("7", Decimal("7.00")),
        (7, Decimal("7.00")),
        (Decimal("3.10"), Decimal("3.10")),
        (" 4.00 ", Decimal("4.00")),
    ])
    def test_valid_values(self, value, expected):
        assert parse_money(value) == expected

    def test_float_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_money(12.5)
        assert exc_info.value.field == "amount"

    @pytest.mark.parametrize("value", ["1.234", "abc", "1e3", "", "12,50", None, True])
    def test_malformed_rejected(self, value):
        with pytest.raises(ValidationError):
            parse_money(value)

    def test_sub_cent_decimal_rejected(self):
        with pytest.raises(ValidationError):
            parse_money(Decimal("1.005"))

    def test_negative_requires_opt_in(self):
        with pytest.raises(ValidationError):
            parse_money("-5")
        assert parse_money("-5", allow_negative=True) == Decimal("-5.00")

    def test_strictly_positive(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_money("0", "budget", strictly_positive=True)
        assert exc_info.value.field == "budget"
        assert exc_info.value.details["field"] == "budget"


class TestTextAndIds:
    """Tests for text, color and id helpers."""

    def test_require_text_strips(self):
        assert require_text("  Rent ", "name") == "Rent"

    @pytest.mark.parametrize("value", ["", "   ", None, 42])
    def test_require_text_rejects_blank(self, value):
        with pytest.raises(ValidationError):
            require_text(value, "name")

    def test_require_text_max_length(self):
        with pytest.raises(ValidationError):
            require_text("x" * 101, "name")

    def test_optional_text(self):
        assert optional_text(None, "amount") is None
        assert optional_text("  ", "amount") is None
        assert optional_text("2 kg", "amount") == "2 kg"

    def test_color_normalized(self):
        assert validate_color("#ABCDEF") == "#abcdef"

    @pytest.mark.parametrize("value", ["red", "#abc", "abcdef", "#gggggg", None])
    def test_bad_color(self, value):
        with pytest.raises(ValidationError):
            validate_color(value)

    def test_ids(self):
        assert validate_id(3, "category_id") == 3
        assert validate_id("4", "category_id") == 4
        assert optional_id(None, "category_id") is None
        for bad in (0, -1, "x", True, 1.0):
            with pytest.raises(ValidationError):
                validate_id(bad, "category_id")

    @pytest.mark.parametrize("value", ["²", "١٢", "1²", " "])
    def test_non_ascii_digits_rejected(self, value):
        with pytest.raises(ValidationError) as exc_info:
            validate_id(value, "category_id")
        assert exc_info.value.field == "category_id"


class TestResetDay:
    @pytest.mark.parametrize("value", [1, 15, 31, "28"])
    def test_valid(self, value):
        assert validate_reset_day(value) == int(value)

    @pytest.mark.parametrize("value", [0, 32, "abc", None, True, 1.5])
    def test_invalid(self, value):
        with pytest.raises(ValidationError) as exc_info:
            validate_reset_day(value)
        assert exc_info.value.field == "reset_day"

    @pytest.mark.parametrize("value", ["²", "٣", "3²"])
    def test_non_ascii_digits_rejected(self, value):
        with pytest.raises(ValidationError) as exc_info:
            validate_reset_day(value)
        assert exc_info.value.field == "reset_day"


class TestParseTimestamp:
    def test_date_string(self):
        assert parse_timestamp("2024-05-01") == datetime(2024, 5, 1)

    def test_datetime_string(self):
        assert parse_timestamp("2024-05-01T10:30:00") == datetime(2024, 5, 1, 10, 30)

    def test_utc_suffix_made_naive(self):
        assert parse_timestamp("2024-05-01T10:30:00Z").tzinfo is None

    def test_date_object(self):
        assert parse_timestamp(date(2024, 5, 1)) == datetime(2024, 5, 1)

    @pytest.mark.parametrize("value", ["yesterday", "2024-13-01", 20240501])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            parse_timestamp(value)

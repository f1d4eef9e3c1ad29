"""Tests for currency formatting."""

import pytest

from cashbook.formatting import format_usdt, format_vnd
from cashbook.models.sheet import AppPreferences


def prefs(**display):
    return AppPreferences.model_validate({"display": display})


class TestFormatVnd:
    """Tests for VND display."""

    @pytest.mark.parametrize("value,expected", [
        (1000000, "1,000,000₫"),
        ("1,500₫", "1,500₫"),
        (-500, "-500₫"),
        (1234.5, "1,235₫"),
        (0, "0₫"),
        ("abc", "0₫"),
        (None, "0₫"),
    ])
    def test_defaults(self, value, expected):
        assert format_vnd(value) == expected

    def test_hide_zero(self):
        assert format_vnd(0, prefs(showZero=False)) == ""
        assert format_vnd(0.4, prefs(showZero=False)) == ""

    def test_rounding_modes(self):
        assert format_vnd(1.9, prefs(rounding="floor")) == "1₫"
        assert format_vnd(1.1, prefs(rounding="ceil")) == "2₫"

    def test_symbol_position_and_separator(self):
        custom = AppPreferences.model_validate({
            "currency": {"symbol": "đ", "position": "before", "separator": "."},
        })
        assert format_vnd(1000000, custom) == "đ1.000.000"
        assert format_vnd(-2000, custom) == "-đ2.000"


class TestFormatUsdt:
    """Tests for USDT/USD display."""

    def test_two_decimals(self):
        assert format_usdt(1000.5) == "1,000.50$"
        assert format_usdt("12") == "12.00$"

    def test_unreadable(self):
        assert format_usdt("x") == "0$"
        assert format_usdt(None, prefs(showZero=False)) == ""

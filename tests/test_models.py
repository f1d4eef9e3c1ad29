"""
Tests for the Cashbook data models

Test strategy:
1. Unit tests for individual models (rows, entries, preferences, rates)
2. Audit event builders and their serialized forms
3. No real API calls in tests
"""

import json
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from cashbook.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from cashbook.models.rate import AlertState, ManualRate, RateQuote, RateSource
from cashbook.models.sheet import (
    AppPreferences,
    ConversionRow,
    ExpenseEntry,
    IncomeEntry,
    RateSettings,
    SheetKind,
    WorkRow,
)


class TestSheetRows:
    """Tests for spreadsheet row models."""

    def test_legacy_numbers_are_coerced_to_text(self):
        """Older data stored numbers and nulls in cells."""
        row = WorkRow(money=1500.0, chia=None, khoa=12)
        assert row.money == "1500"
        assert row.chia == ""
        assert row.khoa == "12"

    def test_unknown_fields_are_ignored(self):
        """Test that extra stored fields do not break loading."""
        row = ConversionRow(usdt="10", legacy="x")
        assert row.usdt == "10"
        assert "legacy" not in row.to_storage()

    def test_blank_row(self):
        """Test is_blank ignores whitespace-only cells."""
        assert WorkRow(name="   ").is_blank()
        assert not WorkRow(money="1").is_blank()

    def test_tt_is_read_only(self):
        """Test the computed column is declared read-only."""
        assert "tt" in WorkRow.READ_ONLY
        assert WorkRow.COLUMNS[-1] == "tt"

    def test_sheet_kind_storage_keys(self):
        """Test storage keys and labels of every sheet."""
        assert SheetKind.AE.storage_key == "AE_sheet"
        assert SheetKind.AE_QT.storage_key == "AEQT_sheet"
        assert SheetKind.CONVERSION.storage_key == "dashboard_conversion"
        assert SheetKind.WITHDRAW.storage_key == "dashboard_withdraw"
        assert SheetKind.AE_QT.label == "AE-QT"


class TestBookEntries:
    """Tests for expense book entries."""

    def test_entry_gets_unique_id(self):
        """Test that ids are generated per entry."""
        assert IncomeEntry().id != IncomeEntry().id

    def test_expense_category_defaults_to_other(self):
        """Test the default category."""
        assert ExpenseEntry().category == "Khác"

    def test_negative_amount_rejected(self):
        """Test that negative amounts are rejected."""
        with pytest.raises(ValueError):
            IncomeEntry(amount=-1)

    def test_source_length_limited(self):
        """Test that income sources are capped at 100 characters."""
        with pytest.raises(ValueError):
            IncomeEntry(source="x" * 101)


class TestPreferences:
    """Tests for stored preferences."""

    def test_defaults(self):
        """Test VND after the number, crypto with two decimals."""
        prefs = AppPreferences()
        assert prefs.currency.symbol == "₫"
        assert prefs.currency.position == "after"
        assert prefs.crypto.decimals == 2
        assert prefs.display.show_zero is True

    def test_camel_case_show_zero(self):
        """Test the stored camelCase key is read and written."""
        prefs = AppPreferences.model_validate({"display": {"showZero": False}})
        assert prefs.display.show_zero is False
        assert prefs.model_dump(by_alias=True)["display"]["showZero"] is False

    def test_invalid_rounding_rejected(self):
        """Test rounding mode must be round, floor or ceil."""
        with pytest.raises(ValueError):
            AppPreferences.model_validate({"display": {"rounding": "banker"}})

    def test_rate_settings_aliases(self):
        """Test rate-settings keeps its camelCase storage form."""
        settings = RateSettings.model_validate({"sellPrice": 26000, "usdRate": 25400})
        assert settings.sell_price == 26000
        assert settings.buy_price is None
        assert settings.usd_rate == 25400


class TestRateModels:
    """Tests for quote, manual rate and alert snapshot."""

    def test_quote_response_shape(self):
        """Test the proxy's JSON body."""
        quote = RateQuote(sell_price=26000, buy_price=25900, source=RateSource.BINANCE_P2P)
        body = quote.to_response()
        assert body["sellPrice"] == 26000
        assert body["buyPrice"] == 25900
        assert body["source"] == "binance-p2p"
        assert "lastFetchedAt" in body

    def test_manual_rate_requires_positive_prices(self):
        """Test that a manual rate of zero is refused."""
        with pytest.raises(ValueError):
            ManualRate(sell_price=0, buy_price=25000)

    def test_manual_rate_age(self):
        """Test age in days, naive timestamps read as UTC."""
        now = datetime(2024, 12, 15, tzinfo=timezone.utc)
        rate = ManualRate(sell_price=1, buy_price=1, timestamp=datetime(2024, 12, 12))
        assert rate.age_days(now) == pytest.approx(3)

    def test_alert_state_round_trip(self):
        """Test the snapshot file uses camelCase keys."""
        state = AlertState(rate=26000, last_change_percent=0.7, threshold_percent=0.5)
        data = state.to_json_dict()
        assert data["lastChangePercent"] == 0.7
        assert AlertState.model_validate(data).rate == 26000


class TestAuditModels:
    """Tests for audit event models."""

    def test_cell_edited_event(self):
        """Test building a cell edit event."""
        correlation_id = uuid4()
        event = AuditEventBuilder.cell_edited(
            "AE_sheet", 3, "money", {"money": "1000", "date": "15/12/2024"}, correlation_id
        )
        assert event.event_type == AuditEventType.CELL_EDITED
        assert event.entity_id == "AE_sheet"
        assert event.correlation_id == correlation_id
        assert event.details["changes"]["money"] == "1000"
        assert event.is_user_action is True

    def test_rejected_cell_is_warning(self):
        """Test that rejected input is logged as a warning."""
        event = AuditEventBuilder.cell_rejected("AE_sheet", 0, "money", "-5", "negative")
        assert event.severity == AuditSeverity.WARNING
        assert event.details["reason"] == "negative"

    def test_sync_failed_without_key(self):
        """Test a whole-pull failure names all keys."""
        event = AuditEventBuilder.sync_failed(None, "timeout")
        assert "all keys" in event.description
        assert event.error_message == "timeout"

    def test_to_sheets_row(self):
        """Test conversion to a Google Sheets row."""
        event = AuditEventBuilder.rate_fetched("binance-p2p", 26000, 25900)
        row = event.to_sheets_row()
        assert len(row) == 11
        assert row[2] == "rate_fetched"
        assert json.loads(row[8])["sell_price"] == 26000
        assert row[10] == "False"

    def test_to_log_dict(self):
        """Test conversion to a structured log dict."""
        event = AuditEvent(event_type=AuditEventType.SYSTEM_ERROR, description="boom")
        log = event.to_log_dict()
        assert log["event_type"] == "system_error"
        assert log["correlation_id"] is None

    def test_timestamp_is_utc(self):
        """Test events are stamped in UTC."""
        event = AuditEventBuilder.export_created("AE_sheet", "csv", 2)
        assert event.timestamp.tzinfo is not None
        assert datetime.now(timezone.utc) - event.timestamp < timedelta(minutes=1)

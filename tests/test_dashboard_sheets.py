"""Tests for the conversion and withdraw sheets and the totals table."""

from datetime import date

from cashbook.models.rate import RateQuote, RateSource
from cashbook.sheets import ConversionSheet, WithdrawSheet, compute_totals


TODAY = date(2024, 12, 15)


def quote(sell=26010.6, buy=25880.4):
    return RateQuote(sell_price=sell, buy_price=buy, source=RateSource.BINANCE_P2P)


class TestConversionSheet:
    """Tests for the "Ngày đổi" cascade."""

    def setup_method(self):
        self.sheet = ConversionSheet(clock=lambda: TODAY, quote=quote())

    def test_price_filled_from_buy_price(self):
        self.sheet.set_cell(0, "usdt", "100")
        row = self.sheet.rows[0]
        assert row.date == "15/12/2024"
        assert row.price == "25880"
        assert row.vnd == "2588000"

    def test_auto_price_falls_back_to_sell(self):
        self.sheet.quote = quote(buy=0)
        assert self.sheet.auto_price() == 26011

    def test_no_quote_no_price(self):
        self.sheet.quote = None
        self.sheet.set_cell(0, "usd", "$50")
        row = self.sheet.rows[0]
        assert row.usd == "50"
        assert row.price == ""
        assert row.vnd == ""

    def test_typed_price_replaces_auto_price(self):
        self.sheet.set_cell(0, "usdt", "10")
        self.sheet.set_cell(0, "price", "25,000")
        assert self.sheet.rows[0].price == "25000"
        assert self.sheet.rows[0].vnd == "250000"

    def test_manual_vnd_wins_until_quantity_changes(self):
        self.sheet.set_cell(0, "usdt", "100")
        self.sheet.set_cell(0, "vnd", "3,000,000₫")
        assert self.sheet.rows[0].vnd == "3000000"

        self.sheet.set_cell(0, "usdt", "200")
        assert self.sheet.rows[0].vnd == "5176000"

    def test_clearing_quantities_clears_price_and_vnd(self):
        self.sheet.set_cell(0, "usdt", "100")
        self.sheet.set_cell(0, "usdt", "")
        row = self.sheet.rows[0]
        assert row.price == ""
        assert row.vnd == ""
        assert row.date == "15/12/2024"

    def test_row_appended_when_last_row_complete(self):
        sheet = ConversionSheet(min_rows=1, clock=lambda: TODAY, quote=quote())
        update = sheet.set_cell(0, "usdt", "100")
        assert update.row_appended
        assert len(sheet) == 2
        assert sheet.rows[1].is_blank()

    def test_growth_capped(self):
        sheet = ConversionSheet(min_rows=1, max_rows=1, clock=lambda: TODAY, quote=quote())
        assert not sheet.set_cell(0, "usdt", "100").row_appended
        assert len(sheet) == 1

    def test_only_last_row_triggers_append(self):
        sheet = ConversionSheet(min_rows=2, clock=lambda: TODAY, quote=quote())
        assert not sheet.set_cell(0, "usdt", "100").row_appended
        assert len(sheet) == 2


class TestWithdrawSheet:
    """Tests for the "Ngày lấy" cascade."""

    def test_amount_cleaned_and_dated(self):
        sheet = WithdrawSheet(clock=lambda: TODAY)
        sheet.set_cell(0, "bankdep", "1,000,000₫")
        assert sheet.rows[0].bankdep == "1000000"
        assert sheet.rows[0].date == "15/12/2024"

    def test_staff_alone_does_not_date(self):
        sheet = WithdrawSheet(clock=lambda: TODAY)
        sheet.set_cell(0, "staff", "An")
        assert sheet.rows[0].date == ""

    def test_row_appended(self):
        sheet = WithdrawSheet(min_rows=1, clock=lambda: TODAY)
        assert sheet.set_cell(0, "visa", "200").row_appended
        assert len(sheet) == 2

    def test_total(self):
        sheet = WithdrawSheet([{"bankdep": "100", "bankbad": "50", "visa": "25"}, {"visa": "5"}])
        assert sheet.total() == 180


class TestDashboardTotals:
    """Tests for the totals table."""

    def test_totals(self):
        conversion = ConversionSheet([
            {"date": "01/12/2024", "usdt": "100", "price": "25000", "vnd": "2500000"},
            {"date": "10/12/2024", "usd": "10", "price": "26000"},
            {"date": "30/11/2024", "usdt": "-5", "price": "24000", "vnd": "0"},
        ], clock=lambda: TODAY)
        withdraw = WithdrawSheet([
            {"date": "01/12/2024", "bankdep": "1000", "bankbad": "-10", "visa": "30"},
        ])

        totals = compute_totals(conversion, withdraw)
        assert totals.total_usdt == 100
        assert totals.total_usd == 10
        assert totals.total_conversion_vnd == 2500000 + 260000 - 120000
        assert totals.month_avg_price == 25500
        assert totals.total_bankdep == 1000
        assert totals.total_bankbad == 0
        assert totals.total_withdraw == 1030

    def test_empty(self):
        totals = compute_totals(ConversionSheet(clock=lambda: TODAY), WithdrawSheet())
        assert totals.month_avg_price == 0
        assert totals.total_withdraw == 0

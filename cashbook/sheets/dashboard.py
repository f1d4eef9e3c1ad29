"""
Dashboard Sheets

The two spreadsheets on the dashboard:
- Conversion ("Ngày đổi"): USDT/USD sold for VND at a price
- Withdraw ("Ngày lấy"): cash taken out through Bank đẹp, Bank xấu, Visa

Both start with 50 rows and grow one row at a time, up to 200, once
the last row has been filled in completely.

DESIGN DECISION: The conversion sheet does not fetch rates itself.
The caller assigns the latest quote to `sheet.quote`; the price
auto-fill reads it and does nothing when there is no quote.
"""

import re
from datetime import date
from typing import ClassVar, Optional

from pydantic import BaseModel

from cashbook.formulas import round_half_up, sanitize_number
from cashbook.models.rate import RateQuote
from cashbook.models.sheet import ConversionRow, SheetKind, WithdrawRow
from cashbook.sheets.base import Sheet, number_text, parse_sheet_date, positive


_CONVERSION_JUNK = re.compile(r"[₫$,]")
_WITHDRAW_JUNK = re.compile(r"[₫,]")


# =============================================================================
# CONVERSION
# =============================================================================

class ConversionSheet(Sheet[ConversionRow]):
    """
    The "Ngày đổi" sheet.

    VND is normally (USDT + USD) x price; a VND amount typed by hand
    wins over the computed one.
    """

    KIND: ClassVar[SheetKind] = SheetKind.CONVERSION
    MONEY_COLUMNS: ClassVar[tuple[str, ...]] = ("usdt", "usd", "price", "vnd")

    def __init__(self, *args, quote: Optional[RateQuote] = None, **kwargs):
        kwargs.setdefault("max_rows", 200)
        super().__init__(*args, **kwargs)
        self.quote = quote

    def auto_price(self) -> int:
        """
        Price to pre-fill from the current quote.

        The rounded buy price when there is one, otherwise the rounded
        sell price or cross rate. 0 without a quote.
        """
        if self.quote is None:
            return 0
        buy = int(round_half_up(self.quote.buy_price, 0))
        if buy > 0:
            return buy
        fallback = self.quote.sell_price or self.quote.buy_price or self.quote.cross_rate or 0
        return int(round_half_up(fallback, 0))

    def _cascade(self, row_index: int, row: ConversionRow, column: str, value: str) -> bool:
        if column in self.MONEY_COLUMNS:
            value = _CONVERSION_JUNK.sub("", value)

        setattr(row, column, value)

        if not positive(row.usdt) and not positive(row.usd):
            row.price = ""
            row.vnd = ""
            return False

        if column in ("usdt", "usd", "price") and value and not row.date.strip():
            row.date = self.today()

        if column in ("usdt", "usd") and value and sanitize_number(row.price) == 0:
            price = self.auto_price()
            if price > 0:
                row.price = str(price)

        if column in ("usdt", "usd", "price"):
            # A stale VND would otherwise win over the new quantity
            row.vnd = ""

        if column in self.MONEY_COLUMNS:
            total = self.engine.calculate(self.KIND, "vnd", row) or 0
            row.vnd = number_text(total) if total else ""

        if self.is_row_complete(row):
            return self._append_if_last_complete()
        return False

    def is_row_complete(self, row: ConversionRow) -> bool:
        return (
            bool(row.date.strip())
            and (positive(row.usdt) or positive(row.usd))
            and positive(row.price)
            and positive(row.vnd)
        )

    def row_vnd(self, row: ConversionRow) -> float:
        return self.engine.calculate(self.KIND, "vnd", row) or 0

    def total_vnd(self) -> float:
        return sum(self.row_vnd(row) for row in self.rows)


# =============================================================================
# WITHDRAW
# =============================================================================

class WithdrawSheet(Sheet[WithdrawRow]):
    """The "Ngày lấy" sheet."""

    KIND: ClassVar[SheetKind] = SheetKind.WITHDRAW
    MONEY_COLUMNS: ClassVar[tuple[str, ...]] = ("bankdep", "bankbad", "visa")

    def __init__(self, *args, **kwargs):
        kwargs.setdefault("max_rows", 200)
        super().__init__(*args, **kwargs)

    def _cascade(self, row_index: int, row: WithdrawRow, column: str, value: str) -> bool:
        if column in self.MONEY_COLUMNS:
            value = _WITHDRAW_JUNK.sub("", value)

        setattr(row, column, value)

        if column in self.MONEY_COLUMNS and value and not row.date.strip():
            row.date = self.today()

        if self.is_row_complete(row):
            return self._append_if_last_complete()
        return False

    def is_row_complete(self, row: WithdrawRow) -> bool:
        return bool(row.date.strip()) and any(
            positive(getattr(row, col)) for col in self.MONEY_COLUMNS
        )

    def row_total(self, row: WithdrawRow) -> float:
        return self.engine.calculate(self.KIND, "total", row) or 0

    def total(self) -> float:
        return sum(self.row_total(row) for row in self.rows)


# =============================================================================
# TOTALS ("bảng tổng")
# =============================================================================

class DashboardTotals(BaseModel):
    """Summary table under the two dashboard sheets."""
    total_usdt: float = 0.0
    total_usd: float = 0.0
    total_conversion_vnd: float = 0.0
    month_avg_price: float = 0.0
    total_bankdep: float = 0.0
    total_bankbad: float = 0.0
    total_visa: float = 0.0

    @property
    def total_withdraw(self) -> float:
        return self.total_bankdep + self.total_bankbad + self.total_visa


def compute_totals(
    conversion: ConversionSheet,
    withdraw: WithdrawSheet,
    today: Optional[date] = None,
) -> DashboardTotals:
    """
    Build the totals table.

    USDT, USD and the withdraw columns only count positive values. The
    average price covers rows of the current month with a price > 0.
    """
    today = today or conversion.current_date()

    price_sum = 0.0
    price_count = 0
    for row in conversion.rows:
        price = sanitize_number(row.price)
        row_date = parse_sheet_date(row.date)
        if price > 0 and row_date and (row_date.year, row_date.month) == (today.year, today.month):
            price_sum += price
            price_count += 1

    return DashboardTotals(
        total_usdt=conversion.column_sum("usdt", positive_only=True),
        total_usd=conversion.column_sum("usd", positive_only=True),
        total_conversion_vnd=conversion.total_vnd(),
        month_avg_price=price_sum / price_count if price_count else 0.0,
        total_bankdep=withdraw.column_sum("bankdep", positive_only=True),
        total_bankbad=withdraw.column_sum("bankbad", positive_only=True),
        total_visa=withdraw.column_sum("visa", positive_only=True),
    )

"""
Monthly Statistics

Groups every ledger sheet by calendar month:
- conversion: USDT, USD, VND received (the stored VND column) and prices
- withdraw: VND taken out
- AE / AE-QT: money earned

total_sum = (AE + AE-QT) - (VND converted + VND withdrawn)

Rows whose date cannot be read are left out.
"""

from typing import Iterable, Mapping

from pydantic import BaseModel

from cashbook.formulas import sanitize_number
from cashbook.sheets.base import parse_sheet_date


class MonthlyStats(BaseModel):
    """Totals for one YYYY-MM month."""
    month: str
    usdt: float = 0.0
    usd: float = 0.0
    vnd_conversion: float = 0.0
    vnd_withdraw: float = 0.0
    ae_total: float = 0.0
    aeqt_total: float = 0.0
    price_count: int = 0
    price_sum: float = 0.0

    @property
    def avg_price(self) -> float:
        return self.price_sum / self.price_count if self.price_count else 0.0

    @property
    def total_work(self) -> float:
        return self.ae_total + self.aeqt_total

    @property
    def total_sum(self) -> float:
        return self.total_work - (self.vnd_conversion + self.vnd_withdraw)

    @property
    def label(self) -> str:
        """MM/YYYY, as shown in the table."""
        year, month = self.month.split("-")
        return f"{month}/{year}"


def _month_of(row: Mapping) -> str:
    parsed = parse_sheet_date(row.get("date"))
    return f"{parsed.year}-{parsed.month:02d}" if parsed else ""


def monthly_stats(
    conversion: Iterable[Mapping],
    withdraw: Iterable[Mapping],
    ae: Iterable[Mapping],
    aeqt: Iterable[Mapping],
) -> list[MonthlyStats]:
    """Per-month statistics, newest month first."""
    months: dict[str, MonthlyStats] = {}

    def bucket(row: Mapping):
        key = _month_of(row)
        if not key:
            return None
        if key not in months:
            months[key] = MonthlyStats(month=key)
        return months[key]

    for row in conversion:
        stats = bucket(row)
        if stats is None:
            continue
        stats.usdt += sanitize_number(row.get("usdt"))
        stats.usd += sanitize_number(row.get("usd"))
        stats.vnd_conversion += sanitize_number(row.get("vnd"))
        price = sanitize_number(row.get("price"))
        if price > 0:
            stats.price_sum += price
            stats.price_count += 1

    for row in withdraw:
        stats = bucket(row)
        if stats is None:
            continue
        stats.vnd_withdraw += sum(
            sanitize_number(row.get(col)) for col in ("bankdep", "bankbad", "visa")
        )

    for rows, attr in ((ae, "ae_total"), (aeqt, "aeqt_total")):
        for row in rows:
            stats = bucket(row)
            if stats is not None:
                setattr(stats, attr, getattr(stats, attr) + sanitize_number(row.get("money")))

    return [months[key] for key in sorted(months, reverse=True)]

"""Summary cards at the top of the dashboard."""

from typing import Any, Iterable, Mapping

from pydantic import BaseModel

from cashbook.formulas import sanitize_number


class SummaryCard(BaseModel):
    title: str
    total: float
    count: int
    is_rate: bool = False


def _work_card(title: str, rows: Iterable[Mapping]) -> SummaryCard:
    filled = [row for row in rows if any(str(v).strip() for v in row.values())]
    return SummaryCard(
        title=title,
        total=sum(sanitize_number(row.get("money")) for row in filled),
        count=len(filled),
    )


def dashboard_cards(
    ae: Iterable[Mapping],
    aeqt: Iterable[Mapping],
    rate_settings: Any = None,
) -> list[SummaryCard]:
    """AE and AE-QT totals with their row counts, plus the last stored sell price."""
    sell_price = 0.0
    if isinstance(rate_settings, Mapping):
        sell_price = sanitize_number(rate_settings.get("sellPrice"))

    return [
        _work_card("💼 AE", ae),
        _work_card("🌐 AE-QT", aeqt),
        SummaryCard(title="💱 Tỷ Giá USDT", total=sell_price, count=1, is_rate=True),
    ]

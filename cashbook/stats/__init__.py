"""Reports built from the stored sheets."""

from cashbook.stats.balances import (
    BalanceStatus,
    PersonBalance,
    balance_counts,
    compute_balances,
    filter_and_sort,
    split_names,
)
from cashbook.stats.cards import SummaryCard, dashboard_cards
from cashbook.stats.monthly import MonthlyStats, monthly_stats

__all__ = [
    "BalanceStatus",
    "PersonBalance",
    "balance_counts",
    "compute_balances",
    "filter_and_sort",
    "split_names",
    "SummaryCard",
    "dashboard_cards",
    "MonthlyStats",
    "monthly_stats",
]

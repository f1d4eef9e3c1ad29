"""Editable ledger sheets and their recalculation rules."""

from cashbook.sheets.base import (
    CellEditError,
    CellUpdate,
    CellValueRejected,
    Sheet,
    date_boundaries,
    format_sheet_date,
    normalize_date,
    number_text,
    parse_sheet_date,
    sorted_view,
    today_in,
)
from cashbook.sheets.work import AEQTSheet, AESheet, WorkSheet
from cashbook.sheets.dashboard import (
    ConversionSheet,
    DashboardTotals,
    WithdrawSheet,
    compute_totals,
)
from cashbook.sheets.expense import (
    BookSummary,
    CategoryShare,
    EntryKind,
    EntryNotFound,
    EntryRejected,
    ExpenseBook,
)

__all__ = [
    "CellEditError",
    "CellUpdate",
    "CellValueRejected",
    "Sheet",
    "date_boundaries",
    "format_sheet_date",
    "normalize_date",
    "number_text",
    "parse_sheet_date",
    "sorted_view",
    "today_in",
    "AEQTSheet",
    "AESheet",
    "WorkSheet",
    "ConversionSheet",
    "DashboardTotals",
    "WithdrawSheet",
    "compute_totals",
    "BookSummary",
    "CategoryShare",
    "EntryKind",
    "EntryNotFound",
    "EntryRejected",
    "ExpenseBook",
]

"""
Data Models Package

This package contains all Pydantic models used in Cashbook.
All data flowing through the ledger must conform to these schemas.
"""

from cashbook.models.sheet import (
    EXPENSE_CATEGORIES,
    ROW_MODELS,
    AppPreferences,
    BookEntry,
    ConversionRow,
    Currency,
    CurrencyDisplay,
    DisplayOptions,
    ExpenseEntry,
    IncomeEntry,
    RateSettings,
    SheetKind,
    SheetRow,
    WithdrawRow,
    WorkRow,
)
from cashbook.models.rate import (
    AlertState,
    ManualRate,
    RateQuote,
    RateSource,
)
from cashbook.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Sheet models
    "EXPENSE_CATEGORIES",
    "ROW_MODELS",
    "AppPreferences",
    "BookEntry",
    "ConversionRow",
    "Currency",
    "CurrencyDisplay",
    "DisplayOptions",
    "ExpenseEntry",
    "IncomeEntry",
    "RateSettings",
    "SheetKind",
    "SheetRow",
    "WithdrawRow",
    "WorkRow",
    # Rate models
    "AlertState",
    "ManualRate",
    "RateQuote",
    "RateSource",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]

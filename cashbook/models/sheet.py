"""
Core Data Models for Cashbook

These models define the rows of every ledger sheet and the
stored user preferences.

DESIGN DECISION: Sheet cells are kept as TEXT, exactly as typed.
A spreadsheet cell can legitimately hold "", "1,000" or a half-typed
number; the formula engine sanitizes at evaluation time instead of the
model rejecting input on load. Legacy rows that stored numbers or nulls
are coerced to text so old data keeps loading.
"""

from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class SheetKind(str, Enum):
    """
    The spreadsheet tables of the ledger.

    The value is the formula table name; `storage_key` is the key the
    rows are persisted under.
    """
    AE = "ae"
    AE_QT = "aeqt"
    CONVERSION = "conversion"
    WITHDRAW = "withdraw"

    @property
    def storage_key(self) -> str:
        return _STORAGE_KEYS[self]

    @property
    def label(self) -> str:
        return _LABELS[self]


_STORAGE_KEYS = {
    SheetKind.AE: "AE_sheet",
    SheetKind.AE_QT: "AEQT_sheet",
    SheetKind.CONVERSION: "dashboard_conversion",
    SheetKind.WITHDRAW: "dashboard_withdraw",
}

_LABELS = {
    SheetKind.AE: "AE",
    SheetKind.AE_QT: "AE-QT",
    SheetKind.CONVERSION: "Ngày đổi",
    SheetKind.WITHDRAW: "Ngày lấy",
}


class Currency(str, Enum):
    """Currencies accepted by the expense book."""
    VND = "VND"
    USD = "USD"


# =============================================================================
# SHEET ROWS
# =============================================================================

class SheetRow(BaseModel):
    """
    Base class for a spreadsheet row.

    Every column is a string. Subclasses list their editable columns
    in `COLUMNS` and the computed ones in `READ_ONLY`.
    """
    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    COLUMNS: ClassVar[tuple[str, ...]] = ()
    READ_ONLY: ClassVar[frozenset[str]] = frozenset()

    @field_validator("*", mode="before")
    @classmethod
    def coerce_to_text(cls, v: Any) -> str:
        """Stored cells may be numbers or null in older data."""
        if v is None:
            return ""
        if isinstance(v, bool):
            return ""
        if isinstance(v, float) and v.is_integer():
            return str(int(v))
        return str(v)

    def is_blank(self) -> bool:
        return not any(getattr(self, col).strip() for col in self.COLUMNS)

    def to_storage(self) -> dict[str, str]:
        return self.model_dump()


class WorkRow(SheetRow):
    """
    A row of the AE or AE-QT sheet.

    `chia` is the per-person split, `khoa` a free amount column and
    `tt` the computed payout ("Nhận").
    """
    COLUMNS: ClassVar[tuple[str, ...]] = ("date", "money", "name", "chia", "khoa", "note", "tt")
    READ_ONLY: ClassVar[frozenset[str]] = frozenset({"tt"})

    date: str = ""
    money: str = ""
    name: str = ""
    chia: str = ""
    khoa: str = ""
    note: str = ""
    tt: str = ""


class ConversionRow(SheetRow):
    """A row of the conversion sheet ("Ngày đổi")."""
    COLUMNS: ClassVar[tuple[str, ...]] = ("date", "usdt", "usd", "price", "vnd", "staff")

    date: str = ""
    usdt: str = ""
    usd: str = ""
    price: str = ""
    vnd: str = ""
    staff: str = ""


class WithdrawRow(SheetRow):
    """A row of the withdraw sheet ("Ngày lấy")."""
    COLUMNS: ClassVar[tuple[str, ...]] = ("date", "bankdep", "bankbad", "visa", "staff")

    date: str = ""
    bankdep: str = ""
    bankbad: str = ""
    visa: str = ""
    staff: str = ""


ROW_MODELS: dict[SheetKind, type[SheetRow]] = {
    SheetKind.AE: WorkRow,
    SheetKind.AE_QT: WorkRow,
    SheetKind.CONVERSION: ConversionRow,
    SheetKind.WITHDRAW: WithdrawRow,
}


# =============================================================================
# EXPENSE BOOK
# =============================================================================

EXPENSE_CATEGORIES = (
    "Thuê Nhà",
    "Điện Nước",
    "Đi Chợ",
    "Ăn Uống",
    "Thuốc Men",
    "Thiết Bị",
    "Di Chuyển",
    "Giải Trí",
    "Học Tập",
    "Quần Áo",
    "Internet",
    "Điện Thoại",
    "Y Tế",
    "Bảo Hiểm",
    "Xe Cộ",
    "Làm Đẹp",
    "Từ Thiện",
    "Khác",
)


def generate_entry_id() -> str:
    return f"{int(datetime.now().timestamp() * 1000)}_{uuid4().hex[:9]}"


class BookEntry(BaseModel):
    """Common fields of income and expense entries."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    id: str = Field(default_factory=generate_entry_id)
    date: str = Field(default="", description="YYYY-MM-DD")
    currency: Currency = Currency.VND
    amount: float = Field(default=0.0, ge=0)
    description: str = ""


class IncomeEntry(BookEntry):
    """Money received ("Thu")."""
    source: str = Field(default="", max_length=100)


class ExpenseEntry(BookEntry):
    """Money spent ("Chi")."""
    category: str = "Khác"


# =============================================================================
# PREFERENCES (app_settings key)
# =============================================================================

class CurrencyDisplay(BaseModel):
    """How an amount is rendered."""
    symbol: str = "₫"
    position: str = Field(default="after", pattern="^(before|after)$")
    decimals: int = Field(default=0, ge=0, le=8)
    separator: str = ","


class DisplayOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    rounding: str = Field(default="round", pattern="^(round|floor|ceil)$")
    show_zero: bool = Field(default=True, alias="showZero")


class AppPreferences(BaseModel):
    """
    User preferences stored under the `app_settings` key.

    `formulas` holds only the user's overrides; missing entries fall
    back to the built-in formulas.
    """
    model_config = ConfigDict(extra="ignore")

    currency: CurrencyDisplay = Field(default_factory=CurrencyDisplay)
    crypto: CurrencyDisplay = Field(
        default_factory=lambda: CurrencyDisplay(symbol="$", position="after", decimals=2)
    )
    display: DisplayOptions = Field(default_factory=DisplayOptions)
    formulas: dict[str, dict[str, str]] = Field(default_factory=dict)


class RateSettings(BaseModel):
    """Last known rates, stored under `rate-settings`."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    sell_price: Optional[float] = Field(default=None, alias="sellPrice")
    buy_price: Optional[float] = Field(default=None, alias="buyPrice")
    usd_rate: Optional[float] = Field(default=None, alias="usdRate")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

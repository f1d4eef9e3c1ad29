"""
Expense Book ("Thu Chi")

A personal income/expense book, separate from the work sheets. Data is
grouped by month: each storage key holds {"YYYY-MM": [entry, ...]}.

Every field update is validated before it is applied:
- date must be a real date between 2000-01-01 and one year from today
- amount must be > 0 and <= 999,999,999,999
- an income source must be non-empty (after dropping a leading emoji)
  and at most 100 characters
- an expense category must come from EXPENSE_CATEGORIES

USD amounts are counted in VND at the stored USD rate (25,400 unless
`rate-settings.usdRate` says otherwise).
"""

import re
from datetime import date, timedelta
from enum import Enum
from typing import Any, Callable, Optional, Union

import structlog
from pydantic import BaseModel, Field, ValidationError

from cashbook.config import get_settings
from cashbook.formulas import round_half_up, sanitize_number
from cashbook.models.sheet import (
    EXPENSE_CATEGORIES,
    Currency,
    ExpenseEntry,
    IncomeEntry,
)
from cashbook.sheets.base import today_in


_LEADING_EMOJI = re.compile("^[\U0001F300-\U0001F9FF]\\s*")
_EARLIEST_DATE = date(2000, 1, 1)
MAX_SOURCE_LENGTH = 100
MISSING_FIELDS_MESSAGE = "Vui lòng điền đầy đủ thông tin bắt buộc!"

REQUIRED_FIELDS = {
    "income": ("date", "source", "amount"),
    "expense": ("date", "category", "amount"),
}

logger = structlog.get_logger(__name__)


class EntryKind(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"

    @property
    def storage_key(self) -> str:
        return "expense_income_data" if self is EntryKind.INCOME else "expense_expense_data"


class EntryRejected(Exception):
    """A field update failed validation; the entry was not changed."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class EntryNotFound(Exception):
    pass


class CategoryShare(BaseModel):
    category: str
    amount: float
    count: int
    percentage: float


class BookSummary(BaseModel):
    """Totals for one month of the book, in VND."""
    month: str
    total_income: float = 0.0
    total_expense: float = 0.0
    income_count: int = 0
    expense_count: int = 0
    categories: list[CategoryShare] = Field(default_factory=list)

    @property
    def balance(self) -> float:
        return self.total_income - self.total_expense

    @property
    def expense_ratio(self) -> float:
        """Expense as a percentage of income, one decimal."""
        if self.total_income <= 0:
            return 0.0
        return round_half_up(self.total_expense / self.total_income * 100, 1)


def month_key(value: date) -> str:
    return f"{value.year}-{value.month:02d}"


def recent_months(today: date, count: int = 12) -> list[str]:
    """The current month and the `count - 1` months before it, newest first."""
    months = []
    year, month = today.year, today.month
    for _ in range(count):
        months.append(f"{year}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return months


def strip_leading_emoji(value: str) -> str:
    return _LEADING_EMOJI.sub("", value).strip()


def _load_entry(raw: Any, model: type):
    """A stored entry, or None when it is not a dict or does not validate."""
    if not isinstance(raw, dict):
        return None
    try:
        return model(**raw)
    except ValidationError as e:
        logger.warning("expense_entry_skipped", entry_id=raw.get("id"), error=str(e))
        return None


class ExpenseBook:
    """
    In-memory view over the two month-keyed storage values.

    `month` selects the month that reads and writes default to.
    """

    def __init__(
        self,
        income_data: Optional[dict[str, list]] = None,
        expense_data: Optional[dict[str, list]] = None,
        usd_rate: Optional[float] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        settings = get_settings().app
        self._clock = clock or today_in
        self.usd_rate = usd_rate if usd_rate and usd_rate > 0 else settings.default_usd_rate
        self.max_amount = settings.max_expense_amount
        self.month = month_key(self._clock())

        self._data: dict[EntryKind, dict[str, list[Union[IncomeEntry, ExpenseEntry]]]] = {
            EntryKind.INCOME: self._load(income_data, IncomeEntry),
            EntryKind.EXPENSE: self._load(expense_data, ExpenseEntry),
        }

    @staticmethod
    def _load(data: Optional[dict], model: type) -> dict[str, list]:
        if not isinstance(data, dict):
            return {}
        loaded = {}
        for month, entries in data.items():
            if isinstance(entries, list):
                loaded[month] = [
                    entry for entry in (_load_entry(raw, model) for raw in entries)
                    if entry is not None
                ]
        return loaded

    def use_rate_settings(self, rate_settings: Any) -> None:
        """Take the USD rate from a stored `rate-settings` value when it has one."""
        if isinstance(rate_settings, dict):
            rate = sanitize_number(rate_settings.get("usdRate"))
            if rate > 0:
                self.usd_rate = rate

    # Reading

    def entries(self, kind: EntryKind, month: Optional[str] = None) -> list:
        return list(self._data[kind].get(month or self.month, []))

    def months(self) -> list[str]:
        return recent_months(self._clock())

    def vnd_value(self, entry: Union[IncomeEntry, ExpenseEntry]) -> float:
        if not entry.amount:
            return 0.0
        if entry.currency == Currency.USD:
            return entry.amount * self.usd_rate
        return entry.amount

    def find(self, kind: EntryKind, entry_id: str, month: Optional[str] = None):
        for entry in self._data[kind].get(month or self.month, []):
            if entry.id == entry_id:
                return entry
        raise EntryNotFound(f"{kind.value} entry {entry_id} not found")

    # Writing

    def add(self, kind: EntryKind, month: Optional[str] = None, **fields) -> Union[IncomeEntry, ExpenseEntry]:
        """
        Add an entry after validating each given field. Newest dates first.

        Raises:
            EntryRejected: A required field (date, amount, source or
                category) is missing, or any field is invalid
        """
        for field in REQUIRED_FIELDS[kind.value]:
            value = fields.get(field)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise EntryRejected(field, MISSING_FIELDS_MESSAGE)

        model = IncomeEntry if kind is EntryKind.INCOME else ExpenseEntry
        entry = model()
        for field, value in fields.items():
            setattr(entry, field, self.validate_field(kind, field, value))

        bucket = self._data[kind].setdefault(month or self.month, [])
        bucket.append(entry)
        bucket.sort(key=lambda e: e.date or "", reverse=True)
        return entry

    def update_field(
        self,
        kind: EntryKind,
        entry_id: str,
        field: str,
        value: Any,
        month: Optional[str] = None,
    ):
        """
        Validate and apply a single field update.

        Raises:
            EntryNotFound: Unknown entry id
            EntryRejected: Value failed validation (entry unchanged)
        """
        entry = self.find(kind, entry_id, month)
        setattr(entry, field, self.validate_field(kind, field, value))
        return entry

    def delete(self, kind: EntryKind, entry_id: str, month: Optional[str] = None) -> None:
        key = month or self.month
        before = self._data[kind].get(key, [])
        after = [e for e in before if e.id != entry_id]
        if len(after) == len(before):
            raise EntryNotFound(f"{kind.value} entry {entry_id} not found")
        self._data[kind][key] = after

    def clear(self, kind: EntryKind, month: Optional[str] = None) -> None:
        self._data[kind][month or self.month] = []

    def validate_field(self, kind: EntryKind, field: str, value: Any) -> Any:
        if field == "date":
            return self._validate_date(value)
        if field == "amount":
            amount = sanitize_number(value)
            if amount <= 0:
                raise EntryRejected(field, "Số tiền phải lớn hơn 0")
            if amount > self.max_amount:
                raise EntryRejected(field, "Số tiền quá lớn")
            return amount
        if field == "currency":
            try:
                return Currency(str(value).upper())
            except ValueError:
                raise EntryRejected(field, f"Loại tiền không hợp lệ: {value}")
        if field == "source" and kind is EntryKind.INCOME:
            clean = strip_leading_emoji(str(value or ""))
            if not clean:
                raise EntryRejected(field, "Nguồn thu không được để trống")
            if len(clean) > MAX_SOURCE_LENGTH:
                raise EntryRejected(field, "Nguồn thu quá dài (tối đa 100 ký tự)")
            return clean
        if field == "category" and kind is EntryKind.EXPENSE:
            clean = strip_leading_emoji(str(value or ""))
            if clean not in EXPENSE_CATEGORIES:
                raise EntryRejected(field, f"Danh mục không hợp lệ: {clean}")
            return clean
        if field == "description":
            return str(value or "").strip()
        raise EntryRejected(field, "Trường không hợp lệ")

    def _validate_date(self, value: Any) -> str:
        try:
            parsed = date.fromisoformat(str(value).strip())
        except ValueError:
            raise EntryRejected("date", "Ngày không hợp lệ")
        latest = self._clock() + timedelta(days=365)
        if not (_EARLIEST_DATE <= parsed <= latest):
            raise EntryRejected("date", "Ngày không hợp lệ")
        return parsed.isoformat()

    # Reports

    def summary(self, month: Optional[str] = None) -> BookSummary:
        income = self.entries(EntryKind.INCOME, month)
        expenses = self.entries(EntryKind.EXPENSE, month)
        total_expense = sum(self.vnd_value(e) for e in expenses)

        by_category: dict[str, dict[str, float]] = {}
        for entry in expenses:
            bucket = by_category.setdefault(entry.category or "Khác", {"amount": 0.0, "count": 0})
            bucket["amount"] += self.vnd_value(entry)
            bucket["count"] += 1

        categories = [
            CategoryShare(
                category=name,
                amount=values["amount"],
                count=int(values["count"]),
                percentage=round_half_up(values["amount"] / total_expense * 100, 1) if total_expense > 0 else 0.0,
            )
            for name, values in sorted(by_category.items(), key=lambda kv: kv[1]["amount"], reverse=True)
        ]

        return BookSummary(
            month=month or self.month,
            total_income=sum(self.vnd_value(e) for e in income),
            total_expense=total_expense,
            income_count=len(income),
            expense_count=len(expenses),
            categories=categories,
        )

    def filter(
        self,
        kind: EntryKind,
        query: str = "",
        date_from: str = "",
        date_to: str = "",
        month: Optional[str] = None,
    ) -> list:
        """Case-insensitive search over source/category and description, plus a date range."""
        needle = query.strip().lower()
        label = "source" if kind is EntryKind.INCOME else "category"
        result = []
        for entry in self.entries(kind, month):
            if needle:
                haystacks = (getattr(entry, label) or "", entry.description or "")
                if not any(needle in h.lower() for h in haystacks):
                    continue
            if date_from and entry.date < date_from:
                continue
            if date_to and entry.date > date_to:
                continue
            result.append(entry)
        return result

    def to_storage(self, kind: EntryKind) -> dict[str, list[dict]]:
        return {
            month: [entry.model_dump(mode="json") for entry in entries]
            for month, entries in self._data[kind].items()
        }

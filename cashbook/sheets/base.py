"""
Spreadsheet Core

Shared machinery for the ledger's editable sheets: the row container,
cell addressing, date handling and the auto-append rule.

DESIGN DECISION: A sheet is an in-memory list of row models.
Loading and saving go through the key/value store in the orchestrator;
the sheet classes only apply edits and report what changed. That keeps
every cascade rule testable without any storage.

The cascade on a cell edit is a fixed sequence of field conditionals,
not a dependency graph. Each subclass implements `_cascade`.
"""

import math
import re
from datetime import date, datetime
from typing import Any, Callable, ClassVar, Generic, Iterable, Optional, Sequence, TypeVar
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

from cashbook.config import get_settings
from cashbook.formulas import FormulaEngine, sanitize_number
from cashbook.models.sheet import ROW_MODELS, SheetKind, SheetRow


# =============================================================================
# ERRORS
# =============================================================================

class CellEditError(Exception):
    """An edit addressed a cell that does not exist or cannot be edited."""

    def __init__(self, message: str, row_index: Optional[int] = None, column: Optional[str] = None):
        self.message = message
        self.row_index = row_index
        self.column = column
        super().__init__(message)


class CellValueRejected(CellEditError):
    """The typed value is not acceptable; the row was left untouched."""

    def __init__(self, message: str, row_index: int, column: str, value: str):
        self.value = value
        super().__init__(message, row_index=row_index, column=column)


# =============================================================================
# DATES
# =============================================================================

_DMY = re.compile(r"^(\d{1,2})[/\-](\d{1,2})[/\-](\d{4})$")
_YMD = re.compile(r"^(\d{4})[/\-](\d{1,2})[/\-](\d{1,2})$")


def format_sheet_date(value: date) -> str:
    """Dates are typed and shown as DD/MM/YYYY."""
    return value.strftime("%d/%m/%Y")


def today_in(timezone_name: Optional[str] = None) -> date:
    """Today's date in the ledger's time zone (Asia/Ho_Chi_Minh by default)."""
    tz = ZoneInfo(timezone_name or get_settings().app.timezone)
    return datetime.now(tz).date()


def normalize_date(value: Any) -> str:
    """
    Normalize a typed date to YYYY-MM-DD for comparison.

    Accepts DD/MM/YYYY, DD-MM-YYYY, YYYY-MM-DD and YYYY/MM/DD.
    Strings in any other shape come back trimmed and unchanged.
    """
    if not value:
        return ""
    cleaned = str(value).strip()
    if not cleaned:
        return ""

    match = _DMY.match(cleaned)
    if match:
        day, month, year = match.groups()
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"

    match = _YMD.match(cleaned)
    if match:
        year, month, day = match.groups()
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"

    return cleaned


def parse_sheet_date(value: Any) -> Optional[date]:
    """Parse a typed date into a `date`, or None if it is not a real date."""
    normalized = normalize_date(value)
    if not normalized:
        return None
    try:
        return date.fromisoformat(normalized)
    except ValueError:
        return None


# =============================================================================
# NUMBERS
# =============================================================================

def number_text(value: Optional[float]) -> str:
    """
    Render a computed number for storage in a text cell.

    Whole numbers lose their ".0"; None and non-finite values become "".
    """
    if value is None:
        return ""
    if isinstance(value, float):
        if not math.isfinite(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def positive(value: Any) -> bool:
    """True when the cell's leading number is > 0."""
    return sanitize_number(value) > 0


# =============================================================================
# ORDERING
# =============================================================================

RowT = TypeVar("RowT", bound=SheetRow)


def sorted_view(rows: Sequence[Any]) -> list[tuple[int, Any]]:
    """
    Rows ordered by date with empty dates last.

    Returns (original_index, row) pairs so edits made from the sorted
    view still address the stored row. The sort is stable.
    """
    def key(item: tuple[int, Any]) -> tuple[int, str]:
        row = item[1]
        raw = row.get("date") if isinstance(row, dict) else getattr(row, "date", "")
        normalized = normalize_date(raw)
        return (1, "") if not normalized else (0, normalized)

    return sorted(enumerate(rows), key=key)


def date_boundaries(rows: Iterable[Any]) -> list[int]:
    """
    Positions where a new day starts.

    A position is a boundary when its date is non-empty and differs from
    the date of the row right before it. Pass the rows in display order
    (usually the rows of `sorted_view`).
    """
    boundaries = []
    previous = ""
    for position, row in enumerate(rows):
        raw = row.get("date") if isinstance(row, dict) else getattr(row, "date", "")
        current = normalize_date(raw)
        if current and previous and current != previous:
            boundaries.append(position)
        previous = current
    return boundaries


# =============================================================================
# SHEET
# =============================================================================

class CellUpdate(BaseModel):
    """What one cell edit changed."""
    row_index: int
    column: str
    changes: dict[str, str] = Field(
        default_factory=dict,
        description="Every field of the row that ended up with a new value"
    )
    row_appended: bool = False


class Sheet(Generic[RowT]):
    """
    Base class for an editable ledger sheet.

    Subclasses set `KIND`, the row padding limits and implement
    `_cascade(row, column, value)`.
    """

    KIND: ClassVar[SheetKind]
    MONEY_COLUMNS: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        rows: Optional[Iterable[Any]] = None,
        engine: Optional[FormulaEngine] = None,
        clock: Optional[Callable[[], date]] = None,
        min_rows: int = 50,
        max_rows: Optional[int] = None,
    ):
        self._row_model: type[RowT] = ROW_MODELS[self.KIND]
        self.engine = engine or FormulaEngine()
        self._clock = clock or today_in
        self.min_rows = min_rows
        self.max_rows = max_rows
        self.rows: list[RowT] = [self._load_row(raw) for raw in (rows or [])]
        self._pad()

    @property
    def kind(self) -> SheetKind:
        return self.KIND

    @property
    def storage_key(self) -> str:
        return self.KIND.storage_key

    def __len__(self) -> int:
        return len(self.rows)

    def _load_row(self, raw: Any) -> RowT:
        if isinstance(raw, self._row_model):
            return raw.model_copy()
        if not isinstance(raw, dict):
            return self._row_model()
        return self._row_model(**raw)

    def _pad(self) -> None:
        while len(self.rows) < self.min_rows:
            self.rows.append(self._row_model())

    def current_date(self) -> date:
        return self._clock()

    def today(self) -> str:
        return format_sheet_date(self.current_date())

    def to_storage(self) -> list[dict[str, str]]:
        return [row.to_storage() for row in self.rows]

    def records(self) -> list[dict[str, str]]:
        """Non-blank rows only, for reports and exports."""
        return [row.to_storage() for row in self.rows if not row.is_blank()]

    def sorted_view(self) -> list[tuple[int, RowT]]:
        return sorted_view(self.rows)

    def day_groups(self) -> list[list[tuple[int, dict[str, str]]]]:
        """
        Non-blank rows in date order, split where a new day starts.

        Each item is (original_index, stored_row). Rows without a date
        come last and stay with the group before them.
        """
        ordered = [(i, row.to_storage()) for i, row in self.sorted_view() if not row.is_blank()]
        groups: list[list[tuple[int, dict[str, str]]]] = []
        starts = set(date_boundaries([row for _, row in ordered]))
        for position, item in enumerate(ordered):
            if not groups or position in starts:
                groups.append([])
            groups[-1].append(item)
        return groups

    def _check_cell(self, row_index: int, column: str) -> None:
        if not isinstance(row_index, int) or row_index < 0 or row_index >= len(self.rows):
            raise CellEditError(
                f"Row {row_index} does not exist in {self.storage_key}",
                row_index=row_index,
                column=column,
            )
        if column not in self._row_model.COLUMNS:
            raise CellEditError(
                f"Unknown column '{column}' in {self.storage_key}",
                row_index=row_index,
                column=column,
            )
        if column in self._row_model.READ_ONLY:
            raise CellEditError(
                f"Column '{column}' is computed and cannot be edited",
                row_index=row_index,
                column=column,
            )

    def set_cell(self, row_index: int, column: str, value: Any) -> CellUpdate:
        """
        Apply one typed value and run the sheet's cascade.

        Raises:
            CellEditError: For an unknown row, unknown or computed column
            CellValueRejected: When the value is refused (row unchanged)
        """
        self._check_cell(row_index, column)
        row = self.rows[row_index]
        before = row.to_storage()
        text = "" if value is None else str(value).strip()

        appended = self._cascade(row_index, row, column, text)

        after = row.to_storage()
        changes = {col: after[col] for col in after if after[col] != before[col]}
        return CellUpdate(
            row_index=row_index,
            column=column,
            changes=changes,
            row_appended=appended,
        )

    def _cascade(self, row_index: int, row: RowT, column: str, value: str) -> bool:
        raise NotImplementedError

    # Auto-append

    def is_row_complete(self, row: RowT) -> bool:
        return False

    def _append_if_last_complete(self) -> bool:
        """Append one empty row when the last row is complete, up to max_rows."""
        if self.max_rows is not None and len(self.rows) >= self.max_rows:
            return False
        if self.rows and self.is_row_complete(self.rows[-1]):
            self.rows.append(self._row_model())
            return True
        return False

    def column_sum(self, column: str, positive_only: bool = False) -> float:
        total = 0.0
        for row in self.rows:
            value = sanitize_number(getattr(row, column))
            if positive_only and value <= 0:
                continue
            total += value
        return total

"""
AE / AE-QT Work Sheets

Daily work income. A row is one job: the money earned, the names of
the people who did it (comma separated) and the derived split.

Cascade on a cell edit:
1. `money` is cleaned to digits, "." and "-"; a value that is not a
   number >= 0 is rejected and the row stays as it was
2. the value is stored
3. `money` typed into a row without a date fills in today's date
4. `money` cleared wipes chia, khoa and tt
5. `money` or `name` changed recomputes chia (whole number, or empty
   for a single name)
6. tt is recomputed from its formula

The two sheets differ only in their formulas (TT = Chia x 0.5 for AE,
x 0.8 for AE-QT).
"""

import re
from typing import Any, ClassVar

from cashbook.formulas import round_half_up
from cashbook.models.sheet import SheetKind, WorkRow
from cashbook.sheets.base import CellValueRejected, Sheet, number_text, positive


_MONEY_JUNK = re.compile(r"[^\d.\-]")
_MONEY_NUMBER = re.compile(r"^-?(?:\d+\.?\d*|\.\d+)")


def clean_money(value: str) -> str:
    """Strip everything but digits, '.' and '-' from a typed amount."""
    return _MONEY_JUNK.sub("", value)


def is_valid_money(value: str) -> bool:
    match = _MONEY_NUMBER.match(value)
    return bool(match) and float(match.group(0)) >= 0


class WorkSheet(Sheet[WorkRow]):
    """Shared behaviour of the AE and AE-QT sheets."""

    KIND: ClassVar[SheetKind] = SheetKind.AE
    MONEY_COLUMNS: ClassVar[tuple[str, ...]] = ("money",)

    def _load_row(self, raw: Any) -> WorkRow:
        row = super()._load_row(raw)
        # Rows saved before tt was stored only carry chia
        if row.chia and not row.tt and positive(row.chia):
            row.tt = number_text(self.engine.calculate(self.KIND, "tt", row) or 0)
        return row

    def _cascade(self, row_index: int, row: WorkRow, column: str, value: str) -> bool:
        if column == "money":
            value = clean_money(value)
            if value and not is_valid_money(value):
                raise CellValueRejected(
                    f"'{value}' is not a valid amount",
                    row_index=row_index,
                    column=column,
                    value=value,
                )

        setattr(row, column, value)

        if column == "money" and value and not row.date.strip():
            row.date = self.today()

        if column == "money" and not value:
            row.chia = ""
            row.khoa = ""
            row.tt = ""
            return False

        if column in ("money", "name"):
            self._compute_chia(row)

        self._compute_tt(row)
        return False

    def _compute_chia(self, row: WorkRow) -> None:
        chia = self.engine.calculate(self.KIND, "chia", row)
        row.chia = "" if chia is None else str(int(round_half_up(chia, 0)))

    def _compute_tt(self, row: WorkRow) -> None:
        row.tt = number_text(self.engine.calculate(self.KIND, "tt", row) or 0)

    def recalculate(self) -> int:
        """Recompute chia and tt of every row with money, after the formulas changed."""
        touched = 0
        for row in self.rows:
            if not row.money:
                continue
            self._compute_chia(row)
            self._compute_tt(row)
            touched += 1
        return touched

    def total(self) -> float:
        """Sum of the money column."""
        return self.column_sum("money")

    def filled_rows(self) -> int:
        return sum(1 for row in self.rows if positive(row.money))


class AESheet(WorkSheet):
    """Domestic work income ("AE")."""
    KIND: ClassVar[SheetKind] = SheetKind.AE


class AEQTSheet(WorkSheet):
    """International work income ("AE-QT")."""
    KIND: ClassVar[SheetKind] = SheetKind.AE_QT

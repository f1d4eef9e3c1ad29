"""
Per-Person Balances ("Công nợ")

Works out, for every person named in the sheets, how much they earned
and how much they already took.

Earned ("Nhận"), per name listed on an AE / AE-QT row:
    chia x share  when the row has a chia > 0
    money x share otherwise
with share 0.5 for AE and 0.8 for AE-QT.

Taken, by the `staff` column of the dashboard sheets:
    đổi = (USDT + USD) x price   for conversion rows
    lấy = Bank đẹp + Bank xấu + Visa  for withdraw rows

balance = Nhận AE + Nhận AE-QT - đổi - lấy
A positive balance is money still owed TO the person.
"""

from enum import Enum
from typing import Iterable, Mapping, Optional

from pydantic import BaseModel, Field

from cashbook.config import get_settings
from cashbook.formulas import sanitize_number


class BalanceStatus(str, Enum):
    OWED_TO_PERSON = "positive"
    OWES_US = "negative"
    SETTLED = "zero"

    @property
    def label(self) -> str:
        return {
            BalanceStatus.OWED_TO_PERSON: "Còn nợ NV",
            BalanceStatus.OWES_US: "NV nợ",
            BalanceStatus.SETTLED: "Cân bằng",
        }[self]


class WorkTransaction(BaseModel):
    date: str = ""
    money: float = 0.0
    chia: float = 0.0
    khoa: float = 0.0
    received: float = 0.0


class ConversionTransaction(BaseModel):
    date: str = ""
    usdt: float = 0.0
    usd: float = 0.0
    price: float = 0.0
    vnd: float = 0.0


class WithdrawTransaction(BaseModel):
    date: str = ""
    bankdep: float = 0.0
    bankbad: float = 0.0
    visa: float = 0.0
    total: float = 0.0


class PersonBalance(BaseModel):
    """Everything the balance page shows for one person."""
    name: str
    total_money: float = 0.0
    total_chia: float = 0.0
    total_khoa: float = 0.0
    received_ae: float = 0.0
    received_aeqt: float = 0.0
    total_doi: float = 0.0
    total_lay: float = 0.0

    ae_transactions: list[WorkTransaction] = Field(default_factory=list)
    aeqt_transactions: list[WorkTransaction] = Field(default_factory=list)
    doi_transactions: list[ConversionTransaction] = Field(default_factory=list)
    lay_transactions: list[WithdrawTransaction] = Field(default_factory=list)

    @property
    def balance(self) -> float:
        return self.received_ae + self.received_aeqt - self.total_doi - self.total_lay

    @property
    def status(self) -> BalanceStatus:
        if self.balance > 0:
            return BalanceStatus.OWED_TO_PERSON
        if self.balance < 0:
            return BalanceStatus.OWES_US
        return BalanceStatus.SETTLED


def split_names(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in str(value).split(",") if part.strip()]


def compute_balances(
    ae: Iterable[Mapping],
    aeqt: Iterable[Mapping],
    conversion: Iterable[Mapping],
    withdraw: Iterable[Mapping],
    ae_share: Optional[float] = None,
    aeqt_share: Optional[float] = None,
) -> dict[str, PersonBalance]:
    """Balances keyed by person name, in order of first appearance."""
    settings = get_settings().app
    shares = {
        "ae": settings.ae_share if ae_share is None else ae_share,
        "aeqt": settings.aeqt_share if aeqt_share is None else aeqt_share,
    }
    people: dict[str, PersonBalance] = {}

    def person(name: str) -> PersonBalance:
        if name not in people:
            people[name] = PersonBalance(name=name)
        return people[name]

    for table, rows in (("ae", ae), ("aeqt", aeqt)):
        share = shares[table]
        for row in rows:
            names = split_names(row.get("name"))
            if not names:
                continue
            money = sanitize_number(row.get("money"))
            chia = sanitize_number(row.get("chia"))
            khoa = sanitize_number(row.get("khoa"))
            received = chia * share if chia > 0 else money * share

            for name in names:
                entry = person(name)
                entry.total_money += money
                entry.total_chia += chia
                entry.total_khoa += khoa
                transaction = WorkTransaction(
                    date=row.get("date") or "",
                    money=money,
                    chia=chia,
                    khoa=khoa,
                    received=received,
                )
                if table == "ae":
                    entry.received_ae += received
                    entry.ae_transactions.append(transaction)
                else:
                    entry.received_aeqt += received
                    entry.aeqt_transactions.append(transaction)

    for row in conversion:
        name = str(row.get("staff") or "").strip()
        if not name:
            continue
        usdt = sanitize_number(row.get("usdt"))
        usd = sanitize_number(row.get("usd"))
        price = sanitize_number(row.get("price"))
        vnd = (usdt + usd) * price if price > 0 else 0.0
        entry = person(name)
        entry.total_doi += vnd
        entry.doi_transactions.append(ConversionTransaction(
            date=row.get("date") or "", usdt=usdt, usd=usd, price=price, vnd=vnd,
        ))

    for row in withdraw:
        name = str(row.get("staff") or "").strip()
        if not name:
            continue
        amounts = {col: sanitize_number(row.get(col)) for col in ("bankdep", "bankbad", "visa")}
        total = sum(amounts.values())
        entry = person(name)
        entry.total_lay += total
        entry.lay_transactions.append(WithdrawTransaction(
            date=row.get("date") or "", total=total, **amounts,
        ))

    return people


_SORTS = {
    "name-asc": (lambda p: p.name.lower(), False),
    "name-desc": (lambda p: p.name.lower(), True),
    "balance-desc": (lambda p: p.balance, True),
    "balance-asc": (lambda p: p.balance, False),
}


def filter_and_sort(
    people: Iterable[PersonBalance],
    search: str = "",
    status: str = "all",
    sort_by: str = "name-asc",
) -> list[PersonBalance]:
    """Search by name (case-insensitive), filter by balance sign, then sort."""
    needle = search.strip().lower()
    result = [p for p in people if not needle or needle in p.name.lower()]
    if status != "all":
        result = [p for p in result if p.status.value == status]
    if sort_by in _SORTS:
        key, reverse = _SORTS[sort_by]
        result.sort(key=key, reverse=reverse)
    return result


def balance_counts(people: Iterable[PersonBalance]) -> dict[str, int]:
    counts = {"total": 0, "positive": 0, "negative": 0, "zero": 0}
    for p in people:
        counts["total"] += 1
        counts[p.status.value] += 1
    return counts

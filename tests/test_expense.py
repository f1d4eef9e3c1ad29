"""Tests for the expense book ("Thu Chi")."""

from datetime import date

import pytest

from cashbook.models.sheet import Currency
from cashbook.sheets import EntryKind, EntryNotFound, EntryRejected, ExpenseBook
from cashbook.sheets.expense import MISSING_FIELDS_MESSAGE, recent_months


TODAY = date(2024, 12, 15)


def book(**kwargs):
    return ExpenseBook(clock=lambda: TODAY, **kwargs)


def add_income(b, **fields):
    return b.add(EntryKind.INCOME, **{"date": "2024-12-15", "amount": 1000, "source": "Lương", **fields})


def add_expense(b, **fields):
    return b.add(EntryKind.EXPENSE, **{"date": "2024-12-15", "amount": 1000, "category": "Khác", **fields})


class TestEntryValidation:
    """Tests for field validation on add and update."""

    def test_add_income(self):
        b = book()
        entry = add_income(b, date="2024-12-01", amount="10,000,000", source="💰 Lương", currency="vnd")
        assert entry.source == "Lương"
        assert entry.amount == 10_000_000
        assert entry.currency == Currency.VND
        assert b.entries(EntryKind.INCOME) == [entry]

    @pytest.mark.parametrize("amount", [0, "-5", "abc", 1_000_000_000_000])
    def test_amount_bounds(self, amount):
        with pytest.raises(EntryRejected) as excinfo:
            add_expense(book(), amount=amount)
        assert excinfo.value.field == "amount"

    @pytest.mark.parametrize("value", ["1999-12-31", "2025-12-16", "2024-13-01", "15/12/2024"])
    def test_date_range(self, value):
        with pytest.raises(EntryRejected):
            add_expense(book(), date=value)

    def test_date_up_to_one_year_ahead(self):
        entry = add_expense(book(), date="2025-12-15")
        assert entry.date == "2025-12-15"

    def test_blank_source_rejected(self):
        with pytest.raises(EntryRejected, match="Nguồn thu"):
            add_income(book(), source="💰  ")

    def test_long_source_rejected(self):
        with pytest.raises(EntryRejected):
            add_income(book(), source="x" * 101)

    def test_category_must_be_known(self):
        b = book()
        assert add_expense(b, category="🏠 Thuê Nhà").category == "Thuê Nhà"
        with pytest.raises(EntryRejected):
            add_expense(b, category="Du lịch vũ trụ")

    def test_unknown_currency(self):
        with pytest.raises(EntryRejected):
            add_expense(book(), currency="EUR")

    def test_unknown_field(self):
        with pytest.raises(EntryRejected):
            add_expense(book(), colour="red")

    @pytest.mark.parametrize("kind,fields,missing", [
        (EntryKind.INCOME, {"date": "2024-12-01", "source": "Lương"}, "amount"),
        (EntryKind.INCOME, {"amount": 1000, "source": "Lương"}, "date"),
        (EntryKind.INCOME, {"date": "2024-12-01", "amount": 1000, "source": "  "}, "source"),
        (EntryKind.EXPENSE, {"date": "2024-12-01", "amount": 1000}, "category"),
        (EntryKind.INCOME, {}, "date"),
    ])
    def test_required_fields(self, kind, fields, missing):
        """Date, amount and source or category must all be given."""
        b = book()
        with pytest.raises(EntryRejected, match=MISSING_FIELDS_MESSAGE) as excinfo:
            b.add(kind, **fields)
        assert excinfo.value.field == missing
        assert b.entries(kind) == []

    def test_rejected_update_leaves_entry(self):
        b = book()
        entry = add_expense(b, amount=100)
        with pytest.raises(EntryRejected):
            b.update_field(EntryKind.EXPENSE, entry.id, "amount", 0)
        assert b.find(EntryKind.EXPENSE, entry.id).amount == 100


class TestBookEditing:
    """Tests for ordering, update and delete."""

    def test_newest_first(self):
        b = book()
        add_expense(b, date="2024-12-01")
        add_expense(b, date="2024-12-10")
        add_expense(b, date="2024-12-05")
        assert [e.date for e in b.entries(EntryKind.EXPENSE)] == ["2024-12-10", "2024-12-05", "2024-12-01"]

    def test_update(self):
        b = book()
        entry = add_income(b, source="Lương")
        b.update_field(EntryKind.INCOME, entry.id, "description", "  tháng 12 ")
        assert b.find(EntryKind.INCOME, entry.id).description == "tháng 12"

    def test_unknown_entry(self):
        with pytest.raises(EntryNotFound):
            book().update_field(EntryKind.INCOME, "missing", "amount", 5)
        with pytest.raises(EntryNotFound):
            book().delete(EntryKind.INCOME, "missing")

    def test_delete(self):
        b = book()
        keep = add_expense(b, amount=1)
        drop = add_expense(b, amount=2)
        b.delete(EntryKind.EXPENSE, drop.id)
        assert [e.id for e in b.entries(EntryKind.EXPENSE)] == [keep.id]

    def test_months_are_separate(self):
        b = book()
        add_expense(b, month="2024-11", amount=1)
        assert b.entries(EntryKind.EXPENSE) == []
        assert len(b.entries(EntryKind.EXPENSE, "2024-11")) == 1

    def test_storage_round_trip(self):
        b = book()
        entry = add_income(b, amount=5, currency="USD", source="Thưởng")
        stored = b.to_storage(EntryKind.INCOME)
        assert stored["2024-12"][0]["currency"] == "USD"

        reloaded = book(income_data=stored)
        assert reloaded.find(EntryKind.INCOME, entry.id).source == "Thưởng"

    def test_garbage_storage_ignored(self):
        b = book(income_data="nope", expense_data={"2024-12": "nope"})
        assert b.entries(EntryKind.INCOME) == []
        assert b.entries(EntryKind.EXPENSE) == []

    def test_malformed_stored_entries_skipped(self):
        good = {"id": "1", "date": "2024-12-01", "amount": 500, "source": "Lương"}
        bad = {"id": "2", "date": "2024-12-02", "amount": "", "source": "Thưởng"}
        b = book(income_data={"2024-12": [bad, good, "junk"]})
        assert [e.id for e in b.entries(EntryKind.INCOME)] == ["1"]


class TestBookReports:
    """Tests for the summary and filters."""

    def test_summary_converts_usd(self):
        b = book()
        add_income(b, amount=10_000_000, source="Lương")
        add_income(b, amount=100, currency="USD", source="Thưởng")
        add_expense(b, amount=1_000_000, category="Ăn Uống")
        add_expense(b, amount=50, currency="USD", category="Internet")
        add_expense(b, amount=500_000, category="Ăn Uống")

        summary = b.summary()
        assert summary.total_income == 10_000_000 + 100 * 25400
        assert summary.total_expense == 1_500_000 + 50 * 25400
        assert summary.balance == summary.total_income - summary.total_expense
        assert summary.expense_ratio == 22.1
        assert summary.income_count == 2
        assert [c.category for c in summary.categories] == ["Ăn Uống", "Internet"]
        assert summary.categories[0].count == 2
        assert summary.categories[0].percentage == 54.2

    def test_stored_usd_rate(self):
        b = book()
        b.use_rate_settings({"usdRate": "25000"})
        entry = add_income(b, amount=2, currency="USD", source="x")
        assert b.vnd_value(entry) == 50000

    def test_empty_summary(self):
        summary = book().summary()
        assert summary.total_income == 0
        assert summary.expense_ratio == 0
        assert summary.categories == []

    def test_filter(self):
        b = book()
        add_expense(b, date="2024-12-01", category="Ăn Uống", description="Phở")
        add_expense(b, date="2024-12-10", category="Internet", description="Cáp quang")
        assert len(b.filter(EntryKind.EXPENSE, query="phở")) == 1
        assert len(b.filter(EntryKind.EXPENSE, query="internet")) == 1
        assert len(b.filter(EntryKind.EXPENSE, date_from="2024-12-05")) == 1
        assert len(b.filter(EntryKind.EXPENSE, date_to="2024-12-05")) == 1

    def test_recent_months(self):
        months = recent_months(date(2024, 2, 10), count=3)
        assert months == ["2024-02", "2024-01", "2023-12"]
        assert book().months()[0] == "2024-12"
        assert len(book().months()) == 12

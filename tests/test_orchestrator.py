"""
Tests for the Cashbook orchestrator: edits, formulas, rates, the expense
book, reports and export, wired over an in-memory store.
"""

from datetime import datetime, timezone

import pytest

from cashbook.audit import AuditLogger
from cashbook.export import ExportError
from cashbook.formulas import FormulaError
from cashbook.models.audit import AuditEventType
from cashbook.models.rate import RateQuote, RateSource
from cashbook.models.sheet import AppPreferences, SheetKind
from cashbook.orchestrator import Cashbook, create_app_components
from cashbook.services.storage import GoogleSheetsSyncBackend, MemoryStore
from cashbook.services.sync import CloudSync
from cashbook.sheets import CellValueRejected, EntryKind, EntryRejected

from tests.conftest import TODAY, FakeWorksheet, run


CLOUD_TIME = datetime(2024, 12, 15, 9, 0, tzinfo=timezone.utc)


def quote(sell=26010, buy=25880):
    return RateQuote(sell_price=sell, buy_price=buy, source=RateSource.BINANCE_P2P)


class FakeRateClient:
    def __init__(self, result):
        self.result = result
        self.stored = None

    def fetch(self, stored_settings=None):
        self.stored = stored_settings
        return self.result


@pytest.fixture
def cashbook(clock):
    return Cashbook(MemoryStore(), clock=clock)


def event_types(book):
    return [e.event_type for e in book.audit_logger.recent_events]


class TestCellEdits:
    """Tests for the edit → save → audit flow."""

    def test_edit_saved(self, cashbook):
        run(cashbook.edit_cell(SheetKind.AE, 0, "name", "An, Bình"))
        update = run(cashbook.edit_cell(SheetKind.AE, 0, "money", "1,000"))

        assert update.changes["chia"] == "500"
        stored = run(cashbook.store.load("AE_sheet"))
        assert stored[0]["money"] == "1000"
        assert stored[0]["tt"] == "250"
        assert stored[0]["date"] == "15/12/2024"
        assert event_types(cashbook)[0] == AuditEventType.CELL_EDITED

    def test_rejected_value_not_saved(self, cashbook):
        with pytest.raises(CellValueRejected):
            run(cashbook.edit_cell(SheetKind.AE, 0, "money", "-5"))
        assert run(cashbook.store.load("AE_sheet")) is None
        assert event_types(cashbook) == [AuditEventType.CELL_REJECTED]

    def test_unchanged_value_not_saved(self, cashbook):
        run(cashbook.edit_cell(SheetKind.AE, 0, "note", ""))
        assert run(cashbook.store.load("AE_sheet")) is None

    def test_sheets_loaded_from_store(self, clock):
        store = MemoryStore({"AEQT_sheet": [{"money": "1000", "name": "A, B", "chia": "500"}]})
        book = Cashbook(store, clock=clock)
        sheet = run(book.sheet(SheetKind.AE_QT))
        assert sheet.rows[0].tt == "400"
        assert len(sheet) == 50

    def test_edit_pushed_to_cloud(self, clock):
        store = MemoryStore()
        backend = GoogleSheetsSyncBackend(worksheet=FakeWorksheet(), user_id="me")
        audit = AuditLogger()
        book = Cashbook(store, audit_logger=audit, sync=CloudSync(store, backend, audit), clock=clock)

        run(book.edit_cell(SheetKind.WITHDRAW, 0, "visa", "100"))
        record = run(backend.fetch("dashboard_withdraw"))
        assert record.value[0]["visa"] == "100"
        assert AuditEventType.SYNC_PUSHED in event_types(book)


class TestFormulasAndPreferences:
    """Tests for formula changes and display preferences."""

    def test_new_formula_recalculates_stored_rows(self, cashbook):
        run(cashbook.edit_cell(SheetKind.AE, 0, "name", "An, Bình"))
        run(cashbook.edit_cell(SheetKind.AE, 0, "money", "1000"))

        run(cashbook.save_formulas({"ae": {"tt": "chia * 0.6"}}))
        assert run(cashbook.store.load("AE_sheet"))[0]["tt"] == "300"
        assert run(cashbook.formulas()) == {"ae": {"tt": "chia * 0.6"}}
        assert AuditEventType.FORMULAS_UPDATED in event_types(cashbook)

    def test_invalid_formula_rejected(self, cashbook):
        with pytest.raises(FormulaError):
            run(cashbook.save_formulas({"ae": {"tt": "salary * 2"}}))
        assert run(cashbook.formulas()) == {}
        assert event_types(cashbook)[0] == AuditEventType.FORMULA_REJECTED

    def test_stored_formulas_used(self, clock):
        store = MemoryStore({"app_settings": {"formulas": {"aeqt": {"tt": "chia"}}}})
        book = Cashbook(store, clock=clock)
        run(book.edit_cell(SheetKind.AE_QT, 0, "name", "A, B"))
        run(book.edit_cell(SheetKind.AE_QT, 0, "money", "1000"))
        assert run(book.sheet(SheetKind.AE_QT)).rows[0].tt == "500"

    def test_preferences_keep_formulas(self, cashbook):
        run(cashbook.save_formulas({"ae": {"tt": "chia * 0.6"}}))
        run(cashbook.save_preferences(AppPreferences.model_validate({"display": {"showZero": False}})))

        prefs = run(cashbook.preferences())
        assert prefs.display.show_zero is False
        assert prefs.formulas == {"ae": {"tt": "chia * 0.6"}}


class TestRates:
    """Tests for quotes feeding the conversion sheet."""

    def test_quote_fills_conversion_price(self, cashbook):
        run(cashbook.set_quote(quote()))
        run(cashbook.edit_cell(SheetKind.CONVERSION, 0, "usdt", "100"))
        row = run(cashbook.sheet(SheetKind.CONVERSION)).rows[0]
        assert row.price == "25880"
        assert row.vnd == "2588000"

    def test_quote_reaches_loaded_sheet(self, cashbook):
        run(cashbook.sheet(SheetKind.CONVERSION))
        run(cashbook.set_quote(quote(buy=25000)))
        run(cashbook.edit_cell(SheetKind.CONVERSION, 0, "usdt", "1"))
        assert run(cashbook.sheet(SheetKind.CONVERSION)).rows[0].price == "25000"

    def test_quote_remembered(self, cashbook):
        run(cashbook.save_usd_rate(25400))
        run(cashbook.set_quote(quote()))
        stored = run(cashbook.rate_settings())
        assert stored["sellPrice"] == 26010
        assert stored["usdRate"] == 25400
        assert AuditEventType.RATE_FETCHED in event_types(cashbook)

    def test_refresh_rate(self, cashbook):
        run(cashbook.save_usd_rate(25400))
        client = FakeRateClient(quote())
        assert run(cashbook.refresh_rate(client)).sell_price == 26010
        assert client.stored == {"usdRate": 25400}
        assert cashbook.quote.buy_price == 25880

    def test_refresh_rate_unavailable(self, cashbook):
        assert run(cashbook.refresh_rate(FakeRateClient(None))) is None
        assert cashbook.quote is None
        assert run(cashbook.rate_settings()) == {}


class TestExpenseBook:
    """Tests for expense book entries through the orchestrator."""

    def test_add_saved_by_month(self, cashbook):
        book = run(cashbook.expense_book())
        entry = run(cashbook.add_entry(book, EntryKind.INCOME, date="2024-12-01", amount="5,000,000", source="Lương"))
        stored = run(cashbook.store.load("expense_income_data"))
        assert stored["2024-12"][0]["id"] == entry.id
        assert event_types(cashbook)[0] == AuditEventType.ENTRY_SAVED

    def test_rejected_entry_not_saved(self, cashbook):
        book = run(cashbook.expense_book())
        with pytest.raises(EntryRejected):
            run(cashbook.add_entry(book, EntryKind.EXPENSE, date="2024-12-01", amount=0, category="Khác"))
        assert run(cashbook.store.load("expense_expense_data")) is None

    def test_update_and_delete(self, cashbook):
        book = run(cashbook.expense_book())
        entry = run(cashbook.add_entry(book, EntryKind.EXPENSE, date="2024-12-01", amount=100, category="Khác"))
        run(cashbook.update_entry(book, EntryKind.EXPENSE, entry.id, "amount", 250))
        assert run(cashbook.store.load("expense_expense_data"))["2024-12"][0]["amount"] == 250

        run(cashbook.delete_entry(book, EntryKind.EXPENSE, entry.id))
        assert run(cashbook.store.load("expense_expense_data"))["2024-12"] == []
        assert event_types(cashbook)[0] == AuditEventType.ENTRY_DELETED

    def test_book_uses_stored_usd_rate(self, cashbook):
        run(cashbook.save_usd_rate(25000))
        assert run(cashbook.expense_book()).usd_rate == 25000


class TestReportsAndExport:
    """Tests for report and export wiring."""

    def test_cards(self, cashbook):
        run(cashbook.edit_cell(SheetKind.AE, 0, "money", "1000"))
        run(cashbook.edit_cell(SheetKind.AE, 1, "money", "500"))
        run(cashbook.set_quote(quote()))
        ae, aeqt, rate = run(cashbook.cards())
        assert (ae.total, ae.count) == (1500, 2)
        assert aeqt.count == 0
        assert rate.total == 26010

    def test_dashboard_totals(self, cashbook):
        run(cashbook.set_quote(quote()))
        run(cashbook.edit_cell(SheetKind.CONVERSION, 0, "usdt", "100"))
        run(cashbook.edit_cell(SheetKind.WITHDRAW, 0, "visa", "100"))
        run(cashbook.edit_cell(SheetKind.WITHDRAW, 1, "bankdep", "50"))
        totals = run(cashbook.dashboard_totals())
        assert totals.total_usdt == 100
        assert totals.month_avg_price == 25880
        assert totals.total_withdraw == 150

    def test_unknown_format(self, cashbook):
        with pytest.raises(ExportError, match="Unknown export format"):
            run(cashbook.export_sheet(SheetKind.AE, "pdf"))

    def test_empty_sheet_export(self, cashbook):
        with pytest.raises(ExportError):
            run(cashbook.export_sheet(SheetKind.AE, "csv"))

    def test_csv_export(self, cashbook):
        run(cashbook.edit_cell(SheetKind.AE, 0, "money", "1000"))
        text = run(cashbook.export_sheet(SheetKind.AE, "csv")).decode("utf-8")
        assert "money" in text.splitlines()[0]
        assert len(text.splitlines()) == 2
        assert event_types(cashbook)[0] == AuditEventType.EXPORT_CREATED

    def test_entry_export(self, cashbook):
        book = run(cashbook.expense_book())
        run(cashbook.add_entry(book, EntryKind.EXPENSE, date="2024-12-01", amount=100, category="Internet"))
        data = run(cashbook.export_sheet(EntryKind.EXPENSE, "json")).decode("utf-8")
        assert "Internet" in data

    def test_restore_reloads_sheets(self, cashbook):
        run(cashbook.edit_cell(SheetKind.AE, 0, "money", "1000"))
        restored = run(cashbook.restore_backup({"AE_sheet": [{"money": "5"}]}))
        assert restored == ["AE_sheet"]
        assert run(cashbook.sheet(SheetKind.AE)).rows[0].money == "5"


class TestFactory:
    """Tests for create_app_components."""

    def test_offline(self):
        store = MemoryStore()
        book, client = create_app_components(use_cloud=False, store=store)
        assert isinstance(book, Cashbook)
        assert book.store is store
        assert client is None


class TestCloudSync:
    """Tests for the startup pull, the full sync and synced side lists."""

    def setup_method(self):
        self.store = MemoryStore()
        self.backend = GoogleSheetsSyncBackend(worksheet=FakeWorksheet(), user_id="me")
        audit = AuditLogger()
        self.book = Cashbook(
            self.store,
            audit_logger=audit,
            sync=CloudSync(self.store, self.backend, audit),
            clock=lambda: TODAY,
        )

    def test_notes_and_staff_pushed(self):
        run(self.book.notes.save("ae", 0, "chưa trả"))
        run(self.book.staff[SheetKind.AE_QT].add("An"))
        assert run(self.backend.fetch("table_row_notes")).value == {"ae_row_0": "chưa trả"}
        assert run(self.backend.fetch("staff_list_aeqt")).value == ["An"]

    def test_initial_sync_fills_empty_ledger(self):
        run(self.backend.upsert("AE_sheet", [{"money": "700"}], CLOUD_TIME))
        report = run(self.book.initial_sync())
        assert report.updated == ["AE_sheet"]
        assert run(self.book.sheet(SheetKind.AE)).rows[0].money == "700"

    def test_initial_sync_keeps_local_data(self):
        run(self.book.edit_cell(SheetKind.AE, 0, "money", "100"))
        run(self.backend.upsert("AE_sheet", [{"money": "700"}], CLOUD_TIME))
        assert run(self.book.initial_sync()) is None
        assert run(self.book.sheet(SheetKind.AE)).rows[0].money == "100"

    def test_sync_all_pushes_then_pulls(self):
        run(self.store.save("staff_list_ae", ["An"]))
        run(self.backend.upsert("dashboard_withdraw", [{"visa": "5"}], CLOUD_TIME))

        pushed, pulled = run(self.book.sync_all())
        assert pushed.updated == ["staff_list_ae"]
        assert run(self.backend.fetch("staff_list_ae")).value == ["An"]
        assert pulled.updated == ["dashboard_withdraw"]
        assert run(self.book.sheet(SheetKind.WITHDRAW)).rows[0].visa == "5"

    def test_sync_actions_without_cloud(self, cashbook):
        assert run(cashbook.initial_sync()) is None
        assert run(cashbook.sync_all()) is None

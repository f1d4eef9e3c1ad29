"""
Main Orchestrator for Cashbook

This module ties together all the components and defines the
end-to-end flows for:
1. Cell edit (load sheet → cascade → save → audit → cloud push)
2. Expense book entries (validate → save → audit → cloud push)
3. Rates (fetch quote → remember in rate-settings → feed price auto-fill)
4. Reports and exports built from the stored sheets

DESIGN DECISION: The orchestrator enforces the boundaries:
- A rejected value never reaches the store
- Every accepted edit is saved before it is synced
- A failing cloud push never fails the edit
- Every step is audited

The UI talks to `Cashbook` only; it never touches the store directly.
"""

from datetime import date
from typing import Any, Callable, Optional, Union

import structlog

from cashbook.audit import AuditLogger, create_correlation_id
from cashbook.config import get_settings
from cashbook.export import ExportError, export_backup, restore_backup, to_csv, to_json, to_xlsx
from cashbook.formulas import FormulaEngine, FormulaError
from cashbook.models.audit import AuditEventBuilder
from cashbook.models.rate import RateQuote
from cashbook.models.sheet import AppPreferences, SheetKind
from cashbook.services.notes import NoteBook
from cashbook.services.rates.client import RateClient, remember_quote
from cashbook.services.staff import StaffDirectory
from cashbook.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsSyncBackend,
    JsonFileStore,
    KeyValueStore,
)
from cashbook.services.sync import CloudSync
from cashbook.sheets import (
    AEQTSheet,
    AESheet,
    CellUpdate,
    CellValueRejected,
    ConversionSheet,
    DashboardTotals,
    EntryKind,
    EntryRejected,
    ExpenseBook,
    Sheet,
    WithdrawSheet,
    compute_totals,
)
from cashbook.stats import (
    MonthlyStats,
    PersonBalance,
    SummaryCard,
    compute_balances,
    dashboard_cards,
    monthly_stats,
)


SHEET_CLASSES: dict[SheetKind, type[Sheet]] = {
    SheetKind.AE: AESheet,
    SheetKind.AE_QT: AEQTSheet,
    SheetKind.CONVERSION: ConversionSheet,
    SheetKind.WITHDRAW: WithdrawSheet,
}

RATE_SETTINGS_KEY = "rate-settings"
EXPORT_FORMATS = ("csv", "json", "xlsx")


class Cashbook:
    """
    The ledger as one object.

    Sheets are loaded lazily from the store and cached; every edit
    writes the whole sheet back under its key.
    """

    def __init__(
        self,
        store: KeyValueStore,
        engine: Optional[FormulaEngine] = None,
        audit_logger: Optional[AuditLogger] = None,
        sync: Optional[CloudSync] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        self._store = store
        self._engine = engine or FormulaEngine()
        self._audit = audit_logger or AuditLogger()
        self._sync = sync
        self._clock = clock
        self._settings = get_settings().app
        self._sheets: dict[SheetKind, Sheet] = {}
        self._quote: Optional[RateQuote] = None
        self._formulas_loaded = False
        self._logger = structlog.get_logger(__name__)

        self.notes = NoteBook(store, sync)
        self.staff = {
            SheetKind.AE: StaffDirectory(store, "ae", sync),
            SheetKind.AE_QT: StaffDirectory(store, "aeqt", sync),
        }

    @property
    def store(self) -> KeyValueStore:
        return self._store

    @property
    def engine(self) -> FormulaEngine:
        return self._engine

    @property
    def audit_logger(self) -> AuditLogger:
        return self._audit

    @property
    def quote(self) -> Optional[RateQuote]:
        return self._quote

    # =========================================================================
    # Persistence
    # =========================================================================

    async def _persist(self, key: str, value: Any, correlation_id=None) -> None:
        await self._store.save(key, value)
        if self._sync is not None:
            # Failures are logged and audited inside push
            await self._sync.push(key, correlation_id)

    async def pull_from_cloud(self):
        """Pull newer cloud values, then drop cached sheets so they reload."""
        if self._sync is None:
            return None
        report = await self._sync.pull_all()
        if report.updated:
            self._sheets.clear()
            self._formulas_loaded = False
        return report

    async def initial_sync(self):
        """Startup pull: fills an empty ledger from the cloud, never overwrites local data."""
        if self._sync is None:
            return None
        report = await self._sync.initial_sync()
        if report is not None and report.updated:
            self._sheets.clear()
            self._formulas_loaded = False
        return report

    async def sync_all(self):
        """
        Push every local key, then pull whatever the cloud has that is newer.

        Returns:
            (push_report, pull_report), or None when cloud sync is off
        """
        if self._sync is None:
            return None
        pushed = await self._sync.push_all()
        pulled = await self.pull_from_cloud()
        return pushed, pulled

    async def _ensure_formulas(self) -> None:
        if not self._formulas_loaded:
            await self._engine.load_custom_formulas(self._store)
            self._formulas_loaded = True

    # =========================================================================
    # Sheets
    # =========================================================================

    def _sheet_kwargs(self, kind: SheetKind) -> dict:
        kwargs: dict[str, Any] = {"engine": self._engine}
        if self._clock is not None:
            kwargs["clock"] = self._clock
        if kind in (SheetKind.AE, SheetKind.AE_QT):
            kwargs["min_rows"] = self._settings.ae_initial_rows
        else:
            kwargs["min_rows"] = self._settings.dashboard_initial_rows
            kwargs["max_rows"] = self._settings.dashboard_max_rows
        if kind is SheetKind.CONVERSION:
            kwargs["quote"] = self._quote
        return kwargs

    async def sheet(self, kind: SheetKind) -> Sheet:
        if kind not in self._sheets:
            await self._ensure_formulas()
            stored = await self._store.load(kind.storage_key, [])
            rows = stored if isinstance(stored, list) else []
            self._sheets[kind] = SHEET_CLASSES[kind](rows, **self._sheet_kwargs(kind))
        return self._sheets[kind]

    async def save_sheet(self, kind: SheetKind, correlation_id=None) -> None:
        sheet = await self.sheet(kind)
        await self._persist(kind.storage_key, sheet.to_storage(), correlation_id)
        await self._audit.log(AuditEventBuilder.sheet_saved(kind.storage_key, len(sheet), correlation_id))

    async def edit_cell(self, kind: SheetKind, row_index: int, column: str, value: Any) -> CellUpdate:
        """
        Apply one typed value, save the sheet and push it.

        Raises:
            CellEditError: Unknown row or column
            CellValueRejected: Value refused; nothing was saved
        """
        correlation_id = create_correlation_id()
        sheet = await self.sheet(kind)
        try:
            update = sheet.set_cell(row_index, column, value)
        except CellValueRejected as e:
            await self._audit.log_cell_rejected(
                kind.storage_key, row_index, column, e.value, e.message, correlation_id,
            )
            raise

        if not update.changes and not update.row_appended:
            return update

        await self._store.save(kind.storage_key, sheet.to_storage())
        await self._audit.log_cell_edited(
            kind.storage_key, row_index, column, update.changes, correlation_id,
        )
        if update.row_appended:
            await self._audit.log_row_appended(kind.storage_key, len(sheet), correlation_id)
        if self._sync is not None:
            await self._sync.push(kind.storage_key, correlation_id)
        return update

    async def recalculate(self, kind: SheetKind) -> None:
        """Re-run the formulas of every work row, e.g. after the formulas changed."""
        if kind not in (SheetKind.AE, SheetKind.AE_QT):
            return
        sheet = await self.sheet(kind)
        if sheet.recalculate():
            await self.save_sheet(kind)

    # =========================================================================
    # Formulas & preferences
    # =========================================================================

    async def save_formulas(self, formulas: dict[str, dict[str, str]]) -> None:
        """
        Raises:
            FormulaError: When any formula is invalid; nothing is saved
        """
        try:
            await self._engine.save_custom_formulas(self._store, formulas)
        except FormulaError:
            for table, columns in formulas.items():
                for column, formula in columns.items():
                    valid, error = self._engine.validate_formula(formula)
                    if not valid:
                        await self._audit.log_formula_rejected(str(table), column, formula, error or "")
            raise
        self._formulas_loaded = True
        await self._audit.log_formulas_updated(self._engine.custom_formulas)
        if self._sync is not None:
            await self._sync.push(FormulaEngine.SETTINGS_KEY)
        for kind in (SheetKind.AE, SheetKind.AE_QT):
            await self.recalculate(kind)

    async def formulas(self) -> dict[str, dict[str, str]]:
        """The user's formula overrides, loaded from the store on first use."""
        await self._ensure_formulas()
        return self._engine.custom_formulas

    async def preferences(self) -> AppPreferences:
        stored = await self._store.load(FormulaEngine.SETTINGS_KEY, {})
        return AppPreferences.model_validate(stored if isinstance(stored, dict) else {})

    async def save_preferences(self, preferences: AppPreferences) -> None:
        # Formulas are owned by save_formulas; keep what is stored
        stored = await self._store.load(FormulaEngine.SETTINGS_KEY, {})
        value = preferences.model_dump(by_alias=True)
        value["formulas"] = (stored or {}).get("formulas", {}) if isinstance(stored, dict) else {}
        await self._persist(FormulaEngine.SETTINGS_KEY, value)

    # =========================================================================
    # Rates
    # =========================================================================

    async def rate_settings(self) -> dict:
        stored = await self._store.load(RATE_SETTINGS_KEY, {})
        return stored if isinstance(stored, dict) else {}

    async def set_quote(self, quote: Optional[RateQuote], remember: bool = True) -> None:
        """Use a quote for price auto-fill and keep it as the last known rate."""
        self._quote = quote
        if SheetKind.CONVERSION in self._sheets:
            self._sheets[SheetKind.CONVERSION].quote = quote
        if quote is not None and remember:
            value = remember_quote(quote, await self.rate_settings())
            await self._persist(RATE_SETTINGS_KEY, value)
            await self._audit.log_rate_fetched(quote.source.value, quote.sell_price, quote.buy_price)

    async def refresh_rate(self, client: Optional[RateClient] = None) -> Optional[RateQuote]:
        client = client or RateClient()
        quote = client.fetch(await self.rate_settings())
        if quote is None:
            await self._audit.log_external_service_error("rates", "No rate source available")
            return None
        await self.set_quote(quote)
        return quote

    async def save_usd_rate(self, usd_rate: float) -> None:
        value = await self.rate_settings()
        value["usdRate"] = usd_rate
        await self._persist(RATE_SETTINGS_KEY, value)

    # =========================================================================
    # Expense book
    # =========================================================================

    async def expense_book(self) -> ExpenseBook:
        book = ExpenseBook(
            await self._store.load(EntryKind.INCOME.storage_key, {}),
            await self._store.load(EntryKind.EXPENSE.storage_key, {}),
            clock=self._clock,
        )
        book.use_rate_settings(await self.rate_settings())
        return book

    async def save_book(self, book: ExpenseBook, kind: EntryKind) -> None:
        await self._persist(kind.storage_key, book.to_storage(kind))

    async def add_entry(self, book: ExpenseBook, kind: EntryKind, month: Optional[str] = None, **fields):
        """
        Raises:
            EntryRejected: A field failed validation; nothing was added
        """
        try:
            entry = book.add(kind, month, **fields)
        except EntryRejected as e:
            self._logger.info("entry_rejected", field=e.field, reason=e.message)
            raise
        await self.save_book(book, kind)
        await self._audit.log(AuditEventBuilder.entry_saved(
            kind.storage_key, entry.id, entry.amount, entry.currency.value,
        ))
        return entry

    async def update_entry(
        self,
        book: ExpenseBook,
        kind: EntryKind,
        entry_id: str,
        field: str,
        value: Any,
        month: Optional[str] = None,
    ):
        entry = book.update_field(kind, entry_id, field, value, month)
        await self.save_book(book, kind)
        await self._audit.log(AuditEventBuilder.entry_saved(
            kind.storage_key, entry.id, entry.amount, entry.currency.value,
        ))
        return entry

    async def delete_entry(self, book: ExpenseBook, kind: EntryKind, entry_id: str, month: Optional[str] = None) -> None:
        book.delete(kind, entry_id, month)
        await self.save_book(book, kind)
        await self._audit.log(AuditEventBuilder.entry_deleted(kind.storage_key, entry_id))

    # =========================================================================
    # Reports
    # =========================================================================

    async def _records(self, kind: SheetKind) -> list[dict[str, str]]:
        return (await self.sheet(kind)).records()

    async def dashboard_totals(self) -> DashboardTotals:
        return compute_totals(
            await self.sheet(SheetKind.CONVERSION),
            await self.sheet(SheetKind.WITHDRAW),
        )

    async def monthly(self) -> list[MonthlyStats]:
        return monthly_stats(
            await self._records(SheetKind.CONVERSION),
            await self._records(SheetKind.WITHDRAW),
            await self._records(SheetKind.AE),
            await self._records(SheetKind.AE_QT),
        )

    async def balances(self) -> dict[str, PersonBalance]:
        return compute_balances(
            await self._records(SheetKind.AE),
            await self._records(SheetKind.AE_QT),
            await self._records(SheetKind.CONVERSION),
            await self._records(SheetKind.WITHDRAW),
        )

    async def cards(self) -> list[SummaryCard]:
        return dashboard_cards(
            await self._records(SheetKind.AE),
            await self._records(SheetKind.AE_QT),
            await self.rate_settings(),
        )

    # =========================================================================
    # Export
    # =========================================================================

    async def export_sheet(self, kind: Union[SheetKind, EntryKind], fmt: str) -> bytes:
        """
        Raises:
            ExportError: Unknown format or nothing to export
        """
        if fmt not in EXPORT_FORMATS:
            raise ExportError(f"Unknown export format: {fmt}")

        if isinstance(kind, EntryKind):
            book = await self.expense_book()
            rows = [e.model_dump(mode="json") for e in book.entries(kind)]
            label = kind.storage_key
        else:
            rows = await self._records(kind)
            label = kind.label

        if fmt == "csv":
            data = to_csv(rows)
        elif fmt == "json":
            data = to_json(rows)
        else:
            data = to_xlsx(rows, sheet_name=label)

        await self._audit.log(AuditEventBuilder.export_created(kind.storage_key, fmt, len(rows)))
        return data

    async def export_backup(self) -> bytes:
        data = await export_backup(self._store)
        await self._audit.log(AuditEventBuilder.export_created("backup", "json", 0))
        return data

    async def restore_backup(self, payload: Union[bytes, str, dict]) -> list[str]:
        restored = await restore_backup(self._store, payload)
        self._sheets.clear()
        self._formulas_loaded = False
        if self._sync is not None:
            for key in restored:
                await self._sync.push(key)
        return restored


def create_app_components(
    use_cloud: Optional[bool] = None,
    store: Optional[KeyValueStore] = None,
) -> tuple[Cashbook, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_cloud: Whether to initialize Google Sheets sync and audit
                   storage. Defaults to CASHBOOK_CLOUD_SYNC_ENABLED.
        store: Key/value store; a JSON file store under the configured
               data directory when omitted.

    Returns:
        (cashbook, sheets_client)
    """
    settings = get_settings().app
    store = store or JsonFileStore(settings.data_dir)
    use_cloud = settings.cloud_sync_enabled if use_cloud is None else use_cloud
    logger = structlog.get_logger(__name__)

    sheets_client = None
    sync = None
    audit_logger = AuditLogger()  # Local-only logging

    if use_cloud:
        try:
            sheets_client = GoogleSheetsClient()
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
            sync = CloudSync(store, GoogleSheetsSyncBackend(sheets_client), audit_logger)
        except Exception as e:
            # Cloud not configured - continue offline
            logger.warning("cloud_sync_unavailable", error=str(e))
            sheets_client = None
            sync = None
            audit_logger = AuditLogger()

    return Cashbook(store, audit_logger=audit_logger, sync=sync), sheets_client

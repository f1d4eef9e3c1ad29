"""
Ledger Audit Trail

DESIGN DECISION: Every accepted edit, rejected value, sync and rate
alert leaves an event. Cell edits carry the storage key, the row and
the changed columns, so a bad number can be traced to the edit (and
the cloud push) that produced it.

Events always go to the structlog JSON log. When an audit worksheet is
configured they are appended there too; a failing append is logged
and reported as False, never raised into the edit flow.
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from cashbook.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from cashbook.services.storage.interface import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(ensure_ascii=False)
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Writes ledger events to the JSON log and, optionally, the audit sheet.

    The last 200 events stay in memory for the settings page.
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Args:
            storage: Where events are persisted. Without one, events
                    only reach the JSON log.
        """
        self._storage = storage
        self._logger = structlog.get_logger()
        self._recent: list[AuditEvent] = []

    @property
    def recent_events(self) -> list[AuditEvent]:
        """Events logged by this instance, newest first."""
        return list(reversed(self._recent))

    async def log(self, event: AuditEvent) -> bool:
        """
        Record one event; the log level follows its severity.

        Returns:
            False only when a configured storage could not take the event
        """
        self._recent.append(event)
        del self._recent[:-200]

        log_dict = event.to_log_dict()
        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # The edit already succeeded; only the audit copy is lost
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_cell_edited(
        self,
        storage_key: str,
        row_index: int,
        column: str,
        changes: dict[str, str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.cell_edited(
            storage_key=storage_key,
            row_index=row_index,
            column=column,
            changes=changes,
            correlation_id=correlation_id,
        ))

    async def log_cell_rejected(
        self,
        storage_key: str,
        row_index: int,
        column: str,
        value: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.cell_rejected(
            storage_key=storage_key,
            row_index=row_index,
            column=column,
            value=value,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_row_appended(
        self,
        storage_key: str,
        row_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.row_appended(storage_key, row_count, correlation_id))

    async def log_formulas_updated(self, formulas: dict[str, dict[str, str]]) -> None:
        await self.log(AuditEventBuilder.formulas_updated(formulas))

    async def log_formula_rejected(self, table: str, column: str, formula: str, error: str) -> None:
        await self.log(AuditEventBuilder.formula_rejected(table, column, formula, error))

    async def log_sync_failed(
        self,
        storage_key: Optional[str],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.sync_failed(storage_key, error_message, correlation_id))

    async def log_rate_fetched(self, source: str, sell_price: float, buy_price: float) -> None:
        await self.log(AuditEventBuilder.rate_fetched(source, sell_price, buy_price))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """A rate source, Google Sheets or another upstream failed."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """One ID per cell edit, shared by its audit event and its cloud push."""
    return uuid4()

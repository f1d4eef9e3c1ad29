"""
Audit Models for Cashbook

One event per ledger action: cell edits with their cascaded changes,
rejected values, formula changes, expense entries, sync pushes and
pulls, rate fetches, alerts and exports.

DESIGN DECISION: Events are append-only. The audit worksheet is never
rewritten, only appended to.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Sheet editing
    CELL_EDITED = "cell_edited"
    CELL_REJECTED = "cell_rejected"
    ROW_APPENDED = "row_appended"
    SHEET_SAVED = "sheet_saved"

    # Formulas
    FORMULAS_UPDATED = "formulas_updated"
    FORMULA_REJECTED = "formula_rejected"

    # Expense book
    ENTRY_SAVED = "entry_saved"
    ENTRY_DELETED = "entry_deleted"

    # Cloud sync
    SYNC_PUSHED = "sync_pushed"
    SYNC_PULLED = "sync_pulled"
    SYNC_FAILED = "sync_failed"

    # Rates
    RATE_FETCHED = "rate_fetched"
    RATE_ALERT_TRIGGERED = "rate_alert_triggered"

    # Export
    EXPORT_CREATED = "export_created"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(BaseModel):
    """One ledger action, as logged and as stored in the audit sheet."""

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'sheet', 'rate', 'formula')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Storage key or identifier of the entity"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one edit and its sync)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, ensure_ascii=False) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.cell_edited("AE_sheet", 3, "money", {...})
        event = AuditEventBuilder.rate_fetched("binance-p2p", 25950, 25880)
    """

    @staticmethod
    def cell_edited(
        storage_key: str,
        row_index: int,
        column: str,
        changes: dict[str, str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CELL_EDITED,
            entity_type="sheet",
            entity_id=storage_key,
            correlation_id=correlation_id,
            description=f"{storage_key}[{row_index}].{column} edited",
            details={
                "row_index": row_index,
                "column": column,
                "changes": changes,
            },
            is_user_action=True,
        )

    @staticmethod
    def cell_rejected(
        storage_key: str,
        row_index: int,
        column: str,
        value: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CELL_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="sheet",
            entity_id=storage_key,
            correlation_id=correlation_id,
            description=f"Rejected value for {storage_key}[{row_index}].{column}",
            details={
                "row_index": row_index,
                "column": column,
                "value": value,
                "reason": reason,
            },
            is_user_action=True,
        )

    @staticmethod
    def row_appended(
        storage_key: str,
        row_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ROW_APPENDED,
            entity_type="sheet",
            entity_id=storage_key,
            correlation_id=correlation_id,
            description=f"Row appended to {storage_key} ({row_count} rows)",
            details={"row_count": row_count},
        )

    @staticmethod
    def sheet_saved(
        storage_key: str,
        row_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SHEET_SAVED,
            severity=AuditSeverity.DEBUG,
            entity_type="sheet",
            entity_id=storage_key,
            correlation_id=correlation_id,
            description=f"Saved {storage_key}",
            details={"row_count": row_count},
        )

    @staticmethod
    def entry_saved(
        storage_key: str,
        entry_id: str,
        amount: float,
        currency: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_SAVED,
            entity_type="expense",
            entity_id=entry_id,
            correlation_id=correlation_id,
            description=f"Entry saved to {storage_key}: {amount:g} {currency}",
            details={"storage_key": storage_key, "amount": amount, "currency": currency},
            is_user_action=True,
        )

    @staticmethod
    def entry_deleted(storage_key: str, entry_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ENTRY_DELETED,
            entity_type="expense",
            entity_id=entry_id,
            description=f"Entry deleted from {storage_key}",
            details={"storage_key": storage_key},
            is_user_action=True,
        )

    @staticmethod
    def formulas_updated(formulas: dict[str, dict[str, str]]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FORMULAS_UPDATED,
            entity_type="formula",
            entity_id="app_settings",
            description="Custom formulas saved",
            details={"formulas": formulas},
            is_user_action=True,
        )

    @staticmethod
    def formula_rejected(table: str, column: str, formula: str, error: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FORMULA_REJECTED,
            severity=AuditSeverity.WARNING,
            entity_type="formula",
            entity_id=f"{table}.{column}",
            description=f"Formula rejected for {table}.{column}",
            details={"formula": formula},
            error_message=error,
            is_user_action=True,
        )

    @staticmethod
    def sync_pushed(storage_key: str, correlation_id: Optional[UUID] = None) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_PUSHED,
            entity_type="sync",
            entity_id=storage_key,
            correlation_id=correlation_id,
            description=f"Pushed {storage_key} to cloud",
        )

    @staticmethod
    def sync_pulled(updated_keys: list[str], skipped_keys: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_PULLED,
            entity_type="sync",
            description=f"Pulled {len(updated_keys)} keys from cloud",
            details={
                "updated": updated_keys,
                "skipped": skipped_keys,
            },
        )

    @staticmethod
    def sync_failed(
        storage_key: Optional[str],
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="sync",
            entity_id=storage_key,
            correlation_id=correlation_id,
            description=f"Cloud sync failed for {storage_key or 'all keys'}",
            error_message=error_message,
        )

    @staticmethod
    def rate_fetched(source: str, sell_price: float, buy_price: float) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RATE_FETCHED,
            entity_type="rate",
            entity_id=source,
            description=f"Rate fetched from {source}",
            details={
                "sell_price": sell_price,
                "buy_price": buy_price,
            },
        )

    @staticmethod
    def rate_alert_triggered(
        old_rate: float,
        new_rate: float,
        change_percent: float,
        threshold_percent: float,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RATE_ALERT_TRIGGERED,
            severity=AuditSeverity.WARNING,
            entity_type="rate",
            description=f"USDT/VND moved {change_percent:.2f}% (threshold {threshold_percent:.2f}%)",
            details={
                "old_rate": old_rate,
                "new_rate": new_rate,
                "change_percent": change_percent,
            },
        )

    @staticmethod
    def export_created(storage_key: str, fmt: str, row_count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPORT_CREATED,
            entity_type="export",
            entity_id=storage_key,
            description=f"Exported {storage_key} as {fmt}",
            details={"format": fmt, "row_count": row_count},
            is_user_action=True,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )

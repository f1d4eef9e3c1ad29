"""
Cloud Sync

Mirrors a fixed set of store keys to a cloud backend (Google Sheets).

Push: after a local save, the whole value is upserted under the key and
the local `_timestamp_<key>` is moved to the push time.

Pull: a cloud value replaces the local one only when the local copy is
empty or older than the cloud copy.

DESIGN DECISION: Sync never raises into the edit flow. A failed push or
pull is logged and audited, and the ledger keeps working offline.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from cashbook.audit.logger import AuditLogger
from cashbook.models.audit import AuditEventBuilder
from cashbook.services.storage.interface import (
    CloudSyncBackend,
    KeyValueStore,
    is_empty_value,
)


SYNC_KEYS: tuple[str, ...] = (
    "AE_sheet",
    "AEQT_sheet",
    "dashboard_conversion",
    "dashboard_withdraw",
    "rate-settings",
    "table_row_notes",
    "staff_list_ae",
    "staff_list_aeqt",
    "expense_income_data",
    "expense_expense_data",
    "app_settings",
)


class SyncReport(BaseModel):
    updated: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


class CloudSync:
    """Push/pull of SYNC_KEYS between a local store and a cloud backend."""

    def __init__(
        self,
        store: KeyValueStore,
        backend: CloudSyncBackend,
        audit_logger: Optional[AuditLogger] = None,
        keys: tuple[str, ...] = SYNC_KEYS,
    ):
        self._store = store
        self._backend = backend
        self._audit = audit_logger or AuditLogger()
        self._keys = keys
        self._logger = structlog.get_logger(__name__)

    @property
    def keys(self) -> tuple[str, ...]:
        return self._keys

    async def push(self, key: str, correlation_id=None) -> bool:
        """
        Upload one key. Keys outside the sync set and empty values are
        skipped.

        Returns:
            True if the cloud copy was written
        """
        if key not in self._keys:
            return False
        value = await self._store.load(key)
        if value is None:
            return False

        now = datetime.now(timezone.utc)
        try:
            await self._backend.upsert(key, value, now)
        except Exception as e:
            self._logger.warning("sync_push_failed", key=key, error=str(e))
            await self._audit.log_sync_failed(key, str(e), correlation_id)
            return False

        # The local copy is now exactly as new as the cloud copy
        await self._store.save(key, value, timestamp_ms=int(now.timestamp() * 1000))
        await self._audit.log(AuditEventBuilder.sync_pushed(key, correlation_id))
        return True

    async def push_all(self) -> SyncReport:
        report = SyncReport()
        for key in self._keys:
            if await self._store.load(key) is None:
                report.skipped.append(key)
            elif await self.push(key):
                report.updated.append(key)
            else:
                report.failed.append(key)
        return report

    async def pull_all(self) -> SyncReport:
        """Apply every cloud record that is newer than its local copy."""
        report = SyncReport()
        try:
            records = await self._backend.fetch_all()
        except Exception as e:
            self._logger.warning("sync_pull_failed", error=str(e))
            await self._audit.log_sync_failed(None, str(e))
            report.failed.extend(self._keys)
            return report

        for key in self._keys:
            record = records.get(key)
            if record is None:
                continue
            try:
                local = await self._store.load(key)
                local_stamp = await self._store.timestamp(key)
                if is_empty_value(local) or record.updated_at_ms > local_stamp:
                    await self._store.save(key, record.value, timestamp_ms=record.updated_at_ms)
                    report.updated.append(key)
                else:
                    report.skipped.append(key)
            except Exception as e:
                self._logger.warning("sync_apply_failed", key=key, error=str(e))
                await self._audit.log_sync_failed(key, str(e))
                report.failed.append(key)

        await self._audit.log(AuditEventBuilder.sync_pulled(report.updated, report.skipped))
        return report

    async def has_local_data(self) -> bool:
        for key in self._keys:
            if not is_empty_value(await self._store.load(key)):
                return True
        return False

    async def initial_sync(self) -> Optional[SyncReport]:
        """Pull on startup, but only into an empty ledger."""
        if await self.has_local_data():
            self._logger.info("sync_initial_pull_skipped")
            return None
        return await self.pull_all()

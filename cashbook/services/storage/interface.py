"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep the ledger in JSON files on disk by default
2. Use in-memory storage for testing
3. Mirror values to Google Sheets without touching business logic

The ledger persists whole values under string keys, the way a browser's
local storage does. That is the entire data model: no tables, no
queries, one JSON value per key.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

from cashbook.models.audit import AuditEvent


TIMESTAMP_PREFIX = "_timestamp_"


def timestamp_key(key: str) -> str:
    """Companion key holding the last write time of `key` (epoch ms)."""
    return f"{TIMESTAMP_PREFIX}{key}"


def is_empty_value(value: Any) -> bool:
    """None, "", [] and {} all count as 'nothing stored'."""
    return value is None or value == "" or value == [] or value == {}


class KeyValueStore(ABC):
    """
    Abstract interface for the ledger's key/value store.

    Every save also records `_timestamp_<key>` so cloud sync can tell
    which copy is newer.
    """

    @abstractmethod
    async def load(self, key: str, default: Any = None) -> Any:
        """
        Load the value stored under a key.

        Args:
            key: Storage key
            default: Returned when nothing is stored or the stored
                     value cannot be decoded

        Returns:
            The decoded JSON value
        """
        pass

    @abstractmethod
    async def save(self, key: str, value: Any, timestamp_ms: Optional[int] = None) -> bool:
        """
        Store a JSON-serializable value.

        Args:
            key: Storage key
            value: Value to store
            timestamp_ms: Write time to record; defaults to now

        Returns:
            True if saved successfully

        Raises:
            StorageError: If the value cannot be written
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Remove a key and its timestamp.

        Returns:
            True if something was deleted
        """
        pass

    @abstractmethod
    async def keys(self) -> list[str]:
        """All stored keys, timestamp companions excluded."""
        pass

    async def timestamp(self, key: str) -> int:
        """Last write time of a key in epoch ms, 0 if unknown."""
        value = await self.load(timestamp_key(key), 0)
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0


class CloudRecord(BaseModel):
    """One synced value as held by the cloud backend."""
    key: str
    value: Any = None
    updated_at: datetime

    @property
    def updated_at_ms(self) -> int:
        return int(self.updated_at.timestamp() * 1000)


class CloudSyncBackend(ABC):
    """
    Abstract interface for the remote copy of synced keys.

    One record per (user, key); the latest write wins.
    """

    @abstractmethod
    async def upsert(self, key: str, value: Any, updated_at: datetime) -> bool:
        """Insert or replace the record for a key."""
        pass

    @abstractmethod
    async def fetch(self, key: str) -> Optional[CloudRecord]:
        """The record for a key, or None if the cloud has none."""
        pass

    @abstractmethod
    async def fetch_all(self) -> dict[str, CloudRecord]:
        """Every record of the current user, keyed by storage key."""
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Key or record not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass

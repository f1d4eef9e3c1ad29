"""
Storage Services Package

Key/value persistence for the ledger. JSON files on disk are the
default; Google Sheets holds the cloud copy used by sync.
"""

from cashbook.services.storage.interface import (
    AuditStorageInterface,
    CloudRecord,
    CloudSyncBackend,
    ConnectionError,
    KeyValueStore,
    NotFoundError,
    StorageError,
    is_empty_value,
    timestamp_key,
)
from cashbook.services.storage.local_store import JsonFileStore, MemoryStore, now_ms
from cashbook.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsSyncBackend,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "CloudRecord",
    "CloudSyncBackend",
    "KeyValueStore",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "StorageError",
    # Helpers
    "is_empty_value",
    "now_ms",
    "timestamp_key",
    # Local implementations
    "JsonFileStore",
    "MemoryStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsSyncBackend",
]

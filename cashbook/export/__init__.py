"""Export package."""

from cashbook.export.exporter import (
    ExportError,
    backup_bundle,
    export_backup,
    restore_backup,
    to_csv,
    to_json,
    to_xlsx,
)

__all__ = [
    "ExportError",
    "backup_bundle",
    "export_backup",
    "restore_backup",
    "to_csv",
    "to_json",
    "to_xlsx",
]

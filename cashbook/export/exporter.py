"""
Export

Sheet data leaves the app as:
- CSV, UTF-8 with a BOM so Excel opens Vietnamese text correctly
- JSON, indented
- Excel (.xlsx), one worksheet
- A backup bundle: every synced key plus `exportDate`

All functions return bytes; the UI decides where they go.
"""

import io
import json
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Sequence

import pandas as pd
from openpyxl import Workbook

from cashbook.services.storage.interface import KeyValueStore
from cashbook.services.sync import SYNC_KEYS


BOM = "\ufeff"
EMPTY_MESSAGE = "Không có dữ liệu để tải xuống"


class ExportError(Exception):
    """Nothing to export, or the data cannot be written."""
    pass


def _require_rows(rows: Optional[Sequence[Mapping]]) -> list[Mapping]:
    if not rows:
        raise ExportError(EMPTY_MESSAGE)
    return list(rows)


def _headers(rows: list[Mapping], headers: Optional[Sequence[str]]) -> list[str]:
    return list(headers) if headers else list(rows[0].keys())


def to_csv(rows: Sequence[Mapping], headers: Optional[Sequence[str]] = None) -> bytes:
    """
    CSV with a header line, one line per row. Missing values are written
    empty; cells are kept as they are (no float coercion of mixed columns).
    """
    rows = _require_rows(rows)
    frame = pd.DataFrame(rows, columns=_headers(rows, headers), dtype=object)
    text = frame.to_csv(index=False, lineterminator="\n")
    return (BOM + text).encode("utf-8")


def to_json(data: Any) -> bytes:
    if not data:
        raise ExportError(EMPTY_MESSAGE)
    return json.dumps(data, ensure_ascii=False, indent=2).encode("utf-8")


def to_xlsx(
    rows: Sequence[Mapping],
    sheet_name: str = "Sheet1",
    headers: Optional[Sequence[str]] = None,
) -> bytes:
    rows = _require_rows(rows)
    columns = _headers(rows, headers)

    workbook = Workbook()
    sheet = workbook.active
    # Excel limits sheet titles to 31 characters
    sheet.title = sheet_name[:31] or "Sheet1"
    sheet.append(columns)
    for row in rows:
        sheet.append([row.get(col) for col in columns])

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


async def backup_bundle(store: KeyValueStore, keys: Iterable[str] = SYNC_KEYS) -> dict:
    bundle: dict[str, Any] = {"exportDate": datetime.now(timezone.utc).isoformat()}
    for key in keys:
        bundle[key] = await store.load(key)
    return bundle


async def export_backup(store: KeyValueStore, keys: Iterable[str] = SYNC_KEYS) -> bytes:
    bundle = await backup_bundle(store, keys)
    if all(value is None for key, value in bundle.items() if key != "exportDate"):
        raise ExportError(EMPTY_MESSAGE)
    return to_json(bundle)


async def restore_backup(
    store: KeyValueStore,
    payload: bytes | str | Mapping,
    keys: Iterable[str] = SYNC_KEYS,
) -> list[str]:
    """
    Write every known key found in a backup bundle back to the store.

    Returns:
        The keys that were restored
    """
    if isinstance(payload, Mapping):
        bundle = payload
    else:
        try:
            bundle = json.loads(payload)
        except ValueError as e:
            raise ExportError(f"File sao lưu không hợp lệ: {e}")
    if not isinstance(bundle, Mapping):
        raise ExportError("File sao lưu không hợp lệ")

    restored = []
    for key in keys:
        if bundle.get(key) is not None:
            await store.save(key, bundle[key])
            restored.append(key)
    if not restored:
        raise ExportError("File sao lưu không chứa dữ liệu")
    return restored

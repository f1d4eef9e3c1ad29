"""
Shared fixtures.

Storage is in memory, the calendar is frozen and no test touches the
network: HTTP sessions are mocks, Google Sheets is a fake worksheet.
"""

import asyncio
from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest

from cashbook.config import get_settings
from cashbook.services.storage import MemoryStore


TODAY = date(2024, 12, 15)


def run(coro):
    """Run a coroutine to completion (the storage layer is async)."""
    return asyncio.run(coro)


def fake_response(payload, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


class FakeWorksheet:
    """The three gspread Worksheet calls the sync backend uses."""

    def __init__(self, rows=None):
        self.rows = [list(r) for r in (rows or [["user_id", "key", "data_json", "updated_at"]])]
        self.updates = []

    def get_all_values(self):
        return [list(r) for r in self.rows]

    def append_row(self, row, value_input_option=None):
        self.rows.append(list(row))

    def update(self, range_name=None, values=None, value_input_option=None):
        self.updates.append(range_name)
        row_number = int(range_name.split(":")[0][1:])
        self.rows[row_number - 1] = list(values[0])


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Keep settings away from the developer's .env and real data dirs."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CASHBOOK_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("RATE_PROXY_DATA_DIR", str(tmp_path / "rates"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return lambda: TODAY


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def utc_now():
    return datetime(2024, 12, 15, 9, 0, tzinfo=timezone.utc)

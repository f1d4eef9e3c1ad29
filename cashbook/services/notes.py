"""Row notes, all kept in one `table_row_notes` dict keyed `<table>_row_<index>`."""

from typing import Optional

from cashbook.services.storage.interface import KeyValueStore
from cashbook.services.sync import CloudSync


NOTES_KEY = "table_row_notes"
MAX_NOTE_LENGTH = 1000


class NoteTooLongError(ValueError):
    pass


def note_key(table: str, row_index: int) -> str:
    return f"{table}_row_{row_index}"


class NoteBook:
    def __init__(self, store: KeyValueStore, sync: Optional[CloudSync] = None):
        self._store = store
        self._sync = sync

    async def all(self) -> dict[str, str]:
        notes = await self._store.load(NOTES_KEY, {})
        return notes if isinstance(notes, dict) else {}

    async def get(self, table: str, row_index: int) -> Optional[str]:
        return (await self.all()).get(note_key(table, row_index))

    async def save(self, table: str, row_index: int, text: Optional[str]) -> Optional[str]:
        """Store a note; a blank note removes the entry. Returns what was stored."""
        text = (text or "").strip()
        if len(text) > MAX_NOTE_LENGTH:
            raise NoteTooLongError(f"Ghi chú tối đa {MAX_NOTE_LENGTH} ký tự")

        notes = await self.all()
        key = note_key(table, row_index)
        if text:
            notes[key] = text
        else:
            notes.pop(key, None)
        await self._store.save(NOTES_KEY, notes)
        if self._sync is not None:
            await self._sync.push(NOTES_KEY)
        return text or None

    async def delete(self, table: str, row_index: int) -> None:
        await self.save(table, row_index, "")

    async def rows_with_notes(self, table: str) -> set[int]:
        prefix = f"{table}_row_"
        rows = set()
        for key in await self.all():
            if key.startswith(prefix) and key[len(prefix):].isdigit():
                rows.add(int(key[len(prefix):]))
        return rows

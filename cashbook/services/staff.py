"""
Staff Lists

One list of names per work sheet (`staff_list_ae`, `staff_list_aeqt`).
Names are unique ignoring case and keep the spelling they were added
with.
"""

from typing import Optional

import structlog

from cashbook.services.storage.interface import KeyValueStore
from cashbook.services.sync import CloudSync


STAFF_KEYS = {
    "ae": "staff_list_ae",
    "aeqt": "staff_list_aeqt",
}


class StaffError(ValueError):
    """Raised for blank or duplicate names. Messages are user-facing."""
    pass


class StaffDirectory:
    def __init__(self, store: KeyValueStore, table: str = "ae", sync: Optional[CloudSync] = None):
        if table not in STAFF_KEYS:
            raise ValueError(f"Unknown staff table: {table}")
        self._store = store
        self._sync = sync
        self._key = STAFF_KEYS[table]
        self._logger = structlog.get_logger(__name__)

    @property
    def storage_key(self) -> str:
        return self._key

    async def names(self, ascending: Optional[bool] = None) -> list[str]:
        stored = await self._store.load(self._key, [])
        names = [str(n) for n in stored] if isinstance(stored, list) else []
        if ascending is not None:
            names.sort(key=str.lower, reverse=not ascending)
        return names

    async def _save(self, names: list[str]) -> None:
        await self._store.save(self._key, names)
        if self._sync is not None:
            await self._sync.push(self._key)

    def _clean(self, name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise StaffError("Vui lòng nhập tên nhân viên!")
        return name

    async def add(self, name: str) -> str:
        name = self._clean(name)
        names = await self.names()
        if any(n.lower() == name.lower() for n in names):
            raise StaffError("Nhân viên này đã tồn tại!")
        names.append(name)
        await self._save(names)
        self._logger.info("staff_added", list=self._key, name=name)
        return name

    async def rename(self, old_name: str, new_name: str) -> bool:
        new_name = self._clean(new_name)
        names = await self.names()
        if old_name not in names:
            return False
        if any(n != old_name and n.lower() == new_name.lower() for n in names):
            raise StaffError("Tên này đã tồn tại!")
        names[names.index(old_name)] = new_name
        await self._save(names)
        return True

    async def delete(self, name: str) -> bool:
        names = await self.names()
        if name not in names:
            return False
        names.remove(name)
        await self._save(names)
        return True

    async def search(self, term: str) -> list[str]:
        term = term.strip().lower()
        return [n for n in await self.names() if term in n.lower()]

    async def suggest(self, text: str, limit: int = 10) -> list[str]:
        """
        Names starting with the last comma-separated part of `text`,
        leaving out names already typed earlier in the cell.
        """
        parts = [p.strip() for p in (text or "").split(",")]
        prefix = parts[-1].lower() if parts else ""
        typed = {p.lower() for p in parts[:-1] if p}
        matches = [
            n for n in await self.names(ascending=True)
            if n.lower().startswith(prefix) and n.lower() not in typed
        ]
        return matches[:limit]

"""Tests for row notes and staff lists."""

import pytest

from cashbook.audit import AuditLogger
from cashbook.services.notes import MAX_NOTE_LENGTH, NOTES_KEY, NoteBook, NoteTooLongError
from cashbook.services.staff import StaffDirectory, StaffError
from cashbook.services.storage import GoogleSheetsSyncBackend, MemoryStore
from cashbook.services.sync import CloudSync

from tests.conftest import FakeWorksheet, run


class TestNoteBook:
    """Tests for per-row notes."""

    def test_save_and_get(self, store):
        notes = NoteBook(store)
        assert run(notes.save("ae", 3, "  chưa trả  ")) == "chưa trả"
        assert run(notes.get("ae", 3)) == "chưa trả"
        assert run(store.load(NOTES_KEY)) == {"ae_row_3": "chưa trả"}

    def test_blank_note_removes_entry(self, store):
        notes = NoteBook(store)
        run(notes.save("ae", 3, "x"))
        assert run(notes.save("ae", 3, "   ")) is None
        assert run(notes.get("ae", 3)) is None

    def test_delete(self, store):
        notes = NoteBook(store)
        run(notes.save("aeqt", 1, "x"))
        run(notes.delete("aeqt", 1))
        assert run(notes.all()) == {}

    def test_length_limit(self, store):
        with pytest.raises(NoteTooLongError):
            run(NoteBook(store).save("ae", 0, "x" * (MAX_NOTE_LENGTH + 1)))

    def test_rows_with_notes(self, store):
        notes = NoteBook(store)
        run(notes.save("ae", 0, "a"))
        run(notes.save("ae", 12, "b"))
        run(notes.save("aeqt", 5, "c"))
        assert run(notes.rows_with_notes("ae")) == {0, 12}

    def test_garbage_ignored(self, store):
        run(store.save(NOTES_KEY, ["not", "a", "dict"]))
        assert run(NoteBook(store).all()) == {}


class TestStaffDirectory:
    """Tests for the staff lists."""

    def test_add_keeps_spelling(self, store):
        staff = StaffDirectory(store, "ae")
        assert run(staff.add("  Nguyễn An ")) == "Nguyễn An"
        assert run(store.load("staff_list_ae")) == ["Nguyễn An"]

    def test_duplicate_ignores_case(self, store):
        staff = StaffDirectory(store)
        run(staff.add("An"))
        with pytest.raises(StaffError, match="đã tồn tại"):
            run(staff.add("an"))

    def test_blank_name(self, store):
        with pytest.raises(StaffError):
            run(StaffDirectory(store).add("   "))

    def test_lists_are_separate(self, store):
        run(StaffDirectory(store, "ae").add("An"))
        assert run(StaffDirectory(store, "aeqt").names()) == []

    def test_unknown_table(self, store):
        with pytest.raises(ValueError):
            StaffDirectory(store, "withdraw")

    def test_sorting(self, store):
        staff = StaffDirectory(store)
        for name in ("bình", "An", "Cường"):
            run(staff.add(name))
        assert run(staff.names()) == ["bình", "An", "Cường"]
        assert run(staff.names(ascending=True)) == ["An", "bình", "Cường"]
        assert run(staff.names(ascending=False)) == ["Cường", "bình", "An"]

    def test_rename(self, store):
        staff = StaffDirectory(store)
        run(staff.add("An"))
        run(staff.add("Bình"))
        assert run(staff.rename("An", "an")) is True
        assert run(staff.names()) == ["an", "Bình"]
        with pytest.raises(StaffError, match="Tên này đã tồn tại"):
            run(staff.rename("an", "BÌNH"))
        assert run(staff.rename("missing", "X")) is False

    def test_delete_and_search(self, store):
        staff = StaffDirectory(store)
        run(staff.add("Nguyễn An"))
        run(staff.add("Trần Bình"))
        assert run(staff.search("AN")) == ["Nguyễn An"]
        assert run(staff.delete("Nguyễn An")) is True
        assert run(staff.delete("Nguyễn An")) is False
        assert run(staff.names()) == ["Trần Bình"]

    def test_suggest_uses_last_part(self, store):
        staff = StaffDirectory(store)
        for name in ("An", "Anh", "Bình"):
            run(staff.add(name))
        assert run(staff.suggest("a")) == ["An", "Anh"]
        assert run(staff.suggest("An, a")) == ["Anh"]
        assert run(staff.suggest("Bình, ")) == ["An", "Anh"]
        assert run(staff.suggest("x")) == []
        assert run(staff.suggest("", limit=1)) == ["An"]


class TestCloudPush:
    """Notes and staff lists reach the Sync worksheet on every write."""

    def setup_method(self):
        self.store = MemoryStore()
        self.backend = GoogleSheetsSyncBackend(worksheet=FakeWorksheet(), user_id="me")
        self.sync = CloudSync(self.store, self.backend, AuditLogger())

    def test_note_pushed(self):
        run(NoteBook(self.store, self.sync).save("ae", 2, "chưa trả"))
        assert run(self.backend.fetch(NOTES_KEY)).value == {"ae_row_2": "chưa trả"}

    def test_deleted_note_pushed(self):
        notes = NoteBook(self.store, self.sync)
        run(notes.save("ae", 2, "x"))
        run(notes.delete("ae", 2))
        assert run(self.backend.fetch(NOTES_KEY)).value == {}

    @pytest.mark.parametrize("table,key", [("ae", "staff_list_ae"), ("aeqt", "staff_list_aeqt")])
    def test_staff_changes_pushed(self, table, key):
        staff = StaffDirectory(self.store, table, self.sync)
        run(staff.add("An"))
        assert run(self.backend.fetch(key)).value == ["An"]

        run(staff.rename("An", "Bình"))
        assert run(self.backend.fetch(key)).value == ["Bình"]

        run(staff.delete("Bình"))
        assert run(self.backend.fetch(key)).value == []

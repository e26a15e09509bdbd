import sqlite3
from pathlib import Path

import pytest
from PIL import Image

from file_manager.database.ops import DBOperations
from file_manager.exceptions import (
    FileManagerError,
    InvalidNameError,
    NotFoundError,
    SecurityError,
    UnsupportedFormatError,
)

@pytest.fixture
def uploaded(app, tmp_path):
    src = tmp_path / "report.txt"
    src.write_text("quarterly numbers")
    return app.upload(src)

def test_rename_changes_display_name_only(app, uploaded):
    rec = app.rename_file(uploaded.file_id, "Q3 report.txt")
    assert rec.file_name == "Q3 report.txt"
    assert rec.path == uploaded.stored_location
    assert app.get_file(uploaded.file_id).file_name == "Q3 report.txt"

def test_rename_rejects_bad_names(app, uploaded):
    with pytest.raises(SecurityError):
        app.rename_file(uploaded.file_id, "../escape.txt")
    with pytest.raises(InvalidNameError):
        app.rename_file(uploaded.file_id, "   ")

@pytest.mark.parametrize("name", ["", "  ", "a/b", ".."])
def test_bad_names_are_file_manager_errors(app, uploaded, name):
    with pytest.raises(FileManagerError):
        app.rename_file(uploaded.file_id, name)
    assert app.get_file(uploaded.file_id).file_name == "report.txt"

def test_get_unknown_file(app):
    with pytest.raises(NotFoundError):
        app.get_file(31337)

def test_move_file_relocates_bytes(app, uploaded, storage_root):
    archive = app.create_folder("Archive").folder
    rec = app.move_file(uploaded.file_id, archive.id)

    assert rec.folder_id == archive.id
    assert Path(rec.path) == storage_root / "Archive" / "report.txt"
    assert Path(rec.path).read_text() == "quarterly numbers"
    assert not Path(uploaded.stored_location).exists()

def test_move_to_unknown_folder(app, uploaded):
    with pytest.raises(NotFoundError):
        app.move_file(uploaded.file_id, 999)

def test_tags_set_add_and_search(app, uploaded):
    assert app.set_tags(uploaded.file_id, ["finance", "2024"])
    assert app.add_tags(uploaded.file_id, ["Finance", "draft"])
    assert app.get_file(uploaded.file_id).tags == ["2024", "draft", "finance"]

    assert app.search_files(tags=["FINANCE", "draft"]).total == 1
    assert app.search_files(tags=["missing"]).total == 0
    assert app.set_tags(4040, ["x"]) is False
    assert app.add_tags(4040, ["x"]) is False

def test_search_term_and_paging(app, tmp_path):
    for i in range(5):
        p = tmp_path / f"invoice_{i}.txt"
        p.write_text(f"invoice {i}")
        app.upload(p)
    other = tmp_path / "memo.txt"
    other.write_text("memo")
    app.upload(other)

    page = app.search_files(term="invoice", skip=0, take=2)
    assert page.total == 5
    assert len(page.items) == 2
    assert app.search_files(is_photo=True).total == 0
    # take is clamped to at least one item
    assert len(app.search_files(take=0).items) == 1

def test_soft_delete_keeps_bytes_and_frees_hash(app, uploaded, tmp_path):
    assert app.delete_file(uploaded.file_id)
    assert Path(uploaded.stored_location).exists()
    with pytest.raises(NotFoundError):
        app.get_file(uploaded.file_id)

    # Same content can be ingested again once the old record is deleted
    again = tmp_path / "report-copy.txt"
    again.write_text("quarterly numbers")
    res = app.upload(again)
    assert res.file_id != uploaded.file_id

def test_permanent_delete_removes_bytes(app, uploaded, storage_root):
    assert app.delete_file(uploaded.file_id, permanent=True, move_to_recycle_bin=False)
    assert not Path(uploaded.stored_location).exists()
    assert not (storage_root / ".recycle").exists()
    assert app.delete_file(uploaded.file_id) is False

def test_failed_permanent_delete_keeps_bytes(app, uploaded, storage_root, monkeypatch):
    def locked(self):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(DBOperations, "save_changes", locked)
    with pytest.raises(sqlite3.OperationalError):
        app.delete_file(uploaded.file_id, permanent=True)
    monkeypatch.undo()

    assert Path(uploaded.stored_location).read_text() == "quarterly numbers"
    assert not (storage_root / ".recycle").exists()
    assert app.get_file(uploaded.file_id).path == uploaded.stored_location

def test_permanent_delete_after_soft_delete(app, uploaded):
    app.delete_file(uploaded.file_id)
    assert app.delete_file(uploaded.file_id, permanent=True)
    # Soft-deleted bytes are kept on disk
    assert Path(uploaded.stored_location).exists()

def test_read_file_content(app, uploaded):
    assert app.read_file_content(uploaded.file_id) == b"quarterly numbers"

def test_thumbnail_for_photo_only(app, uploaded, tmp_path):
    with pytest.raises(UnsupportedFormatError):
        app.get_thumbnail(uploaded.file_id)

    pic = tmp_path / "tall.png"
    Image.new("RGB", (100, 300)).save(pic)
    photo = app.upload(pic)
    thumb = app.get_thumbnail(photo.file_id, 60, 60)
    with Image.open(thumb) as im:
        assert im.size == (20, 60)

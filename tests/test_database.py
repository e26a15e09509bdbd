import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from file_manager.database.db import DBManager
from file_manager.database.ops import DBOperations
from file_manager.database.schema import init_schema
from file_manager.exceptions import DuplicateContentError
from file_manager.models import FolderRecord

def test_schema_is_idempotent(conn):
    init_schema(conn)
    init_schema(conn)
    cur = conn.execute("SELECT COUNT(*) FROM schema_version")
    assert cur.fetchone()[0] == 1

def test_add_and_find_file(db_ops, record_factory):
    folder = FolderRecord(path="/s/Docs", name="Docs")
    db_ops.add_folder(folder)
    rec = record_factory("/s/Docs/a.txt", folder.id, b"alpha", source_path="/src/a.txt", tags=["x", "y"])
    db_ops.add_file(rec)
    db_ops.save_changes()

    assert rec.id is not None
    assert db_ops.find_file_by_path("/s/Docs/a.txt").id == rec.id
    assert db_ops.find_file_by_path("/src/a.txt").id == rec.id

    by_hash = db_ops.find_file_by_hash(rec.hash)
    assert by_hash.id == rec.id
    assert by_hash.hash == rec.hash
    assert by_hash.tags == ["x", "y"]

def test_hash_unique_among_live_records(db_ops, record_factory):
    first = record_factory("/s/a.txt", 1, b"same")
    db_ops.add_file(first)

    with pytest.raises(DuplicateContentError) as exc:
        db_ops.add_file(record_factory("/s/b.txt", 1, b"same"))
    assert exc.value.existing_id == first.id
    assert exc.value.existing_location == "/s/a.txt"

def test_soft_deleted_hash_can_be_reused(db_ops, record_factory):
    first = record_factory("/s/a.txt", 1, b"same")
    db_ops.add_file(first)
    first.is_deleted = True
    db_ops.update_file(first)

    assert db_ops.find_file_by_hash(first.hash) is None
    second = record_factory("/s/b.txt", 1, b"same")
    db_ops.add_file(second)
    assert second.id != first.id

def test_single_default_folder_index(db_ops):
    db_ops.add_folder(FolderRecord(path="/s/Default", name="Default", is_default=True))
    with pytest.raises(sqlite3.IntegrityError):
        db_ops.add_folder(FolderRecord(path="/s/Other", name="Other", is_default=True))

def test_sibling_names_unique_case_insensitive(db_ops):
    parent = FolderRecord(path="/s/P", name="P")
    db_ops.add_folder(parent)
    db_ops.add_folder(FolderRecord(path="/s/P/Docs", name="Docs", parent_id=parent.id))
    with pytest.raises(sqlite3.IntegrityError):
        db_ops.add_folder(FolderRecord(path="/s/P/docs", name="docs", parent_id=parent.id))
    # Same name under another parent is fine
    db_ops.add_folder(FolderRecord(path="/s/Docs", name="Docs"))

def test_search_by_term_tags_and_photo(db_ops, record_factory):
    a = record_factory("/s/holiday.jpg", 1, b"1", is_photo=True, tags=["Beach", "2023"])
    b = record_factory("/s/holiday-notes.txt", 1, b"2", tags=["beach"])
    c = record_factory("/s/report.pdf", 2, b"3")
    for r in (a, b, c):
        db_ops.add_file(r)

    items, total = db_ops.search_files(term="holiday")
    assert total == 2
    assert {r.id for r in items} == {a.id, b.id}

    # Tags compare case-insensitively, all must match
    items, total = db_ops.search_files(tags=["beach", "2023"])
    assert [r.id for r in items] == [a.id]

    items, total = db_ops.search_files(is_photo=False, folder_id=2)
    assert [r.id for r in items] == [c.id]

    items, total = db_ops.search_files(skip=1, take=1)
    assert total == 3
    assert len(items) == 1

@pytest.mark.parametrize(
    "term,expected",
    [
        ("_", ["a_b.txt"]),
        ("%", ["50%.txt"]),
        ("a_b", ["a_b.txt"]),
        ("\\", ["back\\slash.txt"]),
        ("b", ["a_b.txt", "axb.txt", "back\\slash.txt"]),
    ],
)
def test_search_term_wildcards_are_literal(db_ops, record_factory, term, expected):
    for i, name in enumerate(["a_b.txt", "axb.txt", "50%.txt", "back\\slash.txt"]):
        db_ops.add_file(record_factory(f"/s/{i}", 1, name.encode(), file_name=name))

    items, total = db_ops.search_files(term=term)
    assert sorted(r.file_name for r in items) == expected
    assert total == len(expected)

def test_set_and_add_tags(db_ops, record_factory):
    rec = record_factory("/s/a.txt", 1, tags=["one"])
    db_ops.add_file(rec)
    db_ops.add_tags(rec.id, ["two", " ", "ONE"])
    assert db_ops.get_tags(rec.id) == ["one", "two"]
    db_ops.set_tags(rec.id, ["three"])
    assert db_ops.get_tags(rec.id) == ["three"]

def test_session_rolls_back_on_error(tmp_path):
    mgr = DBManager(tmp_path / "cat.db")
    with pytest.raises(RuntimeError):
        with mgr.session() as c:
            DBOperations(c).add_folder(FolderRecord(path="/s/A", name="A"))
            raise RuntimeError("boom")

    with mgr.session() as c:
        assert DBOperations(c).list_folders() == []

def test_memory_sessions_share_one_connection():
    mgr = DBManager(":memory:")
    with mgr.session() as c:
        DBOperations(c).add_folder(FolderRecord(path="/s/A", name="A"))
    with mgr.session() as c:
        assert [f.name for f in DBOperations(c).list_folders()] == ["A"]
    mgr.close()

def test_concurrent_inserts_of_same_hash_one_winner(tmp_path, record_factory):
    """The unique index is the final arbiter between concurrent writers."""
    mgr = DBManager(tmp_path / "race.db")
    with mgr.session() as c:
        folder = FolderRecord(path="/s", name="s")
        DBOperations(c).add_folder(folder)
    barrier = threading.Barrier(6)

    def insert(i):
        barrier.wait()
        with mgr.session() as c:
            ops = DBOperations(c)
            try:
                ops.add_file(record_factory(f"/s/copy{i}.bin", folder.id, b"contended"))
                ops.save_changes()
                return "ok"
            except DuplicateContentError:
                ops.rollback()
                return "dup"

    with ThreadPoolExecutor(max_workers=6) as pool:
        outcomes = list(pool.map(insert, range(6)))

    assert outcomes.count("ok") == 1
    assert outcomes.count("dup") == 5

import hashlib
import sqlite3

import pytest

from file_manager.config import Settings
from file_manager.core import FileManagerApp
from file_manager.database.ops import DBOperations
from file_manager.database.schema import init_schema
from file_manager.models import FileRecord
from file_manager.storage.local import LocalStorage

@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:")
    init_schema(c)
    try:
        yield c
    finally:
        c.close()

@pytest.fixture
def db_ops(conn):
    """Returns a DBOperations instance attached to the in-memory DB."""
    return DBOperations(conn)

@pytest.fixture
def storage_root(tmp_path):
    root = tmp_path / "Storage"
    root.mkdir()
    return root

@pytest.fixture
def storage(storage_root):
    return LocalStorage(storage_root)

@pytest.fixture
def settings(tmp_path, storage_root):
    return Settings(storage_root=storage_root, db_path=tmp_path / "catalog.db")

@pytest.fixture
def app(settings):
    """A FileManagerApp on a file-backed catalog under tmp_path."""
    a = FileManagerApp(settings)
    try:
        yield a
    finally:
        a.close()

def make_record(path, folder_id, content=b"data", **kwargs) -> FileRecord:
    """Builds an unsaved FileRecord whose hash matches content."""
    digest = hashlib.sha256(content).digest()
    fields = dict(
        path=str(path),
        file_name=str(path).replace("\\", "/").rsplit("/", 1)[-1],
        hash=digest,
        hash_hex=digest.hex().upper(),
        size=len(content),
        mime_type="application/octet-stream",
        folder_id=folder_id,
    )
    fields.update(kwargs)
    return FileRecord(**fields)

@pytest.fixture
def record_factory():
    return make_record

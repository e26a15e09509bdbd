"""
Database connection management.
"""
import sqlite3
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from .. import config
from .schema import init_schema

class DBManager:
    def __init__(self, db_path: Union[Path, str]):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        # An in-memory database only exists on one connection, so its
        # sessions share that connection and are serialized by this lock.
        self._write_lock = threading.RLock()
        self._schema_lock = threading.Lock()
        self._schema_ready = False

    @property
    def is_memory(self) -> bool:
        return str(self.db_path) == ":memory:"

    def _configure(self, conn: sqlite3.Connection):
        # Performance Tuning (Safe for single-writer, multi-reader)
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA temp_store=MEMORY;")
        conn.execute("PRAGMA foreign_keys=ON;")

    def _ensure_schema(self, conn: sqlite3.Connection):
        with self._schema_lock:
            if not self._schema_ready:
                # WAL is persistent in the file, so only the first connection sets it.
                if not self.is_memory:
                    conn.execute("PRAGMA journal_mode=WAL;")
                init_schema(conn)
                self._schema_ready = True

    def open_connection(self) -> sqlite3.Connection:
        """Opens a fresh, configured connection for one unit of work."""
        if not self.is_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self.db_path,
            timeout=config.DB_BUSY_TIMEOUT,
            check_same_thread=False,
        )
        self._configure(conn)
        self._ensure_schema(conn)
        return conn

    def connect(self) -> sqlite3.Connection:
        """
        Returns the shared connection, opening it on first use.
        """
        if self._conn:
            return self._conn

        logging.info(f"Connecting to database: {self.db_path}")
        self._conn = self.open_connection()
        return self._conn

    @contextmanager
    def session(self) -> Iterator[sqlite3.Connection]:
        """
        Request-scoped unit of work: commits on success, rolls back on any
        exception so no partial records survive a failed request.
        """
        if self.is_memory:
            with self._write_lock:
                conn = self.connect()
                try:
                    yield conn
                    conn.commit()
                except BaseException:
                    conn.rollback()
                    raise
            return

        conn = self.open_connection()
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

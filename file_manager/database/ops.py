import sqlite3
import logging
from datetime import datetime, UTC
from typing import Optional, List, Tuple, Iterable, Dict, Any

from ..exceptions import DatabaseError, DuplicateContentError
from ..models import FileRecord, FolderRecord

FILE_COLUMNS = (
    "id", "path", "source_path", "file_name", "hash", "hash_hex", "size",
    "is_compressed", "mime_type", "is_photo", "photo_date_taken",
    "camera_make", "camera_model", "latitude", "longitude", "folder_id",
    "is_deleted", "created_at", "updated_at",
)
FOLDER_COLUMNS = ("id", "path", "name", "parent_id", "is_default", "created_at")

_FILE_SELECT = f"SELECT {', '.join(FILE_COLUMNS)} FROM files"
_FOLDER_SELECT = f"SELECT {', '.join(FOLDER_COLUMNS)} FROM folders"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def escape_like(term: str) -> str:
    """Makes % and _ literal for a LIKE ... ESCAPE '\\' pattern."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DBOperations:
    """
    Persistence collaborator for the ingestion pipeline and folder/file
    services. Writes are left uncommitted until save_changes().
    """
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # --- Unit of Work ---

    def save_changes(self):
        self.conn.commit()

    def rollback(self):
        self.conn.rollback()

    # --- Row Mapping ---

    def _row_to_file(self, row: Tuple) -> FileRecord:
        d: Dict[str, Any] = dict(zip(FILE_COLUMNS, row))
        rec = FileRecord(
            id=d["id"],
            path=d["path"],
            source_path=d["source_path"],
            file_name=d["file_name"],
            hash=bytes(d["hash"]),
            hash_hex=d["hash_hex"],
            size=d["size"],
            is_compressed=bool(d["is_compressed"]),
            mime_type=d["mime_type"],
            is_photo=bool(d["is_photo"]),
            photo_date_taken=_parse_dt(d["photo_date_taken"]),
            camera_make=d["camera_make"],
            camera_model=d["camera_model"],
            latitude=d["latitude"],
            longitude=d["longitude"],
            folder_id=d["folder_id"],
            is_deleted=bool(d["is_deleted"]),
            created_at=_parse_dt(d["created_at"]),
            updated_at=_parse_dt(d["updated_at"]),
        )
        rec.tags = self.get_tags(rec.id)
        return rec

    def _row_to_folder(self, row: Tuple) -> FolderRecord:
        d = dict(zip(FOLDER_COLUMNS, row))
        return FolderRecord(
            id=d["id"],
            path=d["path"],
            name=d["name"],
            parent_id=d["parent_id"],
            is_default=bool(d["is_default"]),
            created_at=_parse_dt(d["created_at"]),
        )

    def _fetch_files(self, sql: str, params: Iterable = ()) -> List[FileRecord]:
        cur = self.conn.cursor()
        cur.execute(sql, tuple(params))
        return [self._row_to_file(r) for r in cur.fetchall()]

    def _fetch_folders(self, sql: str, params: Iterable = ()) -> List[FolderRecord]:
        cur = self.conn.cursor()
        cur.execute(sql, tuple(params))
        return [self._row_to_folder(r) for r in cur.fetchall()]

    # --- Files ---

    def find_file_by_path(self, path: str) -> Optional[FileRecord]:
        """Live record whose stored path or ingested source path equals path."""
        rows = self._fetch_files(
            f"{_FILE_SELECT} WHERE is_deleted = 0 AND (path = ? OR source_path = ?) ORDER BY id LIMIT 1",
            (path, path),
        )
        return rows[0] if rows else None

    def find_file_by_hash(self, digest: bytes) -> Optional[FileRecord]:
        rows = self._fetch_files(
            f"{_FILE_SELECT} WHERE is_deleted = 0 AND hash = ? LIMIT 1",
            (sqlite3.Binary(digest),),
        )
        return rows[0] if rows else None

    def get_file(self, file_id: int, include_deleted: bool = False) -> Optional[FileRecord]:
        sql = f"{_FILE_SELECT} WHERE id = ?"
        if not include_deleted:
            sql += " AND is_deleted = 0"
        rows = self._fetch_files(sql, (file_id,))
        return rows[0] if rows else None

    def add_file(self, rec: FileRecord) -> int:
        """
        Inserts a new file record and returns its id.
        A live record with the same hash turns into DuplicateContentError.
        """
        now_iso = _now_iso()
        cur = self.conn.cursor()
        try:
            cur.execute("""
                INSERT INTO files (
                    path, source_path, file_name, hash, hash_hex, size, is_compressed,
                    mime_type, is_photo, photo_date_taken, camera_make, camera_model,
                    latitude, longitude, folder_id, is_deleted, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
            """, (
                rec.path, rec.source_path, rec.file_name, sqlite3.Binary(rec.hash), rec.hash_hex,
                rec.size, int(rec.is_compressed), rec.mime_type, int(rec.is_photo),
                rec.photo_date_taken.isoformat() if rec.photo_date_taken else None,
                rec.camera_make, rec.camera_model, rec.latitude, rec.longitude,
                rec.folder_id, now_iso, now_iso,
            ))
        except sqlite3.IntegrityError as e:
            if "files.hash" not in str(e):
                raise DatabaseError(f"Failed to insert file {rec.file_name}: {e}") from e
            existing = self.find_file_by_hash(rec.hash)
            raise DuplicateContentError(
                rec.source_path or rec.path,
                rec.hash_hex,
                existing_id=existing.id if existing else None,
                existing_location=existing.path if existing else None,
            ) from e

        if cur.lastrowid is None:
            raise DatabaseError("Database INSERT failed to return a row ID.")
        rec.id = cur.lastrowid
        rec.created_at = _parse_dt(now_iso)
        rec.updated_at = rec.created_at
        if rec.tags:
            self.set_tags(rec.id, rec.tags)
        return rec.id

    def update_file(self, rec: FileRecord):
        now_iso = _now_iso()
        self.conn.execute("""
            UPDATE files
            SET path = ?, file_name = ?, folder_id = ?, size = ?, is_compressed = ?,
                is_deleted = ?, updated_at = ?
            WHERE id = ?
        """, (rec.path, rec.file_name, rec.folder_id, rec.size, int(rec.is_compressed),
              int(rec.is_deleted), now_iso, rec.id))
        rec.updated_at = _parse_dt(now_iso)

    def delete_file(self, file_id: int):
        """Hard delete; tags go with it via ON DELETE CASCADE."""
        self.conn.execute("DELETE FROM file_tags WHERE file_id = ?", (file_id,))
        self.conn.execute("DELETE FROM files WHERE id = ?", (file_id,))

    def list_files_in_folder(self, folder_id: int, include_deleted: bool = False) -> List[FileRecord]:
        sql = f"{_FILE_SELECT} WHERE folder_id = ?"
        if not include_deleted:
            sql += " AND is_deleted = 0"
        return self._fetch_files(sql + " ORDER BY id", (folder_id,))

    def count_files_in_folder(self, folder_id: int) -> int:
        cur = self.conn.cursor()
        cur.execute("SELECT COUNT(*) FROM files WHERE folder_id = ? AND is_deleted = 0", (folder_id,))
        return cur.fetchone()[0]

    def search_files(self,
                     term: Optional[str] = None,
                     tags: Optional[List[str]] = None,
                     is_photo: Optional[bool] = None,
                     folder_id: Optional[int] = None,
                     skip: int = 0,
                     take: int = 50) -> Tuple[List[FileRecord], int]:
        """Returns (page, total_matching). Tags must all be present on a file."""
        where = ["f.is_deleted = 0"]
        params: List[Any] = []

        if term:
            where.append("(f.file_name LIKE ? ESCAPE '\\' OR f.path LIKE ? ESCAPE '\\')")
            like = f"%{escape_like(term)}%"
            params.extend([like, like])
        if is_photo is not None:
            where.append("f.is_photo = ?")
            params.append(int(is_photo))
        if folder_id is not None:
            where.append("f.folder_id = ?")
            params.append(folder_id)
        for tag in tags or []:
            where.append("EXISTS (SELECT 1 FROM file_tags t WHERE t.file_id = f.id AND t.tag = ?)")
            params.append(tag.strip())

        clause = " AND ".join(where)
        cur = self.conn.cursor()
        cur.execute(f"SELECT COUNT(*) FROM files f WHERE {clause}", params)
        total = cur.fetchone()[0]

        cols = ", ".join(f"f.{c}" for c in FILE_COLUMNS)
        items = self._fetch_files(
            f"SELECT {cols} FROM files f WHERE {clause} ORDER BY f.created_at DESC, f.id DESC LIMIT ? OFFSET ?",
            params + [take, skip],
        )
        return items, total

    # --- Tags ---

    def get_tags(self, file_id: Optional[int]) -> List[str]:
        if file_id is None:
            return []
        cur = self.conn.cursor()
        cur.execute("SELECT tag FROM file_tags WHERE file_id = ? ORDER BY tag", (file_id,))
        return [r[0] for r in cur.fetchall()]

    def set_tags(self, file_id: int, tags: Iterable[str]):
        """Replaces the tag set of a file. Blank tags are dropped."""
        self.conn.execute("DELETE FROM file_tags WHERE file_id = ?", (file_id,))
        self.add_tags(file_id, tags)

    def add_tags(self, file_id: int, tags: Iterable[str]):
        for tag in tags:
            tag = tag.strip()
            if tag:
                self.conn.execute(
                    "INSERT OR IGNORE INTO file_tags (file_id, tag) VALUES (?, ?)",
                    (file_id, tag),
                )

    # --- Folders ---

    def get_folder(self, folder_id: int) -> Optional[FolderRecord]:
        rows = self._fetch_folders(f"{_FOLDER_SELECT} WHERE id = ?", (folder_id,))
        return rows[0] if rows else None

    def get_folders_by_parent(self, parent_id: Optional[int]) -> List[FolderRecord]:
        if parent_id is None:
            return self._fetch_folders(f"{_FOLDER_SELECT} WHERE parent_id IS NULL ORDER BY name")
        return self._fetch_folders(f"{_FOLDER_SELECT} WHERE parent_id = ? ORDER BY name", (parent_id,))

    def find_default_folder(self) -> Optional[FolderRecord]:
        rows = self._fetch_folders(f"{_FOLDER_SELECT} WHERE is_default = 1")
        return rows[0] if rows else None

    def find_root_folder_by_name(self, name: str) -> Optional[FolderRecord]:
        rows = self._fetch_folders(
            f"{_FOLDER_SELECT} WHERE parent_id IS NULL AND name = ? COLLATE NOCASE",
            (name,),
        )
        return rows[0] if rows else None

    def list_folders(self) -> List[FolderRecord]:
        return self._fetch_folders(f"{_FOLDER_SELECT} ORDER BY path")

    def count_subfolders(self, folder_id: int) -> int:
        cur = self.conn.cursor()
        cur.execute("SELECT COUNT(*) FROM folders WHERE parent_id = ?", (folder_id,))
        return cur.fetchone()[0]

    def add_folder(self, rec: FolderRecord) -> int:
        """
        Inserts a folder. sqlite3.IntegrityError propagates on a sibling-name
        or default-flag conflict so callers can re-read and retry.
        """
        now_iso = _now_iso()
        cur = self.conn.cursor()
        cur.execute("""
            INSERT INTO folders (path, name, parent_id, is_default, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, (rec.path, rec.name, rec.parent_id, int(rec.is_default), now_iso))
        if cur.lastrowid is None:
            raise DatabaseError("Database INSERT failed to return a row ID.")
        rec.id = cur.lastrowid
        rec.created_at = _parse_dt(now_iso)
        logging.debug(f"Added folder {rec.id}: {rec.path}")
        return rec.id

    def update_folder(self, rec: FolderRecord):
        self.conn.execute("""
            UPDATE folders SET path = ?, name = ?, parent_id = ?, is_default = ?
            WHERE id = ?
        """, (rec.path, rec.name, rec.parent_id, int(rec.is_default), rec.id))

    def update_file_path(self, file_id: int, path: str):
        self.conn.execute(
            "UPDATE files SET path = ?, updated_at = ? WHERE id = ?",
            (path, _now_iso(), file_id),
        )

    def delete_folder(self, folder_id: int):
        self.conn.execute("DELETE FROM folders WHERE id = ?", (folder_id,))

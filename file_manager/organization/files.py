import logging
import re
from typing import Iterable, List, Optional

from ..database.ops import DBOperations
from ..exceptions import InvalidNameError, NotFoundError, SecurityError, StorageError, UnsupportedFormatError
from ..models import FileRecord, SearchResult
from ..storage.base import StorageBackend

_SEPARATORS = re.compile(r'[\\/]')


def validate_name(name: str, kind: str = "File") -> str:
    """Strips and checks a display name. Separators and '..' are refused."""
    clean = (name or "").strip()
    if not clean:
        raise InvalidNameError(f"{kind} name cannot be empty")
    if _SEPARATORS.search(clean) or clean in (".", ".."):
        raise SecurityError(f"Invalid {kind.lower()} name: {name}")
    return clean


def remove_stored_bytes(storage: StorageBackend, rec: FileRecord, move_to_recycle_bin: bool = True):
    """
    Removes the stored bytes of a hard-deleted record. Call after the row
    deletion is committed. A storage failure is logged and the bytes are
    left as an orphan. Soft-deleted records keep their bytes.
    """
    if rec.is_deleted:
        return
    try:
        if not storage.delete(rec.path, move_to_recycle_bin=move_to_recycle_bin):
            logging.warning(f"Stored object was not removed for file {rec.id}: {rec.path}")
    except StorageError as e:
        logging.error(f"Failed to remove stored bytes of file {rec.id} ({rec.path}): {e}")


class FileService:
    """Operations on already-ingested files."""

    def __init__(self, db_ops: DBOperations, storage: StorageBackend):
        self.db = db_ops
        self.storage = storage

    def get_file(self, file_id: int) -> FileRecord:
        rec = self.db.get_file(file_id)
        if rec is None:
            raise NotFoundError(f"File not found: {file_id}")
        return rec

    def rename_file(self, file_id: int, new_name: str) -> FileRecord:
        """Changes the display name; the stored location is untouched."""
        clean = validate_name(new_name)
        rec = self.get_file(file_id)
        logging.info(f"Renaming file {file_id}: {rec.file_name} -> {clean}")
        rec.file_name = clean
        self.db.update_file(rec)
        self.db.save_changes()
        return rec

    def move_file(self, file_id: int, folder_id: int) -> FileRecord:
        rec = self.get_file(file_id)
        folder = self.db.get_folder(folder_id)
        if folder is None:
            raise NotFoundError(f"Folder not found: {folder_id}")
        if rec.folder_id == folder.id:
            return rec

        if not self.storage.is_remote(rec.path):
            rec.path = self.storage.relocate(rec.path, folder.path)
        rec.folder_id = folder.id
        self.db.update_file(rec)
        self.db.save_changes()
        logging.info(f"Moved file {file_id} to folder {folder.id}: {rec.path}")
        return rec

    def set_tags(self, file_id: int, tags: Optional[Iterable[str]]) -> bool:
        """Replaces the tags of a file. Returns False if the file is unknown."""
        tag_list = list(tags or [])
        if self.db.get_file(file_id) is None:
            logging.warning(f"File not found for setting tags: {file_id}")
            return False
        self.db.set_tags(file_id, tag_list)
        self.db.save_changes()
        logging.info(f"Set {len(tag_list)} tags for file {file_id}")
        return True

    def add_tags(self, file_id: int, tags: Iterable[str]) -> bool:
        if self.db.get_file(file_id) is None:
            logging.warning(f"File not found for adding tags: {file_id}")
            return False
        self.db.add_tags(file_id, tags)
        self.db.save_changes()
        return True

    def delete_file(self, file_id: int, permanent: bool = False, move_to_recycle_bin: bool = True) -> bool:
        """
        Soft delete flags the record and keeps the bytes; its hash stops
        counting for duplicate detection. Permanent delete removes both.
        """
        rec = self.db.get_file(file_id, include_deleted=permanent)
        if rec is None:
            logging.warning(f"File not found for deletion: {file_id}")
            return False

        if permanent:
            self.db.delete_file(rec.id)
        else:
            rec.is_deleted = True
            self.db.update_file(rec)
        self.db.save_changes()

        if permanent:
            remove_stored_bytes(self.storage, rec, move_to_recycle_bin)
        logging.info(f"Deleted file {file_id} (permanent={permanent})")
        return True

    def search_files(self,
                     term: Optional[str] = None,
                     tags: Optional[List[str]] = None,
                     is_photo: Optional[bool] = None,
                     folder_id: Optional[int] = None,
                     skip: int = 0,
                     take: int = 50) -> SearchResult:
        skip = max(skip, 0)
        take = max(min(take, 500), 1)
        items, total = self.db.search_files(term, tags, is_photo, folder_id, skip, take)
        return SearchResult(items=items, total=total)

    def read_file_content(self, file_id: int) -> bytes:
        rec = self.get_file(file_id)
        return self.storage.read(rec.path)

    def get_thumbnail(self, file_id: int, max_width: int = 200, max_height: int = 200) -> str:
        rec = self.get_file(file_id)
        if not rec.is_photo:
            raise UnsupportedFormatError(f"File {file_id} is not a photo")
        return self.storage.generate_thumbnail(rec.path, max_width, max_height)

import logging
import sqlite3
from pathlib import Path
from typing import Optional, Union

from .. import config
from ..database.ops import DBOperations
from ..exceptions import DatabaseError
from ..models import FolderRecord


class DestinationResolver:
    """
    Maps an optional destination folder id to a folder record, falling back
    to the Default folder.
    """
    def __init__(self, db_ops: DBOperations, storage_root: Union[str, Path], max_attempts: int = 5):
        self.db = db_ops
        self.storage_root = Path(storage_root)
        self.max_attempts = max_attempts

    @property
    def default_folder_path(self) -> Path:
        return self.storage_root / config.DEFAULT_FOLDER_NAME

    def resolve(self, folder_id: Optional[int] = None) -> FolderRecord:
        if folder_id is not None:
            folder = self.db.get_folder(folder_id)
            if folder is not None:
                return folder
            logging.warning(f"Destination folder not found: {folder_id}, using default folder")

        return self.get_or_create_default()

    def get_or_create_default(self) -> FolderRecord:
        """
        Idempotent under concurrency: the losing insert of a race hits the
        single-default index, rolls back and re-reads the winner's row.
        """
        for attempt in range(1, self.max_attempts + 1):
            folder = self.db.find_default_folder()
            if folder is not None:
                return folder

            # A root folder already named "Default" (created by hand, or
            # before the flag existed) is adopted instead of duplicated.
            existing = self.db.find_root_folder_by_name(config.DEFAULT_FOLDER_NAME)
            try:
                if existing is not None:
                    existing.is_default = True
                    self.db.update_folder(existing)
                    folder = existing
                else:
                    folder = FolderRecord(
                        path=str(self.default_folder_path),
                        name=config.DEFAULT_FOLDER_NAME,
                        parent_id=None,
                        is_default=True,
                    )
                    self.db.add_folder(folder)
                self.db.save_changes()
            except sqlite3.IntegrityError as e:
                self.db.rollback()
                logging.debug(f"Default folder race lost (attempt {attempt}): {e}")
                continue

            logging.info(f"Created default folder: {folder.path}")
            return folder

        raise DatabaseError("Could not get or create the default folder.")

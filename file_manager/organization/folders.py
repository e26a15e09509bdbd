import logging
import os
import sqlite3
from pathlib import Path
from typing import List, Optional, Set, Tuple, Union

from .. import config
from ..database.ops import DBOperations
from ..exceptions import InvalidNameError, SecurityError, StorageError
from ..models import FileRecord, FolderRecord, FolderOperationResult, FolderSummary
from ..storage.base import StorageBackend
from .files import remove_stored_bytes, validate_name

_SEPS = "/\\"


def _sep_for(path: str) -> str:
    if "/" in path:
        return "/"
    if "\\" in path:
        return "\\"
    return os.sep


def join_path(base: str, name: str) -> str:
    if not base:
        return name
    return base.rstrip(_SEPS) + _sep_for(base) + name


def split_parent(path: str) -> Tuple[str, str]:
    """('/x/A') -> ('/x', 'A'); a bare name has an empty parent."""
    trimmed = path.rstrip(_SEPS)
    idx = max(trimmed.rfind("/"), trimmed.rfind("\\"))
    if idx < 0:
        return "", trimmed
    return trimmed[:idx] or trimmed[:idx + 1], trimmed[idx + 1:]


def has_path_prefix(path: str, prefix: str) -> bool:
    """Component-aware prefix test: '/x/A' prefixes '/x/A/b' but not '/x/AB'."""
    p = prefix.rstrip(_SEPS)
    if path == p or path.rstrip(_SEPS) == p:
        return True
    return path.startswith(p + "/") or path.startswith(p + "\\")


def replace_path_prefix(path: str, old_prefix: str, new_prefix: str) -> str:
    old_p = old_prefix.rstrip(_SEPS)
    new_p = new_prefix.rstrip(_SEPS)
    return new_p + path[len(old_p):]


def _normalize(path: str) -> str:
    return os.path.normcase(os.path.abspath(path)).rstrip(_SEPS)


class FolderService:
    """
    Folder tree maintenance: create, list, rename with cascading path
    rewrites, and delete with optional cascade.

    Business-rule rejections come back as FolderOperationResult(success=False).
    """
    def __init__(self, db_ops: DBOperations, storage: StorageBackend, storage_root: Union[str, Path]):
        self.db = db_ops
        self.storage = storage
        self.storage_root = Path(storage_root)

    @property
    def expected_default_path(self) -> str:
        return str(self.storage_root / config.DEFAULT_FOLDER_NAME)

    # --- Queries ---

    def list_folders(self) -> List[FolderSummary]:
        return [
            FolderSummary(
                folder=f,
                file_count=self.db.count_files_in_folder(f.id),
                subfolder_count=self.db.count_subfolders(f.id),
            )
            for f in self.db.list_folders()
        ]

    def is_default_folder(self, folder: FolderRecord) -> bool:
        """
        True for the flagged default folder, and for any folder that looks
        like it: named "Default", or whose normalized path equals or ends in
        the expected default path's last component.
        """
        if folder.is_default:
            return True

        default_name = config.DEFAULT_FOLDER_NAME.lower()
        if (folder.name or "").strip().lower() == default_name:
            return True

        raw_path = (folder.path or "").strip()
        if raw_path.lower() == default_name:
            return True
        if not raw_path:
            return False

        normalized = _normalize(raw_path)
        if normalized == _normalize(self.expected_default_path):
            return True
        lowered = normalized.lower()
        return lowered.endswith("/" + default_name) or lowered.endswith("\\" + default_name)

    # --- Create ---

    def create_folder(self, name: str, parent_id: Optional[int] = None) -> FolderOperationResult:
        try:
            clean = validate_name(name, kind="Folder")
        except (InvalidNameError, SecurityError) as e:
            return FolderOperationResult(False, str(e))

        if parent_id is not None:
            parent = self.db.get_folder(parent_id)
            if parent is None:
                return FolderOperationResult(False, "Parent folder not found")
            path = join_path(parent.path, clean)
        else:
            path = str(self.storage_root / clean)

        if self._sibling_exists(parent_id, clean):
            return FolderOperationResult(False, f"A folder with the name '{clean}' already exists in this location")

        folder = FolderRecord(path=path, name=clean, parent_id=parent_id)
        try:
            self.db.add_folder(folder)
            self.storage.ensure_folder(path)
            self.db.save_changes()
        except sqlite3.IntegrityError:
            self.db.rollback()
            return FolderOperationResult(False, f"A folder with the name '{clean}' already exists in this location")
        except StorageError:
            self.db.rollback()
            raise

        logging.info(f"Created folder {folder.id}: {folder.path}")
        return FolderOperationResult(True, folder=folder)

    def _sibling_exists(self, parent_id: Optional[int], name: str, exclude_id: Optional[int] = None) -> bool:
        lowered = name.lower()
        return any(
            f.id != exclude_id and f.name.lower() == lowered
            for f in self.db.get_folders_by_parent(parent_id)
        )

    # --- Rename ---

    def rename_folder(self, folder_id: int, new_name: str) -> FolderOperationResult:
        logging.info(f"Renaming folder {folder_id} to {new_name}")
        try:
            clean = validate_name(new_name, kind="Folder")
        except (InvalidNameError, SecurityError) as e:
            return FolderOperationResult(False, str(e))

        folder = self.db.get_folder(folder_id)
        if folder is None:
            logging.warning(f"Folder not found for rename: {folder_id}")
            return FolderOperationResult(False, "Folder not found")

        if self._sibling_exists(folder.parent_id, clean, exclude_id=folder.id):
            return FolderOperationResult(False, f"A folder with the name '{clean}' already exists in this location")

        old_path, old_name = folder.path, folder.name
        parent = self.db.get_folder(folder.parent_id) if folder.parent_id is not None else None
        if parent is not None:
            new_path = join_path(parent.path, clean)
        else:
            new_path = join_path(split_parent(old_path)[0], clean)

        if old_path != new_path and self.storage.folder_move_blocked(old_path, new_path):
            logging.warning(f"Rename of folder {folder.id} blocked, target exists on disk: {new_path}")
            return FolderOperationResult(False, f"A folder named '{clean}' already exists on disk at {new_path}")

        folder.name = clean
        folder.path = new_path
        try:
            self.db.update_folder(folder)
            self._cascade_paths(folder, old_path, new_path)
        except sqlite3.IntegrityError:
            self.db.rollback()
            return FolderOperationResult(False, f"A folder with the name '{clean}' already exists in this location")

        moved_on_disk = old_path != new_path and self.storage.move_folder(old_path, new_path)
        try:
            self.db.save_changes()
        except sqlite3.Error:
            self.db.rollback()
            if moved_on_disk:
                self.storage.move_folder(new_path, old_path)
            raise

        logging.info(f"Folder renamed: {folder.id}, Old: {old_name} ({old_path}), New: {clean} ({new_path})")
        return FolderOperationResult(True, folder=folder)

    def _cascade_paths(self, root: FolderRecord, old_path: str, new_path: str):
        """
        Top-down rewrite of descendant folder paths and contained file paths.
        Each folder is expanded after its own path is updated; a visited set
        stops the walk if the parent links ever form a cycle.
        """
        stack = [(root, old_path, new_path)]
        visited: Set[int] = {root.id}

        while stack:
            current, cur_old, cur_new = stack.pop()

            for rec in self.db.list_files_in_folder(current.id, include_deleted=True):
                if has_path_prefix(rec.path, cur_old):
                    self.db.update_file_path(rec.id, replace_path_prefix(rec.path, cur_old, cur_new))

            for child in self.db.get_folders_by_parent(current.id):
                if child.id in visited:
                    logging.warning(f"Folder cycle detected at {child.id} ({child.path}); skipping")
                    continue
                visited.add(child.id)

                if not has_path_prefix(child.path, cur_old):
                    continue
                child_old = child.path
                child.path = replace_path_prefix(child_old, cur_old, cur_new)
                self.db.update_folder(child)
                stack.append((child, child_old, child.path))

    # --- Delete ---

    def delete_folder(self, folder_id: int, cascade: bool = False,
                      move_to_recycle_bin: bool = True) -> FolderOperationResult:
        logging.info(f"Deleting folder {folder_id}, cascade: {cascade}")

        folder = self.db.get_folder(folder_id)
        if folder is None:
            logging.warning(f"Folder not found for deletion: {folder_id}")
            return FolderOperationResult(False, "Folder not found")

        if self.is_default_folder(folder):
            logging.warning(f"Attempt to delete Default folder blocked: {folder.id}, Name: {folder.name}, Path: {folder.path}")
            return FolderOperationResult(
                False,
                "The Default folder cannot be deleted. It is a system folder that stores "
                "your files when no specific folder is selected.",
            )

        subfolders = self.db.get_folders_by_parent(folder.id)
        if subfolders and not cascade:
            return FolderOperationResult(
                False,
                "Cannot delete folder: it contains subfolders. Set cascade to delete the "
                "folder, its subfolders, and files.",
            )

        file_count = self.db.count_files_in_folder(folder.id)
        if file_count and not cascade:
            return FolderOperationResult(
                False,
                f"Cannot delete folder: it contains {file_count} file(s). Set cascade to "
                "delete the folder and its files.",
            )

        order = self._post_order(folder)
        for sub in order[:-1]:
            if self.is_default_folder(sub):
                return FolderOperationResult(
                    False,
                    f"Cannot delete folder: it contains the Default folder ({sub.path}).",
                )

        purged: List[FileRecord] = []
        for sub in order:
            files = self.db.list_files_in_folder(sub.id, include_deleted=True)
            if files:
                logging.info(f"Deleting {len(files)} files in folder {sub.id}")
            for rec in files:
                self.db.delete_file(rec.id)
            purged.extend(files)
            self.db.delete_folder(sub.id)

        self.db.save_changes()

        # Bytes go only once the rows are gone for good.
        for rec in purged:
            remove_stored_bytes(self.storage, rec, move_to_recycle_bin)
        for sub in order:
            self.storage.remove_folder(sub.path)

        logging.info(f"Folder deleted successfully: {folder.id}, Path: {folder.path}")
        return FolderOperationResult(True, folder=folder)

    def _post_order(self, root: FolderRecord) -> List[FolderRecord]:
        """Depth-first order with every folder after all of its descendants."""
        order: List[FolderRecord] = []
        stack = [root]
        visited: Set[int] = {root.id}
        while stack:
            current = stack.pop()
            order.append(current)
            for child in self.db.get_folders_by_parent(current.id):
                if child.id in visited:
                    logging.warning(f"Folder cycle detected at {child.id} ({child.path}); skipping")
                    continue
                visited.add(child.id)
                stack.append(child)
        order.reverse()
        return order

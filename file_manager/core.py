import logging
import os
import re
import shutil
import tempfile
import threading
from pathlib import Path
from typing import BinaryIO, Iterable, List, Optional, Tuple, Union

from tqdm import tqdm

from .config import Settings
from .database.db import DBManager
from .database.ops import DBOperations
from .exceptions import (
    DuplicateContentError,
    FileManagerError,
    NotFoundError,
    OperationCancelledError,
    SecurityError,
    StorageError,
    UnsupportedFormatError,
)
from .metadata.extract import MetadataExtractor, guess_mime_type
from .models import (
    FileRecord,
    FolderOperationResult,
    FolderRecord,
    FolderSummary,
    PhotoMetadata,
    SearchResult,
    UploadResult,
)
from .organization.files import FileService
from .organization.folders import FolderService, join_path
from .organization.resolver import DestinationResolver
from .pipeline import RequestPipeline
from .scanning.hasher import ContentHasher
from .storage.base import StorageBackend
from .storage.cloud import CloudinaryStorage
from .storage.local import LocalStorage

_PATH_PARTS = re.compile(r'[\\/]')


class FileIngestor:
    """
    Runs one upload through the ingestion pipeline:
    validate -> exact-path check -> hash check -> resolve destination ->
    store -> extract metadata -> persist record.
    """
    def __init__(self,
                 db_ops: DBOperations,
                 storage: StorageBackend,
                 hasher: ContentHasher,
                 metadata: MetadataExtractor,
                 resolver: DestinationResolver):
        self.db = db_ops
        self.storage = storage
        self.hasher = hasher
        self.metadata = metadata
        self.resolver = resolver

    def ingest(self,
               source_path: Union[str, Path],
               original_file_name: Optional[str] = None,
               destination_folder_id: Optional[int] = None,
               cancel_event: Optional[threading.Event] = None,
               remember_source: bool = True) -> UploadResult:
        logging.info(f"Uploading file: {source_path}")

        # --- Step 1: Validate ---
        normalized = self.validate_source(source_path)

        # --- Step 2: Exact-path check ---
        existing = self.db.find_file_by_path(normalized)
        if existing is not None:
            logging.warning(f"File already exists in database: {normalized} (ID: {existing.id})")
            return UploadResult(file_id=existing.id, is_duplicate=True, stored_location=existing.path)

        # --- Step 3: Hash check ---
        self._check_cancelled(cancel_event)
        digest = self.hasher.compute_hash(normalized, cancel_event)
        hash_hex = digest.hex().upper()
        duplicate = self.db.find_file_by_hash(digest)
        if duplicate is not None:
            logging.warning(f"Duplicate file detected by hash: {normalized} (existing: {duplicate.path})")
            raise DuplicateContentError(normalized, hash_hex, duplicate.id, duplicate.path)

        # --- Step 4: Resolve destination ---
        self._check_cancelled(cancel_event)
        folder = self.resolver.resolve(destination_folder_id)
        self.storage.ensure_folder(folder.path)

        file_name = Path(original_file_name or normalized).name
        destination = join_path(folder.path, file_name)

        # --- Step 5: Store ---
        self._check_cancelled(cancel_event)
        stored = self.storage.save(normalized, destination)

        try:
            if self.storage.is_remote(stored):
                size = os.path.getsize(normalized)
                compressed = False
            else:
                size = self.storage.stored_size(stored, normalized)
                compressed = self.storage.is_compressed(stored)

            # --- Step 6: Metadata (from the original, untransformed bytes) ---
            is_photo, photo_meta = self._extract_metadata(normalized)

            # --- Step 7: Persist ---
            self._check_cancelled(cancel_event)
            rec = FileRecord(
                path=stored,
                file_name=file_name,
                hash=digest,
                hash_hex=hash_hex,
                size=size,
                is_compressed=compressed,
                mime_type=guess_mime_type(file_name),
                is_photo=is_photo,
                folder_id=folder.id,
                source_path=normalized if remember_source else None,
            )
            rec.apply_photo_metadata(photo_meta)
            self.db.add_file(rec)
            self.db.save_changes()
        except OperationCancelledError:
            self.db.rollback()
            logging.warning(f"Upload cancelled after storing {stored}; left as orphan")
            raise
        except DuplicateContentError:
            # Lost a race against a concurrent upload of the same bytes.
            self.db.rollback()
            logging.warning(f"Concurrent duplicate detected on insert: {normalized}")
            self._discard(stored)
            raise
        except Exception:
            self.db.rollback()
            self._discard(stored)
            raise

        logging.info(f"File uploaded successfully: {stored} (ID: {rec.id})")
        return UploadResult(file_id=rec.id, is_duplicate=False, stored_location=stored)

    @staticmethod
    def validate_source(source_path: Union[str, Path]) -> str:
        """
        Refuses '..' components and '~' home shortcuts, then returns the
        absolute path of an existing file.
        """
        raw = str(source_path)
        parts = _PATH_PARTS.split(raw)
        if ".." in parts or any(p.startswith("~") for p in parts):
            logging.warning(f"Path traversal attempt detected: {raw}")
            raise SecurityError(f"Invalid file path: {raw}")

        normalized = os.path.abspath(raw)
        if not os.path.isfile(normalized):
            raise NotFoundError(f"Source file not found: {normalized}")
        return normalized

    def _extract_metadata(self, path: str) -> Tuple[bool, Optional[PhotoMetadata]]:
        """Best effort: an unparseable image is stored as a plain file."""
        if not self.metadata.is_photo(Path(path)):
            return False, None
        try:
            return True, self.metadata.extract_photo_metadata(Path(path))
        except UnsupportedFormatError as e:
            logging.warning(f"Photo metadata unavailable, storing as non-photo: {e}")
            return False, None

    def _discard(self, stored: str):
        try:
            self.storage.delete(stored, move_to_recycle_bin=False)
        except StorageError as e:
            logging.error(f"Could not remove orphaned upload {stored}: {e}")

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]):
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError("Upload cancelled")


def build_storage(settings: Settings) -> StorageBackend:
    if settings.backend == "cloudinary":
        return CloudinaryStorage(settings)
    if settings.backend == "local":
        return LocalStorage(settings.storage_root, compress=settings.compress)
    raise ValueError(f"Unknown storage backend: {settings.backend}")


class FileManagerApp:
    """
    Single construction point for the catalog. Every public call runs in
    its own unit of work behind the request pipeline.
    """
    def __init__(self, settings: Settings,
                 storage: Optional[StorageBackend] = None,
                 pipeline: Optional[RequestPipeline] = None):
        self.settings = settings
        self.db_manager = DBManager(settings.db_path)
        self.storage = storage or build_storage(settings)
        self.hasher = ContentHasher(http_timeout=settings.http_timeout)
        self.metadata = MetadataExtractor()
        self.pipeline = pipeline or RequestPipeline()

    # --- Wiring ---

    def _resolver(self, db_ops: DBOperations) -> DestinationResolver:
        return DestinationResolver(db_ops, self.settings.storage_root)

    def _ingestor(self, db_ops: DBOperations) -> FileIngestor:
        return FileIngestor(db_ops, self.storage, self.hasher, self.metadata, self._resolver(db_ops))

    def _folders(self, db_ops: DBOperations) -> FolderService:
        return FolderService(db_ops, self.storage, self.settings.storage_root)

    def _files(self, db_ops: DBOperations) -> FileService:
        return FileService(db_ops, self.storage)

    def _run(self, name: str, request: dict, work):
        def handler():
            with self.db_manager.session() as conn:
                return work(DBOperations(conn))
        return self.pipeline.send(name, request, handler)

    # --- Uploads ---

    def upload(self,
               source_path: Union[str, Path],
               original_file_name: Optional[str] = None,
               destination_folder_id: Optional[int] = None,
               cancel_event: Optional[threading.Event] = None,
               remember_source: bool = True) -> UploadResult:
        request = {"source_path": str(source_path), "destination_folder_id": destination_folder_id}
        return self._run("UploadFile", request, lambda db: self._ingestor(db).ingest(
            source_path, original_file_name, destination_folder_id, cancel_event, remember_source))

    def upload_stream(self,
                      stream: BinaryIO,
                      file_name: str,
                      destination_folder_id: Optional[int] = None,
                      cancel_event: Optional[threading.Event] = None) -> UploadResult:
        """
        Materializes an uploaded stream to a temp file and ingests it. The
        temp file is removed on every exit path.
        """
        fd, tmp = tempfile.mkstemp(suffix=Path(file_name).suffix)
        try:
            with os.fdopen(fd, 'wb') as out:
                shutil.copyfileobj(stream, out)
            return self.upload(tmp, original_file_name=file_name,
                               destination_folder_id=destination_folder_id,
                               cancel_event=cancel_event, remember_source=False)
        finally:
            try:
                os.remove(tmp)
            except FileNotFoundError:
                pass

    def upload_many(self, paths: Iterable[Union[str, Path]],
                    destination_folder_id: Optional[int] = None) -> List[UploadResult]:
        """Uploads each path; a failure is logged and the batch continues."""
        results = []
        for p in tqdm(list(paths), desc="Uploading"):
            try:
                results.append(self.upload(p, destination_folder_id=destination_folder_id))
            except (FileManagerError, OSError) as e:
                logging.error(f"Error uploading file via batch: {p}: {e}")
        return results

    # --- Folders ---

    def get_default_folder(self) -> FolderRecord:
        return self._run("GetDefaultFolder", {}, lambda db: self._resolver(db).get_or_create_default())

    def create_folder(self, name: str, parent_id: Optional[int] = None) -> FolderOperationResult:
        return self._run("CreateFolder", {"name": name, "parent_id": parent_id},
                         lambda db: self._folders(db).create_folder(name, parent_id))

    def rename_folder(self, folder_id: int, new_name: str) -> FolderOperationResult:
        return self._run("RenameFolder", {"folder_id": folder_id, "new_name": new_name},
                         lambda db: self._folders(db).rename_folder(folder_id, new_name))

    def delete_folder(self, folder_id: int, cascade: bool = False) -> FolderOperationResult:
        return self._run("DeleteFolder", {"folder_id": folder_id, "cascade": cascade},
                         lambda db: self._folders(db).delete_folder(folder_id, cascade))

    def list_folders(self) -> List[FolderSummary]:
        return self._run("GetFolders", {}, lambda db: self._folders(db).list_folders())

    # --- Files ---

    def get_file(self, file_id: int) -> FileRecord:
        return self._run("GetFile", {"file_id": file_id}, lambda db: self._files(db).get_file(file_id))

    def rename_file(self, file_id: int, new_name: str) -> FileRecord:
        return self._run("RenameFile", {"file_id": file_id, "new_name": new_name},
                         lambda db: self._files(db).rename_file(file_id, new_name))

    def move_file(self, file_id: int, folder_id: int) -> FileRecord:
        return self._run("MoveFile", {"file_id": file_id, "folder_id": folder_id},
                         lambda db: self._files(db).move_file(file_id, folder_id))

    def set_tags(self, file_id: int, tags: List[str]) -> bool:
        return self._run("SetTags", {"file_id": file_id, "tags": tags},
                         lambda db: self._files(db).set_tags(file_id, tags))

    def add_tags(self, file_id: int, tags: List[str]) -> bool:
        return self._run("AddTags", {"file_id": file_id, "tags": tags},
                         lambda db: self._files(db).add_tags(file_id, tags))

    def delete_file(self, file_id: int, permanent: bool = False, move_to_recycle_bin: bool = True) -> bool:
        return self._run("DeleteFile", {"file_id": file_id, "permanent": permanent},
                         lambda db: self._files(db).delete_file(file_id, permanent, move_to_recycle_bin))

    def search_files(self, term: Optional[str] = None, tags: Optional[List[str]] = None,
                     is_photo: Optional[bool] = None, folder_id: Optional[int] = None,
                     skip: int = 0, take: int = 50) -> SearchResult:
        request = {"term": term, "tags": tags, "is_photo": is_photo, "folder_id": folder_id}
        return self._run("SearchFiles", request,
                         lambda db: self._files(db).search_files(term, tags, is_photo, folder_id, skip, take))

    def read_file_content(self, file_id: int) -> bytes:
        return self._run("ReadFile", {"file_id": file_id},
                         lambda db: self._files(db).read_file_content(file_id))

    def get_thumbnail(self, file_id: int, max_width: int = 200, max_height: int = 200) -> str:
        return self._run("GetThumbnail", {"file_id": file_id},
                         lambda db: self._files(db).get_thumbnail(file_id, max_width, max_height))

    def close(self):
        self.db_manager.close()

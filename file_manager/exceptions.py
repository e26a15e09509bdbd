"""
Custom exception hierarchy for the file manager.

Faults raised by the hashing, storage and metadata layers propagate out of
the ingestion pipeline as these types. Folder business-rule rejections are
returned as FolderOperationResult values instead (see models.py).
"""
from typing import Optional


class FileManagerError(Exception):
    """Base exception for all file manager errors."""
    pass


class SecurityError(FileManagerError):
    """Raised when a path contains traversal markers or home shortcuts."""
    pass


class NotFoundError(FileManagerError):
    """Raised when a source file, file record or folder record is absent."""
    pass


class DuplicateContentError(FileManagerError):
    """Raised when uploaded content matches an existing record's hash."""

    def __init__(self, source_path: str, hash_hex: str,
                 existing_id: Optional[int] = None,
                 existing_location: Optional[str] = None):
        self.source_path = source_path
        self.hash_hex = hash_hex
        self.existing_id = existing_id
        self.existing_location = existing_location
        super().__init__(
            f"Duplicate content for {source_path} (hash {hash_hex}); "
            f"already stored as file {existing_id} at {existing_location}"
        )


class StorageError(FileManagerError):
    """Raised when a storage backend fails to save, read or delete bytes."""
    pass


class UnsupportedFormatError(FileManagerError):
    """Raised when a file flagged as a photo cannot be parsed as an image."""
    pass


class FileHashError(FileManagerError, IOError):
    """Raised when a hash source cannot be opened or fetched."""
    pass


class NetworkError(FileManagerError):
    """Raised when a remote fetch returns a non-success status."""

    def __init__(self, url: str, status_code: int):
        self.url = url
        self.status_code = status_code
        super().__init__(f"GET {url} returned HTTP {status_code}")


class DatabaseError(FileManagerError):
    """Raised when database operations fail."""
    pass


class OperationCancelledError(FileManagerError):
    """Raised when the caller cancels an in-flight ingestion."""
    pass


class InvalidNameError(FileManagerError, ValueError):
    """Raised when a file or folder display name is empty."""
    pass

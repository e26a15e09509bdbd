from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class PhotoMetadata:
    date_taken: Optional[datetime] = None
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass
class FileRecord:
    """
    Represents a file stored in the catalog.
    """
    path: str                # Canonical stored location (local path or URL)
    file_name: str           # Original display name
    hash: bytes              # Raw SHA-256 digest
    hash_hex: str
    size: int                # Persisted byte size (compressed size if gzipped)
    mime_type: str
    folder_id: int
    is_compressed: bool = False
    is_photo: bool = False
    source_path: Optional[str] = None

    # Photo metadata
    photo_date_taken: Optional[datetime] = None
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    tags: List[str] = field(default_factory=list)
    is_deleted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    id: Optional[int] = None

    def apply_photo_metadata(self, meta: Optional[PhotoMetadata]):
        if meta is None:
            return
        self.photo_date_taken = meta.date_taken
        self.camera_make = meta.camera_make
        self.camera_model = meta.camera_model
        self.latitude = meta.latitude
        self.longitude = meta.longitude


@dataclass
class FolderRecord:
    path: str
    name: str
    parent_id: Optional[int] = None
    is_default: bool = False
    created_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class UploadResult:
    file_id: int
    is_duplicate: bool
    stored_location: str


@dataclass
class FolderOperationResult:
    """Outcome of a folder rule check. reason is set when success is False."""
    success: bool
    reason: Optional[str] = None
    folder: Optional[FolderRecord] = None


@dataclass
class FolderSummary:
    folder: FolderRecord
    file_count: int
    subfolder_count: int


@dataclass
class SearchResult:
    items: List[FileRecord]
    total: int

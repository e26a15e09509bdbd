"""
Configuration constants and environment settings for the file manager.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# --- File Type Definitions ---
RAW_EXTS = {'.cr2', '.cr3', '.nef', '.arw', '.orf', '.rw2', '.dng', '.raf', '.srw'}

# Extension to MIME mapping, checked before the mimetypes module
EXT_TO_MIME = {
    '.jpg': 'image/jpeg', '.jpeg': 'image/jpeg', '.jpe': 'image/jpeg',
    '.png': 'image/png', '.gif': 'image/gif', '.bmp': 'image/bmp',
    '.tif': 'image/tiff', '.tiff': 'image/tiff', '.webp': 'image/webp',
    '.heic': 'image/heic', '.heif': 'image/heif',
    '.pdf': 'application/pdf', '.txt': 'text/plain', '.csv': 'text/csv',
    '.json': 'application/json', '.zip': 'application/zip',
    '.doc': 'application/msword',
    '.docx': 'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    '.xls': 'application/vnd.ms-excel',
    '.xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    '.mp4': 'video/mp4', '.mov': 'video/quicktime', '.mp3': 'audio/mpeg',
}
for ext in RAW_EXTS: EXT_TO_MIME.setdefault(ext, 'image/x-raw')
DEFAULT_MIME = 'application/octet-stream'

# --- Photo Detection ---
# (offset, magic bytes). Checked against the first SIGNATURE_READ_SIZE bytes.
PHOTO_SIGNATURES = [
    (0, b'\xff\xd8\xff'),                 # JPEG
    (0, b'\x89PNG\r\n\x1a\n'),            # PNG
    (0, b'GIF87a'),
    (0, b'GIF89a'),
    (0, b'BM'),                           # BMP
    (0, b'II*\x00'),                      # TIFF little endian
    (0, b'MM\x00*'),                      # TIFF big endian
]
HEIF_BRANDS = {b'heic', b'heix', b'hevc', b'heim', b'heis', b'mif1', b'msf1', b'avif'}
SIGNATURE_READ_SIZE = 16

# --- Metadata Parsing ---
DATE_TAGS = [
    'EXIF DateTimeOriginal',
    'EXIF DateTimeDigitized',
    'Image DateTime',
]

# --- Hashing & I/O ---
HASH_CHUNK_SIZE = 64 * 1024  # 64 KB chunks for reading
HTTP_TIMEOUT = 30  # seconds
DB_BUSY_TIMEOUT = 30  # seconds SQLite waits on a locked database

# --- Storage Layout ---
DEFAULT_FOLDER_NAME = "Default"
RECYCLE_DIR_NAME = ".recycle"
THUMBNAIL_DIR_NAME = ".thumbnails"
COMPRESSED_SUFFIX = ".gz"
CLOUDINARY_ROOT_FOLDER = "Horizon_FMS"
CLOUDINARY_URL_MARKER = "cloudinary.com"


def default_storage_root() -> Path:
    """Application-data location used when FMS_STORAGE_ROOT is not set."""
    base = os.getenv("APPDATA") or os.getenv("XDG_DATA_HOME")
    base_path = Path(base) if base else Path.home() / ".local" / "share"
    return base_path / "FileManagementSystem" / "Storage"


@dataclass
class Settings:
    storage_root: Path
    db_path: Path
    backend: str = "local"              # local | cloudinary
    compress: bool = False
    cloud_name: Optional[str] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    cloud_root_folder: str = CLOUDINARY_ROOT_FOLDER
    http_timeout: int = HTTP_TIMEOUT

    @property
    def default_folder_path(self) -> Path:
        return self.storage_root / DEFAULT_FOLDER_NAME

    @property
    def has_cloud_credentials(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)


def _env_flag(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


def load_settings(storage_root: Optional[Path] = None, db_path: Optional[Path] = None) -> Settings:
    """
    Builds Settings from the environment. Explicit arguments win over env vars.
    """
    root = storage_root or Path(os.getenv("FMS_STORAGE_ROOT") or default_storage_root())
    root = Path(root).expanduser().resolve()

    db_env = os.getenv("FMS_DB_PATH")
    db = db_path or (Path(db_env) if db_env else root.parent / "file_catalog.db")

    return Settings(
        storage_root=root,
        db_path=Path(db),
        backend=os.getenv("FMS_STORAGE_BACKEND", "local").strip().lower(),
        compress=_env_flag("FMS_COMPRESS"),
        cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
        api_key=os.getenv("CLOUDINARY_API_KEY"),
        api_secret=os.getenv("CLOUDINARY_API_SECRET"),
        cloud_root_folder=os.getenv("CLOUDINARY_ROOT_FOLDER", CLOUDINARY_ROOT_FOLDER),
        http_timeout=int(os.getenv("FMS_HTTP_TIMEOUT", HTTP_TIMEOUT)),
    )

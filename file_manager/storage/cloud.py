import logging
import re
from pathlib import Path, PurePosixPath
from typing import Optional, Union
from urllib.parse import urlparse

import cloudinary
import cloudinary.uploader
import cloudinary.utils
import cloudinary.exceptions
import requests

from .. import config
from ..config import Settings
from ..exceptions import NetworkError, StorageError
from .base import StorageBackend

_VERSION_SEGMENT = re.compile(r'^v\d+$')


class CloudinaryStorage(StorageBackend):
    """
    Stores raw bytes in Cloudinary.

    Objects are keyed root_folder/<folder relative to storage root>/<stem>;
    the provider adds a random suffix when that key is taken.
    """
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.storage_root = settings.storage_root
        self.root_folder = settings.cloud_root_folder.strip("/")
        self.http_timeout = settings.http_timeout
        self.session = session or requests.Session()

        if settings.has_cloud_credentials:
            cloudinary.config(
                cloud_name=settings.cloud_name,
                api_key=settings.api_key,
                api_secret=settings.api_secret,
                secure=True,
            )
        else:
            logging.warning("Cloudinary settings are missing. Uploads will fail until configured.")

    # --- Key Building ---

    def build_folder(self, destination_path: Union[str, Path]) -> str:
        """root_folder/<relative folder path> for a destination file path."""
        parent = Path(destination_path).parent
        try:
            rel = parent.relative_to(self.storage_root)
        except ValueError:
            rel = Path(*parent.parts[1:]) if parent.is_absolute() else parent
        rel_str = PurePosixPath(*rel.parts).as_posix() if rel.parts else ""
        rel_str = rel_str.replace("\\", "/").strip("/")
        if not self.root_folder:
            return rel_str
        return f"{self.root_folder}/{rel_str}" if rel_str else self.root_folder

    @staticmethod
    def extract_public_id(url: str) -> str:
        """
        Public id from a delivery URL: the segments after 'upload', minus the
        version segment. Returns the input unchanged for non-Cloudinary URLs.
        """
        if not url or config.CLOUDINARY_URL_MARKER not in url:
            return url

        segments = [s for s in urlparse(url).path.split("/") if s]
        try:
            idx = segments.index("upload")
        except ValueError:
            return url

        rest = segments[idx + 1:]
        if rest and _VERSION_SEGMENT.match(rest[0]):
            rest = rest[1:]
        return "/".join(rest) if rest else url

    # --- StorageBackend ---

    def save(self, source_path: Union[str, Path], destination_path: Union[str, Path]) -> str:
        folder = self.build_folder(destination_path)
        public_id = Path(destination_path).stem
        logging.info(f"Uploading to Cloudinary: {source_path} -> {folder}/{public_id}")

        try:
            result = cloudinary.uploader.upload(
                str(source_path),
                resource_type="raw",
                folder=folder,
                public_id=public_id,
                use_filename=True,
                unique_filename=True,
            )
        except (cloudinary.exceptions.Error, OSError, requests.RequestException) as e:
            logging.error(f"Cloudinary upload failed for {source_path}: {e}")
            raise StorageError(f"Cloudinary upload failed: {e}") from e

        url = result.get("secure_url") if result else None
        if not url:
            error = (result or {}).get("error")
            logging.error(f"Cloudinary upload returned no URL for {source_path}: {error}")
            raise StorageError(f"Cloudinary upload failed: {error or 'no secure_url in response'}")

        logging.info(f"Cloudinary upload successful: {url}")
        return url

    def read(self, path: str) -> bytes:
        logging.info(f"Downloading from Cloudinary: {path}")
        try:
            resp = self.session.get(path, timeout=self.http_timeout)
        except requests.RequestException as e:
            raise StorageError(f"Failed to download {path}: {e}") from e
        if not resp.ok:
            raise NetworkError(path, resp.status_code)
        return resp.content

    def delete(self, path: str, move_to_recycle_bin: bool = True) -> bool:
        # Cloudinary has no recycle bin; the flag is accepted for interface parity.
        public_id = self.extract_public_id(path)
        logging.info(f"Deleting from Cloudinary: {public_id}")
        try:
            result = cloudinary.uploader.destroy(public_id, resource_type="raw")
        except (cloudinary.exceptions.Error, requests.RequestException) as e:
            logging.error(f"Cloudinary delete failed for {path}: {e}")
            raise StorageError(f"Cloudinary delete failed: {e}") from e
        return (result or {}).get("result") == "ok"

    def generate_thumbnail(self, path: str, max_width: int, max_height: int) -> str:
        public_id = self.extract_public_id(path)
        url, _ = cloudinary.utils.cloudinary_url(
            public_id,
            resource_type="image",
            width=max_width,
            height=max_height,
            crop="limit",
            secure=True,
        )
        return url

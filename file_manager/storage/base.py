"""
Storage backend contract shared by the local-disk and cloud implementations.
"""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Union

from ..scanning.hasher import is_remote_source


class StorageBackend(ABC):

    @abstractmethod
    def save(self, source_path: Union[str, Path], destination_path: Union[str, Path]) -> str:
        """
        Persists the bytes of source_path at destination_path and returns the
        canonical stored location (path or URL). Raises StorageError.
        """

    @abstractmethod
    def read(self, path: str) -> bytes:
        """Returns the original (decompressed) bytes stored at path."""

    @abstractmethod
    def delete(self, path: str, move_to_recycle_bin: bool = True) -> bool:
        """Removes the stored object. Returns True only on confirmed removal."""

    @abstractmethod
    def generate_thumbnail(self, path: str, max_width: int, max_height: int) -> str:
        """
        Returns a reference to a thumbnail fitting inside max_width x max_height.
        Aspect ratio is preserved; the box is a bound, not an exact size.
        """

    def ensure_folder(self, folder_path: Union[str, Path]):
        """Makes sure a folder location can receive files. No-op by default."""

    def relocate(self, location: str, destination_folder: Union[str, Path]) -> str:
        """Moves a stored object under destination_folder. Returns the new location."""
        return location

    def folder_move_blocked(self, old_path: Union[str, Path], new_path: Union[str, Path]) -> bool:
        """True when move_folder(old_path, new_path) would have to leave old_path behind."""
        return False

    def move_folder(self, old_path: Union[str, Path], new_path: Union[str, Path]) -> bool:
        """Renames a folder location. Returns True if anything was moved."""
        return False

    def remove_folder(self, folder_path: Union[str, Path]) -> bool:
        """Removes an empty folder location. Returns True if it was removed."""
        return False

    def stored_size(self, location: str, source_path: Union[str, Path]) -> int:
        """Bytes actually persisted for location."""
        return Path(source_path).stat().st_size

    def is_compressed(self, location: str) -> bool:
        return False

    @staticmethod
    def is_remote(location: str) -> bool:
        return is_remote_source(location)

import gzip
import hashlib
import io
import logging
import shutil
from datetime import datetime, UTC
from pathlib import Path
from typing import BinaryIO, Iterator, Union

from PIL import Image, UnidentifiedImageError

from .. import config
from ..exceptions import StorageError, UnsupportedFormatError
from .base import StorageBackend


class LocalStorage(StorageBackend):
    """
    Stores files under a filesystem root, optionally gzip-compressed.

    Existing files are never overwritten: a " (n)" suffix is added to the
    stem, and the candidate name is claimed with exclusive create so two
    concurrent saves cannot pick the same name.
    """
    def __init__(self, root: Union[str, Path], compress: bool = False):
        self.root = Path(root)
        self.compress = compress
        self.recycle_dir = self.root / config.RECYCLE_DIR_NAME
        self.thumb_dir = self.root / config.THUMBNAIL_DIR_NAME

    def _resolve(self, path: Union[str, Path]) -> Path:
        p = Path(path)
        return p if p.is_absolute() else self.root / p

    def save(self, source_path: Union[str, Path], destination_path: Union[str, Path]) -> str:
        src = Path(source_path)
        dest = self._resolve(destination_path)
        logging.info(f"Storing {src} -> {dest} (compress={self.compress})")

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            with src.open('rb') as fin:
                final = self._write_exclusive(fin, dest)
            if not self.compress:
                shutil.copystat(src, final)
        except OSError as e:
            logging.error(f"Failed to store {src} at {dest}: {e}")
            raise StorageError(f"Failed to store {src} at {dest}: {e}") from e

        return str(final)

    def _write_exclusive(self, fin: BinaryIO, dest: Path) -> Path:
        for candidate in self._candidates(dest):
            try:
                fout = candidate.open('xb')
            except FileExistsError:
                continue
            try:
                with fout:
                    if self.compress:
                        with gzip.GzipFile(filename=dest.name, mode='wb', fileobj=fout) as gz:
                            shutil.copyfileobj(fin, gz, config.HASH_CHUNK_SIZE)
                    else:
                        shutil.copyfileobj(fin, fout, config.HASH_CHUNK_SIZE)
            except OSError:
                candidate.unlink(missing_ok=True)
                raise
            return candidate
        raise StorageError(f"No free file name for {dest}")

    def _candidates(self, dest: Path, limit: int = 10000) -> Iterator[Path]:
        """dest, then "stem (1).ext", "stem (2).ext"... with .gz appended when compressing."""
        gz = config.COMPRESSED_SUFFIX if self.compress else ""
        stem, suffix = dest.stem, dest.suffix
        yield dest.with_name(f"{dest.name}{gz}")
        for n in range(1, limit):
            yield dest.with_name(f"{stem} ({n}){suffix}{gz}")

    def read(self, path: str) -> bytes:
        p = self._resolve(path)
        try:
            if self.is_compressed(str(p)):
                with gzip.open(p, 'rb') as f:
                    return f.read()
            return p.read_bytes()
        except OSError as e:
            logging.error(f"Failed to read {p}: {e}")
            raise StorageError(f"Failed to read {p}: {e}") from e

    def delete(self, path: str, move_to_recycle_bin: bool = True) -> bool:
        p = self._resolve(path)
        if not p.exists():
            logging.warning(f"Delete requested for missing file: {p}")
            return False

        try:
            if move_to_recycle_bin:
                self.recycle_dir.mkdir(parents=True, exist_ok=True)
                stamp = datetime.now(UTC).strftime("%Y%m%d%H%M%S%f")
                target = self.recycle_dir / f"{stamp}_{p.name}"
                shutil.move(str(p), str(target))
                logging.info(f"Moved {p} to recycle bin: {target}")
            else:
                p.unlink()
                logging.info(f"Deleted {p}")
        except OSError as e:
            logging.error(f"Failed to delete {p}: {e}")
            raise StorageError(f"Failed to delete {p}: {e}") from e
        return True

    def generate_thumbnail(self, path: str, max_width: int, max_height: int) -> str:
        src = self._resolve(path)
        key = hashlib.sha1(f"{src}|{max_width}x{max_height}".encode()).hexdigest()
        thumb = self.thumb_dir / f"{key}.jpg"
        if thumb.exists():
            return str(thumb)

        try:
            data = self.read(str(src))
            with Image.open(io.BytesIO(data)) as im:
                im = im.convert("RGB")
                im.thumbnail((max_width, max_height))
                self.thumb_dir.mkdir(parents=True, exist_ok=True)
                im.save(thumb, format="JPEG", quality=82)
        except UnidentifiedImageError as e:
            raise UnsupportedFormatError(f"Cannot build thumbnail for {src}: {e}") from e
        except OSError as e:
            raise StorageError(f"Cannot build thumbnail for {src}: {e}") from e
        return str(thumb)

    def ensure_folder(self, folder_path: Union[str, Path]):
        try:
            self._resolve(folder_path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create folder {folder_path}: {e}") from e

    def relocate(self, location: str, destination_folder: Union[str, Path]) -> str:
        src = self._resolve(location)
        dest_dir = self._resolve(destination_folder)
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
            for candidate in self._relocation_candidates(dest_dir / src.name):
                if not candidate.exists():
                    shutil.move(str(src), str(candidate))
                    return str(candidate)
        except OSError as e:
            raise StorageError(f"Failed to move {src} to {dest_dir}: {e}") from e
        raise StorageError(f"No free file name in {dest_dir} for {src.name}")

    def _relocation_candidates(self, dest: Path, limit: int = 10000) -> Iterator[Path]:
        # The name already carries .gz when compressed; keep it last.
        name = dest.name
        gz = ""
        if name.lower().endswith(config.COMPRESSED_SUFFIX):
            name, gz = name[:-len(config.COMPRESSED_SUFFIX)], config.COMPRESSED_SUFFIX
        base = dest.with_name(name)
        yield dest
        for n in range(1, limit):
            yield dest.with_name(f"{base.stem} ({n}){base.suffix}{gz}")

    def folder_move_blocked(self, old_path: Union[str, Path], new_path: Union[str, Path]) -> bool:
        old_dir, new_dir = self._resolve(old_path), self._resolve(new_path)
        if not old_dir.is_dir() or not new_dir.exists():
            return False
        # A case-only rename on a case-insensitive filesystem sees itself.
        return not new_dir.samefile(old_dir)

    def move_folder(self, old_path: Union[str, Path], new_path: Union[str, Path]) -> bool:
        old_dir, new_dir = self._resolve(old_path), self._resolve(new_path)
        if not old_dir.is_dir() or new_dir.exists():
            return False
        try:
            new_dir.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(old_dir), str(new_dir))
        except OSError as e:
            raise StorageError(f"Failed to move folder {old_dir} -> {new_dir}: {e}") from e
        logging.info(f"Moved folder on disk: {old_dir} -> {new_dir}")
        return True

    def remove_folder(self, folder_path: Union[str, Path]) -> bool:
        p = self._resolve(folder_path)
        try:
            p.rmdir()
        except OSError as e:
            # Missing or still holds untracked files; leave it alone.
            logging.debug(f"Folder not removed from disk {p}: {e}")
            return False
        return True

    def stored_size(self, location: str, source_path: Union[str, Path]) -> int:
        return self._resolve(location).stat().st_size

    def is_compressed(self, location: str) -> bool:
        return location.lower().endswith(config.COMPRESSED_SUFFIX)

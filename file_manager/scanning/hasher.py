import hashlib
import logging
import threading
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

import requests

from .. import config
from ..exceptions import FileHashError, NetworkError, OperationCancelledError


def is_remote_source(source: Union[str, Path]) -> bool:
    return urlparse(str(source)).scheme in ("http", "https")


class ContentHasher:
    """
    Computes SHA-256 digests of a file's full content, local or remote.
    """
    def __init__(self, http_timeout: int = config.HTTP_TIMEOUT, session: Optional[requests.Session] = None):
        self.http_timeout = http_timeout
        self.session = session or requests.Session()

    def compute_hash(self, source: Union[str, Path],
                     cancel_event: Optional[threading.Event] = None) -> bytes:
        """
        Returns the 32-byte digest of source.

        Local paths are streamed in HASH_CHUNK_SIZE chunks; http(s) URLs are
        downloaded and digested as the body arrives.
        """
        if is_remote_source(source):
            return self._remote_sha256(str(source), cancel_event)
        return self._local_sha256(Path(source), cancel_event)

    def compute_hash_hex(self, source: Union[str, Path]) -> str:
        return self.compute_hash(source).hex().upper()

    def _local_sha256(self, path: Path, cancel_event: Optional[threading.Event]) -> bytes:
        h = hashlib.sha256()
        try:
            with open(path, 'rb') as f:
                while chunk := f.read(config.HASH_CHUNK_SIZE):
                    if cancel_event is not None and cancel_event.is_set():
                        raise OperationCancelledError(f"Hashing cancelled: {path}")
                    h.update(chunk)
        except OSError as e:
            raise FileHashError(f"Cannot read {path} for hashing: {e}") from e
        return h.digest()

    def _remote_sha256(self, url: str, cancel_event: Optional[threading.Event]) -> bytes:
        logging.debug(f"Hashing remote content: {url}")
        h = hashlib.sha256()
        try:
            with self.session.get(url, stream=True, timeout=self.http_timeout) as resp:
                if not resp.ok:
                    raise NetworkError(url, resp.status_code)
                for chunk in resp.iter_content(chunk_size=config.HASH_CHUNK_SIZE):
                    if cancel_event is not None and cancel_event.is_set():
                        raise OperationCancelledError(f"Hashing cancelled: {url}")
                    h.update(chunk)
        except requests.RequestException as e:
            raise FileHashError(f"Cannot fetch {url} for hashing: {e}") from e
        return h.digest()

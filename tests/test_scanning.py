import hashlib
import threading

import pytest
import requests

from file_manager.exceptions import FileHashError, NetworkError, OperationCancelledError
from file_manager.scanning.hasher import ContentHasher, is_remote_source


class FakeResponse:
    def __init__(self, body=b"", status_code=200):
        self.body = body
        self.status_code = status_code
        self.ok = 200 <= status_code < 300

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.body), chunk_size):
            yield self.body[i:i + chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error:
            raise self.error
        return self.response


def test_compute_file_hash(tmp_path):
    p = tmp_path / "sample.bin"
    data = b"hello world" * 10000
    p.write_bytes(data)

    hasher = ContentHasher()
    digest = hasher.compute_hash(p)
    assert len(digest) == 32
    assert digest == hashlib.sha256(data).digest()
    assert hasher.compute_hash_hex(p) == hashlib.sha256(data).hexdigest().upper()

def test_empty_file_hash(tmp_path):
    p = tmp_path / "empty.txt"
    p.write_bytes(b"")
    assert ContentHasher().compute_hash(p) == hashlib.sha256(b"").digest()

def test_missing_file_raises_file_hash_error(tmp_path):
    with pytest.raises(FileHashError) as exc:
        ContentHasher().compute_hash(tmp_path / "nope.bin")
    assert isinstance(exc.value, IOError)

def test_remote_hash_streams_body():
    body = b"remote-bytes" * 5000
    session = FakeSession(FakeResponse(body))
    hasher = ContentHasher(http_timeout=7, session=session)

    assert hasher.compute_hash("https://example.com/a.bin") == hashlib.sha256(body).digest()
    url, kwargs = session.calls[0]
    assert url == "https://example.com/a.bin"
    assert kwargs["stream"] is True
    assert kwargs["timeout"] == 7

def test_remote_non_success_status_raises_network_error():
    hasher = ContentHasher(session=FakeSession(FakeResponse(status_code=404)))
    with pytest.raises(NetworkError) as exc:
        hasher.compute_hash("http://example.com/missing")
    assert exc.value.status_code == 404

def test_remote_connection_failure_raises_file_hash_error():
    hasher = ContentHasher(session=FakeSession(error=requests.ConnectionError("refused")))
    with pytest.raises(FileHashError):
        hasher.compute_hash("http://example.com/a.bin")

def test_cancelled_hash(tmp_path):
    p = tmp_path / "big.bin"
    p.write_bytes(b"x" * 1024)
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(OperationCancelledError):
        ContentHasher().compute_hash(p, cancel)

@pytest.mark.parametrize(
    "source,expected",
    [
        ("https://res.cloudinary.com/x.jpg", True),
        ("http://host/file", True),
        ("/home/user/file.txt", False),
        ("C:\\Users\\me\\file.txt", False),
        ("ftp://host/file", False),
    ],
)
def test_is_remote_source(source, expected):
    assert is_remote_source(source) is expected

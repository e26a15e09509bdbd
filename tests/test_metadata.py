from datetime import datetime
from pathlib import Path

import pytest
from PIL import Image

from file_manager.exceptions import UnsupportedFormatError
from file_manager.metadata import extract as extract_mod
from file_manager.metadata.extract import MetadataExtractor, guess_mime_type


class FakeRatio:
    def __init__(self, num, den=1):
        self.num = num
        self.den = den


class FakeTag:
    def __init__(self, printable, values=None):
        self.printable = printable
        self.values = values or []

    def __str__(self):
        return self.printable


def write_jpeg(path: Path, make=None, model=None, taken=None, size=(64, 48)) -> Path:
    img = Image.new("RGB", size, color=(200, 30, 30))
    exif = Image.Exif()
    if make:
        exif[0x010F] = make
    if model:
        exif[0x0110] = model
    if taken:
        exif[0x0132] = taken
    img.save(path, format="JPEG", exif=exif.tobytes())
    return path

def test_jpeg_metadata_extraction(tmp_path):
    p = write_jpeg(tmp_path / "cam.jpg", make="Canon", model="EOS R5", taken="2021:05:06 07:08:09")
    ex = MetadataExtractor()

    assert ex.is_photo(p)
    meta = ex.extract_photo_metadata(p)
    assert meta.camera_make == "Canon"
    assert meta.camera_model == "EOS R5"
    assert meta.date_taken == datetime(2021, 5, 6, 7, 8, 9)
    assert meta.latitude is None
    assert meta.longitude is None

def test_jpeg_without_exif_has_empty_fields(tmp_path):
    p = tmp_path / "plain.jpg"
    Image.new("RGB", (10, 10)).save(p, format="JPEG")
    meta = MetadataExtractor().extract_photo_metadata(p)
    assert meta.date_taken is None
    assert meta.camera_make is None

def test_gps_conversion_with_hemisphere_refs(tmp_path, monkeypatch):
    p = write_jpeg(tmp_path / "gps.jpg")
    tags = {
        "GPS GPSLatitude": FakeTag("[40, 26, 46]", [FakeRatio(40), FakeRatio(26), FakeRatio(46)]),
        "GPS GPSLatitudeRef": FakeTag("N"),
        "GPS GPSLongitude": FakeTag("[79, 58, 111/2]", [FakeRatio(79), FakeRatio(58), FakeRatio(111, 2)]),
        "GPS GPSLongitudeRef": FakeTag("W"),
        "EXIF DateTimeOriginal": FakeTag("2019:12:31 23:59:58"),
        "Image DateTime": FakeTag("2020:01:01 00:00:00"),
    }
    monkeypatch.setattr(extract_mod.exifread, "process_file", lambda f, details=False: tags)

    meta = MetadataExtractor().extract_photo_metadata(p)
    assert meta.latitude == pytest.approx(40 + 26 / 60 + 46 / 3600)
    assert meta.longitude == pytest.approx(-(79 + 58 / 60 + 55.5 / 3600))
    # DateTimeOriginal wins over DateTime
    assert meta.date_taken == datetime(2019, 12, 31, 23, 59, 58)

def test_malformed_exif_leaves_fields_empty(tmp_path, monkeypatch):
    p = write_jpeg(tmp_path / "bad_exif.jpg")
    tags = {
        "EXIF DateTimeOriginal": FakeTag("not a date"),
        "GPS GPSLatitude": FakeTag("[1]", [FakeRatio(1)]),
        "GPS GPSLongitude": FakeTag("[1, 2, 3]", [FakeRatio(1), FakeRatio(2, 0), FakeRatio(3)]),
        "Image Make": FakeTag("  \x00"),
    }
    monkeypatch.setattr(extract_mod.exifread, "process_file", lambda f, details=False: tags)

    meta = MetadataExtractor().extract_photo_metadata(p)
    assert meta.date_taken is None
    assert meta.latitude is None
    assert meta.longitude is None
    assert meta.camera_make is None

def test_exifread_crash_is_not_fatal(tmp_path, monkeypatch):
    p = write_jpeg(tmp_path / "crash.jpg", make="Nikon")

    def boom(f, details=False):
        raise ValueError("corrupt IFD")

    monkeypatch.setattr(extract_mod.exifread, "process_file", boom)
    meta = MetadataExtractor().extract_photo_metadata(p)
    assert meta.camera_make is None

def test_corrupted_jpeg_is_unsupported(tmp_path):
    p = tmp_path / "broken.jpg"
    p.write_bytes(b"\xff\xd8\xff" + b"not really a jpeg" * 20)
    ex = MetadataExtractor()

    # The header still looks like a JPEG...
    assert ex.is_photo(p)
    # ...but the body cannot be parsed.
    with pytest.raises(UnsupportedFormatError):
        ex.extract_photo_metadata(p)

def test_png_is_photo(tmp_path):
    p = tmp_path / "pic.png"
    Image.new("RGBA", (5, 5)).save(p, format="PNG")
    assert MetadataExtractor().is_photo(p)

def test_text_file_is_not_photo(tmp_path):
    p = tmp_path / "notes.jpg"
    p.write_text("just some text with a misleading extension")
    assert not MetadataExtractor().is_photo(p)

def test_raw_extension_fallback(tmp_path):
    p = tmp_path / "IMG_0001.CR2"
    p.write_bytes(b"\x00\x01\x02\x03rawdata")
    assert MetadataExtractor().is_photo(p)

def test_webp_signature(tmp_path):
    p = tmp_path / "anim.bin"
    p.write_bytes(b"RIFF\x10\x00\x00\x00WEBPVP8 ")
    assert MetadataExtractor().is_photo(p)

@pytest.mark.parametrize(
    "name,expected",
    [
        ("photo.JPG", "image/jpeg"),
        ("scan.tiff", "image/tiff"),
        ("report.pdf", "application/pdf"),
        ("shot.nef", "image/x-raw"),
        ("page.html", "text/html"),
        ("blob.zzz", "application/octet-stream"),
        ("noext", "application/octet-stream"),
    ],
)
def test_guess_mime_type(name, expected):
    assert guess_mime_type(name) == expected

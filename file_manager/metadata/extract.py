import logging
import mimetypes
from pathlib import Path
from datetime import datetime
from typing import Optional, Any, Dict

import exifread
from PIL import Image

from .. import config
from ..exceptions import UnsupportedFormatError
from ..models import PhotoMetadata

GPS_IFD = 0x8825


def guess_mime_type(file_name: str) -> str:
    """MIME type from the file name's extension."""
    ext = Path(file_name).suffix.lower()
    return config.EXT_TO_MIME.get(ext) or mimetypes.guess_type(file_name)[0] or config.DEFAULT_MIME


class MetadataExtractor:
    """
    Photo detection and EXIF extraction.

    Strategies:
      - Detection: magic-number sniffing, extension fallback for RAW formats.
      - Tags: 'exifread' (date, make, model, GPS).
      - Validation and GPS fallback: Pillow.
    """

    def is_photo(self, path: Path) -> bool:
        """
        Conservative photo check. A file passes only if its header carries a
        known image signature, or it has a RAW extension (those share TIFF/ISO
        containers with non-image formats, so their headers are not sniffed).
        """
        path = Path(path)
        try:
            with path.open('rb') as f:
                header = f.read(config.SIGNATURE_READ_SIZE)
        except OSError as e:
            logging.warning(f"Cannot read header of {path}: {e}")
            return False

        if self._matches_signature(header):
            return True
        return path.suffix.lower() in config.RAW_EXTS

    def extract_photo_metadata(self, path: Path) -> PhotoMetadata:
        """
        Extracts capture date, camera make/model and GPS position.

        Raises UnsupportedFormatError if Pillow cannot parse the file as an
        image. Missing or malformed EXIF only leaves the affected fields None.
        """
        path = Path(path)
        # Pillow cannot decode most RAW containers; exifread still reads their tags.
        if path.suffix.lower() not in config.RAW_EXTS:
            self._validate_image(path)

        tags = self._read_exif_tags(path)
        meta = PhotoMetadata(
            date_taken=self._parse_exif_date(tags),
            camera_make=self._tag_str(tags, 'Image Make'),
            camera_model=self._tag_str(tags, 'Image Model'),
        )

        lat = self._gps_to_degrees(tags.get('GPS GPSLatitude'), tags.get('GPS GPSLatitudeRef'))
        lon = self._gps_to_degrees(tags.get('GPS GPSLongitude'), tags.get('GPS GPSLongitudeRef'))
        if lat is None or lon is None:
            lat, lon = self._pillow_gps(path)
        meta.latitude, meta.longitude = lat, lon
        return meta

    # --- Internal Helpers ---

    def _matches_signature(self, header: bytes) -> bool:
        for offset, magic in config.PHOTO_SIGNATURES:
            if header[offset:offset + len(magic)] == magic:
                return True
        # RIFF....WEBP
        if header[:4] == b'RIFF' and header[8:12] == b'WEBP':
            return True
        # ISO BMFF: ....ftyp<brand>
        if header[4:8] == b'ftyp' and header[8:12] in config.HEIF_BRANDS:
            return True
        return False

    def _validate_image(self, path: Path):
        try:
            with Image.open(path) as img:
                img.verify()
        except Exception as e:
            raise UnsupportedFormatError(f"{path} cannot be parsed as an image: {e}") from e

    def _read_exif_tags(self, path: Path) -> Dict[str, Any]:
        try:
            with path.open('rb') as f:
                # details=False skips MakerNotes and thumbnails
                return exifread.process_file(f, details=False) or {}
        except Exception as e:
            logging.warning(f"ExifRead failed for {path}: {e}")
            return {}

    def _tag_str(self, tags: Dict[str, Any], key: str) -> Optional[str]:
        if key not in tags:
            return None
        val = str(tags[key]).strip().strip('\x00').strip()
        return val or None

    def _parse_exif_date(self, tags) -> Optional[datetime]:
        """Helper to parse standard EXIF date strings from exifread."""
        for tag in config.DATE_TAGS:
            if tag in tags:
                try:
                    # EXIF format is usually "YYYY:MM:DD HH:MM:SS"
                    dt_str = str(tags[tag]).strip().replace(':', '-', 2)
                    return datetime.strptime(dt_str, "%Y-%m-%d %H:%M:%S")
                except ValueError:
                    continue
        return None

    def _gps_to_degrees(self, value, ref) -> Optional[float]:
        """Converts an exifread (deg, min, sec) ratio triple to signed degrees."""
        if value is None:
            return None
        try:
            parts = [self._ratio_to_float(r) for r in value.values[:3]]
            if len(parts) < 3:
                return None
            deg = parts[0] + parts[1] / 60.0 + parts[2] / 3600.0
        except (AttributeError, TypeError, ValueError, ZeroDivisionError) as e:
            logging.debug(f"Malformed GPS value {value!r}: {e}")
            return None
        if ref is not None and str(ref).strip().upper() in ('S', 'W'):
            deg = -deg
        return deg

    def _ratio_to_float(self, r) -> float:
        num = getattr(r, 'num', None)
        den = getattr(r, 'den', None)
        if num is None or den is None:
            return float(r)
        return float(num) / float(den)

    def _pillow_gps(self, path: Path):
        try:
            with Image.open(path) as img:
                gps = img.getexif().get_ifd(GPS_IFD)
        except Exception as e:
            logging.debug(f"Pillow GPS read failed for {path}: {e}")
            return None, None
        if not gps:
            return None, None

        def _to_deg(values, ref):
            if not values or len(values) < 3:
                return None
            try:
                deg = float(values[0]) + float(values[1]) / 60 + float(values[2]) / 3600
            except (TypeError, ValueError, ZeroDivisionError):
                return None
            if ref in ('S', 'W'):
                deg *= -1
            return deg

        return _to_deg(gps.get(2), gps.get(1)), _to_deg(gps.get(4), gps.get(3))

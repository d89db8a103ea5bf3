"""
Media Metadata Module

File-type detection, integrity checks and device metadata extraction for
local media. Image metadata (dimensions, EXIF orientation, capture time,
GPS position) is read with Pillow, video metadata with the ffmpeg tools through
ffmpeg-python; everything else comes from the filesystem.
"""

import os
import re
from datetime import datetime, timezone
from typing import Optional, Tuple, Dict, Any

import ffmpeg
from PIL import Image, UnidentifiedImageError

from data.models import DeviceMetadata, MediaItem
from utils.helpers import path_from_uri, parse_iso_datetime
from utils.logger import get_logger

logger = get_logger(__name__)

IMAGE_MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "webp": "image/webp",
    "heic": "image/heic",
    "heif": "image/heif",
    "tiff": "image/tiff",
    "tif": "image/tiff",
}

VIDEO_MIME_TYPES = {
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "mkv": "video/x-matroska",
    "webm": "video/webm",
    "m4v": "video/x-m4v",
    "3gp": "video/3gpp",
    "flv": "video/x-flv",
    "wmv": "video/x-ms-wmv",
    "mpg": "video/mpeg",
    "mpeg": "video/mpeg",
}

UNKNOWN_MIME_TYPE = "application/octet-stream"
HEADER_BYTES = 16

ISO_BMFF_VIDEO_TYPES = ("video/mp4", "video/quicktime", "video/x-m4v", "video/3gpp")
EBML_MAGIC = b"\x1a\x45\xdf\xa3"

# EXIF tags
EXIF_ORIENTATION = 0x0112
EXIF_DATETIME = 0x0132
EXIF_IFD = 0x8769
EXIF_DATETIME_ORIGINAL = 0x9003
GPS_IFD = 0x8825
GPS_LATITUDE_REF = 1
GPS_LATITUDE = 2
GPS_LONGITUDE_REF = 3
GPS_LONGITUDE = 4

# Stream rotation (degrees clockwise) to EXIF orientation
ROTATION_TO_ORIENTATION = {0: 1, 90: 6, 180: 3, 270: 8}
ISO6709_PATTERN = re.compile(r'([+-]\d+(?:\.\d+)?)([+-]\d+(?:\.\d+)?)')


def mime_type_for_path(path: str) -> str:
    """Get the MIME type for a file from its extension."""
    extension = os.path.splitext(path)[1].lower().lstrip(".")
    if extension in IMAGE_MIME_TYPES:
        return IMAGE_MIME_TYPES[extension]
    if extension in VIDEO_MIME_TYPES:
        return VIDEO_MIME_TYPES[extension]
    return UNKNOWN_MIME_TYPE


def is_supported_mime_type(mime_type: str) -> bool:
    return mime_type in IMAGE_MIME_TYPES.values() or mime_type in VIDEO_MIME_TYPES.values()


def has_valid_image_header(header: bytes, mime_type: str) -> bool:
    """
    Check an image's leading bytes against the signature for its MIME type.

    HEIC/HEIF have no cheap signature check and are accepted as long as
    enough bytes were read.
    """
    if len(header) < 8:
        return False

    if mime_type == "image/jpeg":
        return header[:3] == b"\xff\xd8\xff"
    if mime_type == "image/png":
        return header[:8] == b"\x89PNG\r\n\x1a\n"
    if mime_type == "image/gif":
        return header[:6] in (b"GIF87a", b"GIF89a")
    if mime_type == "image/bmp":
        return header[:2] == b"BM"
    if mime_type == "image/webp":
        return len(header) >= 12 and header[:4] == b"RIFF" and header[8:12] == b"WEBP"
    if mime_type == "image/tiff":
        return header[:4] in (b"II*\x00", b"MM\x00*")
    return True


def has_valid_video_header(header: bytes, mime_type: str) -> bool:
    """
    Check a video's leading bytes against its container signature.

    MP4, MOV, M4V and 3GP carry an ftyp box at offset 4. WebM and MKV start
    with the EBML magic. AVI is a RIFF file tagged "AVI ". Containers without
    a known signature are accepted as long as enough bytes were read.
    """
    if len(header) < 8:
        return False

    if mime_type in ISO_BMFF_VIDEO_TYPES:
        return header[4:8] == b"ftyp"
    if mime_type in ("video/webm", "video/x-matroska"):
        return header[:4] == EBML_MAGIC
    if mime_type == "video/x-msvideo":
        return len(header) >= 12 and header[:4] == b"RIFF" and header[8:12] == b"AVI "
    return True


def check_file_integrity(path: str) -> bool:
    """
    Check a local media file against the live filesystem.

    The file must exist, be readable and non-empty, have a supported type,
    and start with the signature of its image or video format.

    Args:
        path: Local filesystem path.

    Returns:
        bool: True if the file is usable as post media.
    """
    try:
        if not os.path.isfile(path):
            logger.debug(f"Media file does not exist: {path}")
            return False
        if os.path.getsize(path) == 0:
            logger.debug(f"Media file is empty: {path}")
            return False

        mime_type = mime_type_for_path(path)
        if not is_supported_mime_type(mime_type):
            logger.debug(f"Unsupported media type {mime_type} for {path}")
            return False

        with open(path, "rb") as f:
            header = f.read(HEADER_BYTES)
        if mime_type.startswith("image/") and not has_valid_image_header(header, mime_type):
            logger.debug(f"Invalid image header: {path}")
            return False
        if mime_type.startswith("video/") and not has_valid_video_header(header, mime_type):
            logger.debug(f"Invalid video header: {path}")
            return False

        return True
    except OSError as e:
        logger.debug(f"Media file is not accessible: {path} - {e}")
        return False


def _parse_exif_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(str(value).strip("\x00 "), "%Y:%m:%d %H:%M:%S")
    except ValueError:
        return None


def _gps_to_degrees(value, ref) -> Optional[float]:
    try:
        degrees, minutes, seconds = (float(v) for v in value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    result = degrees + minutes / 60.0 + seconds / 3600.0
    if str(ref).upper().startswith(("S", "W")):
        result = -result
    return round(result, 6)


def _exif_capture_time(exif) -> Optional[datetime]:
    return _parse_exif_datetime(exif.get_ifd(EXIF_IFD).get(EXIF_DATETIME_ORIGINAL)) \
        or _parse_exif_datetime(exif.get(EXIF_DATETIME))


def read_capture_time(path: str, mime_type: Optional[str] = None) -> Optional[datetime]:
    """
    Get the EXIF capture time of an image, in UTC.

    Returns:
        Optional[datetime]: None for non-images and images without a readable
        capture time.
    """
    mime_type = mime_type or mime_type_for_path(path)
    if not mime_type.startswith("image/"):
        return None
    try:
        with Image.open(path) as img:
            taken_at = _exif_capture_time(img.getexif())
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.debug(f"Could not read capture time for {path}: {e}")
        return None
    # EXIF times carry no zone; treat them as local time
    return taken_at.astimezone(timezone.utc) if taken_at else None


def _read_image_details(path: str) -> Tuple[int, int, int, Optional[datetime], Optional[float], Optional[float]]:
    """Return (width, height, orientation, taken_at, latitude, longitude) for an image."""
    with Image.open(path) as img:
        width, height = img.size
        exif = img.getexif()

        orientation = int(exif.get(EXIF_ORIENTATION) or 1)
        taken_at = _exif_capture_time(exif)

        latitude = longitude = None
        gps = exif.get_ifd(GPS_IFD)
        if gps:
            if GPS_LATITUDE in gps:
                latitude = _gps_to_degrees(gps[GPS_LATITUDE], gps.get(GPS_LATITUDE_REF, "N"))
            if GPS_LONGITUDE in gps:
                longitude = _gps_to_degrees(gps[GPS_LONGITUDE], gps.get(GPS_LONGITUDE_REF, "E"))

    return width, height, orientation, taken_at, latitude, longitude


def _stream_rotation(stream: Dict[str, Any]) -> int:
    rotate = (stream.get("tags") or {}).get("rotate")
    if rotate is not None:
        return int(float(rotate)) % 360
    for side_data in stream.get("side_data_list") or []:
        if "rotation" in side_data:
            # Display matrix rotation is counter-clockwise
            return -int(float(side_data["rotation"])) % 360
    return 0


def _parse_tag_time(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        moment = parse_iso_datetime(str(value))
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _read_video_details(path: str) -> Dict[str, Any]:
    """
    Read dimensions, duration, rotation, capture time and position with ffmpeg.

    Raises:
        ffmpeg.Error: If ffmpeg cannot read the file.
        OSError: If ffmpeg is not installed.
    """
    info = ffmpeg.probe(path)
    container = info.get("format") or {}
    container_tags = container.get("tags") or {}
    stream = next((s for s in info.get("streams") or [] if s.get("codec_type") == "video"), {})

    duration = container.get("duration") or stream.get("duration")
    details: Dict[str, Any] = {
        "width": int(stream.get("width") or 0),
        "height": int(stream.get("height") or 0),
        "duration_seconds": float(duration) if duration else None,
        "orientation": ROTATION_TO_ORIENTATION.get(_stream_rotation(stream), 1),
        "taken_at": _parse_tag_time(container_tags.get("creation_time")
                                      or (stream.get("tags") or {}).get("creation_time")),
        "latitude": None,
        "longitude": None,
    }

    location = container_tags.get("location") or container_tags.get("com.apple.quicktime.location.ISO6709")
    match = ISO6709_PATTERN.match(location or "")
    if match:
        details["latitude"] = round(float(match.group(1)), 6)
        details["longitude"] = round(float(match.group(2)), 6)
    return details


def read_device_metadata(path: str, mime_type: Optional[str] = None) -> DeviceMetadata:
    """
    Build DeviceMetadata for a local file.

    Args:
        path: Local filesystem path.
        mime_type: Known MIME type (derived from the extension if omitted).

    Returns:
        DeviceMetadata: Size and modification time always; dimensions,
        orientation, capture time and position for readable images and
        videos ffmpeg can read, plus duration for videos.

    Raises:
        OSError: If the file cannot be stat'ed.
    """
    stat = os.stat(path)
    metadata = DeviceMetadata(
        file_size_bytes=stat.st_size,
        creation_time=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
    )

    mime_type = mime_type or mime_type_for_path(path)
    if mime_type.startswith("image/"):
        try:
            width, height, orientation, taken_at, latitude, longitude = _read_image_details(path)
            metadata.width = width
            metadata.height = height
            metadata.orientation = orientation
            metadata.latitude = latitude
            metadata.longitude = longitude
            if taken_at:
                # EXIF times carry no zone; treat them as local time
                metadata.creation_time = taken_at.astimezone(timezone.utc)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.debug(f"Could not read image metadata for {path}: {e}")
    elif mime_type.startswith("video/"):
        try:
            details = _read_video_details(path)
        except ffmpeg.Error as e:
            stderr = e.stderr.decode("utf-8", "replace").strip() if e.stderr else e
            logger.debug(f"ffmpeg could not read video {path}: {stderr}")
        except (OSError, ValueError) as e:
            logger.debug(f"Could not read video metadata for {path}: {e}")
        else:
            metadata.width = details["width"]
            metadata.height = details["height"]
            metadata.duration_seconds = details["duration_seconds"]
            metadata.orientation = details["orientation"]
            metadata.latitude = details["latitude"]
            metadata.longitude = details["longitude"]
            if details["taken_at"]:
                metadata.creation_time = details["taken_at"].astimezone(timezone.utc)

    return metadata


def build_media_item(file_uri: str) -> MediaItem:
    """
    Create a MediaItem for a local file reference.

    Args:
        file_uri: A file:// URI or plain path.

    Returns:
        MediaItem: With MIME type and device metadata filled in.

    Raises:
        OSError: If the file cannot be read.
    """
    path = path_from_uri(file_uri)
    mime_type = mime_type_for_path(path)
    return MediaItem(
        file_uri=file_uri,
        mime_type=mime_type,
        device_metadata=read_device_metadata(path, mime_type),
    )

"""
Image extraction from heterogeneous request bodies.

Accepts whatever the route handed over (form mapping, JSON object, raw
string, bytes or an upload object) and produces either an
``ExtractedImage`` carrying a ``data:`` URL or an ``ImageAbsence`` with a
human-readable reason. Never raises.
"""

import base64
import binascii
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

IMAGE_FIELDS = ("file", "image", "base64Image")
DATA_URL_PREFIX = "data:image/"
DEFAULT_MIME_TYPE = "image/jpeg"

NO_IMAGE_REASON = "No image uploaded"
CONVERSION_REASON = "Image could not be converted to base64"


class SourceKind(str, Enum):
    """Shape of the body the image was found in."""

    MULTIPART = "multipart"
    JSON_OBJECT = "json_object"
    RAW_STRING = "raw_string"
    BINARY = "binary"


@dataclass(frozen=True)
class ExtractedImage:
    """A usable image as a data URL plus its decoded bytes."""

    data_url: str
    payload: bytes
    mime_type: str
    source_kind: SourceKind
    field: str | None = None


@dataclass(frozen=True)
class ImageAbsence:
    """No usable image; ``reason`` is safe to show to the user."""

    reason: str


@dataclass(frozen=True)
class BufferedUpload:
    """A form upload whose bytes were already read by the route."""

    filename: str | None
    content_type: str | None
    data: bytes


def sniff_mime_type(data: bytes) -> str:
    """Detect the image MIME type from magic bytes (defaults to JPEG)."""
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return DEFAULT_MIME_TYPE


def to_data_url(data: bytes, mime_type: str | None = None) -> str:
    """Encode bytes as a base64 ``data:`` URL."""
    mime = mime_type or sniff_mime_type(data)
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def classify_source(body: Any) -> SourceKind | None:
    """Resolve the body's shape once, by capability rather than by type name."""
    if isinstance(body, Mapping):
        if any(_is_upload(v) for v in body.values()):
            return SourceKind.MULTIPART
        return SourceKind.JSON_OBJECT
    if isinstance(body, str):
        return SourceKind.RAW_STRING
    if isinstance(body, (bytes, bytearray, memoryview)) or _is_readable(body):
        return SourceKind.BINARY
    return None


def _is_upload(value: Any) -> bool:
    if isinstance(value, BufferedUpload):
        return True
    return hasattr(value, "file") and hasattr(value, "filename")


def _is_readable(value: Any) -> bool:
    return callable(getattr(value, "read", None))


def _read_bytes(value: Any) -> bytes | None:
    """Read bytes from bytes-likes, uploads or file-like objects."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, BufferedUpload):
        return value.data

    stream = value.file if _is_upload(value) else value
    if not _is_readable(stream):
        return None

    data = stream.read()
    if callable(getattr(stream, "seek", None)):
        stream.seek(0)
    if isinstance(data, str):
        data = data.encode("latin-1")
    return bytes(data) if data is not None else None


def _decode_base64(text: str) -> bytes | None:
    cleaned = "".join(text.split())
    if not cleaned:
        return None
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError):
        return None


def _decode_data_url(data_url: str) -> tuple[bytes, str] | None:
    header, sep, encoded = data_url.partition(",")
    if not sep or ";base64" not in header:
        return None
    payload = _decode_base64(encoded)
    if payload is None:
        return None
    mime = header[len("data:"):].split(";", 1)[0] or DEFAULT_MIME_TYPE
    return payload, mime


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (bytes, bytearray, list, tuple, dict)):
        return len(value) == 0
    if isinstance(value, BufferedUpload):
        return not value.data
    if _is_upload(value):
        return not getattr(value, "filename", None) and getattr(value, "size", None) == 0
    return False


class ImageExtractor:
    """Locates and normalizes the meal image in a request body."""

    def __init__(self, max_image_bytes: int = 10 * 1024 * 1024):
        self.max_image_bytes = max_image_bytes

    def extract(
        self, body: Any, request_id: str = "-"
    ) -> ExtractedImage | ImageAbsence:
        """
        Extract an image from any body shape.

        Args:
            body: Form mapping, JSON object, raw string, bytes or upload
            request_id: Request id used to tag log lines

        Returns:
            ExtractedImage on success, ImageAbsence otherwise
        """
        kind = classify_source(body)
        if kind is None:
            logger.info(f"[{request_id}] No image: unsupported body type {type(body).__name__}")
            return ImageAbsence(NO_IMAGE_REASON)

        field = None
        candidate = body
        if kind in (SourceKind.MULTIPART, SourceKind.JSON_OBJECT):
            for name in IMAGE_FIELDS:
                if not _is_empty(body.get(name)):
                    field, candidate = name, body[name]
                    break
            else:
                logger.info(f"[{request_id}] No image field in {kind.value} body")
                return ImageAbsence(NO_IMAGE_REASON)

        try:
            result = self._coerce(candidate, kind, field)
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"[{request_id}] Image conversion failed: {e}")
            return ImageAbsence(CONVERSION_REASON)

        if isinstance(result, ImageAbsence):
            logger.info(f"[{request_id}] Image absent: {result.reason}")
            return result

        if len(result.payload) > self.max_image_bytes:
            limit_mb = self.max_image_bytes // (1024 * 1024)
            logger.warning(
                f"[{request_id}] Image of {len(result.payload)} bytes exceeds {limit_mb} MB"
            )
            return ImageAbsence(f"Image exceeds maximum size of {limit_mb} MB")

        logger.info(
            f"[{request_id}] Extracted {result.mime_type} image "
            f"({len(result.payload)} bytes) from {kind.value}"
            + (f" field '{field}'" if field else "")
        )
        return result

    def _coerce(
        self, value: Any, kind: SourceKind, field: str | None
    ) -> ExtractedImage | ImageAbsence:
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return ImageAbsence(NO_IMAGE_REASON)
            if text.startswith(DATA_URL_PREFIX):
                decoded = _decode_data_url(text)
                if decoded is None:
                    return ImageAbsence(CONVERSION_REASON)
                payload, mime = decoded
                # data URLs pass through unchanged
                return ExtractedImage(text, payload, mime, kind, field)
            payload = _decode_base64(text)
            if not payload:
                return ImageAbsence(CONVERSION_REASON)
            mime = sniff_mime_type(payload)
            return ExtractedImage(to_data_url(payload, mime), payload, mime, kind, field)

        payload = _read_bytes(value)
        if not payload:
            return ImageAbsence(NO_IMAGE_REASON)

        mime = sniff_mime_type(payload)
        return ExtractedImage(to_data_url(payload, mime), payload, mime, kind, field)


def parse_string_list(value: Any) -> list[str]:
    """
    Parse a list of strings from form or JSON input.

    Accepts lists (repeated form fields), JSON array strings, JSON strings
    and comma-separated strings. Blank items are dropped.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        items: list[str] = []
        for item in value:
            items.extend(parse_string_list(item))
        return items
    if not isinstance(value, str):
        return [str(value)]

    text = value.strip()
    if not text:
        return []
    if text[0] in "[\"":
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            return [str(item).strip() for item in parsed if str(item).strip()]
        if isinstance(parsed, str):
            text = parsed
    return [part.strip() for part in text.split(",") if part.strip()]

from __future__ import annotations

import base64
import binascii
import math
import re
import struct
from dataclasses import dataclass
from io import BytesIO

from PIL import Image, ImageOps

from src.domain.errors import InvalidImageError

_DATA_URL_RE = re.compile(r"^data:(image/[\w.+-]+);base64,(.*)$", re.DOTALL)

# Images above this size are accepted but flagged for compression
RECOMMENDED_MAX_KB = 45

_SOI = b"\xff\xd8"
_APP1 = 0xFFE1


@dataclass
class ImageValidation:
    valid: bool
    error: str | None = None
    size_kb: int | None = None


class ImageService:
    """Image helpers for the meal upload pipeline (Pillow based)."""

    @staticmethod
    def parse_data_url(data_url: str) -> tuple[str, bytes]:
        match = _DATA_URL_RE.match(data_url or "")
        if not match:
            raise InvalidImageError("Invalid image data URL")
        mime, payload = match.group(1), match.group(2)
        try:
            return mime, base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidImageError(f"Invalid base64 image data: {exc}") from exc

    @staticmethod
    def validate_image_data_url(data_url: str) -> ImageValidation:
        if not data_url:
            return ImageValidation(valid=False, error="No image data provided")
        match = _DATA_URL_RE.match(data_url)
        if not match:
            return ImageValidation(valid=False, error="Invalid image format")
        size_kb = math.ceil(len(match.group(2)) * 0.75 / 1024)
        if size_kb > RECOMMENDED_MAX_KB:
            return ImageValidation(
                valid=True,
                error=f"Image is {size_kb}KB, compression recommended",
                size_kb=size_kb,
            )
        return ImageValidation(valid=True, size_kb=size_kb)

    # Walks JPEG marker segments and drops APP1 (EXIF). Everything from the
    # first non-marker byte onwards is entropy-coded data and is copied as is.
    @staticmethod
    def strip_exif(data: bytes) -> bytes:
        if len(data) < 4 or not data.startswith(_SOI):
            return data
        pieces: list[bytes] = []
        offset = 2
        while offset < len(data):
            if offset + 4 > len(data):
                pieces.append(data[offset:])
                break
            (marker,) = struct.unpack(">H", data[offset : offset + 2])
            if marker == _APP1:
                (length,) = struct.unpack(">H", data[offset + 2 : offset + 4])
                offset += 2 + length
            elif marker & 0xFF00 == 0xFF00:
                (length,) = struct.unpack(">H", data[offset + 2 : offset + 4])
                pieces.append(data[offset : offset + 2 + length])
                offset += 2 + length
            else:
                pieces.append(data[offset:])
                break
        return _SOI + b"".join(pieces)

    @staticmethod
    def compress_image(
        data: bytes,
        max_width: int,
        max_height: int,
        quality: int = 85,
        fmt: str = "WEBP",
    ) -> bytes:
        """Downscale to fit within max_width x max_height and re-encode.

        Aspect ratio is preserved and images are never upscaled.
        """
        try:
            img = Image.open(BytesIO(data))
            img = ImageOps.exif_transpose(img)
        except Exception as exc:
            raise InvalidImageError(f"Invalid image file: {exc}") from exc
        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGB")
        if fmt.upper() == "JPEG" and img.mode == "RGBA":
            img = img.convert("RGB")
        img.thumbnail((max_width, max_height), Image.Resampling.LANCZOS)
        buf = BytesIO()
        img.save(buf, format=fmt.upper(), quality=quality)
        return buf.getvalue()

    @staticmethod
    def image_dimensions(data: bytes) -> tuple[int, int]:
        try:
            with Image.open(BytesIO(data)) as img:
                return img.width, img.height
        except Exception:
            return 0, 0

    @staticmethod
    def sanitize_filename(filename: str) -> str:
        cleaned = re.sub(r"[^a-zA-Z0-9._-]", "_", filename)
        cleaned = re.sub(r"_{2,}", "_", cleaned)
        return cleaned[:100]

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from supabase import Client

from src.domain.errors import InvalidImageError
from src.domain.services.image_service import ImageService
from src.domain.services.tier_policy import STORAGE_CONFIG

logger = logging.getLogger(__name__)

BUCKETS = STORAGE_CONFIG["buckets"]
LIMITS = STORAGE_CONFIG["limits"]

FULL_QUALITY = 85
THUMBNAIL_QUALITY = 70
AVATAR_SIZE = (400, 400)


@dataclass
class StorageResult:
    path: str
    url: str
    thumbnail_url: str | None
    width: int
    height: int
    size: int


def thumbnail_path_for(path: str) -> str:
    """`u/meal_1.webp` -> `u/meal_1_thumb.webp`."""
    p = PurePosixPath(path)
    return str(p.with_name(f"{p.stem}_thumb.webp"))


class SupabaseStorage:
    """Storage adapter for Supabase Storage with a local fake fallback."""

    def __init__(self, client: Client | None) -> None:
        self.client = client
        self.disabled = os.getenv("SUPABASE_DISABLED", "0") == "1"
        self.base_url = (os.getenv("SUPABASE_URL") or "").rstrip("/")
        self.local_dir = Path(os.getenv("SUPABASE_STORAGE_LOCAL_DIR", ".local_storage"))
        if self.local:
            self.local_dir.mkdir(parents=True, exist_ok=True)

    @property
    def local(self) -> bool:
        return self.disabled or self.client is None

    def _put(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        if self.local:
            full_path = self.local_dir / bucket / path
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_bytes(data)
            return
        try:  # pragma: no cover - network
            self.client.storage.from_(bucket).upload(
                path=path,
                file=data,
                file_options={"content-type": content_type, "cache-control": "3600", "upsert": "true"},
            )
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"Storage upload failed: {exc}") from exc

    def _remove(self, bucket: str, path: str) -> None:
        if self.local:
            full_path = self.local_dir / bucket / path
            if full_path.exists():
                full_path.unlink()
            return
        try:  # pragma: no cover - network
            self.client.storage.from_(bucket).remove([path])
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"Storage delete failed: {exc}") from exc

    def exists(self, bucket: str, path: str) -> bool:
        if self.local:
            return (self.local_dir / bucket / path).exists()
        return True  # pragma: no cover - remote objects are not checked

    def public_url(self, bucket: str, path: str) -> str:
        if self.local:
            return f"/local-storage/{bucket}/{path}"
        return self.client.storage.from_(bucket).get_public_url(path)  # pragma: no cover

    def signed_url(self, bucket: str, path: str, expires_in: int = 3600) -> str:
        if self.local:
            return f"/local-storage/{bucket}/{path}?expires_in={expires_in}"
        try:  # pragma: no cover - network
            res = self.client.storage.from_(bucket).create_signed_url(path, expires_in)
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"Signed URL creation failed: {exc}") from exc
        return res.get("signedURL") or res.get("signedUrl")  # pragma: no cover

    def progressive_urls(self, path: str, bucket: str = BUCKETS["meals"]) -> dict[str, object]:
        """Sized variants served by the Supabase image transformation endpoint."""
        if self.local:
            # no transformation locally, every variant is the stored file
            url = self.public_url(bucket, path)
            sizes = ("placeholder", "thumbnail", "medium", "full")
            return {**{s: url for s in sizes}, "webp": {s: url for s in sizes[1:]}}
        base = f"{self.base_url}/storage/v1/render/image/public/{bucket}/{path}"
        return {
            "placeholder": f"{base}?width=50&quality=10&blur=20",
            "thumbnail": f"{base}?width=150&quality=60",
            "medium": f"{base}?width=600&quality=75",
            "full": f"{base}?width=1200&quality=85",
            "webp": {
                "thumbnail": f"{base}?width=150&quality=60&format=webp",
                "medium": f"{base}?width=600&quality=75&format=webp",
                "full": f"{base}?width=1200&quality=85&format=webp",
            },
        }

    @staticmethod
    def _validate(data: bytes, mime: str) -> None:
        if mime not in LIMITS["allowed_types"]:
            raise InvalidImageError("Invalid file type. Only JPEG, PNG, and WebP are allowed.")
        if len(data) > LIMITS["max_file_size"]:
            raise InvalidImageError("File size exceeds 10MB limit.")

    def upload_meal_image(self, user_id: str, data: bytes, mime: str) -> StorageResult:
        """Strip EXIF, resize to the full size, store, then add a thumbnail.

        A failed thumbnail upload is logged and leaves `thumbnail_url` empty.
        """
        self._validate(data, mime)
        if mime == "image/jpeg":
            data = ImageService.strip_exif(data)
        full = ImageService.compress_image(data, *LIMITS["dimensions"]["full"], quality=FULL_QUALITY)
        width, height = ImageService.image_dimensions(full)
        path = f"{user_id}/meal_{int(time.time() * 1000)}.webp"
        self._put(BUCKETS["meals"], path, full, "image/webp")

        thumbnail_url = None
        thumb_path = thumbnail_path_for(path)
        try:
            thumb = ImageService.compress_image(
                data, *LIMITS["dimensions"]["thumbnail"], quality=THUMBNAIL_QUALITY
            )
            self._put(BUCKETS["thumbnails"], thumb_path, thumb, "image/webp")
            thumbnail_url = self.public_url(BUCKETS["thumbnails"], thumb_path)
        except (RuntimeError, InvalidImageError) as exc:
            logger.warning("Thumbnail upload for %s failed: %s", path, exc)

        return StorageResult(
            path=path,
            url=self.public_url(BUCKETS["meals"], path),
            thumbnail_url=thumbnail_url,
            width=width,
            height=height,
            size=len(full),
        )

    def upload_avatar(self, user_id: str, data: bytes, mime: str) -> StorageResult:
        self._validate(data, mime)
        if mime == "image/jpeg":
            data = ImageService.strip_exif(data)
        avatar = ImageService.compress_image(data, *AVATAR_SIZE, quality=FULL_QUALITY)
        width, height = ImageService.image_dimensions(avatar)
        path = f"{user_id}/avatar_{int(time.time() * 1000)}.webp"
        self._put(BUCKETS["avatars"], path, avatar, "image/webp")
        return StorageResult(
            path=path,
            url=self.public_url(BUCKETS["avatars"], path),
            thumbnail_url=None,
            width=width,
            height=height,
            size=len(avatar),
        )

    def delete_avatars(self, user_id: str) -> int:
        """Remove every avatar stored under the user's folder; returns how many."""
        bucket = BUCKETS["avatars"]
        if self.local:
            files = [p for p in (self.local_dir / bucket / user_id).glob("*") if p.is_file()]
            for p in files:
                p.unlink()
            return len(files)
        try:  # pragma: no cover - network
            listed = self.client.storage.from_(bucket).list(user_id)
            paths = [f"{user_id}/{item['name']}" for item in listed or []]
            if paths:
                self.client.storage.from_(bucket).remove(paths)
        except Exception as exc:  # pragma: no cover - network
            raise RuntimeError(f"Storage avatar delete failed: {exc}") from exc
        return len(paths)  # pragma: no cover

    def delete_meal_image(self, path: str) -> None:
        """Remove the image and its thumbnail."""
        self._remove(BUCKETS["meals"], path)
        try:
            self._remove(BUCKETS["thumbnails"], thumbnail_path_for(path))
        except RuntimeError as exc:
            logger.warning("Thumbnail delete for %s failed: %s", path, exc)

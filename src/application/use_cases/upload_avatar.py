from __future__ import annotations

from dataclasses import dataclass

from src.domain.entities.profile import ProfileEntity
from src.infrastructure.database.repositories.profile_repository import ProfileRepository
from src.infrastructure.storage.supabase_storage import SupabaseStorage


@dataclass
class UploadAvatarUseCase:
    storage: SupabaseStorage
    profiles: ProfileRepository

    def execute(self, user_id: str, data: bytes, mime_type: str) -> ProfileEntity:
        """
        Store a new avatar and point the profile at it.

        The image is resized to 400x400 WEBP; the previous avatar is left in the bucket.
        """
        stored = self.storage.upload_avatar(user_id, data, mime_type)
        return self.profiles.update(user_id, avatar_url=stored.url)

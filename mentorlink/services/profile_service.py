"""
Profile Service

Read and partial update of the caller's own profile row. The role
column is not writable here; it only feeds role resolution.
"""
import logging
from typing import Any, Dict, Optional

from mentorlink.errors import wrap_store_failure
from mentorlink.orm import Profile
from mentorlink.repositories.base import RepositoryError, SessionRepository

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("name", "headline", "bio", "avatar_url")


class ProfileService:
    def __init__(self, repository: SessionRepository):
        self.repository = repository

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        try:
            return await self.repository.get_profile(user_id)
        except RepositoryError as e:
            raise wrap_store_failure(e, "Unable to load profile")

    async def update_profile(self, user_id: str, changes: Dict[str, Any]) -> Profile:
        patch = {key: changes[key] for key in PROFILE_FIELDS if key in changes}
        try:
            profile = await self.repository.upsert_profile(user_id, patch)
        except RepositoryError as e:
            raise wrap_store_failure(e, "Unable to update profile")
        logger.info(f"Profile updated for {user_id}: {sorted(patch)}")
        return profile

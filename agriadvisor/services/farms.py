"""
Farm profile storage.

Profiles live under ``farm:profile:{farmId}``. When a profile names its
owner, the owner is indexed under the farm and under each grown crop so
farm- and crop-scoped alerts can find their recipients.
"""

import uuid
from typing import Optional

from agriadvisor.core.exceptions import NotFoundError
from agriadvisor.schemas.farm import FarmProfile
from agriadvisor.utils.kv_store import KV_KEYS, KeyValueStore, append_unique
from agriadvisor.utils.logging_config import get_logger

logger = get_logger(__name__)


class FarmService:
    def __init__(self, store: KeyValueStore):
        self.store = store

    def save_profile(self, profile: FarmProfile) -> str:
        """Store a profile and return its farm id."""
        farm_id = profile.id or f"farm_{uuid.uuid4().hex[:12]}"
        profile.id = farm_id
        self.store.set(KV_KEYS["farm_profile"](farm_id), profile.to_store())

        if profile.user_id:
            self.store.update(KV_KEYS["farm_users"](farm_id), append_unique(profile.user_id))
            for crop in profile.crops:
                self.store.update(KV_KEYS["crop_users"](crop.lower()), append_unique(profile.user_id))

        logger.info(f"Saved farm profile {farm_id}")
        return farm_id

    def get_profile(self, farm_id: str) -> FarmProfile:
        stored = self.store.get(KV_KEYS["farm_profile"](farm_id))
        if not stored:
            raise NotFoundError(f"Farm profile '{farm_id}' not found")
        return FarmProfile.model_validate(stored)

    def find_profile(self, farm_id: str) -> Optional[FarmProfile]:
        try:
            return self.get_profile(farm_id)
        except NotFoundError:
            return None

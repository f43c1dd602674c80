"""
Profile repository: cached reads and transactional writes of profile aggregates.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Union

from biocard.cache import CacheLayer, profile_cache_key
from biocard.db import PROFILE_SCALAR_FIELDS, AccountRecord, DbClient
from biocard.mapper import to_profile_view, to_record_changes
from biocard.schemas import ExportBundle, ProfilePatch, ProfileView, UserExport

logger = logging.getLogger(__name__)


class ProfileRepository:
    def __init__(self, db: DbClient, cache: CacheLayer):
        self.db = db
        self.cache = cache

    def get_profile(
        self, username: str, language: Optional[str] = None
    ) -> Optional[ProfileView]:
        """Return the public profile, or ``None`` when it does not exist."""
        return self.cache.get_or_set(
            profile_cache_key(username, language),
            lambda: self._load(username, language),
            value_type=Optional[ProfileView],
        )

    def _load(self, username: str, language: Optional[str]) -> Optional[ProfileView]:
        profile = self.db.get_profile(username, language)
        if profile is None:
            return None
        return to_profile_view(profile)

    def update_profile(
        self, username: str, data: ProfileView, language: Optional[str] = None
    ) -> bool:
        """Replace every scalar field and all six collections."""
        return self._write(username, data, language)

    def patch_profile(
        self, username: str, patch: ProfilePatch, language: Optional[str] = None
    ) -> bool:
        """Apply only the fields and collections present in ``patch``."""
        return self._write(username, patch, language)

    def _write(
        self,
        username: str,
        data: Union[ProfileView, ProfilePatch],
        language: Optional[str],
    ) -> bool:
        fields, collections = to_record_changes(data)
        try:
            updated = self.db.replace_profile(username, language, fields, collections)
        except Exception:
            logger.exception("Profile update failed for %s", username)
            raise

        if not updated:
            logger.warning("Profile not found for update: %s (%s)", username, language)
            return False

        self.cache.remove(profile_cache_key(username, language))
        logger.info("Profile updated: %s (%s)", username, language or "default")
        return True

    def create_language_variant(self, username: str, language: str) -> bool:
        """Create a profile for ``language`` seeded from the base profile's scalars."""
        if not language or not language.strip():
            return False
        base = self.db.get_profile(username)
        if base is None:
            return False

        fields = {name: getattr(base, name) for name in PROFILE_SCALAR_FIELDS}
        created = self.db.create_profile(base.account_id, base.username, language, **fields)
        if created is None:
            return False

        self.cache.remove(profile_cache_key(username, language))
        logger.info("Created %s profile variant for %s", created.language, username)
        return True

    def invalidate(self, username: str, languages: Iterable[Optional[str]] = (None,)) -> None:
        for language in languages:
            self.cache.remove(profile_cache_key(username, language))

    def get_export_data(
        self, account: AccountRecord, token: str
    ) -> Optional[ExportBundle]:
        profile = self.get_profile(account.username)
        if profile is None:
            return None
        return ExportBundle(
            user=UserExport(username=account.username, type=account.role.value, token=token),
            profile=profile,
        )

    def import_data(self, username: str, bundle: ExportBundle) -> bool:
        """Overwrite the base profile of ``username`` with an exported bundle."""
        if bundle.user.username.strip().lower() != username.strip().lower():
            logger.warning(
                "Rejected import for %s: bundle belongs to %s",
                username,
                bundle.user.username,
            )
            return False
        return self.update_profile(username, bundle.profile)

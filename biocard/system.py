"""
Site-wide branding settings (title and logo).
"""

from __future__ import annotations

import logging

from biocard.assets import asset_to_string, optional_asset
from biocard.cache import PUBLIC_SETTINGS_CACHE_KEY, CacheLayer
from biocard.db import DbClient
from biocard.schemas import SettingsResponse

logger = logging.getLogger(__name__)


class SystemSettingsService:
    def __init__(self, db: DbClient, cache: CacheLayer, default_title: str = "OpenBioCard"):
        self.db = db
        self.cache = cache
        self.default_title = default_title

    def get_public_settings(self) -> SettingsResponse:
        return self.cache.get_or_set(
            PUBLIC_SETTINGS_CACHE_KEY,
            self.get_settings_uncached,
            value_type=SettingsResponse,
        )

    def get_settings_uncached(self) -> SettingsResponse:
        record = self.db.get_system_settings()
        if record is None:
            return SettingsResponse(title=self.default_title)
        return SettingsResponse(title=record.title, logo=asset_to_string(record.logo))

    def update_settings(self, title: str, logo: str = "") -> SettingsResponse:
        """Save new settings. An empty ``logo`` removes the current one."""
        title = (title or "").strip()
        if not title:
            raise ValueError("Title cannot be empty")
        record = self.db.save_system_settings(title, optional_asset(logo))
        self.cache.remove(PUBLIC_SETTINGS_CACHE_KEY)
        logger.info("System settings updated")
        return SettingsResponse(title=record.title, logo=asset_to_string(record.logo))

"""
Startup reconciliation: make sure the root account and the settings row exist.

Safe to run on every start; each step only changes what is missing or out
of date.
"""

from __future__ import annotations

import logging
from typing import Optional

from biocard.assets import parse_asset
from biocard.config import Settings
from biocard.db import AccountRecord, AccountRole, DbClient, SystemSettingsRecord
from biocard.passwords import hash_password

logger = logging.getLogger(__name__)


def ensure_root_account(db: DbClient, settings: Settings) -> Optional[AccountRecord]:
    """
    Create the root account, or re-hash its password and restore its role.

    Does nothing when no root password is configured.
    """
    if not settings.root_password:
        logger.warning("No root password configured; skipping root account setup")
        return None

    username = settings.root_username.strip()
    password_hash, password_salt = hash_password(settings.root_password)
    account = db.get_account_by_username(username)

    if account is None:
        account = db.create_account(
            username,
            password_hash,
            password_salt,
            AccountRole.ROOT,
            default_avatar=parse_asset(settings.default_avatar),
        )
        logger.info("Root account created: %s", username)
        return account

    db.update_credentials(account.id, password_hash, password_salt, AccountRole.ROOT)
    if db.get_profile(username) is None:
        db.create_profile(account.id, username, avatar=parse_asset(settings.default_avatar))
        logger.info("Created missing profile for root account")
    logger.info("Root account synchronized: %s", username)
    return db.get_account(account.id)


def ensure_system_settings(db: DbClient, settings: Settings) -> SystemSettingsRecord:
    current = db.get_system_settings()
    if current is not None:
        return current
    logger.info("Creating default system settings")
    return db.save_system_settings(settings.default_site_title, None)


def initialize(db: DbClient, settings: Settings) -> None:
    ensure_root_account(db, settings)
    ensure_system_settings(db, settings)

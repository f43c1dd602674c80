"""
Session tokens: issuance, validation, expiry and the admin gate.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Callable, NamedTuple, Optional

from sqlalchemy.exc import SQLAlchemyError

from biocard.config import Settings
from biocard.db import AccountRecord, AccountRole, DbClient, TokenRecord
from biocard.passwords import verify_password

logger = logging.getLogger(__name__)

ROOT_DEVICE_LABEL = "Root Login"
BEARER_PREFIX = "Bearer "
TOKEN_BYTES = 32


class TokenValidation(NamedTuple):
    valid: bool
    account: Optional[AccountRecord] = None


INVALID = TokenValidation(False, None)


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    if not header or not header.startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX):].strip()
    return token or None


class SessionManager:
    """Issues and validates bearer tokens against the account store."""

    def __init__(
        self,
        db: DbClient,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.max_tokens = settings.token_max_per_account
        self.lifetime = settings.token_lifetime_days * 24 * 60 * 60
        self._clock = clock

    def create_token(self, account: AccountRecord) -> str:
        """
        Issue a new token for ``account``.

        When the account already holds the maximum number of live tokens the
        oldest one is evicted in the same store operation as the insert.
        """
        now = self._clock()
        token = TokenRecord(
            token_value=secrets.token_urlsafe(TOKEN_BYTES),
            account_id=account.id,
            created_at=now,
            expires_at=now + self.lifetime,
            last_used=now,
            device_info=ROOT_DEVICE_LABEL if account.role == AccountRole.ROOT else None,
        )
        evicted = self.db.issue_token(token, self.max_tokens)
        if evicted:
            logger.info("Evicted oldest token for account %s", account.id)
        return token.token_value

    def validate_token(self, token_value: Optional[str]) -> TokenValidation:
        if not token_value:
            return INVALID

        token = self.db.get_token(token_value)
        if token is None:
            return INVALID

        now = self._clock()
        if token.is_expired(now):
            self.db.delete_token(token_value)
            return INVALID

        account = self.db.get_account(token.account_id)
        if account is None:
            self.db.delete_token(token_value)
            return INVALID

        try:
            self.db.touch_token(token_value, now)
        except SQLAlchemyError:
            logger.warning(
                "Could not record token use for account %s", account.id, exc_info=True
            )
        return TokenValidation(True, account)

    def invalidate_all_tokens(self, account_id: str) -> int:
        return self.db.delete_tokens_for_account(account_id)

    def revoke_token(self, token_value: Optional[str]) -> bool:
        if not token_value:
            return False
        return self.db.delete_token(token_value)

    @staticmethod
    def has_admin_permission(account: Optional[AccountRecord]) -> bool:
        return account is not None and account.role in (AccountRole.ADMIN, AccountRole.ROOT)

    def authenticate(self, username: str, password: str) -> Optional[AccountRecord]:
        """Return the account for valid credentials, ``None`` for anything else."""
        if not username or not password:
            return None
        account = self.db.get_account_by_username(username)
        if account is None:
            return None
        if not verify_password(password, account.password_hash, account.password_salt):
            return None
        now = self._clock()
        self.db.touch_last_login(account.id, now)
        account.last_login = now
        return account

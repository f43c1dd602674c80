"""
Account lifecycle: signup, sign-in, self-deletion and admin user management.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import NamedTuple, Optional

from biocard.assets import parse_asset
from biocard.config import Settings
from biocard.db import AccountRecord, AccountRole, DbClient, UsernameExistsError
from biocard.passwords import hash_password
from biocard.profiles import ProfileRepository
from biocard.sessions import SessionManager

logger = logging.getLogger(__name__)


class AccountError(str, Enum):
    MISSING_FIELDS = "missing_fields"
    INVALID_ROLE = "invalid_role"
    ROOT_FORBIDDEN = "root_forbidden"
    USERNAME_EXISTS = "username_exists"
    NOT_FOUND = "not_found"
    SELF_DELETE = "self_delete"
    FORBIDDEN = "forbidden"


class AccountResult(NamedTuple):
    account: Optional[AccountRecord] = None
    token: Optional[str] = None
    error: Optional[AccountError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _failed(error: AccountError) -> AccountResult:
    return AccountResult(error=error)


class AccountService:
    def __init__(
        self,
        db: DbClient,
        sessions: SessionManager,
        profiles: ProfileRepository,
        settings: Settings,
    ):
        self.db = db
        self.sessions = sessions
        self.profiles = profiles
        self.default_avatar = settings.default_avatar

    def signup(self, username: str, password: str, role_name: str = "user") -> AccountResult:
        """Create an account with its base profile and return a fresh token."""
        result = self._create(username, password, role_name)
        if not result.ok:
            return result
        token = self.sessions.create_token(result.account)
        return result._replace(token=token)

    def _create(self, username: str, password: str, role_name: str) -> AccountResult:
        username = (username or "").strip()
        if not username or not password:
            return _failed(AccountError.MISSING_FIELDS)

        role = AccountRole.parse(role_name)
        if role is None:
            return _failed(AccountError.INVALID_ROLE)
        if role == AccountRole.ROOT:
            return _failed(AccountError.ROOT_FORBIDDEN)

        # Profile cache keys are case-insensitive, so usernames must be too.
        if self.db.get_account_by_username(username, ignore_case=True):
            return _failed(AccountError.USERNAME_EXISTS)

        password_hash, password_salt = hash_password(password)
        try:
            account = self.db.create_account(
                username,
                password_hash,
                password_salt,
                role,
                default_avatar=parse_asset(self.default_avatar),
            )
        except UsernameExistsError:
            return _failed(AccountError.USERNAME_EXISTS)

        self.profiles.invalidate(username)
        logger.info("Account created: %s (%s)", username, role.value)
        return AccountResult(account=account)

    def sign_in(self, username: str, password: str) -> Optional[str]:
        account = self.sessions.authenticate((username or "").strip(), password)
        if account is None:
            return None
        logger.info("Sign-in: %s", account.username)
        return self.sessions.create_token(account)

    def delete_account(self, account: AccountRecord) -> AccountResult:
        if account.role == AccountRole.ROOT:
            return _failed(AccountError.ROOT_FORBIDDEN)
        self._remove(account)
        return AccountResult(account=account)

    def _remove(self, account: AccountRecord) -> None:
        languages = self.db.list_profile_languages(account.id) or [None]
        self.sessions.invalidate_all_tokens(account.id)
        self.db.delete_account(account.id)
        self.profiles.invalidate(account.username, languages)
        logger.info("Account deleted: %s", account.username)

    def create_user(
        self,
        admin: AccountRecord,
        new_username: str,
        password: str,
        role_name: str = "user",
    ) -> AccountResult:
        if not self.sessions.has_admin_permission(admin):
            return _failed(AccountError.FORBIDDEN)
        result = self._create(new_username, password, role_name)
        if not result.ok:
            return result
        return result._replace(token=self.sessions.create_token(result.account))

    def delete_user(self, admin: AccountRecord, target_username: str) -> AccountResult:
        if not self.sessions.has_admin_permission(admin):
            return _failed(AccountError.FORBIDDEN)
        target = self.db.get_account_by_username(target_username)
        if target is None:
            return _failed(AccountError.NOT_FOUND)
        if target.id == admin.id:
            return _failed(AccountError.SELF_DELETE)
        if target.role == AccountRole.ROOT:
            return _failed(AccountError.ROOT_FORBIDDEN)
        self._remove(target)
        return AccountResult(account=target)

    def list_users(self) -> list[AccountRecord]:
        return self.db.list_accounts(include_root=False)

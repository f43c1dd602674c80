"""
Database abstraction for Postgres (any SQLAlchemy URL) and an in-memory test
implementation.
"""

from __future__ import annotations

import copy
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import (
    Column,
    Date,
    Float,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import (
    Session,
    declarative_base,
    relationship,
    selectinload,
    sessionmaker,
)
from sqlalchemy.pool import StaticPool

from biocard.assets import Asset, TextAsset, asset_from_columns

PROFILE_COLLECTIONS = (
    "contacts",
    "social_links",
    "projects",
    "work_experiences",
    "school_experiences",
    "gallery",
)

SETTINGS_ROW_ID = 1


class UsernameExistsError(Exception):
    """Raised when the unique username index rejects an account insert."""


class AccountRole(str, Enum):
    USER = "user"
    ADMIN = "admin"
    ROOT = "root"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["AccountRole"]:
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return None


@dataclass
class AccountRecord:
    id: str
    username: str
    password_hash: str
    password_salt: str
    role: AccountRole = AccountRole.USER
    created_at: float = field(default_factory=lambda: time.time())
    last_login: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role.value,
            "created_at": self.created_at,
            "last_login": self.last_login,
        }


@dataclass
class TokenRecord:
    token_value: str
    account_id: str
    created_at: float
    expires_at: float
    last_used: Optional[float] = None
    device_info: Optional[str] = None

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass
class ContactRecord:
    type: str
    value: Asset = field(default_factory=TextAsset)


@dataclass
class SocialLinkRecord:
    type: str
    value: str = ""
    attributes: Optional[str] = None


@dataclass
class ProjectRecord:
    name: str
    url: Optional[str] = None
    description: Optional[str] = None
    logo: Optional[Asset] = None


@dataclass
class WorkExperienceRecord:
    company: str
    position: Optional[str] = None
    company_link: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: Optional[str] = None
    logo: Optional[Asset] = None


@dataclass
class SchoolExperienceRecord:
    school: str
    degree: Optional[str] = None
    school_link: Optional[str] = None
    major: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    description: Optional[str] = None
    logo: Optional[Asset] = None


@dataclass
class GalleryItemRecord:
    image: Optional[Asset] = None
    caption: Optional[str] = None


@dataclass
class ProfileRecord:
    id: str
    account_id: str
    username: str
    language: Optional[str] = None
    nickname: Optional[str] = None
    pronouns: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None
    avatar: Asset = field(default_factory=TextAsset)
    background: Optional[Asset] = None
    current_company: Optional[str] = None
    current_company_link: Optional[str] = None
    current_school: Optional[str] = None
    current_school_link: Optional[str] = None
    contacts: list[ContactRecord] = field(default_factory=list)
    social_links: list[SocialLinkRecord] = field(default_factory=list)
    projects: list[ProjectRecord] = field(default_factory=list)
    work_experiences: list[WorkExperienceRecord] = field(default_factory=list)
    school_experiences: list[SchoolExperienceRecord] = field(default_factory=list)
    gallery: list[GalleryItemRecord] = field(default_factory=list)
    updated_at: float = field(default_factory=lambda: time.time())


PROFILE_SCALAR_FIELDS = (
    "nickname",
    "pronouns",
    "description",
    "location",
    "website",
    "avatar",
    "background",
    "current_company",
    "current_company_link",
    "current_school",
    "current_school_link",
)


@dataclass
class SystemSettingsRecord:
    title: str
    logo: Optional[Asset] = None
    id: int = SETTINGS_ROW_ID


class DbClient(Protocol):
    """Interface for database access."""

    # Accounts
    def create_account(
        self,
        username: str,
        password_hash: str,
        password_salt: str,
        role: AccountRole,
        *,
        default_avatar: Asset,
    ) -> AccountRecord:
        ...

    def get_account(self, account_id: str) -> Optional[AccountRecord]:
        ...

    def get_account_by_username(
        self, username: str, *, ignore_case: bool = False
    ) -> Optional[AccountRecord]:
        ...

    def list_accounts(self, *, include_root: bool = False) -> list[AccountRecord]:
        ...

    def update_credentials(
        self,
        account_id: str,
        password_hash: str,
        password_salt: str,
        role: Optional[AccountRole] = None,
    ) -> bool:
        ...

    def touch_last_login(self, account_id: str, when: float) -> None:
        ...

    def delete_account(self, account_id: str) -> bool:
        ...

    # Tokens
    def issue_token(self, token: TokenRecord, max_live: int) -> Optional[str]:
        ...

    def get_token(self, token_value: str) -> Optional[TokenRecord]:
        ...

    def list_tokens(self, account_id: str) -> list[TokenRecord]:
        ...

    def touch_token(self, token_value: str, when: float) -> bool:
        ...

    def delete_token(self, token_value: str) -> bool:
        ...

    def delete_tokens_for_account(self, account_id: str) -> int:
        ...

    def delete_expired_tokens(self, now: float) -> int:
        ...

    # Profiles
    def create_profile(
        self,
        account_id: str,
        username: str,
        language: Optional[str] = None,
        **fields: Any,
    ) -> Optional[ProfileRecord]:
        ...

    def get_profile(
        self, username: str, language: Optional[str] = None
    ) -> Optional[ProfileRecord]:
        ...

    def list_profile_languages(self, account_id: str) -> list[Optional[str]]:
        ...

    def replace_profile(
        self,
        username: str,
        language: Optional[str],
        fields: Dict[str, Any],
        collections: Dict[str, list],
    ) -> bool:
        ...

    # System settings
    def get_system_settings(self) -> Optional[SystemSettingsRecord]:
        ...

    def save_system_settings(
        self, title: str, logo: Optional[Asset]
    ) -> SystemSettingsRecord:
        ...


def _same_language(a: Optional[str], b: Optional[str]) -> bool:
    return (a or "").strip().lower() == (b or "").strip().lower()


def _normalize_language(language: Optional[str]) -> Optional[str]:
    language = (language or "").strip().lower()
    return language or None


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.accounts: Dict[str, AccountRecord] = {}
        self.tokens: Dict[str, TokenRecord] = {}
        self.profiles: Dict[str, ProfileRecord] = {}
        self.system_settings: Optional[SystemSettingsRecord] = None
        self._lock = threading.RLock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.accounts.clear()
            self.tokens.clear()
            self.profiles.clear()
            self.system_settings = None

    # Accounts

    def create_account(
        self,
        username: str,
        password_hash: str,
        password_salt: str,
        role: AccountRole,
        *,
        default_avatar: Asset,
    ) -> AccountRecord:
        with self._lock:
            if any(a.username == username for a in self.accounts.values()):
                raise UsernameExistsError(username)
            account = AccountRecord(
                id=uuid.uuid4().hex,
                username=username,
                password_hash=password_hash,
                password_salt=password_salt,
                role=role,
            )
            self.accounts[account.id] = account
            self._insert_profile(account.id, username, None, {"avatar": default_avatar})
            return copy.copy(account)

    def get_account(self, account_id: str) -> Optional[AccountRecord]:
        with self._lock:
            account = self.accounts.get(account_id)
            return copy.copy(account) if account else None

    def get_account_by_username(
        self, username: str, *, ignore_case: bool = False
    ) -> Optional[AccountRecord]:
        with self._lock:
            for account in self.accounts.values():
                if account.username == username or (
                    ignore_case and account.username.lower() == username.lower()
                ):
                    return copy.copy(account)
        return None

    def list_accounts(self, *, include_root: bool = False) -> list[AccountRecord]:
        with self._lock:
            return [
                copy.copy(a)
                for a in sorted(self.accounts.values(), key=lambda a: a.created_at)
                if include_root or a.role != AccountRole.ROOT
            ]

    def update_credentials(
        self,
        account_id: str,
        password_hash: str,
        password_salt: str,
        role: Optional[AccountRole] = None,
    ) -> bool:
        with self._lock:
            account = self.accounts.get(account_id)
            if not account:
                return False
            account.password_hash = password_hash
            account.password_salt = password_salt
            if role:
                account.role = role
            return True

    def touch_last_login(self, account_id: str, when: float) -> None:
        with self._lock:
            account = self.accounts.get(account_id)
            if account:
                account.last_login = when

    def delete_account(self, account_id: str) -> bool:
        with self._lock:
            if self.accounts.pop(account_id, None) is None:
                return False
            self.delete_tokens_for_account(account_id)
            for profile_id in [
                p.id for p in self.profiles.values() if p.account_id == account_id
            ]:
                del self.profiles[profile_id]
            return True

    # Tokens

    def issue_token(self, token: TokenRecord, max_live: int) -> Optional[str]:
        with self._lock:
            evicted = None
            owned = [t for t in self.tokens.values() if t.account_id == token.account_id]
            live = [t for t in owned if t.expires_at > token.created_at]
            if len(live) >= max_live and owned:
                oldest = min(owned, key=lambda t: t.created_at)
                del self.tokens[oldest.token_value]
                evicted = oldest.token_value
            self.tokens[token.token_value] = copy.copy(token)
            return evicted

    def get_token(self, token_value: str) -> Optional[TokenRecord]:
        with self._lock:
            token = self.tokens.get(token_value)
            return copy.copy(token) if token else None

    def list_tokens(self, account_id: str) -> list[TokenRecord]:
        with self._lock:
            return sorted(
                (copy.copy(t) for t in self.tokens.values() if t.account_id == account_id),
                key=lambda t: t.created_at,
            )

    def touch_token(self, token_value: str, when: float) -> bool:
        with self._lock:
            token = self.tokens.get(token_value)
            if not token:
                return False
            token.last_used = when
            return True

    def delete_token(self, token_value: str) -> bool:
        with self._lock:
            return self.tokens.pop(token_value, None) is not None

    def delete_tokens_for_account(self, account_id: str) -> int:
        with self._lock:
            doomed = [v for v, t in self.tokens.items() if t.account_id == account_id]
            for value in doomed:
                del self.tokens[value]
            return len(doomed)

    def delete_expired_tokens(self, now: float) -> int:
        with self._lock:
            doomed = [v for v, t in self.tokens.items() if t.expires_at < now]
            for value in doomed:
                del self.tokens[value]
            return len(doomed)

    # Profiles

    def _find_profile(
        self, username: str, language: Optional[str]
    ) -> Optional[ProfileRecord]:
        wanted = username.strip().lower()
        for profile in self.profiles.values():
            if profile.username.lower() == wanted and _same_language(
                profile.language, language
            ):
                return profile
        return None

    def _insert_profile(
        self,
        account_id: str,
        username: str,
        language: Optional[str],
        fields: Dict[str, Any],
    ) -> ProfileRecord:
        profile = ProfileRecord(
            id=uuid.uuid4().hex,
            account_id=account_id,
            username=username,
            language=_normalize_language(language),
        )
        for name, value in fields.items():
            if name in PROFILE_SCALAR_FIELDS:
                setattr(profile, name, value)
        self.profiles[profile.id] = profile
        return profile

    def create_profile(
        self,
        account_id: str,
        username: str,
        language: Optional[str] = None,
        **fields: Any,
    ) -> Optional[ProfileRecord]:
        with self._lock:
            if account_id not in self.accounts or self._find_profile(username, language):
                return None
            return copy.deepcopy(
                self._insert_profile(account_id, username, language, fields)
            )

    def get_profile(
        self, username: str, language: Optional[str] = None
    ) -> Optional[ProfileRecord]:
        with self._lock:
            profile = self._find_profile(username, language)
            return copy.deepcopy(profile) if profile else None

    def list_profile_languages(self, account_id: str) -> list[Optional[str]]:
        with self._lock:
            return [p.language for p in self.profiles.values() if p.account_id == account_id]

    def replace_profile(
        self,
        username: str,
        language: Optional[str],
        fields: Dict[str, Any],
        collections: Dict[str, list],
    ) -> bool:
        with self._lock:
            current = self._find_profile(username, language)
            if current is None:
                return False
            # Work on a copy and swap it in, so a failure leaves nothing behind.
            staged = copy.deepcopy(current)
            for name, value in fields.items():
                if name not in PROFILE_SCALAR_FIELDS:
                    raise KeyError(f"Unknown profile field: {name}")
                setattr(staged, name, value)
            for name, items in collections.items():
                if name not in PROFILE_COLLECTIONS:
                    raise KeyError(f"Unknown profile collection: {name}")
                setattr(staged, name, [copy.deepcopy(item) for item in items])
            staged.updated_at = time.time()
            self.profiles[staged.id] = staged
            return True

    # System settings

    def get_system_settings(self) -> Optional[SystemSettingsRecord]:
        with self._lock:
            return replace(self.system_settings) if self.system_settings else None

    def save_system_settings(
        self, title: str, logo: Optional[Asset]
    ) -> SystemSettingsRecord:
        with self._lock:
            self.system_settings = SystemSettingsRecord(title=title, logo=logo)
            return replace(self.system_settings)


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        engine_kwargs: Dict[str, Any] = {"future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url or database_url.rstrip("/").endswith("sqlite:"):
                # One shared connection, otherwise every thread sees its own empty DB.
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    # Row <-> record conversion

    @staticmethod
    def _to_account(row: "AccountRow") -> AccountRecord:
        return AccountRecord(
            id=row.id,
            username=row.username,
            password_hash=row.password_hash,
            password_salt=row.password_salt,
            role=AccountRole(row.role),
            created_at=row.created_at,
            last_login=row.last_login,
        )

    @staticmethod
    def _to_token(row: "TokenRow") -> TokenRecord:
        return TokenRecord(
            token_value=row.token_value,
            account_id=row.account_id,
            created_at=row.created_at,
            expires_at=row.expires_at,
            last_used=row.last_used,
            device_info=row.device_info,
        )

    @staticmethod
    def _to_profile(row: "ProfileRow") -> ProfileRecord:
        return ProfileRecord(
            id=row.id,
            account_id=row.account_id,
            username=row.username,
            language=row.language,
            nickname=row.nickname,
            pronouns=row.pronouns,
            description=row.description,
            location=row.location,
            website=row.website,
            avatar=asset_from_columns(row.avatar_kind, row.avatar_text, row.avatar_data)
            or TextAsset(),
            background=asset_from_columns(
                row.background_kind, row.background_text, row.background_data
            ),
            current_company=row.current_company,
            current_company_link=row.current_company_link,
            current_school=row.current_school,
            current_school_link=row.current_school_link,
            contacts=[
                ContactRecord(
                    type=c.type,
                    value=asset_from_columns(c.value_kind, c.value_text, c.value_data)
                    or TextAsset(),
                )
                for c in row.contacts
            ],
            social_links=[
                SocialLinkRecord(type=s.type, value=s.value, attributes=s.attributes)
                for s in row.social_links
            ],
            projects=[
                ProjectRecord(
                    name=p.name,
                    url=p.url,
                    description=p.description,
                    logo=asset_from_columns(p.logo_kind, p.logo_text, p.logo_data),
                )
                for p in row.projects
            ],
            work_experiences=[
                WorkExperienceRecord(
                    company=w.company,
                    position=w.position,
                    company_link=w.company_link,
                    start_date=w.start_date,
                    end_date=w.end_date,
                    description=w.description,
                    logo=asset_from_columns(w.logo_kind, w.logo_text, w.logo_data),
                )
                for w in row.work_experiences
            ],
            school_experiences=[
                SchoolExperienceRecord(
                    school=s.school,
                    degree=s.degree,
                    school_link=s.school_link,
                    major=s.major,
                    start_date=s.start_date,
                    end_date=s.end_date,
                    description=s.description,
                    logo=asset_from_columns(s.logo_kind, s.logo_text, s.logo_data),
                )
                for s in row.school_experiences
            ],
            gallery=[
                GalleryItemRecord(
                    image=asset_from_columns(g.image_kind, g.image_text, g.image_data),
                    caption=g.caption,
                )
                for g in row.gallery
            ],
            updated_at=row.updated_at,
        )

    @staticmethod
    def _asset_columns(prefix: str, asset: Optional[Asset]) -> Dict[str, Any]:
        kind, text, data = asset.columns if asset is not None else (None, None, None)
        return {
            f"{prefix}_kind": kind.value if kind is not None else None,
            f"{prefix}_text": text,
            f"{prefix}_data": data,
        }

    def _apply_profile_fields(self, row: "ProfileRow", fields: Dict[str, Any]) -> None:
        for name, value in fields.items():
            if name not in PROFILE_SCALAR_FIELDS:
                raise KeyError(f"Unknown profile field: {name}")
            if name in ("avatar", "background"):
                if name == "avatar" and value is None:
                    value = TextAsset()
                for column, column_value in self._asset_columns(name, value).items():
                    setattr(row, column, column_value)
            else:
                setattr(row, name, value)

    def _collection_rows(self, name: str, profile_id: str, items: list) -> list:
        rows: list = []
        for position, item in enumerate(items):
            if name == "contacts":
                rows.append(
                    ContactRow(
                        profile_id=profile_id,
                        sort_order=position,
                        type=item.type,
                        **self._asset_columns("value", item.value),
                    )
                )
            elif name == "social_links":
                rows.append(
                    SocialLinkRow(
                        profile_id=profile_id,
                        sort_order=position,
                        type=item.type,
                        value=item.value,
                        attributes=item.attributes,
                    )
                )
            elif name == "projects":
                rows.append(
                    ProjectRow(
                        profile_id=profile_id,
                        sort_order=position,
                        name=item.name,
                        url=item.url,
                        description=item.description,
                        **self._asset_columns("logo", item.logo),
                    )
                )
            elif name == "work_experiences":
                rows.append(
                    WorkExperienceRow(
                        profile_id=profile_id,
                        sort_order=position,
                        company=item.company,
                        position=item.position,
                        company_link=item.company_link,
                        start_date=item.start_date,
                        end_date=item.end_date,
                        description=item.description,
                        **self._asset_columns("logo", item.logo),
                    )
                )
            elif name == "school_experiences":
                rows.append(
                    SchoolExperienceRow(
                        profile_id=profile_id,
                        sort_order=position,
                        school=item.school,
                        degree=item.degree,
                        school_link=item.school_link,
                        major=item.major,
                        start_date=item.start_date,
                        end_date=item.end_date,
                        description=item.description,
                        **self._asset_columns("logo", item.logo),
                    )
                )
            elif name == "gallery":
                rows.append(
                    GalleryItemRow(
                        profile_id=profile_id,
                        sort_order=position,
                        caption=item.caption,
                        **self._asset_columns("image", item.image),
                    )
                )
            else:
                raise KeyError(f"Unknown profile collection: {name}")
        return rows

    @staticmethod
    def _profile_query(username: str, language: Optional[str]):
        stmt = select(ProfileRow).where(
            func.lower(ProfileRow.username) == username.strip().lower()
        )
        language = _normalize_language(language)
        if language is None:
            return stmt.where(ProfileRow.language.is_(None))
        return stmt.where(ProfileRow.language == language)

    # Accounts

    def create_account(
        self,
        username: str,
        password_hash: str,
        password_salt: str,
        role: AccountRole,
        *,
        default_avatar: Asset,
    ) -> AccountRecord:
        now = time.time()
        with self.Session() as session:
            account = AccountRow(
                id=uuid.uuid4().hex,
                username=username,
                password_hash=password_hash,
                password_salt=password_salt,
                role=role.value,
                created_at=now,
                last_login=now,
            )
            profile = ProfileRow(
                id=uuid.uuid4().hex,
                account_id=account.id,
                username=username,
                language=None,
                updated_at=now,
            )
            self._apply_profile_fields(profile, {"avatar": default_avatar})
            session.add(account)
            session.add(profile)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise UsernameExistsError(username) from exc
            return self._to_account(account)

    def get_account(self, account_id: str) -> Optional[AccountRecord]:
        with self.Session() as session:
            row = session.get(AccountRow, account_id)
            return self._to_account(row) if row else None

    def get_account_by_username(
        self, username: str, *, ignore_case: bool = False
    ) -> Optional[AccountRecord]:
        with self.Session() as session:
            if ignore_case:
                stmt = select(AccountRow).where(
                    func.lower(AccountRow.username) == username.lower()
                )
            else:
                stmt = select(AccountRow).where(AccountRow.username == username)
            row = session.execute(stmt.limit(1)).scalar_one_or_none()
            return self._to_account(row) if row else None

    def list_accounts(self, *, include_root: bool = False) -> list[AccountRecord]:
        with self.Session() as session:
            stmt = select(AccountRow).order_by(AccountRow.created_at.asc())
            if not include_root:
                stmt = stmt.where(AccountRow.role != AccountRole.ROOT.value)
            return [self._to_account(row) for row in session.execute(stmt).scalars()]

    def update_credentials(
        self,
        account_id: str,
        password_hash: str,
        password_salt: str,
        role: Optional[AccountRole] = None,
    ) -> bool:
        with self.Session() as session:
            row = session.get(AccountRow, account_id)
            if not row:
                return False
            row.password_hash = password_hash
            row.password_salt = password_salt
            if role:
                row.role = role.value
            session.commit()
            return True

    def touch_last_login(self, account_id: str, when: float) -> None:
        with self.Session() as session:
            row = session.get(AccountRow, account_id)
            if not row:
                return
            row.last_login = when
            session.commit()

    def delete_account(self, account_id: str) -> bool:
        with self.Session() as session:
            row = session.get(AccountRow, account_id)
            if not row:
                return False
            # ORM cascade takes tokens, profiles and their collections.
            session.delete(row)
            session.commit()
            return True

    # Tokens

    def issue_token(self, token: TokenRecord, max_live: int) -> Optional[str]:
        with self.Session() as session:
            # Serialise issuance per account so two callers at the cap cannot
            # both count the same live set.
            session.execute(
                select(AccountRow.id)
                .where(AccountRow.id == token.account_id)
                .with_for_update()
            )
            live = session.execute(
                select(func.count())
                .select_from(TokenRow)
                .where(
                    TokenRow.account_id == token.account_id,
                    TokenRow.expires_at > token.created_at,
                )
            ).scalar_one()
            evicted = None
            if live >= max_live:
                oldest = session.execute(
                    select(TokenRow.token_value)
                    .where(TokenRow.account_id == token.account_id)
                    .order_by(TokenRow.created_at.asc())
                    .limit(1)
                ).scalar_one_or_none()
                if oldest is not None:
                    session.execute(
                        delete(TokenRow).where(TokenRow.token_value == oldest)
                    )
                    evicted = oldest
            session.add(
                TokenRow(
                    token_value=token.token_value,
                    account_id=token.account_id,
                    created_at=token.created_at,
                    expires_at=token.expires_at,
                    last_used=token.last_used,
                    device_info=token.device_info,
                )
            )
            session.commit()
            return evicted

    def get_token(self, token_value: str) -> Optional[TokenRecord]:
        with self.Session() as session:
            row = session.get(TokenRow, token_value)
            return self._to_token(row) if row else None

    def list_tokens(self, account_id: str) -> list[TokenRecord]:
        with self.Session() as session:
            stmt = (
                select(TokenRow)
                .where(TokenRow.account_id == account_id)
                .order_by(TokenRow.created_at.asc())
            )
            return [self._to_token(row) for row in session.execute(stmt).scalars()]

    def touch_token(self, token_value: str, when: float) -> bool:
        with self.Session() as session:
            row = session.get(TokenRow, token_value)
            if not row:
                return False
            row.last_used = when
            session.commit()
            return True

    def delete_token(self, token_value: str) -> bool:
        with self.Session() as session:
            result = session.execute(
                delete(TokenRow).where(TokenRow.token_value == token_value)
            )
            session.commit()
            return bool(result.rowcount)

    def delete_tokens_for_account(self, account_id: str) -> int:
        with self.Session() as session:
            result = session.execute(
                delete(TokenRow).where(TokenRow.account_id == account_id)
            )
            session.commit()
            return result.rowcount or 0

    def delete_expired_tokens(self, now: float) -> int:
        with self.Session() as session:
            result = session.execute(delete(TokenRow).where(TokenRow.expires_at < now))
            session.commit()
            return result.rowcount or 0

    # Profiles

    def create_profile(
        self,
        account_id: str,
        username: str,
        language: Optional[str] = None,
        **fields: Any,
    ) -> Optional[ProfileRecord]:
        with self.Session() as session:
            if session.get(AccountRow, account_id) is None:
                return None
            existing = session.execute(
                self._profile_query(username, language)
            ).scalar_one_or_none()
            if existing is not None:
                return None
            row = ProfileRow(
                id=uuid.uuid4().hex,
                account_id=account_id,
                username=username,
                language=_normalize_language(language),
                updated_at=time.time(),
            )
            self._apply_profile_fields(row, {"avatar": TextAsset(), **fields})
            session.add(row)
            session.commit()
            return self._to_profile(row)

    def get_profile(
        self, username: str, language: Optional[str] = None
    ) -> Optional[ProfileRecord]:
        with self.Session() as session:
            stmt = self._profile_query(username, language).options(
                *(selectinload(getattr(ProfileRow, name)) for name in PROFILE_COLLECTIONS)
            )
            row = session.execute(stmt).scalar_one_or_none()
            return self._to_profile(row) if row else None

    def list_profile_languages(self, account_id: str) -> list[Optional[str]]:
        with self.Session() as session:
            stmt = select(ProfileRow.language).where(ProfileRow.account_id == account_id)
            return list(session.execute(stmt).scalars())

    def replace_profile(
        self,
        username: str,
        language: Optional[str],
        fields: Dict[str, Any],
        collections: Dict[str, list],
    ) -> bool:
        with self.Session() as session:
            with session.begin():
                row = session.execute(
                    self._profile_query(username, language).with_for_update()
                ).scalar_one_or_none()
                if row is None:
                    return False

                self._apply_profile_fields(row, fields)
                row.updated_at = time.time()

                for name in PROFILE_COLLECTIONS:
                    if name not in collections:
                        continue
                    model = COLLECTION_MODELS[name]
                    session.execute(
                        delete(model)
                        .where(model.profile_id == row.id)
                        .execution_options(synchronize_session=False)
                    )
                session.flush()

                for name, items in collections.items():
                    session.add_all(self._collection_rows(name, row.id, items))
                session.flush()
            return True

    # System settings

    def get_system_settings(self) -> Optional[SystemSettingsRecord]:
        with self.Session() as session:
            row = session.get(SystemSettingsRow, SETTINGS_ROW_ID)
            if not row:
                return None
            return SystemSettingsRecord(
                title=row.title,
                logo=asset_from_columns(row.logo_kind, row.logo_text, row.logo_data),
            )

    def save_system_settings(
        self, title: str, logo: Optional[Asset]
    ) -> SystemSettingsRecord:
        with self.Session() as session:
            row = session.get(SystemSettingsRow, SETTINGS_ROW_ID)
            if row is None:
                row = SystemSettingsRow(id=SETTINGS_ROW_ID, title=title)
                session.add(row)
            row.title = title
            for column, value in self._asset_columns("logo", logo).items():
                setattr(row, column, value)
            session.commit()
            return SystemSettingsRecord(title=title, logo=logo)


Base = declarative_base()


def _ordered(model_name: str):
    return relationship(
        model_name,
        order_by=f"{model_name}.sort_order",
        cascade="all, delete-orphan",
    )


def _profile_fk() -> Column:
    return Column(
        String(32),
        ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class AccountRow(Base):
    __tablename__ = "accounts"

    id = Column(String(32), primary_key=True)
    username = Column(String(64), nullable=False, unique=True, index=True)
    password_hash = Column(String(256), nullable=False)
    password_salt = Column(String(256), nullable=False)
    role = Column(String(16), nullable=False, default=AccountRole.USER.value, index=True)
    created_at = Column(Float, nullable=False)
    last_login = Column(Float, nullable=False)

    tokens = relationship("TokenRow", cascade="all, delete-orphan")
    profiles = relationship("ProfileRow", cascade="all, delete-orphan")


class TokenRow(Base):
    __tablename__ = "tokens"

    token_value = Column(String(128), primary_key=True)
    account_id = Column(
        String(32),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = Column(Float, nullable=False)
    last_used = Column(Float, nullable=True)
    expires_at = Column(Float, nullable=False, index=True)
    device_info = Column(String(128), nullable=True)


class ProfileRow(Base):
    __tablename__ = "profiles"
    __table_args__ = (UniqueConstraint("account_id", "language"),)

    id = Column(String(32), primary_key=True)
    account_id = Column(
        String(32),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    username = Column(String(64), nullable=False, index=True)
    language = Column(Text, nullable=True)
    nickname = Column(Text, nullable=True)
    pronouns = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    location = Column(Text, nullable=True)
    website = Column(Text, nullable=True)
    avatar_kind = Column(String(16), nullable=False, default="text")
    avatar_text = Column(Text, nullable=True)
    avatar_data = Column(LargeBinary, nullable=True)
    background_kind = Column(String(16), nullable=True)
    background_text = Column(Text, nullable=True)
    background_data = Column(LargeBinary, nullable=True)
    current_company = Column(Text, nullable=True)
    current_company_link = Column(Text, nullable=True)
    current_school = Column(Text, nullable=True)
    current_school_link = Column(Text, nullable=True)
    updated_at = Column(Float, nullable=False)

    contacts = _ordered("ContactRow")
    social_links = _ordered("SocialLinkRow")
    projects = _ordered("ProjectRow")
    work_experiences = _ordered("WorkExperienceRow")
    school_experiences = _ordered("SchoolExperienceRow")
    gallery = _ordered("GalleryItemRow")


class ContactRow(Base):
    __tablename__ = "profile_contacts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = _profile_fk()
    sort_order = Column(Integer, nullable=False, default=0)
    type = Column(Text, nullable=False)
    value_kind = Column(String(16), nullable=False, default="text")
    value_text = Column(Text, nullable=True)
    value_data = Column(LargeBinary, nullable=True)


class SocialLinkRow(Base):
    __tablename__ = "profile_social_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = _profile_fk()
    sort_order = Column(Integer, nullable=False, default=0)
    type = Column(Text, nullable=False)
    value = Column(Text, nullable=False, default="")
    attributes = Column(Text, nullable=True)


class ProjectRow(Base):
    __tablename__ = "profile_projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = _profile_fk()
    sort_order = Column(Integer, nullable=False, default=0)
    name = Column(Text, nullable=False)
    url = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    logo_kind = Column(String(16), nullable=True)
    logo_text = Column(Text, nullable=True)
    logo_data = Column(LargeBinary, nullable=True)


class WorkExperienceRow(Base):
    __tablename__ = "profile_work_experiences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = _profile_fk()
    sort_order = Column(Integer, nullable=False, default=0)
    company = Column(Text, nullable=False)
    position = Column(Text, nullable=True)
    company_link = Column(Text, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    description = Column(Text, nullable=True)
    logo_kind = Column(String(16), nullable=True)
    logo_text = Column(Text, nullable=True)
    logo_data = Column(LargeBinary, nullable=True)


class SchoolExperienceRow(Base):
    __tablename__ = "profile_school_experiences"

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = _profile_fk()
    sort_order = Column(Integer, nullable=False, default=0)
    school = Column(Text, nullable=False)
    degree = Column(Text, nullable=True)
    school_link = Column(Text, nullable=True)
    major = Column(Text, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    description = Column(Text, nullable=True)
    logo_kind = Column(String(16), nullable=True)
    logo_text = Column(Text, nullable=True)
    logo_data = Column(LargeBinary, nullable=True)


class GalleryItemRow(Base):
    __tablename__ = "profile_gallery"

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = _profile_fk()
    sort_order = Column(Integer, nullable=False, default=0)
    caption = Column(Text, nullable=True)
    image_kind = Column(String(16), nullable=True)
    image_text = Column(Text, nullable=True)
    image_data = Column(LargeBinary, nullable=True)


class SystemSettingsRow(Base):
    __tablename__ = "system_settings"

    id = Column(Integer, primary_key=True, autoincrement=False)
    title = Column(Text, nullable=False)
    logo_kind = Column(String(16), nullable=True)
    logo_text = Column(Text, nullable=True)
    logo_data = Column(LargeBinary, nullable=True)


COLLECTION_MODELS = {
    "contacts": ContactRow,
    "social_links": SocialLinkRow,
    "projects": ProjectRow,
    "work_experiences": WorkExperienceRow,
    "school_experiences": SchoolExperienceRow,
    "gallery": GalleryItemRow,
}

"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from biocard.accounts import AccountService
from biocard.cache import CacheLayer
from biocard.config import get_settings
from biocard.db import DbClient, InMemoryDbClient, PostgresDbClient
from biocard.profiles import ProfileRepository
from biocard.sessions import SessionManager
from biocard.system import SystemSettingsService

_db_client: DbClient | None = None
_cache: CacheLayer | None = None
_session_manager: SessionManager | None = None
_profile_repository: ProfileRepository | None = None
_account_service: AccountService | None = None
_system_service: SystemSettingsService | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so accounts and profiles persist across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_cache() -> CacheLayer:
    global _cache
    if _cache:
        return _cache
    _cache = CacheLayer.from_settings(get_settings())
    return _cache


def close_cache() -> None:
    """
    Stop the cache's background workers and drop the singletons holding it.
    """
    global _cache, _profile_repository, _account_service, _system_service
    if _cache is None:
        return
    _cache.clear()
    _cache.close()
    _cache = None
    _profile_repository = _account_service = _system_service = None


def get_session_manager() -> SessionManager:
    global _session_manager
    if _session_manager:
        return _session_manager
    _session_manager = SessionManager(get_db_client(), get_settings())
    return _session_manager


def get_profile_repository() -> ProfileRepository:
    global _profile_repository
    if _profile_repository:
        return _profile_repository
    _profile_repository = ProfileRepository(get_db_client(), get_cache())
    return _profile_repository


def get_account_service() -> AccountService:
    global _account_service
    if _account_service:
        return _account_service
    _account_service = AccountService(
        get_db_client(),
        get_session_manager(),
        get_profile_repository(),
        get_settings(),
    )
    return _account_service


def get_system_service() -> SystemSettingsService:
    global _system_service
    if _system_service:
        return _system_service
    settings = get_settings()
    _system_service = SystemSettingsService(
        get_db_client(), get_cache(), default_title=settings.default_site_title
    )
    return _system_service

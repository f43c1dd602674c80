"""
HTTP routes for the bio card API.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from biocard.accounts import AccountError, AccountResult, AccountService
from biocard.db import AccountRecord
from biocard.dependencies import (
    get_account_service,
    get_profile_repository,
    get_session_manager,
    get_system_service,
)
from biocard.profiles import ProfileRepository
from biocard.schemas import (
    AdminRequest,
    CheckPermissionResponse,
    CreateUserRequest,
    CreateUserResponse,
    DeleteAccountRequest,
    ExportBundle,
    ProfilePatch,
    ProfileView,
    SettingsResponse,
    SignInRequest,
    SignUpRequest,
    SuccessResponse,
    TokenResponse,
    UpdateSettingsRequest,
    UserInfo,
    UserListResponse,
)
from biocard.sessions import SessionManager, extract_bearer_token
from biocard.system import SystemSettingsService

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_RESPONSES = {
    AccountError.MISSING_FIELDS: (400, "Missing required fields"),
    AccountError.INVALID_ROLE: (400, "Invalid user type"),
    AccountError.ROOT_FORBIDDEN: (403, "Operation not allowed on root account"),
    AccountError.USERNAME_EXISTS: (409, "Username already exists"),
    AccountError.NOT_FOUND: (404, "User not found"),
    AccountError.SELF_DELETE: (403, "Cannot delete yourself"),
    AccountError.FORBIDDEN: (403, "Insufficient permissions"),
}


def _raise_for(result: AccountResult) -> None:
    if result.error is not None:
        status_code, detail = ERROR_RESPONSES[result.error]
        raise HTTPException(status_code=status_code, detail=detail)


def _unauthorized() -> HTTPException:
    return HTTPException(status_code=401, detail="Invalid token")


def bearer_token(authorization: Optional[str] = Header(default=None)) -> str:
    token = extract_bearer_token(authorization)
    if not token:
        raise _unauthorized()
    return token


def current_account(
    token: str = Depends(bearer_token),
    sessions: SessionManager = Depends(get_session_manager),
) -> AccountRecord:
    valid, account = sessions.validate_token(token)
    if not valid:
        raise _unauthorized()
    return account


def _owner(username: str, account: AccountRecord) -> AccountRecord:
    if account.username.lower() != username.strip().lower():
        raise _unauthorized()
    return account


def _admin_from_body(payload: AdminRequest, sessions: SessionManager) -> AccountRecord:
    valid, account = sessions.validate_token(payload.token)
    if not valid or account.username != payload.username:
        raise _unauthorized()
    if not sessions.has_admin_permission(account):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return account


# Auth


@router.post("/signup/create", response_model=TokenResponse)
def signup(
    payload: SignUpRequest, accounts: AccountService = Depends(get_account_service)
):
    result = accounts.signup(payload.username, payload.password, payload.type)
    _raise_for(result)
    return TokenResponse(token=result.token)


@router.post("/signin", response_model=TokenResponse)
def signin(
    payload: SignInRequest, accounts: AccountService = Depends(get_account_service)
):
    token = accounts.sign_in(payload.username, payload.password)
    if not token:
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return TokenResponse(token=token)


@router.post("/logout", response_model=SuccessResponse)
def logout(
    token: str = Depends(bearer_token),
    sessions: SessionManager = Depends(get_session_manager),
):
    if not sessions.revoke_token(token):
        raise _unauthorized()
    return SuccessResponse()


@router.post("/delete", response_model=SuccessResponse)
def delete_account(
    payload: DeleteAccountRequest,
    sessions: SessionManager = Depends(get_session_manager),
    accounts: AccountService = Depends(get_account_service),
):
    valid, account = sessions.validate_token(payload.token)
    if not valid or account.username != payload.username:
        raise _unauthorized()
    _raise_for(accounts.delete_account(account))
    return SuccessResponse()


# Profiles


@router.get("/user/{username}", response_model=ProfileView)
def get_profile(
    username: str,
    language: Optional[str] = Query(default=None),
    profiles: ProfileRepository = Depends(get_profile_repository),
):
    profile = profiles.get_profile(username, language)
    if profile is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return profile


@router.post("/user/{username}", response_model=SuccessResponse)
def update_profile(
    username: str,
    payload: ProfileView,
    language: Optional[str] = Query(default=None),
    account: AccountRecord = Depends(current_account),
    profiles: ProfileRepository = Depends(get_profile_repository),
):
    _owner(username, account)
    try:
        updated = profiles.update_profile(username, payload, language)
    except Exception:
        raise HTTPException(status_code=500, detail="Failed to update profile")
    if not updated:
        raise HTTPException(status_code=404, detail="Profile not found")
    return SuccessResponse()


@router.patch("/user/{username}", response_model=SuccessResponse)
def patch_profile(
    username: str,
    payload: ProfilePatch,
    language: Optional[str] = Query(default=None),
    account: AccountRecord = Depends(current_account),
    profiles: ProfileRepository = Depends(get_profile_repository),
):
    _owner(username, account)
    try:
        updated = profiles.patch_profile(username, payload, language)
    except Exception:
        raise HTTPException(status_code=500, detail="Failed to update profile")
    if not updated:
        raise HTTPException(status_code=404, detail="Profile not found")
    return SuccessResponse()


@router.post("/user/{username}/languages/{language}", response_model=SuccessResponse)
def create_language_variant(
    username: str,
    language: str,
    account: AccountRecord = Depends(current_account),
    profiles: ProfileRepository = Depends(get_profile_repository),
):
    _owner(username, account)
    if not profiles.create_language_variant(username, language):
        raise HTTPException(status_code=409, detail="Language variant already exists")
    return SuccessResponse()


@router.get("/user/{username}/export", response_model=ExportBundle)
def export_profile(
    username: str,
    token: str = Depends(bearer_token),
    account: AccountRecord = Depends(current_account),
    profiles: ProfileRepository = Depends(get_profile_repository),
):
    _owner(username, account)
    bundle = profiles.get_export_data(account, token)
    if bundle is None:
        raise HTTPException(status_code=404, detail="Profile not found")
    return bundle


@router.post("/user/{username}/import", response_model=SuccessResponse)
def import_profile(
    username: str,
    payload: ExportBundle,
    account: AccountRecord = Depends(current_account),
    profiles: ProfileRepository = Depends(get_profile_repository),
):
    _owner(username, account)
    try:
        imported = profiles.import_data(username, payload)
    except Exception:
        raise HTTPException(status_code=500, detail="Failed to import profile")
    if not imported:
        raise HTTPException(status_code=400, detail="Import data does not match user")
    return SuccessResponse()


# Admin


@router.post("/admin/check-permission", response_model=CheckPermissionResponse)
def check_permission(
    payload: AdminRequest, sessions: SessionManager = Depends(get_session_manager)
):
    admin = _admin_from_body(payload, sessions)
    return CheckPermissionResponse(success=True, type=admin.role.value)


@router.post("/admin/users/list", response_model=UserListResponse)
def list_users(
    payload: AdminRequest,
    sessions: SessionManager = Depends(get_session_manager),
    accounts: AccountService = Depends(get_account_service),
):
    _admin_from_body(payload, sessions)
    return UserListResponse(
        users=[UserInfo(username=a.username, type=a.role.value) for a in accounts.list_users()]
    )


@router.post("/admin/users", response_model=CreateUserResponse)
def create_user(
    payload: CreateUserRequest,
    sessions: SessionManager = Depends(get_session_manager),
    accounts: AccountService = Depends(get_account_service),
):
    admin = _admin_from_body(payload, sessions)
    result = accounts.create_user(admin, payload.new_username, payload.password, payload.type)
    _raise_for(result)
    return CreateUserResponse(message="User created", token=result.token)


@router.delete("/admin/users/{target}", response_model=SuccessResponse)
def delete_user(
    target: str,
    account: AccountRecord = Depends(current_account),
    accounts: AccountService = Depends(get_account_service),
):
    _raise_for(accounts.delete_user(account, target))
    return SuccessResponse()


# System settings


@router.get("/settings", response_model=SettingsResponse)
def public_settings(system: SystemSettingsService = Depends(get_system_service)):
    return system.get_public_settings()


@router.post("/admin/settings", response_model=SettingsResponse)
def admin_settings(
    payload: AdminRequest,
    sessions: SessionManager = Depends(get_session_manager),
    system: SystemSettingsService = Depends(get_system_service),
):
    _admin_from_body(payload, sessions)
    return system.get_settings_uncached()


@router.post("/admin/settings/update", response_model=SettingsResponse)
def update_settings(
    payload: UpdateSettingsRequest,
    sessions: SessionManager = Depends(get_session_manager),
    system: SystemSettingsService = Depends(get_system_service),
):
    _admin_from_body(payload, sessions)
    try:
        return system.update_settings(payload.title, payload.logo)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

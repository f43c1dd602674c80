"""
Pydantic schemas for the bio card API.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Contact(ApiModel):
    type: str
    value: str = ""


class SocialLink(ApiModel):
    type: str
    value: str = ""
    github_data: Optional[dict[str, Any]] = None


class Project(ApiModel):
    name: str
    url: str = ""
    description: str = ""
    logo: str = ""


class WorkExperience(ApiModel):
    position: str = ""
    company: str
    company_link: str = ""
    start_date: str = ""
    end_date: str = ""
    description: str = ""
    logo: str = ""


class SchoolExperience(ApiModel):
    degree: str = ""
    school: str
    school_link: str = ""
    major: str = ""
    start_date: str = ""
    end_date: str = ""
    description: str = ""
    logo: str = ""


class GalleryItem(ApiModel):
    image: str = ""
    caption: str = ""


class ProfileView(ApiModel):
    """Public shape of a profile aggregate."""

    username: str = ""
    user_type: str = "personal"
    name: str = ""
    pronouns: str = ""
    avatar: str = ""
    bio: str = ""
    location: str = ""
    website: str = ""
    background: str = ""
    current_company: str = ""
    current_company_link: str = ""
    current_school: str = ""
    current_school_link: str = ""
    contacts: list[Contact] = Field(default_factory=list)
    social_links: list[SocialLink] = Field(default_factory=list)
    projects: list[Project] = Field(default_factory=list)
    work_experiences: list[WorkExperience] = Field(default_factory=list)
    school_experiences: list[SchoolExperience] = Field(default_factory=list)
    gallery: list[GalleryItem] = Field(default_factory=list)


class ProfilePatch(ApiModel):
    """Partial update. ``None`` leaves a field alone; ``[]`` clears a collection."""

    username: Optional[str] = None
    user_type: Optional[str] = None
    name: Optional[str] = None
    pronouns: Optional[str] = None
    avatar: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None
    background: Optional[str] = None
    current_company: Optional[str] = None
    current_company_link: Optional[str] = None
    current_school: Optional[str] = None
    current_school_link: Optional[str] = None
    contacts: Optional[list[Contact]] = None
    social_links: Optional[list[SocialLink]] = None
    projects: Optional[list[Project]] = None
    work_experiences: Optional[list[WorkExperience]] = None
    school_experiences: Optional[list[SchoolExperience]] = None
    gallery: Optional[list[GalleryItem]] = None


# Auth


class SignUpRequest(ApiModel):
    username: str = Field(default="", max_length=64)
    password: str = ""
    type: str = "user"


class SignInRequest(ApiModel):
    username: str = ""
    password: str = ""


class TokenResponse(ApiModel):
    token: str


class DeleteAccountRequest(ApiModel):
    username: str
    token: str


# Admin


class AdminRequest(ApiModel):
    username: str = ""
    token: str = ""


class CreateUserRequest(AdminRequest):
    new_username: str = Field(default="", max_length=64)
    password: str = ""
    type: str = "user"


class CreateUserResponse(ApiModel):
    message: str
    token: str


class UserInfo(ApiModel):
    username: str
    type: str


class UserListResponse(ApiModel):
    users: list[UserInfo]


class CheckPermissionResponse(ApiModel):
    success: bool
    type: str


# System settings


class SettingsResponse(ApiModel):
    title: str
    logo: str = ""


class UpdateSettingsRequest(AdminRequest):
    title: str = ""
    logo: str = ""


# Export / import


class UserExport(ApiModel):
    username: str
    type: str
    token: str = ""


class ExportBundle(ApiModel):
    user: UserExport
    profile: ProfileView


# General


class SuccessResponse(ApiModel):
    success: bool = True


class MessageResponse(ApiModel):
    message: str

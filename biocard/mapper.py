"""
Translation between stored profile records and the public profile shape.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import Any, Optional, Union

from biocard.assets import asset_to_string, optional_asset, parse_asset
from biocard.db import (
    ContactRecord,
    GalleryItemRecord,
    ProfileRecord,
    ProjectRecord,
    SchoolExperienceRecord,
    SocialLinkRecord,
    WorkExperienceRecord,
)
from biocard.schemas import (
    Contact,
    GalleryItem,
    ProfilePatch,
    ProfileView,
    Project,
    SchoolExperience,
    SocialLink,
    WorkExperience,
)

logger = logging.getLogger(__name__)

GITHUB = "github"

# view attribute -> record attribute, for plain text scalars
TEXT_FIELDS = {
    "name": "nickname",
    "pronouns": "pronouns",
    "bio": "description",
    "location": "location",
    "website": "website",
    "current_company": "current_company",
    "current_company_link": "current_company_link",
    "current_school": "current_school",
    "current_school_link": "current_school_link",
}


def format_date(value: Optional[date]) -> str:
    return value.isoformat() if value else ""


def parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        return None


def decode_attributes(link_type: str, attributes: Optional[str]) -> Optional[dict[str, Any]]:
    """Decode stored platform attributes. Only GitHub links carry any."""
    if link_type != GITHUB or not attributes:
        return None
    try:
        decoded = json.loads(attributes)
    except ValueError:
        logger.debug("Ignoring malformed github attributes")
        return None
    return decoded if isinstance(decoded, dict) else None


def encode_attributes(link: SocialLink) -> Optional[str]:
    if not link.github_data:
        return None
    return json.dumps(link.github_data)


# Record -> view


def to_profile_view(profile: ProfileRecord) -> ProfileView:
    view = ProfileView(
        username=profile.username,
        avatar=asset_to_string(profile.avatar),
        background=asset_to_string(profile.background),
        contacts=[
            Contact(type=c.type, value=asset_to_string(c.value)) for c in profile.contacts
        ],
        social_links=[
            SocialLink(
                type=s.type,
                value=s.value or "",
                github_data=decode_attributes(s.type, s.attributes),
            )
            for s in profile.social_links
        ],
        projects=[
            Project(
                name=p.name,
                url=p.url or "",
                description=p.description or "",
                logo=asset_to_string(p.logo),
            )
            for p in profile.projects
        ],
        work_experiences=[
            WorkExperience(
                position=w.position or "",
                company=w.company,
                company_link=w.company_link or "",
                start_date=format_date(w.start_date),
                end_date=format_date(w.end_date),
                description=w.description or "",
                logo=asset_to_string(w.logo),
            )
            for w in profile.work_experiences
        ],
        school_experiences=[
            SchoolExperience(
                degree=s.degree or "",
                school=s.school,
                school_link=s.school_link or "",
                major=s.major or "",
                start_date=format_date(s.start_date),
                end_date=format_date(s.end_date),
                description=s.description or "",
                logo=asset_to_string(s.logo),
            )
            for s in profile.school_experiences
        ],
        gallery=[
            GalleryItem(image=asset_to_string(g.image), caption=g.caption or "")
            for g in profile.gallery
        ],
    )
    for view_name, record_name in TEXT_FIELDS.items():
        setattr(view, view_name, getattr(profile, record_name) or "")
    return view


# View -> records

def contacts_from(items: list[Contact]) -> list[ContactRecord]:
    return [ContactRecord(type=c.type, value=parse_asset(c.value)) for c in items]


def social_links_from(items: list[SocialLink]) -> list[SocialLinkRecord]:
    return [
        SocialLinkRecord(type=s.type, value=s.value, attributes=encode_attributes(s))
        for s in items
    ]


def projects_from(items: list[Project]) -> list[ProjectRecord]:
    return [
        ProjectRecord(
            name=p.name,
            url=p.url,
            description=p.description,
            logo=optional_asset(p.logo),
        )
        for p in items
    ]


def work_experiences_from(items: list[WorkExperience]) -> list[WorkExperienceRecord]:
    return [
        WorkExperienceRecord(
            company=w.company,
            position=w.position,
            company_link=w.company_link,
            start_date=parse_date(w.start_date),
            end_date=parse_date(w.end_date),
            description=w.description,
            logo=optional_asset(w.logo),
        )
        for w in items
    ]


def school_experiences_from(items: list[SchoolExperience]) -> list[SchoolExperienceRecord]:
    return [
        SchoolExperienceRecord(
            school=s.school,
            degree=s.degree,
            school_link=s.school_link,
            major=s.major,
            start_date=parse_date(s.start_date),
            end_date=parse_date(s.end_date),
            description=s.description,
            logo=optional_asset(s.logo),
        )
        for s in items
    ]


def gallery_from(items: list[GalleryItem]) -> list[GalleryItemRecord]:
    return [
        GalleryItemRecord(image=optional_asset(g.image), caption=g.caption) for g in items
    ]


COLLECTION_BUILDERS = {
    "contacts": contacts_from,
    "social_links": social_links_from,
    "projects": projects_from,
    "work_experiences": work_experiences_from,
    "school_experiences": school_experiences_from,
    "gallery": gallery_from,
}


def to_record_changes(
    data: Union[ProfileView, ProfilePatch],
) -> tuple[dict[str, Any], dict[str, list]]:
    """
    Split incoming profile data into ``(fields, collections)`` for the store.

    ``None`` values are skipped, so a :class:`ProfilePatch` only touches what
    it carries while a full :class:`ProfileView` replaces everything. The
    ``username`` and ``user_type`` fields are never written.
    """
    fields: dict[str, Any] = {}
    for view_name, record_name in TEXT_FIELDS.items():
        value = getattr(data, view_name)
        if value is not None:
            fields[record_name] = value
    if data.avatar is not None:
        fields["avatar"] = parse_asset(data.avatar)
    if data.background is not None:
        fields["background"] = optional_asset(data.background)

    collections: dict[str, list] = {}
    for name, build in COLLECTION_BUILDERS.items():
        items = getattr(data, name)
        if items is not None:
            collections[name] = build(items)
    return fields, collections

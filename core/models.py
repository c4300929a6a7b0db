# core/models.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Record(BaseModel):
    """
    Base for everything persisted in the store.
    Python side is snake_case, wire/store side is camelCase.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_store(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# ============================================================
# PORTFOLIO
# ============================================================

class SocialLinks(Record):
    linkedin: Optional[str] = None
    github: Optional[str] = None
    twitter: Optional[str] = None
    website: Optional[str] = None


class Profile(Record):
    name: str = ""
    title: str = ""
    bio: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    avatar_url: Optional[str] = None
    social_links: Optional[SocialLinks] = None


class Skill(Record):
    id: Optional[str] = None
    name: str
    level: Optional[int] = Field(default=None, ge=1, le=100)
    category: Optional[str] = None


class Project(Record):
    id: Optional[str] = None
    title: str
    description: str = ""
    image_url: Optional[str] = None
    live_url: Optional[str] = None
    code_url: Optional[str] = None
    technologies: Optional[List[str]] = None
    featured: Optional[bool] = None


class Experience(Record):
    id: Optional[str] = None
    company: str
    position: str
    start_date: str
    end_date: Optional[str] = None  # None = current position
    description: str = ""
    location: Optional[str] = None


class Theme(Record):
    primary_color: str = "#3b82f6"
    secondary_color: Optional[str] = "#1e40af"
    font: str = "Inter"
    font_size: Optional[str] = "16px"


class Portfolio(Record):
    profile: Profile = Field(default_factory=Profile)
    skills: List[Skill] = Field(default_factory=list)
    projects: List[Project] = Field(default_factory=list)
    experience: List[Experience] = Field(default_factory=list)
    theme: Theme = Field(default_factory=Theme)
    template_id: str = "template-1"
    status: Literal["draft", "published"] = "draft"
    last_updated: Optional[str] = None
    created_at: Optional[str] = None


class PartialPortfolio(Record):
    """What a CV import produces: only the sections it could find."""
    profile: Optional[Profile] = None
    skills: Optional[List[Skill]] = None
    experience: Optional[List[Experience]] = None
    projects: Optional[List[Project]] = None

    def to_store(self) -> dict:
        # Only what extraction actually found; defaults stay out.
        return self.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)


def create_empty_portfolio() -> Portfolio:
    now = utc_now_iso()
    return Portfolio(
        profile=Profile(
            email="", phone="", location="", avatar_url="", social_links=SocialLinks()
        ),
        last_updated=now,
        created_at=now,
    )


# ============================================================
# TENANTS / USERS
# ============================================================

class TenantConfig(Record):
    user_id: str
    username: Optional[str] = None
    custom_domain: Optional[str] = None
    subdomain: Optional[str] = None
    is_active: bool = True
    plan: Optional[Literal["free", "pro", "enterprise"]] = None
    created_at: str
    last_updated: str


class User(Record):
    uid: str
    email: str = ""
    display_name: Optional[str] = None
    photo_url: Optional[str] = Field(default=None, alias="photoURL")

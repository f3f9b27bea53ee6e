"""Pydantic models for wedding pages."""

from __future__ import annotations

from datetime import date
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from wedding_api.security.validation import HttpUrl, ObjectId, Phone, SafeHtml, Slug

Theme = Literal["classic", "modern", "rustic", "garden"]

Name = Annotated[str, Field(min_length=1, max_length=100)]


class WeddingCreateRequest(BaseModel):
    """Payload for creating a wedding page."""

    model_config = ConfigDict(extra="forbid")

    slug: Slug
    title: str = Field(min_length=1, max_length=120)
    partner_one_name: Name
    partner_two_name: Name
    event_date: date | None = None
    venue: Annotated[str, Field(max_length=200)] | None = None
    website_url: HttpUrl | None = None
    contact_phone: Phone | None = None
    welcome_message: SafeHtml | None = None
    theme: Theme = "classic"
    rsvp_enabled: bool = True


class WeddingPath(BaseModel):
    """Path parameters addressing one wedding."""

    wedding_id: ObjectId


class WeddingRecord(BaseModel):
    """Persisted wedding page."""

    wedding_id: str
    owner_id: str
    slug: str
    title: str
    partner_one_name: str
    partner_two_name: str
    event_date: str | None = None
    venue: str | None = None
    website_url: str | None = None
    contact_phone: str | None = None
    welcome_message: str | None = None
    theme: str = "classic"
    rsvp_enabled: bool = True
    published: bool = False
    created_at: int = 0
    updated_at: int = 0

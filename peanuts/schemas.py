"""Serialization types shared by the web server and the admin CLI."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from peanuts.models.source import MAX_DIMENSION


class Source(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    width: int = Field(ge=0, lt=MAX_DIMENSION)
    height: int = Field(ge=0, lt=MAX_DIMENSION)
    url: str = Field(min_length=1)


class PhotoPayload(BaseModel):
    """Body accepted when creating or updating a photo.

    ``sources=None`` leaves the stored sources untouched on update.
    """

    file_stem: str = Field(min_length=1)
    title: str | None = None
    taken_timestamp: str | None = None
    tags: list[str] = Field(default_factory=list)
    sources: list[Source] | None = None

    @field_validator("tags")
    @classmethod
    def strip_tags(cls, v: list[str]) -> list[str]:
        cleaned = [tag.strip() for tag in v]
        if any(not tag for tag in cleaned):
            raise ValueError("tags must not be empty")
        return cleaned


class Photo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    file_stem: str
    title: str | None = None
    taken_timestamp: str | None = None
    height_offset: int = Field(50, ge=0, le=100)
    tags: list[str] = Field(default_factory=list)
    sources: list[Source] = Field(default_factory=list)
    published: bool = False

    @field_validator("sources")
    @classmethod
    def widest_first(cls, v: list[Source]) -> list[Source]:
        return sorted(v, key=lambda s: s.width, reverse=True)

    @field_validator("published", mode="before")
    @classmethod
    def null_is_unpublished(cls, v):
        return bool(v)

    @field_validator("tags", mode="before")
    @classmethod
    def null_is_empty(cls, v):
        return list(v or [])

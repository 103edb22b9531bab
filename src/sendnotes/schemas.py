from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ItemStatus(str, Enum):
    """Lifecycle of an item. `deleted` is a soft-delete marker."""

    ACTIVE = "active"
    ARCHIVED = "archived"
    DELETED = "deleted"


def _clean_text(value: Optional[str]) -> Optional[str]:
    """Strip surrounding whitespace; blank strings become None."""
    if value is None:
        return None
    s = value.strip()
    return s or None


def _parse_week_key(value: Optional[str]) -> Optional[str]:
    """
    Validate a week key: an ISO date (YYYY-MM-DD) that falls on a Monday.
    """
    if value is None:
        return None
    try:
        day = date.fromisoformat(value.strip())
    except ValueError as e:
        raise ValueError("Invalid week_of format. Use the ISO date of a Monday (e.g., '2024-06-03').") from e
    if day.isoweekday() != 1:
        raise ValueError("week_of must be the date of a Monday")
    return day.isoformat()


# PUBLIC_INTERFACE
class ItemCreate(BaseModel):
    """
    Schema for creating a new item.

    At least one of url/notes must be present. `week_of` is normally filled in
    by the client at creation time and never recomputed afterwards; the
    service falls back to the current week when it is missing.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "url": "https://example.com/post",
                "title": "A good read",
                "notes": "Worth sharing this week",
                "category": "Reading",
                "week_of": "2024-06-03",
            }
        }
    )

    url: Optional[str] = Field(default=None, description="Link being captured", max_length=2048)
    title: Optional[str] = Field(default=None, description="Display title", max_length=500)
    notes: Optional[str] = Field(default=None, description="Free-form notes")
    category: Optional[str] = Field(default=None, description="Optional grouping label", max_length=100)
    status: ItemStatus = Field(default=ItemStatus.ACTIVE, description="Initial status")
    week_of: Optional[str] = Field(default=None, description="Monday (YYYY-MM-DD) of the item's week")

    @field_validator("url", "title", "notes", "category")
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        return _clean_text(v)

    @field_validator("week_of")
    @classmethod
    def validate_week_of(cls, v: Optional[str]) -> Optional[str]:
        return _parse_week_key(v)

    @model_validator(mode="after")
    def require_url_or_notes(self) -> "ItemCreate":
        """An item must carry a url or notes."""
        if self.url is None and self.notes is None:
            raise ValueError("url or notes required")
        return self


# PUBLIC_INTERFACE
class ItemUpdate(BaseModel):
    """
    Schema for updating an existing item.
    All fields are optional; only provided fields will be updated.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "A better title",
                "category": "Tools",
            }
        }
    )

    url: Optional[str] = Field(default=None, description="Link being captured", max_length=2048)
    title: Optional[str] = Field(default=None, description="Display title", max_length=500)
    notes: Optional[str] = Field(default=None, description="Free-form notes")
    category: Optional[str] = Field(default=None, description="Optional grouping label", max_length=100)
    status: Optional[ItemStatus] = Field(default=None, description="New status")

    @field_validator("url", "title", "notes", "category")
    @classmethod
    def strip_text(cls, v: Optional[str]) -> Optional[str]:
        return _clean_text(v)


# PUBLIC_INTERFACE
class ItemOut(BaseModel):
    """
    Schema returned by the item service for an item.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "0b5d3c1e-4f7a-4b8e-9d2c-6a1f0e9b8c7d",
                "url": "https://example.com/post",
                "title": "A good read",
                "notes": None,
                "category": "Reading",
                "status": "active",
                "week_of": "2024-06-03",
                "created_at": "2024-06-04T10:15:30.123456+00:00",
                "updated_at": "2024-06-04T10:15:30.123456+00:00",
            }
        }
    )

    id: str = Field(..., description="Unique identifier of the item")
    url: Optional[str] = Field(default=None, description="Link being captured")
    title: Optional[str] = Field(default=None, description="Display title")
    notes: Optional[str] = Field(default=None, description="Free-form notes")
    category: Optional[str] = Field(default=None, description="Optional grouping label")
    status: ItemStatus = Field(default=ItemStatus.ACTIVE, description="Lifecycle status")
    week_of: str = Field(..., description="Monday (YYYY-MM-DD) of the item's week")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        """
        Normalize timestamps to aware UTC so records from the client and the
        service compare and sort consistently. Naive values are taken as UTC.
        """
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


# PUBLIC_INTERFACE
class StatusTransition(BaseModel):
    """Bulk status change for every item of one week currently in `from_status`."""

    from_status: ItemStatus = Field(..., description="Status the items must currently have")
    week_of: str = Field(..., description="Monday (YYYY-MM-DD) of the week to transition")
    to_status: ItemStatus = Field(..., description="Status to move the items to")

    @field_validator("week_of")
    @classmethod
    def validate_week_of(cls, v: str) -> str:
        return _parse_week_key(v)  # type: ignore[return-value]


class TransitionResult(BaseModel):
    count: int = Field(..., description="Number of items transitioned")

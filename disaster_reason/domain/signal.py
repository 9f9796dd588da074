"""Canonical Signal model — one untrusted observation from one source.

A Signal is a *claim*, not a fact.  It records what a single source said,
where, and when.  Signals are immutable once created and are referenced,
never owned, by clusters and incidents.

Semantic validity (usable coordinates, a non-blank source identifier) is
checked by ``SignalStore.submit`` so a rejection can be reported as
``InvalidSignal`` instead of a bare parsing error.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from disaster_reason.domain.enums import EventType
from disaster_reason.foundation.clock import ensure_utc, utc_now
from disaster_reason.foundation.geo import valid_coordinates
from disaster_reason.foundation.identifiers import new_id


# ── Location ─────────────────────────────────────────────────────────────────

class GeoPoint(BaseModel):
    """WGS84 point."""

    lat: float
    lng: float

    model_config = {"frozen": True}

    @property
    def is_valid(self) -> bool:
        return valid_coordinates(self.lat, self.lng)

    def __str__(self) -> str:
        return f"({self.lat:.5f}, {self.lng:.5f})"


# ── Signal ───────────────────────────────────────────────────────────────────

class Signal(BaseModel):
    """An observation ingested from an official feed, a user, social media or news."""

    signal_id: UUID = Field(default_factory=new_id)
    source: str = Field(..., max_length=64, description="Source identifier, e.g. 'bmkg', 'tiktok'")
    text: str = Field(default="", max_length=10_000)
    location: Optional[GeoPoint] = Field(default=None, description="Where the event was observed")
    media_url: Optional[str] = None
    city_hint: Optional[str] = Field(default=None, max_length=128)
    event_type_hint: Optional[EventType] = Field(
        default=None,
        description="Event type asserted by the source itself (e.g. a BMKG quake feed)",
    )
    created_at: datetime = Field(default_factory=utc_now, description="When the event was observed")
    received_at: Optional[datetime] = Field(
        default=None,
        description="Stamped by the signal store on acceptance",
    )
    raw_payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    # ── Validators ───────────────────────────────────────────────────────

    @field_validator("created_at", "received_at")
    @classmethod
    def timestamps_are_utc(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None

    @field_validator("source")
    @classmethod
    def source_is_trimmed(cls, v: str) -> str:
        return v.strip()

    @property
    def has_valid_location(self) -> bool:
        return self.location is not None and self.location.is_valid

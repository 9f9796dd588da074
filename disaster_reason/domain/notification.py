"""Notification outbox, per-tuple dedup state, audit and watched places."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from disaster_reason.domain.enums import EventType, IncidentStatus
from disaster_reason.domain.signal import GeoPoint
from disaster_reason.foundation.clock import utc_now
from disaster_reason.foundation.identifiers import new_id

# (user_id, incident_id, user_place_id)
NotificationKey = tuple[str, UUID, str]


class WatchedPlace(BaseModel):
    """A place a user watches, with their per-place delivery preferences."""

    user_id: str = Field(..., min_length=1)
    user_place_id: str = Field(..., min_length=1)
    location: GeoPoint
    radius_m: float = Field(default=5_000.0, gt=0.0)
    muted_event_types: frozenset[EventType] = Field(default_factory=frozenset)
    min_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    is_active: bool = True

    model_config = {"frozen": True}

    def wants(self, event_type: EventType, confidence: float) -> bool:
        return (
            self.is_active
            and event_type not in self.muted_event_types
            and confidence >= self.min_confidence
        )


class NotificationOutboxEntry(BaseModel):
    """A pending delivery, consumed and removed by the delivery transport."""

    entry_id: UUID = Field(default_factory=new_id)
    user_id: str
    incident_id: UUID
    user_place_id: str
    notification_type: IncidentStatus
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime

    model_config = {"frozen": True}

    @property
    def key(self) -> NotificationKey:
        return (self.user_id, self.incident_id, self.user_place_id)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utc_now()) >= self.expires_at


class NotificationState(BaseModel):
    """Last status a user was notified about for one incident/place pair."""

    user_id: str
    incident_id: UUID
    user_place_id: str
    last_notified_status: Optional[IncidentStatus] = None
    last_notified_at: Optional[datetime] = None

    model_config = {"frozen": True}


class NotificationAudit(BaseModel):
    day: date
    incident_id: UUID
    notified_user_count: int = Field(..., ge=0)

    model_config = {"frozen": True}

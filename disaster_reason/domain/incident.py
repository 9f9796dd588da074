"""Incident, lifecycle audit and user verification records.

An Incident is the user-facing entity promoted from a cluster once
corroboration crosses the promotion threshold.  Its ``status`` only ever
changes through the lifecycle manager, and every change is paired with one
append-only LifecycleEvent.

Incident snapshots are immutable; the incident store swaps in a new
snapshot (with ``version`` bumped) on every committed change.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from disaster_reason.domain.enums import (
    EventType,
    IncidentStatus,
    Severity,
    TriggerSource,
    VerificationType,
)
from disaster_reason.domain.signal import GeoPoint
from disaster_reason.foundation.clock import utc_now
from disaster_reason.foundation.identifiers import new_id


class Incident(BaseModel):
    incident_id: UUID = Field(default_factory=new_id)
    cluster_id: UUID = Field(..., description="Weak reference to the originating cluster")
    event_type: EventType
    severity: Severity
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    status: IncidentStatus
    summary: str = ""
    city: str = ""
    center: GeoPoint = Field(..., description="Affected-area center used for notification fan-out")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_evidence_at: datetime = Field(default_factory=utc_now)
    version: int = Field(default=1, ge=1, description="Bumped on every committed change")

    model_config = {"frozen": True}

    @property
    def is_terminal(self) -> bool:
        return self.status in (IncidentStatus.RESOLVED, IncidentStatus.SUPPRESS)


class LifecycleEvent(BaseModel):
    """One status transition.  Append-only; never updated or deleted."""

    event_id: UUID = Field(default_factory=new_id)
    incident_id: UUID
    sequence: int = Field(default=0, ge=0, description="Per-incident order assigned on commit, breaks created_at ties")
    from_status: Optional[IncidentStatus] = None
    to_status: IncidentStatus
    triggered_by: TriggerSource
    changed_by: str = Field(..., min_length=1)
    reason: str = ""
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}


class Verification(BaseModel):
    """A user's feedback on an incident.

    ``reputation`` is the submitting user's trust weight; it bounds how far
    one user's feedback can move confidence and how much it counts toward
    resolution.
    """

    verification_id: UUID = Field(default_factory=new_id)
    incident_id: UUID
    user_id: str = Field(..., min_length=1, max_length=128)
    type: VerificationType
    reputation: float = Field(default=0.5, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}

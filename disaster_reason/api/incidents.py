"""REST endpoints for ingestion, verification, admin overrides and audit.

Domain errors map to HTTP status codes:
    InvalidSignal                  → 400
    InvalidTransition              → 400
    IncidentNotFound               → 404
    ConcurrentTransitionConflict   → 409
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from disaster_reason.adapters.registry import AdapterRegistry
from disaster_reason.api.ws_signal import parse_signal
from disaster_reason.core.pipeline import IncidentPipeline
from disaster_reason.domain.enums import IncidentStatus, VerificationType
from disaster_reason.domain.errors import (
    ConcurrentTransitionConflict,
    IncidentNotFound,
    InvalidSignal,
    InvalidTransition,
)
from disaster_reason.store.incident_store import IncidentStore
from disaster_reason.store.notification_store import NotificationStore

logger = logging.getLogger(__name__)


# ── Request bodies ───────────────────────────────────────────────────────────

class VerificationRequest(BaseModel):
    """A user's verification of an incident.

    Its weight is the user's server-side reputation.  A weight sent by the
    client is ignored.
    """

    user_id: str = Field(..., min_length=1, max_length=128)
    type: VerificationType


class TransitionRequest(BaseModel):
    to_status: IncidentStatus
    reason: str = ""
    actor: str = Field(..., min_length=1)


# ── Router factory ───────────────────────────────────────────────────────────

def create_incident_router(
    pipeline: IncidentPipeline,
    incidents: IncidentStore,
    notifications: NotificationStore,
    adapter_registry: AdapterRegistry | None = None,
) -> APIRouter:
    """Factory that wires the REST surface to concrete stores and pipeline."""

    router = APIRouter(prefix="/api", tags=["incidents"])

    @router.post("/signals", status_code=202)
    async def submit_signal(raw: dict[str, Any]) -> dict[str, Any]:
        try:
            result = await pipeline.ingest(parse_signal(raw, adapter_registry))
        except InvalidSignal as exc:
            raise HTTPException(status_code=400, detail=exc.reason) from exc
        return result.to_ack()

    @router.get("/incidents")
    async def list_incidents(status: Optional[IncidentStatus] = None) -> dict[str, Any]:
        items = [
            i.model_dump(mode="json")
            for i in await incidents.list()
            if status is None or i.status == status
        ]
        return {"incidents": items, "count": len(items)}

    @router.get("/incidents/{incident_id}")
    async def get_incident(incident_id: UUID) -> dict[str, Any]:
        incident = await incidents.get(incident_id)
        if incident is None:
            raise HTTPException(status_code=404, detail=f"Incident {incident_id} not found")
        return incident.model_dump(mode="json")

    @router.get("/incidents/{incident_id}/lifecycle")
    async def get_lifecycle(incident_id: UUID) -> dict[str, Any]:
        if await incidents.get(incident_id) is None:
            raise HTTPException(status_code=404, detail=f"Incident {incident_id} not found")
        events = await incidents.lifecycle(incident_id)
        return {
            "incident_id": str(incident_id),
            "events": [e.model_dump(mode="json") for e in events],
        }

    @router.post("/incidents/{incident_id}/verifications", status_code=201)
    async def submit_verification(incident_id: UUID, body: VerificationRequest) -> dict[str, Any]:
        try:
            outcome = await pipeline.submit_verification(
                incident_id, body.user_id, body.type,
            )
        except IncidentNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except ConcurrentTransitionConflict as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {
            "incident": outcome.incident.model_dump(mode="json") if outcome.incident else None,
            "transitions": [e.to_status.value for e in outcome.events],
            "error": outcome.error,
        }

    @router.post("/incidents/{incident_id}/transition")
    async def admin_transition(incident_id: UUID, body: TransitionRequest) -> dict[str, Any]:
        try:
            event = await pipeline.admin_transition(incident_id, body.to_status, body.reason, body.actor)
        except IncidentNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except InvalidTransition as exc:
            raise HTTPException(status_code=400, detail=exc.reason) from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except ConcurrentTransitionConflict as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return event.model_dump(mode="json")

    @router.get("/notifications/outbox")
    async def list_outbox(incident_id: Optional[UUID] = None) -> dict[str, Any]:
        entries = await notifications.outbox(incident_id)
        return {"entries": [e.model_dump(mode="json") for e in entries], "count": len(entries)}

    @router.get("/notifications/audit")
    async def list_audit(day: Optional[date] = None) -> dict[str, Any]:
        rows = await notifications.audit(day)
        return {"audit": [r.model_dump(mode="json") for r in rows]}

    return router

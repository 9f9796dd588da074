"""In-memory incident store with atomic status/audit commits.

Design notes:
    - An asyncio.Lock guards all mutations.
    - An incident snapshot and its LifecycleEvent are written together in
      one critical section, so the current ``status`` always equals the
      ``to_status`` of the latest event.
    - Commits are compare-and-set on ``version``: a writer that read a
      stale snapshot gets ConcurrentTransitionConflict and must re-read.
    - Lifecycle events, verifications and evaluation traces are
      append-only.
"""

from __future__ import annotations

import asyncio
import logging
from uuid import UUID

from disaster_reason.domain.errors import (
    ConcurrentTransitionConflict,
    IncidentNotFound,
)
from disaster_reason.domain.evaluation import EvaluationTrace
from disaster_reason.domain.incident import Incident, LifecycleEvent, Verification
from disaster_reason.foundation.clock import utc_now

logger = logging.getLogger(__name__)


class IncidentStore:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._incidents: dict[UUID, Incident] = {}
        self._by_cluster: dict[UUID, UUID] = {}
        self._events: dict[UUID, list[LifecycleEvent]] = {}
        self._verifications: dict[UUID, list[Verification]] = {}
        self._traces: list[EvaluationTrace] = []

    # ── Writes ───────────────────────────────────────────────────────────

    async def create(self, incident: Incident, event: LifecycleEvent) -> tuple[Incident, LifecycleEvent]:
        """Insert a new incident together with its creation event.

        Raises:
            ConcurrentTransitionConflict: The cluster already has an incident.
        """
        if event.from_status is not None or event.to_status != incident.status:
            raise ValueError("creation event must go from null to the incident's status")

        async with self._lock:
            existing = self._by_cluster.get(incident.cluster_id)
            if existing is not None:
                raise ConcurrentTransitionConflict(existing, 0, self._incidents[existing].version)

            stored_event = event.model_copy(update={"incident_id": incident.incident_id, "sequence": 1})
            stored = incident.model_copy(update={"version": 1})
            self._incidents[stored.incident_id] = stored
            self._by_cluster[stored.cluster_id] = stored.incident_id
            self._events[stored.incident_id] = [stored_event]
            self._verifications.setdefault(stored.incident_id, [])
            return stored, stored_event

    async def commit(
        self,
        updated: Incident,
        expected_version: int,
        event: LifecycleEvent | None = None,
    ) -> tuple[Incident, LifecycleEvent | None]:
        """Replace an incident snapshot, optionally appending a transition event.

        Raises:
            IncidentNotFound: Unknown incident id.
            ConcurrentTransitionConflict: The stored version moved on, or the
                event does not start from the stored status.
        """
        async with self._lock:
            current = self._incidents.get(updated.incident_id)
            if current is None:
                raise IncidentNotFound(updated.incident_id)
            if current.version != expected_version:
                raise ConcurrentTransitionConflict(updated.incident_id, expected_version, current.version)

            stored_event = None
            if event is not None:
                if event.from_status != current.status or event.to_status != updated.status:
                    raise ConcurrentTransitionConflict(updated.incident_id, expected_version, current.version)
                history = self._events[updated.incident_id]
                stored_event = event.model_copy(
                    update={"incident_id": updated.incident_id, "sequence": len(history) + 1}
                )
                history.append(stored_event)
            elif updated.status != current.status:
                raise ValueError("a status change must be committed with a lifecycle event")

            stored = updated.model_copy(
                update={"version": current.version + 1, "updated_at": utc_now()}
            )
            self._incidents[stored.incident_id] = stored
            return stored, stored_event

    async def add_verification(self, verification: Verification) -> Verification:
        async with self._lock:
            if verification.incident_id not in self._incidents:
                raise IncidentNotFound(verification.incident_id)
            self._verifications[verification.incident_id].append(verification)
            return verification

    async def record_trace(self, trace: EvaluationTrace) -> None:
        async with self._lock:
            self._traces.append(trace)

    # ── Reads ────────────────────────────────────────────────────────────

    async def get(self, incident_id: UUID) -> Incident | None:
        async with self._lock:
            return self._incidents.get(incident_id)

    async def require(self, incident_id: UUID) -> Incident:
        incident = await self.get(incident_id)
        if incident is None:
            raise IncidentNotFound(incident_id)
        return incident

    async def for_cluster(self, cluster_id: UUID) -> Incident | None:
        async with self._lock:
            incident_id = self._by_cluster.get(cluster_id)
            return self._incidents.get(incident_id) if incident_id else None

    async def list(self) -> list[Incident]:
        async with self._lock:
            return sorted(self._incidents.values(), key=lambda i: i.created_at)

    async def lifecycle(self, incident_id: UUID) -> list[LifecycleEvent]:
        async with self._lock:
            return list(self._events.get(incident_id, []))

    async def verifications(self, incident_id: UUID) -> list[Verification]:
        async with self._lock:
            return list(self._verifications.get(incident_id, []))

    async def traces(self, cluster_id: UUID | None = None) -> list[EvaluationTrace]:
        async with self._lock:
            if cluster_id is None:
                return list(self._traces)
            return [t for t in self._traces if t.cluster_id == cluster_id]

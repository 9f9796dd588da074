"""IncidentPipeline — single orchestration entry point for the service layer.

Flow for one signal:
    SignalStore.submit → Clusterer.assign → IncidentLifecycleManager
    (promote the cluster, or re-evaluate its incident) → NotificationDispatcher
    (as a transition listener).

The pipeline holds no state of its own; it only sequences the components.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from disaster_reason.core.lifecycle import IncidentLifecycleManager, TransitionOutcome
from disaster_reason.domain.cluster import Cluster
from disaster_reason.domain.enums import EventType, IncidentStatus, VerificationType
from disaster_reason.domain.incident import LifecycleEvent, Verification
from disaster_reason.domain.signal import Signal
from disaster_reason.foundation.clock import utc_now
from disaster_reason.store.clusterer import Clusterer
from disaster_reason.store.reputation import InMemoryReputationDirectory, ReputationDirectory
from disaster_reason.store.signal_store import SignalStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IngestResult:
    """What one ingested signal caused."""

    signal: Signal
    cluster: Cluster
    event_type: EventType
    cluster_created: bool
    outcome: TransitionOutcome | None

    @property
    def incident_id(self) -> UUID | None:
        if self.outcome is not None and self.outcome.incident is not None:
            return self.outcome.incident.incident_id
        return self.cluster.incident_id

    @property
    def status(self) -> IncidentStatus | None:
        if self.outcome is not None and self.outcome.incident is not None:
            return self.outcome.incident.status
        return None

    def to_ack(self) -> dict:
        return {
            "status": "accepted",
            "signal_id": str(self.signal.signal_id),
            "cluster_id": str(self.cluster.cluster_id),
            "event_type": self.event_type.value,
            "cluster_created": self.cluster_created,
            "incident_id": str(self.incident_id) if self.incident_id else None,
            "incident_status": self.status.value if self.status else None,
            "transitions": [
                e.to_status.value for e in (self.outcome.events if self.outcome else ())
            ],
        }


class IncidentPipeline:
    def __init__(
        self,
        signals: SignalStore,
        clusterer: Clusterer,
        lifecycle: IncidentLifecycleManager,
        reputations: ReputationDirectory | None = None,
    ) -> None:
        self._signals = signals
        self._clusterer = clusterer
        self._lifecycle = lifecycle
        self._reputations = reputations or InMemoryReputationDirectory()

    async def ingest(self, signal: Signal) -> IngestResult:
        """Store, cluster and evaluate one signal.

        Raises:
            InvalidSignal: Rejected at submission or clustering.
        """
        stored = await self._signals.submit(signal)
        assignment = await self._clusterer.assign(stored)
        outcome = None
        if assignment.joined:
            outcome = await self._lifecycle.on_cluster_updated(assignment.cluster)
        return IngestResult(
            signal=stored,
            cluster=assignment.cluster,
            event_type=assignment.event_type,
            cluster_created=assignment.created,
            outcome=outcome,
        )

    async def submit_verification(
        self,
        incident_id: UUID,
        user_id: str,
        type: VerificationType,
    ) -> TransitionOutcome:
        """Record a user's verification and re-evaluate the incident.

        The verification is weighted by the user's reputation from the
        reputation directory.

        Raises:
            IncidentNotFound: Unknown incident.
        """
        reputation = await self._reputations.reputation_of(user_id)
        verification = Verification(
            incident_id=incident_id, user_id=user_id, type=type, reputation=reputation,
        )
        return await self._lifecycle.submit_verification(verification)

    async def admin_transition(
        self,
        incident_id: UUID,
        to_status: IncidentStatus,
        reason: str,
        actor: str,
    ) -> LifecycleEvent:
        return await self._lifecycle.transition(incident_id, to_status, reason, actor)

    async def resolve_stale(self, now: datetime | None = None) -> list[TransitionOutcome]:
        """Close idle clusters and resolve incidents that went silent."""
        now = now or utc_now()
        await self._clusterer.sweep(now)
        outcomes = await self._lifecycle.resolve_stale(now)
        if outcomes:
            logger.info("Silence sweep resolved %d incident(s)", sum(1 for o in outcomes if o.transitioned))
        return outcomes

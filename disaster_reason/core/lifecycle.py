"""IncidentLifecycleManager — the incident state machine and its audit trail.

States: monitor, alert, suppress, resolved.  Creation is itself the first
transition (null → monitor).  Allowed moves:

    null     → monitor
    monitor  → alert | suppress | resolved
    alert    → monitor | suppress | resolved
    suppress → monitor            (admin only, reason required)
    resolved → monitor            (admin only, reason required)

Automatic rules run whenever new evidence changes the confidence score:
    - promote: score ≥ promotion_threshold and the cluster has enough
      signals (or an official source)
    - monitor → alert: score ≥ alert_threshold, official source present,
      or the AI recommends alert
    - alert → monitor: none of the alert conditions hold and the score is
      still at or above the suppress floor
    - monitor|alert → suppress: score below the suppress floor
    - monitor|alert → resolved: enough reputation-weighted "resolved"
      verifications from distinct users
    - suppress and resolved are terminal for automatic rules

Concurrency: one keyed lock per incident (and per cluster for promotion)
guarantees at most one in-flight transition per incident.  The store's
version compare-and-set catches writers that bypass the lock; the loser is
retried once against the fresh state.

A failed score computation never moves an incident: the failure is
returned in the TransitionOutcome and the incident is left untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Protocol, Sequence
from uuid import UUID

from disaster_reason.config import Settings
from disaster_reason.core.scorer import ConfidenceScorer, effective_verifications
from disaster_reason.domain.assessment import ConfidenceAssessment
from disaster_reason.domain.cluster import Cluster
from disaster_reason.domain.enums import (
    EventType,
    IncidentStatus,
    RecommendedAction,
    Severity,
    TriggerSource,
    VerificationType,
)
from disaster_reason.domain.errors import (
    ConcurrentTransitionConflict,
    IncidentNotFound,
    InvalidTransition,
)
from disaster_reason.domain.incident import Incident, LifecycleEvent, Verification
from disaster_reason.foundation.clock import utc_now
from disaster_reason.foundation.locks import KeyedLock
from disaster_reason.store.clusterer import Clusterer
from disaster_reason.store.incident_store import IncidentStore

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
AI_ACTOR = "ai-evaluator"

# Failures from a scorer or its evaluator that leave the incident untouched
SCORING_ERRORS = (ValueError, ArithmeticError, KeyError, TypeError)

# ── Transition table ─────────────────────────────────────────────────────────

ALLOWED_TRANSITIONS: dict[IncidentStatus | None, frozenset[IncidentStatus]] = {
    None: frozenset({IncidentStatus.MONITOR}),
    IncidentStatus.MONITOR: frozenset(
        {IncidentStatus.ALERT, IncidentStatus.SUPPRESS, IncidentStatus.RESOLVED}
    ),
    IncidentStatus.ALERT: frozenset(
        {IncidentStatus.MONITOR, IncidentStatus.SUPPRESS, IncidentStatus.RESOLVED}
    ),
    IncidentStatus.SUPPRESS: frozenset({IncidentStatus.MONITOR}),
    IncidentStatus.RESOLVED: frozenset({IncidentStatus.MONITOR}),
}

TERMINAL_STATUSES = frozenset({IncidentStatus.SUPPRESS, IncidentStatus.RESOLVED})


def transition_violation(
    from_status: IncidentStatus | None,
    to_status: IncidentStatus,
    triggered_by: TriggerSource,
    reason: str = "",
) -> str | None:
    """Why a move is not allowed, or None if it is."""
    if to_status not in ALLOWED_TRANSITIONS[from_status]:
        return "not in the transition table"
    if from_status is None and triggered_by == TriggerSource.ADMIN:
        return "incidents are created by the system, not by admins"
    if from_status in TERMINAL_STATUSES:
        if triggered_by != TriggerSource.ADMIN:
            return f"{from_status.value} is terminal for automatic transitions"
        if not reason.strip():
            return "reopening requires a reason"
    return None


def is_valid_walk(events: Iterable[LifecycleEvent]) -> bool:
    """True if the events, ordered by (created_at, sequence), form a legal path."""
    ordered = sorted(events, key=lambda e: (e.created_at, e.sequence))
    current: IncidentStatus | None = None
    for event in ordered:
        if event.from_status != current:
            return False
        if transition_violation(event.from_status, event.to_status, event.triggered_by, event.reason):
            return False
        current = event.to_status
    return True


# ── Policy ───────────────────────────────────────────────────────────────────

# Hours an event type's signals stay relevant; used as the silence period
# before a high-severity incident auto-resolves.
MAX_SIGNAL_AGE_HOURS: dict[EventType, float] = {
    EventType.EARTHQUAKE: 12,
    EventType.ACCIDENT: 6,
    EventType.POWER_OUTAGE: 12,
    EventType.FIRE: 24,
    EventType.FLOOD: 48,
    EventType.LANDSLIDE: 48,
    EventType.WHIRLWIND: 6,
    EventType.TORNADO: 6,
    EventType.TSUNAMI: 24,
    EventType.VOLCANO: 72,
    EventType.OTHER: 24,
}

RESOLUTION_SILENCE_HOURS: dict[Severity, float] = {
    Severity.LOW: 1,
    Severity.MEDIUM: 4,
}


@dataclass(frozen=True)
class LifecyclePolicy:
    """Thresholds driving automatic transitions."""

    promotion_threshold: float = 0.5
    min_signals_for_incident: int = 2
    alert_threshold: float = 0.8
    suppress_floor: float = 0.2
    resolution_weight_threshold: float = 3.0
    resolution_min_verifiers: int = 3
    max_signal_age_hours: dict[EventType, float] = field(default_factory=lambda: dict(MAX_SIGNAL_AGE_HOURS))
    silence_hours: dict[Severity, float] = field(default_factory=lambda: dict(RESOLUTION_SILENCE_HOURS))

    def __post_init__(self) -> None:
        if not 0.0 <= self.suppress_floor < self.promotion_threshold <= self.alert_threshold <= 1.0:
            raise ValueError(
                "thresholds must satisfy 0 <= suppress_floor < promotion_threshold "
                "<= alert_threshold <= 1"
            )
        if self.min_signals_for_incident < 1 or self.resolution_min_verifiers < 1:
            raise ValueError("signal and verifier minimums must be at least 1")
        if EventType.OTHER not in self.max_signal_age_hours:
            raise ValueError("max_signal_age_hours must cover EventType.OTHER")
        hours = [*self.max_signal_age_hours.values(), *self.silence_hours.values()]
        if any(h <= 0 for h in hours):
            raise ValueError("silence and signal age hours must be positive")

    @classmethod
    def from_settings(cls, settings: Settings) -> LifecyclePolicy:
        """Build a policy from application settings.

        Silence tables in settings are overrides merged over the built-in
        MAX_SIGNAL_AGE_HOURS and RESOLUTION_SILENCE_HOURS.
        """
        return cls(
            promotion_threshold=settings.promotion_threshold,
            min_signals_for_incident=settings.min_signals_for_incident,
            alert_threshold=settings.alert_threshold,
            suppress_floor=settings.suppress_floor,
            resolution_weight_threshold=settings.resolution_weight_threshold,
            resolution_min_verifiers=settings.resolution_min_verifiers,
            max_signal_age_hours={**MAX_SIGNAL_AGE_HOURS, **settings.max_signal_age_hours},
            silence_hours={**RESOLUTION_SILENCE_HOURS, **settings.silence_hours},
        )

    def silence_period(self, severity: Severity, event_type: EventType) -> timedelta:
        if severity == Severity.HIGH:
            hours = self.max_signal_age_hours.get(event_type, self.max_signal_age_hours[EventType.OTHER])
        else:
            hours = self.silence_hours.get(severity, 1)
        return timedelta(hours=hours)


def severity_for(assessment: ConfidenceAssessment, policy: LifecyclePolicy) -> Severity:
    if assessment.has_official_source or assessment.confidence_score >= policy.alert_threshold:
        return Severity.HIGH
    if assessment.confidence_score >= policy.promotion_threshold:
        return Severity.MEDIUM
    return Severity.LOW


@dataclass(frozen=True)
class Decision:
    to_status: IncidentStatus
    triggered_by: TriggerSource
    reason: str


def decide(
    current: IncidentStatus,
    assessment: ConfidenceAssessment,
    verifications: Sequence[Verification],
    policy: LifecyclePolicy,
) -> Decision | None:
    """Pure automatic-transition rule.  None means "stay where you are"."""
    if current in TERMINAL_STATUSES:
        return None

    resolvers = [v for v in effective_verifications(verifications) if v.type == VerificationType.RESOLVED]
    resolve_weight = sum(v.reputation for v in resolvers)
    if len(resolvers) >= policy.resolution_min_verifiers and resolve_weight >= policy.resolution_weight_threshold:
        return Decision(
            IncidentStatus.RESOLVED,
            TriggerSource.SYSTEM,
            f"{len(resolvers)} users reported resolved (weight {resolve_weight:.2f})",
        )

    score = assessment.confidence_score
    if score < policy.suppress_floor:
        return Decision(
            IncidentStatus.SUPPRESS,
            TriggerSource.SYSTEM,
            f"confidence {score:.2f} below suppress floor {policy.suppress_floor:.2f}",
        )

    ai_says_alert = assessment.recommended_action == RecommendedAction.ALERT
    rules_say_alert = assessment.has_official_source or score >= policy.alert_threshold

    if current == IncidentStatus.MONITOR and (rules_say_alert or ai_says_alert):
        if assessment.has_official_source:
            return Decision(IncidentStatus.ALERT, TriggerSource.SYSTEM, "official source present")
        if score >= policy.alert_threshold:
            return Decision(
                IncidentStatus.ALERT,
                TriggerSource.SYSTEM,
                f"confidence {score:.2f} reached alert threshold {policy.alert_threshold:.2f}",
            )
        return Decision(IncidentStatus.ALERT, TriggerSource.AI, "AI evaluation recommends alert")

    if current == IncidentStatus.ALERT and not (rules_say_alert or ai_says_alert):
        return Decision(
            IncidentStatus.MONITOR,
            TriggerSource.SYSTEM,
            f"confidence {score:.2f} fell below alert threshold {policy.alert_threshold:.2f}",
        )
    return None


# ── Outcome & listeners ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class TransitionOutcome:
    """What happened to one incident on one evaluation pass.

    ``events`` holds the committed transitions (zero, one, or two when a
    fresh incident is created and escalated in the same pass).
    """

    incident: Incident | None
    events: tuple[LifecycleEvent, ...] = ()
    assessment: ConfidenceAssessment | None = None
    error: str | None = None

    @property
    def transitioned(self) -> bool:
        return bool(self.events)


class TransitionListener(Protocol):
    async def on_transition(self, incident: Incident, event: LifecycleEvent) -> object:
        ...


# ── Manager ──────────────────────────────────────────────────────────────────

class IncidentLifecycleManager:
    """Applies automatic and admin transitions, one at a time per incident.

    Args:
        store: Incident persistence with atomic status/audit commits.
        clusterer: Source of the evidence behind each incident.
        scorer: Confidence computation (optionally AI-assisted).
        policy: Transition thresholds.
        listeners: Notified after each committed transition, in commit order.
    """

    def __init__(
        self,
        store: IncidentStore,
        clusterer: Clusterer,
        scorer: ConfidenceScorer,
        policy: LifecyclePolicy | None = None,
        listeners: Sequence[TransitionListener] = (),
    ) -> None:
        self._store = store
        self._clusterer = clusterer
        self._scorer = scorer
        self._policy = policy or LifecyclePolicy()
        self._listeners = list(listeners)
        self._incident_locks = KeyedLock()
        self._cluster_locks = KeyedLock()

    @property
    def policy(self) -> LifecyclePolicy:
        return self._policy

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    # ── Evidence-driven entry points ─────────────────────────────────────

    async def on_cluster_updated(self, cluster: Cluster) -> TransitionOutcome | None:
        """Promote the cluster or re-evaluate its incident after new evidence.

        Returns None when a non-promoted cluster is still below the bar.
        """
        incident = await self._store.for_cluster(cluster.cluster_id)
        if incident is not None:
            return await self.reevaluate(incident.incident_id)
        return await self.consider_promotion(cluster)

    async def consider_promotion(self, cluster: Cluster) -> TransitionOutcome | None:
        async with self._cluster_locks.hold(cluster.cluster_id):
            existing = await self._store.for_cluster(cluster.cluster_id)
            if existing is None and cluster.is_closed:
                return None
            if existing is None:
                return await self._promote(cluster)
        # Lost the promotion race; the new signal still counts as evidence
        return await self.reevaluate(existing.incident_id)

    async def _promote(self, cluster: Cluster) -> TransitionOutcome | None:
        """Must be called while holding the cluster lock."""
        event_type = cluster.event_type_guess or EventType.OTHER
        try:
            assessment = await self._assess(cluster, event_type, [], None)
        except SCORING_ERRORS as exc:
            logger.error("Scoring failed for cluster %s, not promoted: %s", cluster.cluster_id, exc)
            return TransitionOutcome(incident=None, error=str(exc))

        p = self._policy
        enough_signals = cluster.size >= p.min_signals_for_incident or assessment.has_official_source
        if assessment.confidence_score < p.promotion_threshold or not enough_signals:
            logger.debug(
                "Cluster %s below promotion bar (score=%.3f, signals=%d)",
                cluster.cluster_id, assessment.confidence_score, cluster.size,
            )
            return None

        now = utc_now()
        draft = Incident(
            cluster_id=cluster.cluster_id,
            event_type=event_type,
            severity=severity_for(assessment, p),
            confidence_score=assessment.confidence_score,
            status=IncidentStatus.MONITOR,
            summary=self._summary(cluster, event_type, assessment),
            city=cluster.city,
            center=cluster.centroid,
            created_at=now,
            updated_at=now,
            last_evidence_at=cluster.time_end,
        )
        creation = LifecycleEvent(
            incident_id=draft.incident_id,
            from_status=None,
            to_status=IncidentStatus.MONITOR,
            triggered_by=TriggerSource.SYSTEM,
            changed_by=SYSTEM_ACTOR,
            reason=f"cluster confidence {assessment.confidence_score:.2f} reached promotion threshold",
            confidence_score=assessment.confidence_score,
            created_at=now,
        )
        incident, event = await self._store.create(draft, creation)
        await self._clusterer.promote(cluster.cluster_id, incident.incident_id)
        logger.info(
            "Incident %s created from cluster %s (%s, score=%.3f)",
            incident.incident_id, cluster.cluster_id, event_type.value, incident.confidence_score,
        )

        # Same evidence may already justify escalation; the incident has
        # passed through monitor, so apply the automatic rules once more.
        async with self._incident_locks.hold(incident.incident_id):
            await self._notify(incident, event)
            follow_up = await self._apply(incident.incident_id, assessment)
        return TransitionOutcome(
            incident=follow_up.incident or incident,
            events=(event, *follow_up.events),
            assessment=assessment,
        )

    async def reevaluate(self, incident_id: UUID) -> TransitionOutcome:
        """Recompute confidence from current evidence and apply automatic rules."""
        async with self._incident_locks.hold(incident_id):
            incident = await self._store.require(incident_id)
            cluster = await self._clusterer.get(incident.cluster_id)
            if cluster is None:
                return TransitionOutcome(incident=incident, error=f"cluster {incident.cluster_id} missing")
            verifications = await self._store.verifications(incident_id)
            try:
                assessment = await self._assess(cluster, incident.event_type, verifications, incident_id)
            except SCORING_ERRORS as exc:
                logger.error("Scoring failed for incident %s, left unchanged: %s", incident_id, exc)
                return TransitionOutcome(incident=incident, error=str(exc))
            return await self._apply(incident_id, assessment, last_evidence_at=cluster.time_end)

    async def submit_verification(self, verification: Verification) -> TransitionOutcome:
        await self._store.add_verification(verification)
        logger.info(
            "Verification %s (%s) from %s on incident %s",
            verification.verification_id, verification.type.value,
            verification.user_id, verification.incident_id,
        )
        return await self.reevaluate(verification.incident_id)

    # ── Admin override ───────────────────────────────────────────────────

    async def transition(
        self,
        incident_id: UUID,
        to_status: IncidentStatus,
        reason: str,
        actor: str,
    ) -> LifecycleEvent:
        """Force a transition on behalf of an admin.

        Raises:
            IncidentNotFound: Unknown incident.
            InvalidTransition: Move not allowed from the current status.
        """
        if not actor.strip():
            raise ValueError("actor is required")

        async with self._incident_locks.hold(incident_id):
            for attempt in (1, 2):
                incident = await self._store.require(incident_id)
                violation = transition_violation(incident.status, to_status, TriggerSource.ADMIN, reason)
                if violation:
                    logger.warning(
                        "Rejected admin transition %s -> %s on %s by %s: %s",
                        incident.status.value, to_status.value, incident_id, actor, violation,
                    )
                    raise InvalidTransition(incident_id, incident.status.value, to_status.value, violation)
                try:
                    committed, event = await self._commit_transition(
                        incident,
                        Decision(to_status, TriggerSource.ADMIN, reason),
                        changed_by=actor,
                    )
                except ConcurrentTransitionConflict:
                    if attempt == 2:
                        raise
                    logger.warning("Admin transition on %s raced, retrying against current state", incident_id)
                    continue
                await self._notify(committed, event)
                return event
        raise AssertionError("unreachable")

    # ── Silence-based resolution ─────────────────────────────────────────

    async def resolve_stale(self, now: datetime | None = None) -> list[TransitionOutcome]:
        """Resolve active incidents that have gone quiet for their silence period."""
        now = now or utc_now()
        outcomes: list[TransitionOutcome] = []
        for incident in await self._store.list():
            if incident.is_terminal:
                continue
            silence = self._policy.silence_period(incident.severity, incident.event_type)
            if now - incident.last_evidence_at < silence:
                continue
            async with self._incident_locks.hold(incident.incident_id):
                current = await self._store.require(incident.incident_id)
                if current.is_terminal or now - current.last_evidence_at < silence:
                    continue
                hours = silence.total_seconds() / 3600
                decision = Decision(
                    IncidentStatus.RESOLVED, TriggerSource.SYSTEM, f"silence > {hours:g}h",
                )
                outcomes.append(await self._commit_with_retry(current.incident_id, decision))
        return outcomes

    # ── Internals ────────────────────────────────────────────────────────

    async def _assess(
        self,
        cluster: Cluster,
        event_type: EventType,
        verifications: Sequence[Verification],
        incident_id: UUID | None,
    ) -> ConfidenceAssessment:
        assessment, trace = await self._scorer.assess(
            cluster.cluster_id,
            event_type,
            cluster.signals,
            verifications,
            incident_id=incident_id,
            city=cluster.city,
        )
        if trace is not None:
            await self._store.record_trace(trace)
        return assessment

    async def _apply(
        self,
        incident_id: UUID,
        assessment: ConfidenceAssessment,
        last_evidence_at: datetime | None = None,
    ) -> TransitionOutcome:
        """Must be called while holding the incident lock."""
        for attempt in (1, 2):
            incident = await self._store.require(incident_id)
            verifications = await self._store.verifications(incident_id)
            decision = decide(incident.status, assessment, verifications, self._policy)
            try:
                if decision is None:
                    updated, _ = await self._store.commit(
                        self._rescored(incident, assessment, last_evidence_at),
                        expected_version=incident.version,
                    )
                    return TransitionOutcome(incident=updated, assessment=assessment)
                committed, event = await self._commit_transition(
                    incident, decision, assessment=assessment, last_evidence_at=last_evidence_at,
                )
            except ConcurrentTransitionConflict:
                if attempt == 2:
                    raise
                logger.warning("Transition on %s raced, retrying against current state", incident_id)
                continue
            await self._notify(committed, event)
            return TransitionOutcome(incident=committed, events=(event,), assessment=assessment)
        raise AssertionError("unreachable")

    async def _commit_with_retry(self, incident_id: UUID, decision: Decision) -> TransitionOutcome:
        """Must be called while holding the incident lock."""
        for attempt in (1, 2):
            incident = await self._store.require(incident_id)
            if transition_violation(incident.status, decision.to_status, decision.triggered_by, decision.reason):
                return TransitionOutcome(incident=incident)
            try:
                committed, event = await self._commit_transition(incident, decision)
            except ConcurrentTransitionConflict:
                if attempt == 2:
                    raise
                continue
            await self._notify(committed, event)
            return TransitionOutcome(incident=committed, events=(event,))
        raise AssertionError("unreachable")

    async def _commit_transition(
        self,
        incident: Incident,
        decision: Decision,
        changed_by: str | None = None,
        assessment: ConfidenceAssessment | None = None,
        last_evidence_at: datetime | None = None,
    ) -> tuple[Incident, LifecycleEvent]:
        violation = transition_violation(incident.status, decision.to_status, decision.triggered_by, decision.reason)
        if violation:
            raise InvalidTransition(incident.incident_id, incident.status.value, decision.to_status.value, violation)

        base = self._rescored(incident, assessment, last_evidence_at) if assessment else incident
        updated = base.model_copy(update={"status": decision.to_status})
        event = LifecycleEvent(
            incident_id=incident.incident_id,
            from_status=incident.status,
            to_status=decision.to_status,
            triggered_by=decision.triggered_by,
            changed_by=changed_by or (AI_ACTOR if decision.triggered_by == TriggerSource.AI else SYSTEM_ACTOR),
            reason=decision.reason,
            confidence_score=updated.confidence_score,
        )
        committed, stored_event = await self._store.commit(updated, incident.version, event)
        assert stored_event is not None
        logger.info(
            "Incident %s: %s -> %s by %s (%s)",
            committed.incident_id, incident.status.value, decision.to_status.value,
            decision.triggered_by.value, decision.reason,
        )

        if decision.to_status in TERMINAL_STATUSES:
            await self._clusterer.close(committed.cluster_id)
        return committed, stored_event

    def _rescored(
        self,
        incident: Incident,
        assessment: ConfidenceAssessment | None,
        last_evidence_at: datetime | None,
    ) -> Incident:
        update: dict = {}
        if assessment is not None:
            update["confidence_score"] = assessment.confidence_score
            update["severity"] = severity_for(assessment, self._policy)
        if last_evidence_at is not None and last_evidence_at > incident.last_evidence_at:
            update["last_evidence_at"] = last_evidence_at
        return incident.model_copy(update=update)

    @staticmethod
    def _summary(cluster: Cluster, event_type: EventType, assessment: ConfidenceAssessment) -> str:
        sources = ", ".join(c.value for c in assessment.categories) or "unverified sources"
        place = cluster.city or str(cluster.centroid)
        return f"Possible {event_type.value.replace('_', ' ')} near {place}: {cluster.size} signal(s) from {sources}"

    async def _notify(self, incident: Incident, event: LifecycleEvent) -> None:
        for listener in self._listeners:
            await listener.on_transition(incident, event)

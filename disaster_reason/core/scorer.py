"""ConfidenceScorer — multi-vector confidence over a signal set.

Design principles:
    1. ``score`` is a pure function of (signals, verifications, evaluation).
    2. No side effects, no state mutation, no I/O.
    3. Deterministic: inputs are de-duplicated and sorted by id before any
       arithmetic, so re-scoring an unchanged evidence set reproduces the
       same value no matter the arrival order.
    4. Trust weights come from an injected SourceTrustTable and every
       constant lives in an explicit ScoringPolicy.

Score formula:
    base      = min(Σ weight(source_i) over distinct signals, 1.0)
    diverse   = min(base * diversity_multiplier, 1.0)   if ≥ 2 categories
                base                                     otherwise
    shift     = clamp(Σ step·rep(confirm|still_happening) − Σ step·rep(false),
                      −max_verification_shift, +max_verification_shift)
    rule      = clamp(diverse + shift, 0, 1)
    merged    = (1 − ai_weight) · rule + ai_weight · ai_confidence   (if AI verdict)
    final     = max(merged, official_floor)   if any official source present

``assess`` wraps ``score`` with the AI evaluation call: the evaluator runs
under a timeout and any failure degrades to the rule-based score.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Sequence
from uuid import UUID

from disaster_reason.core.evaluator import Evaluator
from disaster_reason.domain.assessment import ConfidenceAssessment
from disaster_reason.domain.enums import (
    ConsistencyAssessment,
    EventType,
    SourceCategory,
    VerificationType,
)
from disaster_reason.domain.errors import ScoringUnavailable
from disaster_reason.domain.evaluation import (
    Evaluation,
    EvaluationTrace,
    EvidenceItem,
    IncidentEvidence,
)
from disaster_reason.domain.incident import Verification
from disaster_reason.domain.signal import Signal
from disaster_reason.domain.trust import SourceTrustTable

logger = logging.getLogger(__name__)

_SUPPORTING = (VerificationType.CONFIRM, VerificationType.STILL_HAPPENING)


@dataclass(frozen=True)
class ScoringPolicy:
    """Tunable constants for the confidence formula."""

    diversity_multiplier: float = 1.2
    official_floor: float = 0.8
    verification_step: float = 0.05
    max_verification_shift: float = 0.2
    # Share of the AI verdict in the merged score; strictly inside (0, 1)
    ai_weight: float = 0.5
    evaluation_timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.diversity_multiplier <= 1.0:
            raise ValueError("diversity_multiplier must be greater than 1.0")
        if not 0.0 < self.ai_weight < 1.0:
            raise ValueError("ai_weight must be strictly between 0 and 1")
        if not 0.0 <= self.official_floor <= 1.0:
            raise ValueError("official_floor must be within [0, 1]")
        if self.evaluation_timeout_seconds <= 0:
            raise ValueError("evaluation_timeout_seconds must be positive")


def effective_verifications(verifications: Iterable[Verification]) -> list[Verification]:
    """Latest verification per user, ordered by user id."""
    latest: dict[str, Verification] = {}
    for v in sorted(verifications, key=lambda v: (v.created_at, str(v.verification_id))):
        latest[v.user_id] = v
    return [latest[user] for user in sorted(latest)]


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(value, high))


class ConfidenceScorer:
    """Stateless confidence computation with optional AI merge."""

    def __init__(
        self,
        trust: SourceTrustTable,
        policy: ScoringPolicy | None = None,
        evaluator: Evaluator | None = None,
    ) -> None:
        self._trust = trust
        self._policy = policy or ScoringPolicy()
        self._evaluator = evaluator

    @property
    def trust(self) -> SourceTrustTable:
        return self._trust

    # ── Pure scoring ─────────────────────────────────────────────────────

    def score(
        self,
        signals: Iterable[Signal],
        verifications: Iterable[Verification] = (),
        evaluation: Evaluation | None = None,
    ) -> ConfidenceAssessment:
        """Score an evidence set.  Pure and deterministic."""
        p = self._policy
        distinct = self._distinct(signals)

        base = _clamp(sum(self._trust.weight(s.source) for s in distinct))
        categories = sorted(
            {c for c in (self._trust.category(s.source) for s in distinct) if c is not None},
            key=lambda c: c.value,
        )
        has_official = SourceCategory.OFFICIAL in categories
        diversity_applied = len(categories) >= 2
        diverse = _clamp(base * p.diversity_multiplier) if diversity_applied else base

        shift = self._verification_shift(verifications)
        rule = _clamp(diverse + shift)

        final = rule
        if evaluation is not None:
            final = (1.0 - p.ai_weight) * rule + p.ai_weight * evaluation.confidence_score
        if has_official:
            final = max(final, p.official_floor)

        return ConfidenceAssessment(
            confidence_score=round(_clamp(final), 4),
            rule_score=round(rule, 4),
            base_weight=round(base, 4),
            signal_count=len(distinct),
            categories=categories,
            diversity_applied=diversity_applied,
            has_official_source=has_official,
            verification_shift=round(shift, 4),
            consistency_assessment=(
                evaluation.consistency_assessment
                if evaluation is not None
                else self._rule_consistency(categories)
            ),
            recommended_action=evaluation.recommended_action if evaluation is not None else None,
            ai_confidence=evaluation.confidence_score if evaluation is not None else None,
        )

    # ── Scoring with AI evaluation ───────────────────────────────────────

    async def assess(
        self,
        cluster_id: UUID,
        event_type: EventType,
        signals: Sequence[Signal],
        verifications: Sequence[Verification] = (),
        incident_id: UUID | None = None,
        city: str = "",
    ) -> tuple[ConfidenceAssessment, EvaluationTrace | None]:
        """Score, consulting the AI evaluator if one is configured.

        Returns the assessment and the trace of the evaluator call (None if
        no evaluator is configured).  Evaluator timeouts and failures are
        logged and recorded in the trace; the rule-based score is returned.
        """
        rule_only = self.score(signals, verifications)
        if self._evaluator is None:
            return rule_only, None

        evidence = self._evidence(cluster_id, incident_id, event_type, city, signals, verifications, rule_only)
        try:
            evaluation = await self._evaluate(evidence)
        except ScoringUnavailable as exc:
            logger.warning(
                "AI evaluation unavailable for cluster %s, using rule-based score %.3f: %s",
                cluster_id, rule_only.confidence_score, exc,
            )
            trace = EvaluationTrace(
                cluster_id=cluster_id, incident_id=incident_id, error=str(exc), degraded=True,
            )
            return rule_only.model_copy(update={"evaluation_degraded": True}), trace

        assessment = self.score(signals, verifications, evaluation)
        logger.debug(
            "Cluster %s: rule=%.3f ai=%.3f merged=%.3f (%s)",
            cluster_id, assessment.rule_score, evaluation.confidence_score,
            assessment.confidence_score, evaluation.consistency_assessment.value,
        )
        trace = EvaluationTrace(cluster_id=cluster_id, incident_id=incident_id, evaluation=evaluation)
        return assessment, trace

    async def _evaluate(self, evidence: IncidentEvidence) -> Evaluation:
        assert self._evaluator is not None
        try:
            return await asyncio.wait_for(
                self._evaluator.evaluate(evidence),
                timeout=self._policy.evaluation_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise ScoringUnavailable(
                f"evaluation timed out after {self._policy.evaluation_timeout_seconds}s"
            ) from exc
        except ScoringUnavailable:
            raise
        except Exception as exc:
            raise ScoringUnavailable(f"evaluator failed: {exc}") from exc

    # ── Helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _distinct(signals: Iterable[Signal]) -> list[Signal]:
        by_id = {s.signal_id: s for s in signals}
        return [by_id[k] for k in sorted(by_id, key=str)]

    def _verification_shift(self, verifications: Iterable[Verification]) -> float:
        p = self._policy
        support = 0.0
        against = 0.0
        for v in effective_verifications(verifications):
            if v.type in _SUPPORTING:
                support += p.verification_step * v.reputation
            elif v.type == VerificationType.FALSE:
                against += p.verification_step * v.reputation
        return _clamp(support - against, -p.max_verification_shift, p.max_verification_shift)

    @staticmethod
    def _rule_consistency(categories: list[SourceCategory]) -> ConsistencyAssessment:
        if len(categories) >= 3 or (SourceCategory.OFFICIAL in categories and len(categories) >= 2):
            return ConsistencyAssessment.STRONG
        if len(categories) == 2:
            return ConsistencyAssessment.MODERATE
        return ConsistencyAssessment.WEAK

    def _evidence(
        self,
        cluster_id: UUID,
        incident_id: UUID | None,
        event_type: EventType,
        city: str,
        signals: Sequence[Signal],
        verifications: Sequence[Verification],
        rule_only: ConfidenceAssessment,
    ) -> IncidentEvidence:
        effective = effective_verifications(verifications)
        return IncidentEvidence(
            cluster_id=cluster_id,
            incident_id=incident_id,
            event_type=event_type,
            city=city,
            items=[
                EvidenceItem(
                    source=s.source,
                    category=self._trust.category(s.source),
                    text=s.text[:500],
                    observed_at=s.created_at,
                )
                for s in sorted(self._distinct(signals), key=lambda s: s.created_at)
            ],
            rule_score=rule_only.rule_score,
            category_count=rule_only.category_count,
            has_official_source=rule_only.has_official_source,
            confirmations=sum(1 for v in effective if v.type in _SUPPORTING),
            rejections=sum(1 for v in effective if v.type == VerificationType.FALSE),
        )

"""Tests for the ConfidenceScorer."""

import asyncio
import random
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from disaster_reason.core.scorer import ConfidenceScorer, ScoringPolicy, effective_verifications
from disaster_reason.domain.enums import (
    ConsistencyAssessment,
    EventType,
    RecommendedAction,
    SourceCategory,
    VerificationType,
)
from disaster_reason.domain.errors import ScoringUnavailable
from disaster_reason.domain.evaluation import Evaluation, IncidentEvidence
from disaster_reason.domain.incident import Verification
from disaster_reason.domain.signal import Signal
from disaster_reason.domain.trust import load_trust_table

from tests.test_signal import _valid_signal

_BASE = datetime(2026, 2, 13, 8, 0, tzinfo=timezone.utc)


def _signal(source: str, **kw) -> Signal:
    return Signal.model_validate(_valid_signal(source=source, **kw))


def _verification(user: str, type: VerificationType, reputation: float = 1.0, offset_s: int = 0) -> Verification:
    return Verification(
        incident_id=uuid4(),
        user_id=user,
        type=type,
        reputation=reputation,
        created_at=_BASE + timedelta(seconds=offset_s),
    )


class _StubEvaluator:
    def __init__(self, evaluation: Evaluation) -> None:
        self.evaluation = evaluation
        self.seen: list[IncidentEvidence] = []

    async def evaluate(self, evidence: IncidentEvidence) -> Evaluation:
        self.seen.append(evidence)
        return self.evaluation


class _SlowEvaluator:
    async def evaluate(self, evidence: IncidentEvidence) -> Evaluation:
        await asyncio.sleep(5)
        raise AssertionError("should have timed out")


class _FailingEvaluator:
    async def evaluate(self, evidence: IncidentEvidence) -> Evaluation:
        raise RuntimeError("quota exceeded")


@pytest.fixture
def scorer() -> ConfidenceScorer:
    return ConfidenceScorer(load_trust_table())


class TestRuleScore:
    def test_single_category_sums_weights(self, scorer: ConfidenceScorer) -> None:
        result = scorer.score([_signal("tiktok") for _ in range(3)])
        assert result.confidence_score == pytest.approx(0.6)
        assert result.base_weight == pytest.approx(0.6)
        assert not result.diversity_applied
        assert result.categories == [SourceCategory.SOCIAL_MEDIA]
        assert result.consistency_assessment == ConsistencyAssessment.WEAK

    def test_base_is_capped_at_one(self, scorer: ConfidenceScorer) -> None:
        result = scorer.score([_signal("bmkg") for _ in range(4)])
        assert result.base_weight == 1.0
        assert result.confidence_score == 1.0

    def test_diversity_multiplier_applies_with_two_categories(self, scorer: ConfidenceScorer) -> None:
        result = scorer.score([_signal("tiktok"), _signal("user_report")])
        assert result.diversity_applied
        assert result.confidence_score == pytest.approx(0.54)
        assert result.consistency_assessment == ConsistencyAssessment.MODERATE

    def test_three_categories_are_strong(self, scorer: ConfidenceScorer) -> None:
        result = scorer.score([_signal("tiktok"), _signal("user_report"), _signal("rss")])
        assert result.consistency_assessment == ConsistencyAssessment.STRONG
        assert result.category_count == 3

    def test_official_source_floor(self) -> None:
        table = load_trust_table()
        scorer = ConfidenceScorer(table, ScoringPolicy(official_floor=0.8))
        result = scorer.score([_signal("bmkg")])
        assert result.has_official_source
        assert result.rule_score == pytest.approx(0.4)
        assert result.confidence_score == 0.8

    def test_unknown_source_counts_default_weight(self, scorer: ConfidenceScorer) -> None:
        result = scorer.score([_signal("random-blog")])
        assert result.confidence_score == pytest.approx(0.1)
        assert result.categories == []

    def test_unknown_source_never_outweighs_named(self, scorer: ConfidenceScorer) -> None:
        unknown = scorer.score([_signal("random-blog")]).confidence_score
        for name in scorer.trust.sources:
            assert scorer.score([_signal(name)]).confidence_score > unknown

    def test_duplicate_signal_counted_once(self, scorer: ConfidenceScorer) -> None:
        s = _signal("tiktok")
        assert scorer.score([s, s, s]).confidence_score == pytest.approx(0.2)

    def test_empty_set_scores_zero(self, scorer: ConfidenceScorer) -> None:
        result = scorer.score([])
        assert result.confidence_score == 0.0
        assert result.signal_count == 0


class TestIdempotence:
    def test_same_input_same_output(self, scorer: ConfidenceScorer) -> None:
        signals = [_signal(src) for src in ("tiktok", "user_report", "rss", "unknown", "bmkg")]
        assert scorer.score(signals) == scorer.score(signals)

    def test_order_does_not_matter(self, scorer: ConfidenceScorer) -> None:
        signals = [_signal(src) for src in ("tiktok", "user_report", "rss", "twitter", "blog")]
        shuffled = list(signals)
        random.Random(7).shuffle(shuffled)
        assert scorer.score(signals) == scorer.score(shuffled)


class TestVerificationShift:
    def test_confirmations_raise_score(self, scorer: ConfidenceScorer) -> None:
        signals = [_signal("tiktok") for _ in range(3)]
        verifications = [_verification(f"u{i}", VerificationType.CONFIRM) for i in range(2)]
        result = scorer.score(signals, verifications)
        assert result.verification_shift == pytest.approx(0.1)
        assert result.confidence_score == pytest.approx(0.7)

    def test_false_reports_lower_score(self, scorer: ConfidenceScorer) -> None:
        signals = [_signal("tiktok") for _ in range(3)]
        result = scorer.score(signals, [_verification("u1", VerificationType.FALSE)])
        assert result.confidence_score == pytest.approx(0.55)

    def test_shift_is_clamped(self, scorer: ConfidenceScorer) -> None:
        signals = [_signal("tiktok") for _ in range(3)]
        verifications = [_verification(f"u{i}", VerificationType.FALSE) for i in range(20)]
        result = scorer.score(signals, verifications)
        assert result.verification_shift == pytest.approx(-0.2)

    def test_reputation_scales_shift(self, scorer: ConfidenceScorer) -> None:
        result = scorer.score(
            [_signal("tiktok")],
            [_verification("u1", VerificationType.STILL_HAPPENING, reputation=0.5)],
        )
        assert result.verification_shift == pytest.approx(0.025)

    def test_latest_verification_per_user_counts(self) -> None:
        latest = effective_verifications([
            _verification("u1", VerificationType.CONFIRM, offset_s=0),
            _verification("u1", VerificationType.FALSE, offset_s=60),
            _verification("u2", VerificationType.CONFIRM, offset_s=30),
        ])
        assert [(v.user_id, v.type) for v in latest] == [
            ("u1", VerificationType.FALSE),
            ("u2", VerificationType.CONFIRM),
        ]


class TestAiMerge:
    def test_merge_is_weighted_average(self, scorer: ConfidenceScorer) -> None:
        evaluation = Evaluation(confidence_score=1.0, consistency_assessment=ConsistencyAssessment.STRONG)
        result = scorer.score([_signal("tiktok") for _ in range(3)], evaluation=evaluation)
        assert result.rule_score == pytest.approx(0.6)
        assert result.confidence_score == pytest.approx(0.8)
        assert result.consistency_assessment == ConsistencyAssessment.STRONG
        assert result.ai_confidence == 1.0

    def test_official_floor_applies_after_merge(self, scorer: ConfidenceScorer) -> None:
        evaluation = Evaluation(confidence_score=0.0, consistency_assessment=ConsistencyAssessment.WEAK)
        result = scorer.score([_signal("bmkg")], evaluation=evaluation)
        assert result.confidence_score == 0.8

    @pytest.mark.asyncio
    async def test_assess_without_evaluator(self, scorer: ConfidenceScorer) -> None:
        assessment, trace = await scorer.assess(uuid4(), EventType.FLOOD, [_signal("tiktok")])
        assert trace is None
        assert not assessment.evaluation_degraded

    @pytest.mark.asyncio
    async def test_assess_merges_stub_verdict(self) -> None:
        stub = _StubEvaluator(Evaluation(
            confidence_score=0.9,
            consistency_assessment=ConsistencyAssessment.STRONG,
            recommended_action=RecommendedAction.ALERT,
        ))
        scorer = ConfidenceScorer(load_trust_table(), evaluator=stub)
        cluster_id = uuid4()
        signals = [_signal("tiktok", text="banjir"), _signal("user_report", text="banjir")]

        assessment, trace = await scorer.assess(cluster_id, EventType.FLOOD, signals, city="jakarta")

        assert assessment.recommended_action == RecommendedAction.ALERT
        assert assessment.confidence_score == pytest.approx(0.5 * 0.54 + 0.5 * 0.9)
        assert trace is not None and trace.evaluation is not None and not trace.degraded
        evidence = stub.seen[0]
        assert evidence.cluster_id == cluster_id
        assert evidence.category_count == 2
        assert {item.source for item in evidence.items} == {"tiktok", "user_report"}

    @pytest.mark.asyncio
    async def test_timeout_degrades_to_rule_score(self) -> None:
        scorer = ConfidenceScorer(
            load_trust_table(),
            ScoringPolicy(evaluation_timeout_seconds=0.01),
            evaluator=_SlowEvaluator(),
        )
        assessment, trace = await scorer.assess(uuid4(), EventType.FLOOD, [_signal("tiktok")])
        assert assessment.evaluation_degraded
        assert assessment.confidence_score == pytest.approx(0.2)
        assert trace is not None and trace.degraded
        assert "timed out" in trace.error

    @pytest.mark.asyncio
    async def test_evaluator_error_degrades_to_rule_score(self) -> None:
        scorer = ConfidenceScorer(load_trust_table(), evaluator=_FailingEvaluator())
        assessment, trace = await scorer.assess(uuid4(), EventType.FLOOD, [_signal("tiktok")])
        assert assessment.evaluation_degraded
        assert assessment.recommended_action is None
        assert trace is not None and "quota exceeded" in trace.error

    @pytest.mark.asyncio
    async def test_evaluate_raises_scoring_unavailable(self) -> None:
        scorer = ConfidenceScorer(load_trust_table(), evaluator=_FailingEvaluator())
        evidence = IncidentEvidence(cluster_id=uuid4(), event_type=EventType.FLOOD, rule_score=0.0)
        with pytest.raises(ScoringUnavailable):
            await scorer._evaluate(evidence)


class TestScoringPolicy:
    @pytest.mark.parametrize("kwargs", [
        {"diversity_multiplier": 1.0},
        {"ai_weight": 0.0},
        {"ai_weight": 1.0},
        {"official_floor": 1.5},
        {"evaluation_timeout_seconds": 0},
    ])
    def test_invalid_policy_rejected(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            ScoringPolicy(**kwargs)

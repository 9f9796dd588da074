"""ConfidenceAssessment — the scorer's immutable verdict on an evidence set.

All fields derive deterministically from the signals, verifications and
(optional) AI evaluation handed to the scorer.  The same inputs always
produce the same assessment.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from disaster_reason.domain.enums import ConsistencyAssessment, RecommendedAction, SourceCategory


class ConfidenceAssessment(BaseModel):
    confidence_score: float = Field(..., ge=0.0, le=1.0, description="Final score after AI merge and floors")
    rule_score: float = Field(..., ge=0.0, le=1.0, description="Trust weights + diversity + verifications")
    base_weight: float = Field(..., ge=0.0, le=1.0, description="Capped sum of source weights")
    signal_count: int = Field(..., ge=0)
    categories: list[SourceCategory] = Field(default_factory=list)
    diversity_applied: bool = False
    has_official_source: bool = False
    verification_shift: float = 0.0
    consistency_assessment: ConsistencyAssessment
    recommended_action: Optional[RecommendedAction] = Field(
        default=None,
        description="Only set when an AI evaluation was merged",
    )
    ai_confidence: Optional[float] = None
    evaluation_degraded: bool = Field(
        default=False,
        description="True when the AI evaluation was requested but unavailable",
    )

    model_config = {"frozen": True}

    @property
    def category_count(self) -> int:
        return len(self.categories)

"""External AI evaluation models.

An Evaluation is an opaque scored verdict produced by an AI collaborator.
It informs confidence scoring but never changes incident state directly.
Every attempt to obtain one, successful or not, leaves an EvaluationTrace.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from disaster_reason.domain.enums import (
    ConsistencyAssessment,
    EventType,
    RecommendedAction,
    SourceCategory,
)
from disaster_reason.foundation.clock import utc_now


class Evaluation(BaseModel):
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    consistency_assessment: ConsistencyAssessment
    recommended_action: RecommendedAction = RecommendedAction.NONE
    explanation: str = ""
    raw_response: str = ""

    model_config = {"frozen": True}


class EvidenceItem(BaseModel):
    """What the evaluator is allowed to see about one signal."""

    source: str
    category: Optional[SourceCategory] = None
    text: str = ""
    observed_at: datetime

    model_config = {"frozen": True}


class IncidentEvidence(BaseModel):
    """Input handed to an evaluator: the evidence set plus the rule-based view of it."""

    cluster_id: UUID
    incident_id: Optional[UUID] = None
    event_type: EventType
    city: str = ""
    items: list[EvidenceItem] = Field(default_factory=list)
    rule_score: float = Field(..., ge=0.0, le=1.0)
    category_count: int = 0
    has_official_source: bool = False
    confirmations: int = 0
    rejections: int = 0

    model_config = {"frozen": True}


class EvaluationTrace(BaseModel):
    """Record of one evaluator call."""

    cluster_id: UUID
    incident_id: Optional[UUID] = None
    evaluation: Optional[Evaluation] = None
    error: Optional[str] = None
    degraded: bool = False
    created_at: datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}

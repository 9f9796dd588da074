"""Graph runner — clean interface for invoking the evaluation graph.

Usage:
    from disaster_reason.graph.runner import run_evaluation

    evaluation = run_evaluation(evidence)

The runner builds the graph, seeds the initial state, invokes LangGraph and
turns the final state into an Evaluation.  It raises ScoringUnavailable when
no usable verdict came back, so the scorer can fall back to rules.
"""

from __future__ import annotations

import logging
import os

from disaster_reason.config import settings
from disaster_reason.domain.errors import ScoringUnavailable
from disaster_reason.domain.evaluation import Evaluation, IncidentEvidence
from disaster_reason.graph.builder import build_evaluation_graph
from disaster_reason.graph.nodes import LLMFactory
from disaster_reason.graph.state import EvaluationState

logger = logging.getLogger(__name__)


def _default_llm_factory():
    """Create a Gemini instance from environment config."""
    from langchain_google_genai import ChatGoogleGenerativeAI

    api_key = os.environ.get("GOOGLE_API_KEY") or os.environ.get("DISASTER_GEMINI_API_KEY")
    if not api_key:
        raise RuntimeError(
            "Gemini API key not found. Set GOOGLE_API_KEY or DISASTER_GEMINI_API_KEY "
            "in your environment variables."
        )

    return ChatGoogleGenerativeAI(
        model=settings.gemini_model,
        google_api_key=api_key,
        temperature=settings.gemini_temperature,
        max_output_tokens=settings.gemini_max_output_tokens,
    )


def run_evaluation(
    evidence: IncidentEvidence,
    *,
    llm_factory: LLMFactory | None = None,
    max_attempts: int = 2,
) -> Evaluation:
    """Invoke the evaluation graph for one evidence set.

    Raises:
        ScoringUnavailable: The LLM failed or never produced a parseable verdict.
    """
    initial_state: EvaluationState = {
        "evidence": evidence.model_dump(mode="json"),
        "context": {},
        "raw_response": "",
        "verdict": None,
        "error": None,
        "attempts": 0,
        "max_attempts": max(1, max_attempts),
    }

    compiled_graph = build_evaluation_graph(llm_factory or _default_llm_factory)
    logger.info(
        "Running evaluation graph for cluster %s (%d signals, max_attempts=%d)",
        evidence.cluster_id, len(evidence.items), initial_state["max_attempts"],
    )
    final_state = compiled_graph.invoke(initial_state)

    verdict = final_state.get("verdict")
    if verdict is None:
        raise ScoringUnavailable(final_state.get("error") or "no verdict produced")

    logger.info(
        "Evaluation complete: cluster=%s confidence=%.3f consistency=%s action=%s attempts=%d",
        evidence.cluster_id,
        verdict["confidence_score"],
        verdict["consistency_assessment"],
        verdict["recommended_action"],
        final_state.get("attempts", 0),
    )
    return Evaluation.model_validate({**verdict, "raw_response": final_state.get("raw_response", "")})

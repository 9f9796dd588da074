"""EvaluationState — the sole state object the evaluation graph nodes read and write.

Every node receives the full state and returns a partial update.  No node
touches the incident store or the clusterer; the only I/O is the LLM call.
"""

from __future__ import annotations

from typing import Any, TypedDict


class EvaluationState(TypedDict, total=False):
    """LangGraph state for one AI evaluation.

    Fields:
        evidence: Serialised IncidentEvidence (dict).
        context: Aggregated, prompt-ready view of the evidence.
        raw_response: Text returned by the most recent LLM call.
        verdict: Parsed verdict dict, or None until parsing succeeds.
        error: Description of the last failure (LLM or parse).
        attempts: How many LLM calls have been made.
        max_attempts: Safety cap on LLM calls.
    """

    evidence: dict[str, Any]
    context: dict[str, Any]
    raw_response: str
    verdict: dict[str, Any] | None
    error: str | None
    attempts: int
    max_attempts: int

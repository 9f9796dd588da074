"""LangGraph nodes — pure functions that transform EvaluationState.

Each node:
    - Receives the full EvaluationState
    - Returns a partial dict update
    - Has no side effects beyond the LLM call in request_verdict
    - Never accesses the incident store or the clusterer

LLM usage:
    request_verdict uses Google Gemini via langchain-google-genai.  The LLM
    sees source categories, signal text and aggregate counts only; no user
    identifiers and no coordinates.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from disaster_reason.domain.enums import ConsistencyAssessment, RecommendedAction
from disaster_reason.graph.state import EvaluationState

logger = logging.getLogger(__name__)

# ── Type alias for LLM factory ──────────────────────────────────────────────

LLMFactory = Callable[[], Any]  # Returns a langchain BaseChatModel

_MAX_ITEMS_IN_PROMPT = 20


# ── 1. assemble_context ─────────────────────────────────────────────────────

def assemble_context(state: EvaluationState) -> dict:
    """Build the aggregated, prompt-ready context from the evidence."""
    ev = state.get("evidence", {})
    items = ev.get("items", [])

    lines = []
    for item in items[:_MAX_ITEMS_IN_PROMPT]:
        category = item.get("category") or "unknown"
        text = " ".join(str(item.get("text", "")).split())[:280]
        lines.append(f"- [{category}/{item.get('source', '?')}] {text}")
    if len(items) > _MAX_ITEMS_IN_PROMPT:
        lines.append(f"- ... {len(items) - _MAX_ITEMS_IN_PROMPT} more signal(s) omitted")

    context = {
        "event_type": ev.get("event_type", "other"),
        "city": ev.get("city") or "unknown",
        "signal_count": len(items),
        "category_count": ev.get("category_count", 0),
        "has_official_source": ev.get("has_official_source", False),
        "rule_score": ev.get("rule_score", 0.0),
        "confirmations": ev.get("confirmations", 0),
        "rejections": ev.get("rejections", 0),
        "signal_lines": "\n".join(lines) or "- (no signals)",
    }
    logger.debug("Assembled evaluation context: %s", {k: v for k, v in context.items() if k != "signal_lines"})
    return {"context": context}


# ── 2. request_verdict ──────────────────────────────────────────────────────

_VERDICT_PROMPT = """You are a disaster-report verification analyst.

Several independent reports were grouped together because they describe a
possible {event_type} in {city}. Judge whether they corroborate each other.

Aggregates:
- Signals: {signal_count}
- Distinct source categories: {category_count}
- Official agency source present: {has_official_source}
- Rule-based confidence: {rule_score:.2f}
- User confirmations: {confirmations}
- User rejections: {rejections}

Reports:
{signal_lines}

Respond with ONLY a JSON object with:
- "confidence_score": float 0.0-1.0, how likely the event is real and ongoing
- "consistency_assessment": "strong" | "moderate" | "weak"
- "recommended_action": "alert" | "monitor" | "none"
- "explanation": one or two short sentences

RESPOND WITH ONLY THE JSON OBJECT. No markdown, no explanation outside it."""


def make_request_verdict(llm_factory: LLMFactory):
    """Create the request_verdict node with an injected LLM factory."""

    def request_verdict(state: EvaluationState) -> dict:
        """Ask the LLM for a corroboration verdict."""
        prompt = _VERDICT_PROMPT.format(**state.get("context", {}))
        attempts = state.get("attempts", 0) + 1
        try:
            llm = llm_factory()
            response = llm.invoke(prompt)
            text = response.content if hasattr(response, "content") else str(response)
            logger.info("Gemini verdict response length: %d chars (attempt %d)", len(text), attempts)
            return {"raw_response": text, "attempts": attempts, "error": None}
        except Exception as exc:
            logger.error("LLM invocation failed on attempt %d: %s", attempts, exc)
            return {"raw_response": "", "attempts": attempts, "error": f"llm error: {exc}"}

    return request_verdict


# ── 3. parse_verdict ────────────────────────────────────────────────────────

def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        lines = [l for l in text.split("\n") if not l.strip().startswith("```")]
        text = "\n".join(lines).strip()
    return text


def parse_verdict(state: EvaluationState) -> dict:
    """Validate the raw LLM text into a verdict dict.

    Deterministic; no LLM calls.  Unknown labels are rejected rather than
    guessed, so a malformed response never becomes a confident verdict.
    """
    if state.get("error"):
        return {"verdict": None}

    try:
        raw = json.loads(_strip_fences(state.get("raw_response", "")))
        if not isinstance(raw, dict):
            raise ValueError("expected a JSON object")
        verdict = {
            "confidence_score": max(0.0, min(float(raw["confidence_score"]), 1.0)),
            "consistency_assessment": ConsistencyAssessment(str(raw["consistency_assessment"]).lower()).value,
            "recommended_action": RecommendedAction(str(raw.get("recommended_action", "none")).lower()).value,
            "explanation": str(raw.get("explanation", ""))[:1000],
        }
        return {"verdict": verdict, "error": None}
    except (json.JSONDecodeError, KeyError, ValueError, TypeError) as exc:
        logger.warning("Failed to parse LLM verdict: %s", exc)
        return {"verdict": None, "error": f"unparseable verdict: {exc}"}


# ── 4. check_verdict (conditional edge) ─────────────────────────────────────

def check_verdict(state: EvaluationState) -> str:
    """Stop on a verdict or when attempts are exhausted, otherwise retry."""
    if state.get("verdict") is not None:
        return "end"
    if state.get("attempts", 0) >= state.get("max_attempts", 1):
        return "end"
    return "retry"

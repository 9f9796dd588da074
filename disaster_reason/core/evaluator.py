"""AI evaluation collaborator.

The scorer depends only on the Evaluator protocol, so tests inject a
deterministic stub and production plugs in LLMEvaluator, which runs the
LangGraph evaluation graph against Gemini.  The graph is synchronous, so it
runs in a worker thread; the scorer bounds the call with a timeout.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from disaster_reason.domain.evaluation import Evaluation, IncidentEvidence
from disaster_reason.graph.nodes import LLMFactory
from disaster_reason.graph.runner import run_evaluation

logger = logging.getLogger(__name__)


class Evaluator(Protocol):
    async def evaluate(self, evidence: IncidentEvidence) -> Evaluation:
        """Return a verdict or raise; the caller enforces the timeout."""
        ...


class LLMEvaluator:
    """Evaluator backed by the LangGraph evaluation graph."""

    def __init__(self, llm_factory: LLMFactory | None = None, max_attempts: int = 2) -> None:
        self._llm_factory = llm_factory
        self._max_attempts = max_attempts

    async def evaluate(self, evidence: IncidentEvidence) -> Evaluation:
        logger.debug("Requesting AI evaluation for cluster %s", evidence.cluster_id)
        return await asyncio.to_thread(
            run_evaluation,
            evidence,
            llm_factory=self._llm_factory,
            max_attempts=self._max_attempts,
        )

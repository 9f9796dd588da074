"""Verifier reputation lookup.

A verification's weight, both in confidence scoring and in the resolution
vote, is the submitting user's reputation.  It is resolved here from the
user id and never taken from the request.  Users without a recorded score
get ``default``, which is kept at the user-report source weight so a batch
of fresh accounts cannot resolve or suppress an incident by themselves.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Mapping, Protocol

from pydantic import Field, TypeAdapter

logger = logging.getLogger(__name__)

DEFAULT_REPUTATION = 0.25

_Score = Annotated[float, Field(ge=0.0, le=1.0)]
_SCORES = TypeAdapter(dict[str, _Score])
_SCORE = TypeAdapter(_Score)


class ReputationDirectory(Protocol):
    async def reputation_of(self, user_id: str) -> float:
        """Trust weight in [0, 1] for *user_id*."""
        ...


class InMemoryReputationDirectory:
    """Reputation scores keyed by user id, with a fallback for unknown users."""

    def __init__(
        self,
        scores: Mapping[str, float] | None = None,
        default: float = DEFAULT_REPUTATION,
    ) -> None:
        self._default = _SCORE.validate_python(default)
        self._scores: dict[str, float] = {}
        for user_id, score in (scores or {}).items():
            self.set(user_id, score)

    @classmethod
    def from_json(cls, path: str | Path, default: float = DEFAULT_REPUTATION) -> InMemoryReputationDirectory:
        """Load ``{"user_id": score, ...}`` from a JSON file."""
        scores = _SCORES.validate_json(Path(path).read_text(encoding="utf-8"))
        logger.info("Loaded %d user reputation(s) from %s", len(scores), path)
        return cls(scores, default)

    @property
    def default(self) -> float:
        return self._default

    def set(self, user_id: str, score: float) -> None:
        self._scores[user_id.strip()] = _SCORE.validate_python(score)

    def remove(self, user_id: str) -> None:
        self._scores.pop(user_id.strip(), None)

    async def reputation_of(self, user_id: str) -> float:
        return self._scores.get(user_id.strip(), self._default)

    def __len__(self) -> int:
        return len(self._scores)

"""Source Trust Table — how much each source identifier counts as evidence.

The table is data, not code: it is loaded from JSON (bundled default in
``disaster_reason/data/source_weights.json``) into an immutable model that
is passed explicitly to whoever needs it.  Weights can be tuned, or a
different table swapped in per test or tenant, without touching logic.

Lookup is case-insensitive.  Unknown identifiers get ``default_weight``,
which must be strictly lower than every catalogued weight so a spoofed or
unverified source can never outweigh a known one.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, field_validator, model_validator

from disaster_reason.domain.enums import SourceCategory

DEFAULT_TABLE_PATH = Path(__file__).resolve().parent.parent / "data" / "source_weights.json"


class SourceEntry(BaseModel):
    weight: float = Field(..., ge=0.0, le=1.0)
    category: SourceCategory

    model_config = {"frozen": True}


class SourceTrustTable(BaseModel):
    """Immutable mapping of source identifier → (weight, category)."""

    default_weight: float = Field(default=0.10, ge=0.0, le=1.0)
    sources: dict[str, SourceEntry] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @field_validator("sources")
    @classmethod
    def keys_are_lowercase(cls, v: dict[str, SourceEntry]) -> dict[str, SourceEntry]:
        return {key.strip().lower(): entry for key, entry in v.items()}

    @model_validator(mode="after")
    def default_below_every_named_source(self) -> "SourceTrustTable":
        for name, entry in self.sources.items():
            if entry.weight <= self.default_weight:
                raise ValueError(
                    f"source '{name}' weight {entry.weight} must exceed "
                    f"default_weight {self.default_weight}"
                )
        return self

    # ── Lookups ──────────────────────────────────────────────────────────

    def _entry(self, source: str) -> SourceEntry | None:
        return self.sources.get(source.strip().lower())

    def weight(self, source: str) -> float:
        entry = self._entry(source)
        return entry.weight if entry else self.default_weight

    def category(self, source: str) -> SourceCategory | None:
        """Category of a catalogued source, or None for unknown identifiers."""
        entry = self._entry(source)
        return entry.category if entry else None

    def is_official(self, source: str) -> bool:
        return self.category(source) == SourceCategory.OFFICIAL


def load_trust_table(path: str | Path | None = None) -> SourceTrustTable:
    """Load and validate a trust table from a JSON file."""
    table_path = Path(path) if path else DEFAULT_TABLE_PATH
    return SourceTrustTable.model_validate_json(table_path.read_text(encoding="utf-8"))

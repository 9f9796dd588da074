"""Abstract base for signal adapters.

Signal adapters normalise raw payloads from upstream feeds (BMKG, user
report forms, TikTok scrapes, RSS items) into the canonical Signal model.

Architectural rules:
    1. Adapters must NOT mutate the incoming payload dict.
    2. adapt() must return a parseable Signal or raise ValueError.
    3. No adapter touches the signal store, clusterer or incident store.
    4. No classification or scoring inside an adapter, only field mapping.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from disaster_reason.domain.signal import Signal


class SignalAdapter(ABC):
    """Base class for converting raw upstream payloads into canonical Signals."""

    @abstractmethod
    def can_handle(self, raw: dict[str, Any]) -> bool:
        """Return True if this adapter knows how to translate *raw*.

        Must be a fast, non-destructive check (e.g. key presence).
        """
        ...

    @abstractmethod
    def adapt(self, raw: dict[str, Any]) -> Signal:
        """Translate a raw payload dict into a Signal.

        The input dict must NOT be mutated.

        Raises:
            ValueError: If the payload cannot be normalised.
        """
        ...

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Name of the upstream feed this adapter handles."""
        ...


def optional_float(raw: dict[str, Any], key: str) -> float | None:
    value = raw.get(key)
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{key}' is not a number: {value!r}") from exc


def location_from(raw: dict[str, Any]) -> dict[str, float] | None:
    """``{"lat", "lng"}`` from top-level lat/lng keys, or None if absent."""
    lat = optional_float(raw, "lat")
    lng = optional_float(raw, "lng")
    if lat is None or lng is None:
        return None
    return {"lat": lat, "lng": lng}

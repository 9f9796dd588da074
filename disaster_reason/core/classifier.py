"""Event-type inference for incoming signals.

Classification is an external concern to clustering: the clusterer only
needs *some* EventClassifier.  The default KeywordClassifier is a
deterministic lookup over English and Indonesian disaster vocabulary; a
model-backed classifier can be dropped in behind the same protocol.
"""

from __future__ import annotations

import re
from typing import Protocol

from disaster_reason.domain.enums import EventType
from disaster_reason.domain.signal import Signal


class EventClassifier(Protocol):
    def classify(self, signal: Signal) -> EventType:
        ...


# Order matters: earlier entries win when a text mentions several hazards
# ("gempa ... potensi tsunami" is a tsunami warning).
_KEYWORDS: list[tuple[EventType, tuple[str, ...]]] = [
    (EventType.TSUNAMI, ("tsunami",)),
    (EventType.VOLCANO, ("erupsi", "eruption", "gunung api", "volcano", "lahar", "awan panas")),
    (EventType.EARTHQUAKE, ("gempa", "earthquake", "quake", "magnitude", "tremor")),
    (EventType.LANDSLIDE, ("longsor", "landslide", "mudslide")),
    (EventType.FLOOD, ("banjir", "flood", "genangan", "inundation", "flooding")),
    (EventType.FIRE, ("kebakaran", "fire", "terbakar", "api", "blaze")),
    (EventType.TORNADO, ("tornado",)),
    (EventType.WHIRLWIND, ("puting beliung", "angin kencang", "whirlwind", "cyclone")),
    (EventType.POWER_OUTAGE, ("listrik padam", "mati listrik", "pemadaman", "blackout", "power outage")),
    (EventType.ACCIDENT, ("kecelakaan", "tabrakan", "accident", "crash", "collision")),
]


class KeywordClassifier:
    """Classify by the source's own hint, else by whole-word keyword match."""

    def __init__(self, keywords: list[tuple[EventType, tuple[str, ...]]] | None = None) -> None:
        table = keywords or _KEYWORDS
        self._patterns = [
            (event_type, re.compile(r"\b(" + "|".join(re.escape(w) for w in words) + r")\b", re.IGNORECASE))
            for event_type, words in table
        ]

    def classify(self, signal: Signal) -> EventType:
        if signal.event_type_hint is not None:
            return signal.event_type_hint
        text = signal.text or ""
        for event_type, pattern in self._patterns:
            if pattern.search(text):
                return event_type
        return EventType.OTHER

"""UserReportAdapter — translates reports submitted through the app form.

Expected raw format:
{
    "source_type": "user_report",
    "user_id": "u-123",
    "event_type": "flood",
    "description": "Air setinggi lutut di depan rumah",
    "lat": -6.2,
    "lng": 106.8,
    "city": "Jakarta",
    "media_url": "https://cdn.example/r/abc.jpg",
    "happened_at": "2026-02-13T14:00:00Z"
}
"""

from __future__ import annotations

from typing import Any

from disaster_reason.adapters.base import SignalAdapter, location_from
from disaster_reason.domain.enums import EventType
from disaster_reason.domain.signal import Signal


class UserReportAdapter(SignalAdapter):
    """Maps app-submitted reports to Signals from source ``user_report``."""

    @property
    def source_name(self) -> str:
        return "user_report"

    def can_handle(self, raw: dict[str, Any]) -> bool:
        return raw.get("source_type") == "user_report"

    def adapt(self, raw: dict[str, Any]) -> Signal:
        user_id = raw.get("user_id")
        if not user_id:
            raise ValueError("user_report payload missing 'user_id'")

        location = location_from(raw)
        if location is None:
            raise ValueError("user_report payload missing 'lat'/'lng'")

        hint = None
        if raw.get("event_type"):
            try:
                hint = EventType(str(raw["event_type"]).lower())
            except ValueError as exc:
                raise ValueError(f"user_report 'event_type' unknown: {raw['event_type']!r}") from exc

        description = str(raw.get("description", "")).strip()
        label = hint.value.replace("_", " ") if hint else "report"
        payload: dict[str, Any] = {
            "source": self.source_name,
            "text": f"[{label}] {description}" if description else f"[{label}]",
            "location": location,
            "media_url": raw.get("media_url"),
            "city_hint": raw.get("city"),
            "event_type_hint": hint.value if hint else None,
            "raw_payload": {"user_id": str(user_id)},
        }
        if raw.get("happened_at"):
            payload["created_at"] = raw["happened_at"]
        return Signal.model_validate(payload)

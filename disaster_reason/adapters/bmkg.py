"""BmkgQuakeAdapter — translates BMKG earthquake feed entries.

Accepts either the feed envelope or a single quake record:
{
    "Infogempa": {
        "gempa": {
            "DateTime": "2026-02-13T07:21:04+00:00",
            "Coordinates": "-6.84,107.05",
            "Magnitude": "5.6",
            "Kedalaman": "10 km",
            "Wilayah": "Pusat gempa berada di darat 10 km BaratDaya Kab. Cianjur",
            "Potensi": "Tidak berpotensi tsunami"
        }
    }
}
The feed sometimes returns ``gempa`` as a list; the first record is used.
"""

from __future__ import annotations

import re
from typing import Any

from disaster_reason.adapters.base import SignalAdapter
from disaster_reason.domain.enums import EventType
from disaster_reason.domain.signal import Signal

# "... Kab. Cianjur" / "... Kota Bandung" → "Cianjur" / "Bandung"
_REGENCY = re.compile(r"\b(?:Kab\.|Kabupaten|Kota)\s+([A-Za-z][A-Za-z .'-]*?)\s*$")


def _quake_record(raw: dict[str, Any]) -> dict[str, Any] | None:
    info = raw.get("Infogempa")
    if isinstance(info, dict):
        quake = info.get("gempa")
        if isinstance(quake, list):
            quake = quake[0] if quake else None
        return quake if isinstance(quake, dict) else None
    if "Coordinates" in raw and "DateTime" in raw:
        return raw
    return None


def city_from_region(region: str) -> str | None:
    match = _REGENCY.search(region.strip())
    return match.group(1).strip() if match else None


class BmkgQuakeAdapter(SignalAdapter):
    """Maps BMKG quake records to canonical Signals from source ``bmkg``."""

    @property
    def source_name(self) -> str:
        return "bmkg"

    def can_handle(self, raw: dict[str, Any]) -> bool:
        return _quake_record(raw) is not None

    def adapt(self, raw: dict[str, Any]) -> Signal:
        quake = _quake_record(raw)
        if quake is None:
            raise ValueError("bmkg payload has no quake record")

        coordinates = str(quake.get("Coordinates", ""))
        parts = coordinates.split(",")
        if len(parts) != 2:
            raise ValueError(f"bmkg 'Coordinates' malformed: {coordinates!r}")
        try:
            lat, lng = float(parts[0]), float(parts[1])
        except ValueError as exc:
            raise ValueError(f"bmkg 'Coordinates' not numeric: {coordinates!r}") from exc

        happened_at = quake.get("DateTime")
        if not happened_at:
            raise ValueError("bmkg payload missing 'DateTime'")

        region = str(quake.get("Wilayah", "")).strip()
        potential = str(quake.get("Potensi", ""))
        # "Tidak berpotensi tsunami" must not turn a quake into a tsunami
        is_tsunami = "tsunami" in potential.lower() and "tidak" not in potential.lower()

        text = f"Earthquake Mag:{quake.get('Magnitude', '?')}, {happened_at}, Loc: {region}"
        if quake.get("Kedalaman"):
            text += f" ({quake['Kedalaman']})"
        if potential:
            text += f". {potential}"

        return Signal.model_validate({
            "source": self.source_name,
            "text": text,
            "location": {"lat": lat, "lng": lng},
            "city_hint": raw.get("city") or city_from_region(region),
            "event_type_hint": (EventType.TSUNAMI if is_tsunami else EventType.EARTHQUAKE).value,
            "created_at": happened_at,
            "raw_payload": {
                "bmkg_id": f"{happened_at}_{coordinates}",
                "magnitude": quake.get("Magnitude"),
                "depth": quake.get("Kedalaman"),
                "region": region,
            },
        })

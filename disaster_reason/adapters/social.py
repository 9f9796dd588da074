"""TikTokVideoAdapter — translates scraped TikTok video records.

Expected raw format:
{
    "source_type": "tiktok",
    "video_id": "7311111111111111111",
    "title": "banjir parah di kemang #banjirjakarta",
    "play": "https://.../video.mp4",
    "create_time": 1770991200,
    "location_inference": "Jakarta",
    "lat": -6.26,
    "lng": 106.81
}
``lat``/``lng`` are only present once the location hint was geocoded
upstream; without them the signal is later rejected at submission.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from disaster_reason.adapters.base import SignalAdapter, location_from
from disaster_reason.domain.signal import Signal


class TikTokVideoAdapter(SignalAdapter):
    """Maps TikTok records to Signals from source ``tiktok``."""

    @property
    def source_name(self) -> str:
        return "tiktok"

    def can_handle(self, raw: dict[str, Any]) -> bool:
        return raw.get("source_type") == "tiktok"

    def adapt(self, raw: dict[str, Any]) -> Signal:
        video_id = raw.get("video_id")
        if not video_id:
            raise ValueError("tiktok payload missing 'video_id'")
        title = str(raw.get("title") or raw.get("summary") or "").strip()
        if not title:
            raise ValueError("tiktok payload has no 'title'")

        payload: dict[str, Any] = {
            "source": self.source_name,
            "text": title,
            "location": location_from(raw),
            "media_url": raw.get("play"),
            "city_hint": raw.get("location_inference"),
            "raw_payload": {"video_id": str(video_id)},
        }
        created = raw.get("create_time")
        if created is not None:
            try:
                payload["created_at"] = datetime.fromtimestamp(int(created), tz=timezone.utc)
            except (TypeError, ValueError, OverflowError) as exc:
                raise ValueError(f"tiktok 'create_time' invalid: {created!r}") from exc
        return Signal.model_validate(payload)

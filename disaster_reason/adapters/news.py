"""RssNewsAdapter — translates RSS items from news feeds.

Expected raw format:
{
    "source_type": "rss",
    "source_name": "antaranews",
    "title": "Banjir rendam ratusan rumah di Bekasi",
    "link": "https://example.id/berita/123",
    "pubDate": "Fri, 13 Feb 2026 14:00:00 +0700",
    "contentSnippet": "...",
    "city": "Bekasi",
    "lat": -6.24,
    "lng": 107.0
}
"""

from __future__ import annotations

from email.utils import parsedate_to_datetime
from typing import Any

from disaster_reason.adapters.base import SignalAdapter, location_from
from disaster_reason.domain.signal import Signal


class RssNewsAdapter(SignalAdapter):
    """Maps RSS items to Signals from source ``rss``."""

    @property
    def source_name(self) -> str:
        return "rss"

    def can_handle(self, raw: dict[str, Any]) -> bool:
        return raw.get("source_type") == "rss" or ("link" in raw and "title" in raw and "pubDate" in raw)

    def adapt(self, raw: dict[str, Any]) -> Signal:
        title = str(raw.get("title") or "").strip()
        link = raw.get("link")
        if not title or not link:
            raise ValueError("rss payload needs 'title' and 'link'")

        snippet = " ".join(str(raw.get("contentSnippet") or "").split())
        payload: dict[str, Any] = {
            "source": self.source_name,
            "text": f"{title}. {snippet}" if snippet else title,
            "location": location_from(raw),
            "media_url": link,
            "city_hint": raw.get("city"),
            "raw_payload": {"link": link, "feed": raw.get("source_name", "")},
        }
        if raw.get("pubDate"):
            try:
                payload["created_at"] = parsedate_to_datetime(str(raw["pubDate"]))
            except (TypeError, ValueError):
                # Not RFC 822; let pydantic try ISO 8601
                payload["created_at"] = raw["pubDate"]
        return Signal.model_validate(payload)

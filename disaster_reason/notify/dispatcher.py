"""NotificationDispatcher — fans committed transitions out to watchers.

For every committed LifecycleEvent the dispatcher:
    1. Looks up watched places near the incident center.
    2. Drops places whose owner muted the event type or whose
       ``min_confidence`` is above the incident confidence.
    3. For each (user, incident, place) tuple, records the new status and
       enqueues one outbox entry atomically.  A tuple already notified about
       this status gets nothing.

Tuples are independent: a write failure on one is retried on its own and
never blocks the others.  StorageUnavailable is fatal and propagates.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import Iterable, Protocol

from pydantic import TypeAdapter

from disaster_reason.domain.errors import NotificationWriteFailure
from disaster_reason.domain.incident import Incident, LifecycleEvent
from disaster_reason.domain.notification import NotificationOutboxEntry, WatchedPlace
from disaster_reason.foundation.clock import utc_now
from disaster_reason.foundation.geo import haversine_m
from disaster_reason.store.notification_store import NotificationStore

logger = logging.getLogger(__name__)


class PlaceDirectory(Protocol):
    """Read-only lookup of watched places."""

    async def places_near(self, lat: float, lng: float, radius_m: float) -> list[WatchedPlace]:
        ...


_PLACES = TypeAdapter(list[WatchedPlace])


class InMemoryPlaceDirectory:
    """Linear-scan place directory.

    A place is near when the incident center lies within the search radius
    or within the place's own watch radius, whichever is larger.
    """

    def __init__(self, places: Iterable[WatchedPlace] = ()) -> None:
        self._places: dict[tuple[str, str], WatchedPlace] = {}
        for place in places:
            self.add(place)

    @classmethod
    def from_json(cls, path: str | Path) -> InMemoryPlaceDirectory:
        """Load a JSON list of watched places."""
        places = _PLACES.validate_json(Path(path).read_text(encoding="utf-8"))
        logger.info("Loaded %d watched place(s) from %s", len(places), path)
        return cls(places)

    def add(self, place: WatchedPlace) -> None:
        self._places[(place.user_id, place.user_place_id)] = place

    def remove(self, user_id: str, user_place_id: str) -> None:
        self._places.pop((user_id, user_place_id), None)

    def __len__(self) -> int:
        return len(self._places)

    async def places_near(self, lat: float, lng: float, radius_m: float) -> list[WatchedPlace]:
        near = []
        for place in self._places.values():
            distance = haversine_m(lat, lng, place.location.lat, place.location.lng)
            if distance <= max(radius_m, place.radius_m):
                near.append(place)
        return sorted(near, key=lambda p: (p.user_id, p.user_place_id))


class NotificationDispatcher:
    """Transition listener that writes deduplicated outbox entries.

    Args:
        store: Notification state/outbox persistence.
        directory: Source of watched places.
        radius_m: Search radius around the incident center.
        outbox_ttl: Lifetime of an undelivered outbox entry.
        write_attempts: Attempts per tuple before giving up on it.
    """

    def __init__(
        self,
        store: NotificationStore,
        directory: PlaceDirectory,
        radius_m: float = 50_000.0,
        outbox_ttl: timedelta = timedelta(minutes=60),
        write_attempts: int = 2,
    ) -> None:
        if write_attempts < 1:
            raise ValueError("write_attempts must be at least 1")
        self._store = store
        self._directory = directory
        self._radius_m = radius_m
        self._outbox_ttl = outbox_ttl
        self._write_attempts = write_attempts

    async def on_transition(self, incident: Incident, event: LifecycleEvent) -> int:
        """Dispatch one committed transition; return the number of entries enqueued."""
        places = await self._directory.places_near(incident.center.lat, incident.center.lng, self._radius_m)
        wanted = [p for p in places if p.wants(incident.event_type, incident.confidence_score)]
        if len(wanted) < len(places):
            logger.debug(
                "Incident %s: %d of %d nearby place(s) opted out",
                incident.incident_id, len(places) - len(wanted), len(places),
            )

        enqueued = 0
        failed = 0
        for place in wanted:
            try:
                if await self._dispatch_one(incident, event, place):
                    enqueued += 1
            except NotificationWriteFailure as exc:
                failed += 1
                logger.error(
                    "Giving up on notification for user %s place %s incident %s: %s",
                    place.user_id, place.user_place_id, incident.incident_id, exc,
                )

        logger.info(
            "Incident %s %s: %d notification(s) enqueued, %d failed",
            incident.incident_id, event.to_status.value, enqueued, failed,
        )
        return enqueued

    async def _dispatch_one(self, incident: Incident, event: LifecycleEvent, place: WatchedPlace) -> bool:
        for attempt in range(1, self._write_attempts + 1):
            now = utc_now()
            entry = NotificationOutboxEntry(
                user_id=place.user_id,
                incident_id=incident.incident_id,
                user_place_id=place.user_place_id,
                notification_type=event.to_status,
                created_at=now,
                expires_at=now + self._outbox_ttl,
            )
            try:
                return await self._store.record_dispatch(entry, now)
            except NotificationWriteFailure as exc:
                if attempt == self._write_attempts:
                    raise
                logger.warning(
                    "Notification write for user %s place %s failed (attempt %d/%d): %s",
                    place.user_id, place.user_place_id, attempt, self._write_attempts, exc,
                )
        return False

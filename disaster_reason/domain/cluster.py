"""Cluster — a provisional grouping of signals believed to describe one event.

A Cluster is a hypothesis, not an incident.  It tracks which signals fell
close together in space and time with compatible event types, and keeps a
running-mean centroid of their locations.

Lifecycle:  open → promoted → closed
    - open:     accepting signals, no incident yet
    - promoted: an incident was created from it; its identity (city, event
                type guess) is frozen but corroborating signals still join
    - closed:   idle past the window, or its incident reached a terminal
                state; no further signals may join, retained for audit
"""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from disaster_reason.domain.enums import ClusterStatus, EventType
from disaster_reason.domain.signal import GeoPoint, Signal
from disaster_reason.foundation.clock import utc_now
from disaster_reason.foundation.geo import haversine_m
from disaster_reason.foundation.identifiers import new_id


def types_compatible(guess: EventType | None, candidate: EventType | None) -> bool:
    """Unset or OTHER on either side matches anything."""
    if guess in (None, EventType.OTHER) or candidate in (None, EventType.OTHER):
        return True
    return guess == candidate


class Cluster:
    """A mutable signal grouping.

    Thread-safety note:
        Cluster objects are mutated *only* while the caller holds the
        clusterer's lock for the cluster's bucket.  They are not locked
        themselves.
    """

    __slots__ = (
        "cluster_id",
        "city",
        "event_type_guess",
        "time_start",
        "time_end",
        "status",
        "sequence",
        "created_at",
        "last_updated",
        "incident_id",
        "_centroid_lat",
        "_centroid_lng",
        "_members",
    )

    def __init__(
        self,
        city: str,
        founder: Signal,
        event_type: EventType | None = None,
        sequence: int = 0,
        cluster_id: UUID | None = None,
    ) -> None:
        if founder.location is None:
            raise ValueError("cluster founder must have a location")
        now = utc_now()
        self.cluster_id: UUID = cluster_id or new_id()
        self.city = city
        self.event_type_guess: EventType | None = event_type
        self.time_start: datetime = founder.created_at
        self.time_end: datetime = founder.created_at
        self.status = ClusterStatus.OPEN
        self.sequence = sequence
        self.created_at: datetime = now
        self.last_updated: datetime = now
        self.incident_id: UUID | None = None
        self._centroid_lat = founder.location.lat
        self._centroid_lng = founder.location.lng
        self._members: dict[UUID, Signal] = {founder.signal_id: founder}

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def centroid(self) -> GeoPoint:
        return GeoPoint(lat=self._centroid_lat, lng=self._centroid_lng)

    @property
    def signals(self) -> list[Signal]:
        """Read-only view of member signals."""
        return list(self._members.values())

    @property
    def signal_ids(self) -> frozenset[UUID]:
        return frozenset(self._members)

    @property
    def size(self) -> int:
        return len(self._members)

    @property
    def is_closed(self) -> bool:
        return self.status == ClusterStatus.CLOSED

    def distance_m(self, point: GeoPoint) -> float:
        return haversine_m(self._centroid_lat, self._centroid_lng, point.lat, point.lng)

    def in_window(self, ts: datetime, idle_window: timedelta) -> bool:
        return self.time_start <= ts <= self.time_end + idle_window

    def matches(
        self,
        signal: Signal,
        event_type: EventType | None,
        radius_m: float,
        idle_window: timedelta,
    ) -> bool:
        """Space, time, and type test for joining this cluster."""
        if self.is_closed or signal.location is None:
            return False
        return (
            self.distance_m(signal.location) <= radius_m
            and self.in_window(signal.created_at, idle_window)
            and types_compatible(self.event_type_guess, event_type)
        )

    def is_idle(self, idle_window: timedelta, now: datetime | None = None) -> bool:
        """True if no signal joined within *idle_window* of wall-clock time."""
        return ((now or utc_now()) - self.last_updated) > idle_window

    # ── Mutation ─────────────────────────────────────────────────────────

    def add_signal(self, signal: Signal, event_type: EventType | None = None) -> bool:
        """Add a member, extend the time range, update the centroid.

        Returns False if the signal is already a member (no change).
        """
        if self.is_closed:
            raise ValueError(f"cluster {self.cluster_id} is closed")
        if signal.location is None:
            raise ValueError("clustered signals must have a location")
        if signal.signal_id in self._members:
            return False

        self._members[signal.signal_id] = signal
        n = len(self._members)
        self._centroid_lat += (signal.location.lat - self._centroid_lat) / n
        self._centroid_lng += (signal.location.lng - self._centroid_lng) / n

        if signal.created_at > self.time_end:
            self.time_end = signal.created_at
        if self.status == ClusterStatus.OPEN and not self.city and signal.city_hint and signal.city_hint.strip():
            self.city = signal.city_hint.strip()
        if self.status == ClusterStatus.OPEN and self.event_type_guess in (None, EventType.OTHER):
            if event_type not in (None, EventType.OTHER):
                self.event_type_guess = event_type
        self.last_updated = utc_now()
        return True

    def promote(self, incident_id: UUID) -> None:
        if self.status != ClusterStatus.OPEN:
            raise ValueError(f"cluster {self.cluster_id} is {self.status.value}, cannot promote")
        self.status = ClusterStatus.PROMOTED
        self.incident_id = incident_id

    def close(self) -> None:
        self.status = ClusterStatus.CLOSED

    # ── Summary ──────────────────────────────────────────────────────────

    def summary(self) -> dict:
        return {
            "cluster_id": str(self.cluster_id),
            "city": self.city,
            "event_type_guess": self.event_type_guess.value if self.event_type_guess else None,
            "status": self.status.value,
            "time_start": self.time_start.isoformat(),
            "time_end": self.time_end.isoformat(),
            "signal_count": self.size,
            "centroid": {"lat": self._centroid_lat, "lng": self._centroid_lng},
            "incident_id": str(self.incident_id) if self.incident_id else None,
        }

    def __repr__(self) -> str:
        return (
            f"Cluster(id={self.cluster_id!s}, city={self.city!r}, "
            f"status={self.status.value}, signals={self.size})"
        )

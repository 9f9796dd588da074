"""In-memory Clusterer with per-cell exclusive sections.

Design notes:
    - Clusters live in an id-keyed arena.  Open clusters are indexed by
      the grid cell (see ``correlation.py``) holding their centroid; the
      index entry moves when the centroid drifts into another cell.
    - A signal sees every open cluster in the cells its match circle
      touches.  Those cells are locked together, in sorted key order,
      for the whole join-or-create step, so two signals racing for the
      same area are linearized and never produce two clusters for the
      same event.  Signals far apart never contend.
    - A signal joins the open cluster whose centroid is within
      ``radius_m``, whose ``[time_start, time_end + idle_window]`` range
      covers the signal time, and whose event type guess is compatible.
      Ties go to the nearest centroid, then to the earliest cluster.
      City hints label clusters but never gate matching.
    - Clusters idle longer than ``idle_window`` are closed on the next
      access to their cell (or by ``sweep``), dropped from the cell index
      and kept in the arena for audit.
    - Signals without usable coordinates raise InvalidSignal.  They are
      never placed in a default cluster.
"""

from __future__ import annotations

import itertools
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator, Iterable
from uuid import UUID

from disaster_reason.core.classifier import EventClassifier, KeywordClassifier
from disaster_reason.domain.cluster import Cluster
from disaster_reason.domain.enums import ClusterStatus, EventType
from disaster_reason.domain.errors import InvalidSignal
from disaster_reason.domain.signal import Signal
from disaster_reason.foundation.clock import utc_now
from disaster_reason.foundation.locks import KeyedLock
from disaster_reason.store.correlation import BucketKey, BucketStrategy, GridBucket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClusterAssignment:
    """Outcome of assigning one signal.

    ``created`` is True when the signal founded a new cluster, ``joined``
    is False when the signal was already a member (idempotent replay).
    """

    cluster: Cluster
    event_type: EventType
    created: bool
    joined: bool


class ClusterSummary:
    """Aggregate cluster counts for the health endpoint."""

    __slots__ = ("total_clusters", "open_clusters", "promoted_clusters", "closed_clusters")

    def __init__(
        self,
        total_clusters: int = 0,
        open_clusters: int = 0,
        promoted_clusters: int = 0,
        closed_clusters: int = 0,
    ) -> None:
        self.total_clusters = total_clusters
        self.open_clusters = open_clusters
        self.promoted_clusters = promoted_clusters
        self.closed_clusters = closed_clusters

    def to_dict(self) -> dict:
        return {
            "total_clusters": self.total_clusters,
            "open_clusters": self.open_clusters,
            "promoted_clusters": self.promoted_clusters,
            "closed_clusters": self.closed_clusters,
        }


class Clusterer:
    """Async-safe, in-memory spatiotemporal clusterer.

    Args:
        radius_m: Max distance from a cluster centroid for a signal to join.
        idle_window: How long a cluster may go without new signals before it
            closes; also extends the accepted time range past ``time_end``.
        classifier: Event-type inference for incoming signals.
        buckets: Strategy mapping locations to exclusive sections.
    """

    def __init__(
        self,
        radius_m: float = 5_000.0,
        idle_window: timedelta = timedelta(minutes=60),
        classifier: EventClassifier | None = None,
        buckets: BucketStrategy | None = None,
    ) -> None:
        if radius_m <= 0:
            raise ValueError("radius_m must be positive")
        if idle_window <= timedelta(0):
            raise ValueError("idle_window must be positive")

        self._radius_m = radius_m
        self._idle_window = idle_window
        self._classifier = classifier or KeywordClassifier()
        self._buckets = buckets or GridBucket()
        self._clusters: dict[UUID, Cluster] = {}
        self._bucket_index: dict[BucketKey, list[UUID]] = {}
        self._cluster_bucket: dict[UUID, BucketKey] = {}
        self._locks = KeyedLock()
        self._sequence = itertools.count(1)

    # ── Public API ───────────────────────────────────────────────────────

    async def assign(self, signal: Signal) -> ClusterAssignment:
        """Join *signal* to a matching open cluster or found a new one.

        Raises:
            InvalidSignal: The signal has no usable location.
        """
        if not signal.has_valid_location:
            logger.warning(
                "Signal %s from %s rejected from clustering: invalid location %s",
                signal.signal_id, signal.source, signal.location,
            )
            raise InvalidSignal("missing or invalid coordinates", signal.signal_id)
        assert signal.location is not None

        event_type = self._classifier.classify(signal)
        nearby = self._buckets.keys_near(signal.location, self._radius_m)

        async with self._locks.hold_all(nearby):
            now = utc_now()
            for bucket in nearby:
                self._close_idle(bucket, now)
            cluster = self._best_match(nearby, signal, event_type)

            if cluster is None:
                cluster = self._create(signal, event_type)
                return ClusterAssignment(cluster, event_type, created=True, joined=True)

            joined = cluster.add_signal(signal, event_type)
            if joined:
                # The new centroid lies between the old one and the signal,
                # so its cell is among the locked ones.
                self._reindex(cluster)
            logger.debug(
                "Signal %s joined cluster %s (signals=%d, joined=%s)",
                signal.signal_id, cluster.cluster_id, cluster.size, joined,
            )
            return ClusterAssignment(cluster, event_type, created=False, joined=joined)

    async def get(self, cluster_id: UUID) -> Cluster | None:
        """Retrieve any cluster, including closed ones."""
        return self._clusters.get(cluster_id)

    async def promote(self, cluster_id: UUID, incident_id: UUID) -> None:
        cluster = self._clusters[cluster_id]
        async with self._hold_cluster(cluster_id):
            cluster.promote(incident_id)
            logger.info("Cluster %s promoted to incident %s", cluster_id, incident_id)

    async def close(self, cluster_id: UUID) -> None:
        cluster = self._clusters.get(cluster_id)
        if cluster is None:
            return
        async with self._hold_cluster(cluster_id):
            if not cluster.is_closed:
                cluster.close()
                self._unindex(cluster_id)
                logger.info("Closed cluster %s", cluster_id)

    async def sweep(self, now: datetime | None = None) -> list[UUID]:
        """Close every idle cluster across all cells; return their ids."""
        now = now or utc_now()
        closed: list[UUID] = []
        for bucket in sorted(self._bucket_index):
            async with self._locks.hold(bucket):
                closed.extend(self._close_idle(bucket, now))
        if closed:
            logger.info("Closed %d idle cluster(s)", len(closed))
        return closed

    async def summary(self) -> ClusterSummary:
        counts = {status: 0 for status in ClusterStatus}
        for cluster in self._clusters.values():
            counts[cluster.status] += 1
        return ClusterSummary(
            total_clusters=len(self._clusters),
            open_clusters=counts[ClusterStatus.OPEN],
            promoted_clusters=counts[ClusterStatus.PROMOTED],
            closed_clusters=counts[ClusterStatus.CLOSED],
        )

    @property
    def active_buckets(self) -> int:
        """Cells currently indexing at least one open or promoted cluster."""
        return len(self._bucket_index)

    # ── Internals ────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _hold_cluster(self, cluster_id: UUID) -> AsyncIterator[None]:
        """Lock the cell currently indexing *cluster_id*.

        The cell can change while we wait for its lock, so re-check after
        acquiring.  Closed clusters are unindexed and need no cell lock.
        """
        while True:
            bucket = self._cluster_bucket.get(cluster_id)
            if bucket is None:
                yield
                return
            async with self._locks.hold(bucket):
                if self._cluster_bucket.get(cluster_id) == bucket:
                    yield
                    return

    def _best_match(self, buckets: Iterable[BucketKey], signal: Signal, event_type: EventType) -> Cluster | None:
        """Must be called while holding the locks of *buckets*."""
        assert signal.location is not None
        candidates = [
            self._clusters[cid]
            for bucket in buckets
            for cid in self._bucket_index.get(bucket, [])
            if self._clusters[cid].matches(signal, event_type, self._radius_m, self._idle_window)
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda c: (c.distance_m(signal.location), c.sequence))

    def _create(self, signal: Signal, event_type: EventType) -> Cluster:
        """Must be called while holding the lock of the signal's own cell."""
        cluster = Cluster(
            city=(signal.city_hint or "").strip(),
            founder=signal,
            event_type=event_type,
            sequence=next(self._sequence),
        )
        bucket = self._buckets.key_for(cluster.centroid)
        self._clusters[cluster.cluster_id] = cluster
        self._bucket_index.setdefault(bucket, []).append(cluster.cluster_id)
        self._cluster_bucket[cluster.cluster_id] = bucket
        logger.info(
            "Created cluster %s in %s (%s) from signal %s",
            cluster.cluster_id, bucket, event_type.value, signal.signal_id,
        )
        return cluster

    def _reindex(self, cluster: Cluster) -> None:
        """Must be called while holding the old and new cells' locks."""
        bucket = self._buckets.key_for(cluster.centroid)
        previous = self._cluster_bucket.get(cluster.cluster_id)
        if previous is None or previous == bucket:
            return
        self._unindex(cluster.cluster_id)
        self._bucket_index.setdefault(bucket, []).append(cluster.cluster_id)
        self._cluster_bucket[cluster.cluster_id] = bucket
        logger.debug("Cluster %s centroid moved from %s to %s", cluster.cluster_id, previous, bucket)

    def _unindex(self, cluster_id: UUID) -> None:
        bucket = self._cluster_bucket.pop(cluster_id, None)
        if bucket is None:
            return
        members = self._bucket_index.get(bucket, [])
        if cluster_id in members:
            members.remove(cluster_id)
        if not members:
            self._bucket_index.pop(bucket, None)

    def _close_idle(self, bucket: BucketKey, now: datetime) -> list[UUID]:
        """Must be called while holding the bucket lock."""
        closed: list[UUID] = []
        for cid in list(self._bucket_index.get(bucket, [])):
            cluster = self._clusters[cid]
            if not cluster.is_closed and cluster.is_idle(self._idle_window, now):
                cluster.close()
                self._unindex(cid)
                closed.append(cid)
                logger.debug("Cluster %s idle, closed", cid)
        return closed

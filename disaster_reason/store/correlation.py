"""Bucketing strategies for serializing cluster mutation.

A BucketStrategy maps a location to the key of the exclusive section that
owns clusters centred there, and lists every bucket that could hold a
cluster centred within a given radius of a location.  Matching is purely
geographic: city hints never decide which clusters a signal can see.
"""

from __future__ import annotations

import math
from typing import Protocol

from disaster_reason.domain.signal import GeoPoint

BucketKey = str

_METERS_PER_DEGREE = 111_320.0
# Longitude span is capped near the poles, where a degree shrinks to nothing
_MIN_COS_LAT = 0.01


class BucketStrategy(Protocol):
    """Protocol for location-to-bucket assignment."""

    def key_for(self, point: GeoPoint) -> BucketKey:
        """Bucket owning clusters whose centroid is at *point*."""
        ...

    def keys_near(self, point: GeoPoint, radius_m: float) -> list[BucketKey]:
        """Sorted keys of every bucket intersecting the circle around *point*."""
        ...


class GridBucket:
    """Buckets by a lat/lng grid cell.

    ``keys_near`` covers the bounding box of the search circle, so a signal
    a few metres from a cell edge still sees clusters on the other side.
    """

    def __init__(self, cell_degrees: float = 0.5) -> None:
        if cell_degrees <= 0:
            raise ValueError("cell_degrees must be positive")
        self._cell = cell_degrees

    @property
    def cell_degrees(self) -> float:
        return self._cell

    def key_for(self, point: GeoPoint) -> BucketKey:
        row, col = self._cell_of(point.lat, point.lng)
        return f"grid:{row}:{col}"

    def keys_near(self, point: GeoPoint, radius_m: float) -> list[BucketKey]:
        dlat = radius_m / _METERS_PER_DEGREE
        dlng = radius_m / (_METERS_PER_DEGREE * max(math.cos(math.radians(point.lat)), _MIN_COS_LAT))
        row_lo, col_lo = self._cell_of(point.lat - dlat, point.lng - dlng)
        row_hi, col_hi = self._cell_of(point.lat + dlat, point.lng + dlng)
        return sorted(
            f"grid:{row}:{col}"
            for row in range(row_lo, row_hi + 1)
            for col in range(col_lo, col_hi + 1)
        )

    def _cell_of(self, lat: float, lng: float) -> tuple[int, int]:
        return math.floor(lat / self._cell), math.floor(lng / self._cell)

"""Append-only signal store — the ingestion boundary.

``submit`` is the only way in.  It rejects signals whose coordinates are
missing or invalid or whose source identifier is blank, stamps accepted
signals with ``received_at``, and never mutates or deletes them afterwards.
"""

from __future__ import annotations

import asyncio
import logging
from uuid import UUID

from disaster_reason.domain.errors import InvalidSignal
from disaster_reason.domain.signal import Signal
from disaster_reason.foundation.clock import utc_now

logger = logging.getLogger(__name__)


class SignalStore:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._signals: dict[UUID, Signal] = {}

    async def submit(self, signal: Signal) -> Signal:
        """Validate, timestamp and store *signal*; return the stored copy.

        Re-submitting an already stored signal id returns the stored copy
        unchanged.

        Raises:
            InvalidSignal: blank source or unusable coordinates.
        """
        if not signal.source:
            logger.warning("Rejected signal %s: empty source identifier", signal.signal_id)
            raise InvalidSignal("empty source identifier", signal.signal_id)
        if not signal.has_valid_location:
            logger.warning(
                "Rejected signal %s from %s: invalid coordinates %s",
                signal.signal_id, signal.source, signal.location,
            )
            raise InvalidSignal("missing or invalid coordinates", signal.signal_id)

        async with self._lock:
            existing = self._signals.get(signal.signal_id)
            if existing is not None:
                logger.debug("Signal %s already stored", signal.signal_id)
                return existing
            stored = signal.model_copy(update={"received_at": utc_now()})
            self._signals[stored.signal_id] = stored
            logger.debug("Stored signal %s from %s", stored.signal_id, stored.source)
            return stored

    async def get(self, signal_id: UUID) -> Signal | None:
        async with self._lock:
            return self._signals.get(signal_id)

    async def count(self) -> int:
        async with self._lock:
            return len(self._signals)

"""In-memory notification state, outbox and daily audit.

Design notes:
    - An asyncio.Lock guards all mutations.
    - ``record_dispatch`` is the dedup unit: it compares the tuple's
      ``last_notified_status`` with the expected value, swaps in the new
      status and appends the outbox entry in one critical section.  Either
      both happen or neither does.
    - The audit aggregate is write-only from the dispatcher's point of view;
      dedup decisions never read it.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from uuid import UUID

from disaster_reason.domain.enums import IncidentStatus
from disaster_reason.domain.notification import (
    NotificationAudit,
    NotificationKey,
    NotificationOutboxEntry,
    NotificationState,
)
from disaster_reason.foundation.clock import utc_day, utc_now

logger = logging.getLogger(__name__)


class NotificationStore:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._states: dict[NotificationKey, NotificationState] = {}
        self._outbox: dict[UUID, NotificationOutboxEntry] = {}
        self._audit: dict[tuple[date, UUID], set[str]] = {}

    # ── Writes ───────────────────────────────────────────────────────────

    async def record_dispatch(
        self,
        entry: NotificationOutboxEntry,
        now: datetime | None = None,
    ) -> bool:
        """Advance the tuple's notification state and enqueue *entry*.

        Returns False (and writes nothing) if the tuple was already notified
        about ``entry.notification_type``.
        """
        now = now or utc_now()
        async with self._lock:
            state = self._states.get(entry.key)
            if state is not None and state.last_notified_status == entry.notification_type:
                return False

            self._states[entry.key] = NotificationState(
                user_id=entry.user_id,
                incident_id=entry.incident_id,
                user_place_id=entry.user_place_id,
                last_notified_status=entry.notification_type,
                last_notified_at=now,
            )
            self._outbox[entry.entry_id] = entry
            self._audit.setdefault((utc_day(now), entry.incident_id), set()).add(entry.user_id)
            return True

    async def purge_expired(self, now: datetime | None = None) -> int:
        """Drop undelivered entries past ``expires_at``; return how many."""
        now = now or utc_now()
        async with self._lock:
            expired = [eid for eid, e in self._outbox.items() if e.is_expired(now)]
            for eid in expired:
                del self._outbox[eid]
        if expired:
            logger.info("Purged %d expired outbox entr%s", len(expired), "y" if len(expired) == 1 else "ies")
        return len(expired)

    async def drain(self, limit: int = 100, now: datetime | None = None) -> list[NotificationOutboxEntry]:
        """Remove and return up to *limit* pending, unexpired entries, oldest first."""
        if limit < 1:
            raise ValueError("limit must be at least 1")
        now = now or utc_now()
        async with self._lock:
            pending = sorted(
                (e for e in self._outbox.values() if not e.is_expired(now)),
                key=lambda e: e.created_at,
            )[:limit]
            for entry in pending:
                del self._outbox[entry.entry_id]
            return pending

    # ── Reads ────────────────────────────────────────────────────────────

    async def state(self, key: NotificationKey) -> NotificationState | None:
        async with self._lock:
            return self._states.get(key)

    async def states(self) -> list[NotificationState]:
        async with self._lock:
            return list(self._states.values())

    async def outbox(self, incident_id: UUID | None = None) -> list[NotificationOutboxEntry]:
        async with self._lock:
            entries = sorted(self._outbox.values(), key=lambda e: e.created_at)
        if incident_id is None:
            return entries
        return [e for e in entries if e.incident_id == incident_id]

    async def audit(self, day: date | None = None) -> list[NotificationAudit]:
        async with self._lock:
            rows = [
                NotificationAudit(day=d, incident_id=iid, notified_user_count=len(users))
                for (d, iid), users in self._audit.items()
                if day is None or d == day
            ]
        return sorted(rows, key=lambda r: (r.day, str(r.incident_id)))

    async def last_status(self, key: NotificationKey) -> IncidentStatus | None:
        state = await self.state(key)
        return state.last_notified_status if state else None

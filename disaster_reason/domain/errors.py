"""Error kinds raised by the signal-to-incident engine.

Only genuine failures are exceptions.  An unmatched cluster, a score below
a threshold, or an evaluation that causes no transition are ordinary
return values.
"""

from __future__ import annotations

from uuid import UUID


class DisasterReasonError(Exception):
    """Base class for all engine errors."""


class InvalidSignal(DisasterReasonError):
    """A signal was rejected at the ingestion boundary."""

    def __init__(self, reason: str, signal_id: UUID | None = None) -> None:
        self.reason = reason
        self.signal_id = signal_id
        super().__init__(f"Invalid signal {signal_id or '<unknown>'}: {reason}")


class ScoringUnavailable(DisasterReasonError):
    """The external AI evaluation timed out or failed."""


class InvalidTransition(DisasterReasonError):
    """A requested state-machine move is not in the transition table."""

    def __init__(self, incident_id: UUID, from_status: str | None, to_status: str, reason: str) -> None:
        self.incident_id = incident_id
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        super().__init__(
            f"Incident {incident_id}: {from_status or 'null'} -> {to_status} rejected ({reason})"
        )


class ConcurrentTransitionConflict(DisasterReasonError):
    """The incident changed between reading it and committing a transition."""

    def __init__(self, incident_id: UUID, expected_version: int, actual_version: int) -> None:
        self.incident_id = incident_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Incident {incident_id} moved from version {expected_version} to {actual_version}"
        )


class NotificationWriteFailure(DisasterReasonError):
    """Writing the outbox entry and notification state for a tuple failed."""


class IncidentNotFound(DisasterReasonError):
    def __init__(self, incident_id: UUID) -> None:
        self.incident_id = incident_id
        super().__init__(f"Incident {incident_id} not found")


class StorageUnavailable(DisasterReasonError):
    """Backing storage is unreachable.  Fatal, propagated to the caller."""

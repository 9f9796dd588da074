"""Controlled enumerations for the disaster-reason domain.

Every categorical field in the domain MUST reference an enum defined here.
Free-form strings are not acceptable for classification fields.
"""

from __future__ import annotations

from enum import Enum


class SourceCategory(str, Enum):
    """Trust category a signal source belongs to."""

    OFFICIAL = "official"
    USER_REPORT = "user_report"
    SOCIAL_MEDIA = "social_media"
    NEWS = "news"


class EventType(str, Enum):
    """Disaster labels the classifier may assign to a signal or cluster."""

    FLOOD = "flood"
    EARTHQUAKE = "earthquake"
    FIRE = "fire"
    LANDSLIDE = "landslide"
    POWER_OUTAGE = "power_outage"
    ACCIDENT = "accident"
    WHIRLWIND = "whirlwind"
    TORNADO = "tornado"
    TSUNAMI = "tsunami"
    VOLCANO = "volcano"
    OTHER = "other"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ClusterStatus(str, Enum):
    """Lifecycle of a cluster hypothesis."""

    OPEN = "open"
    CLOSED = "closed"
    PROMOTED = "promoted"


class IncidentStatus(str, Enum):
    """User-facing incident states.  Transitions are owned by the lifecycle manager."""

    MONITOR = "monitor"
    ALERT = "alert"
    SUPPRESS = "suppress"
    RESOLVED = "resolved"


class TriggerSource(str, Enum):
    """Who caused a lifecycle transition."""

    AI = "ai"
    SYSTEM = "system"
    ADMIN = "admin"


class VerificationType(str, Enum):
    CONFIRM = "confirm"
    STILL_HAPPENING = "still_happening"
    FALSE = "false"
    RESOLVED = "resolved"


class ConsistencyAssessment(str, Enum):
    """Qualitative corroboration verdict."""

    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"


class RecommendedAction(str, Enum):
    ALERT = "alert"
    MONITOR = "monitor"
    NONE = "none"

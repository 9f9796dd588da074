"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings

from disaster_reason.domain.enums import EventType, Severity


class Settings(BaseSettings):
    app_name: str = "disaster-reason"
    debug: bool = False
    log_level: str = "INFO"

    # Source trust table (None = bundled data/source_weights.json)
    source_weights_path: str | None = None

    # Clustering
    cluster_radius_m: float = 5_000.0
    cluster_idle_minutes: int = 60
    bucket_cell_degrees: float = 0.5

    # Confidence scoring
    diversity_multiplier: float = 1.2
    official_floor: float = 0.8
    verification_step: float = 0.05
    max_verification_shift: float = 0.2
    ai_weight: float = 0.5
    evaluation_timeout_seconds: float = 10.0
    ai_evaluation_enabled: bool = False

    # Lifecycle thresholds
    promotion_threshold: float = 0.5
    min_signals_for_incident: int = 2
    alert_threshold: float = 0.8
    suppress_floor: float = 0.2
    resolution_weight_threshold: float = 3.0
    resolution_min_verifiers: int = 3

    # Auto-resolution silence, merged over the built-in tables.  Env values
    # are JSON, e.g. DISASTER_SILENCE_HOURS='{"low": 2}'
    silence_hours: dict[Severity, float] = {}
    max_signal_age_hours: dict[EventType, float] = {}

    # Verifier reputation (None = every user gets the default)
    user_reputations_path: str | None = None
    default_user_reputation: float = Field(default=0.25, ge=0.0, le=1.0)

    # Notifications
    notify_radius_m: float = 50_000.0
    outbox_ttl_minutes: int = 60
    notification_write_attempts: int = 2
    # Places to notify (None = no watched places until added at runtime)
    watched_places_path: str | None = None

    # Gemini LLM (AI evaluation)
    gemini_model: str = "gemini-2.0-flash"
    gemini_temperature: float = 0.2
    gemini_max_output_tokens: int = 1024

    model_config = {"env_prefix": "DISASTER_"}


settings = Settings()

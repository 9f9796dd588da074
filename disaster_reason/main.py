"""disaster-reason — signal clustering, incident lifecycle and notification fan-out.

This is the application entry point.  It wires the SignalStore, Clusterer,
ConfidenceScorer, IncidentLifecycleManager, NotificationDispatcher,
AdapterRegistry and the HTTP/WebSocket endpoints together.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import FastAPI

from disaster_reason.adapters.registry import default_registry
from disaster_reason.api.incidents import create_incident_router
from disaster_reason.api.ws_signal import create_signal_router
from disaster_reason.config import settings
from disaster_reason.core.evaluator import LLMEvaluator
from disaster_reason.core.lifecycle import IncidentLifecycleManager, LifecyclePolicy
from disaster_reason.core.pipeline import IncidentPipeline
from disaster_reason.core.scorer import ConfidenceScorer, ScoringPolicy
from disaster_reason.domain.trust import load_trust_table
from disaster_reason.notify.dispatcher import InMemoryPlaceDirectory, NotificationDispatcher
from disaster_reason.store.clusterer import Clusterer
from disaster_reason.store.correlation import GridBucket
from disaster_reason.store.incident_store import IncidentStore
from disaster_reason.store.notification_store import NotificationStore
from disaster_reason.store.reputation import InMemoryReputationDirectory
from disaster_reason.store.signal_store import SignalStore

# ── Logging ──────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

# ── Scoring ──────────────────────────────────────────────────────────────────

scorer = ConfidenceScorer(
    trust=load_trust_table(settings.source_weights_path),
    policy=ScoringPolicy(
        diversity_multiplier=settings.diversity_multiplier,
        official_floor=settings.official_floor,
        verification_step=settings.verification_step,
        max_verification_shift=settings.max_verification_shift,
        ai_weight=settings.ai_weight,
        evaluation_timeout_seconds=settings.evaluation_timeout_seconds,
    ),
    evaluator=LLMEvaluator() if settings.ai_evaluation_enabled else None,
)

# ── State ────────────────────────────────────────────────────────────────────

signal_store = SignalStore()
incident_store = IncidentStore()
notification_store = NotificationStore()
if settings.watched_places_path:
    places = InMemoryPlaceDirectory.from_json(settings.watched_places_path)
else:
    places = InMemoryPlaceDirectory()
    logger.warning("No watched places configured; notifications will have no recipients")

if settings.user_reputations_path:
    reputations = InMemoryReputationDirectory.from_json(
        settings.user_reputations_path, default=settings.default_user_reputation,
    )
else:
    reputations = InMemoryReputationDirectory(default=settings.default_user_reputation)

clusterer = Clusterer(
    radius_m=settings.cluster_radius_m,
    idle_window=timedelta(minutes=settings.cluster_idle_minutes),
    buckets=GridBucket(settings.bucket_cell_degrees),
)

dispatcher = NotificationDispatcher(
    notification_store,
    places,
    radius_m=settings.notify_radius_m,
    outbox_ttl=timedelta(minutes=settings.outbox_ttl_minutes),
    write_attempts=settings.notification_write_attempts,
)

lifecycle = IncidentLifecycleManager(
    incident_store,
    clusterer,
    scorer,
    policy=LifecyclePolicy.from_settings(settings),
    listeners=[dispatcher],
)

pipeline = IncidentPipeline(signal_store, clusterer, lifecycle, reputations=reputations)

# ── Adapter Registry ────────────────────────────────────────────────────────

registry = default_registry()

# ── App ──────────────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.app_name,
    description="Disaster signal clustering, incident lifecycle and notifications",
    version="0.1.0",
)

# ── Routes ───────────────────────────────────────────────────────────────────

app.include_router(create_signal_router(pipeline, registry))
app.include_router(create_incident_router(pipeline, incident_store, notification_store, registry))


# ── Health ───────────────────────────────────────────────────────────────────

@app.get("/health")
async def health() -> dict:
    clusters = await clusterer.summary()
    incidents = await incident_store.list()
    return {
        "status": "ok",
        "signals": await signal_store.count(),
        **clusters.to_dict(),
        "incidents": len(incidents),
        "active_incidents": sum(1 for i in incidents if not i.is_terminal),
        "pending_notifications": len(await notification_store.outbox()),
        "watched_places": len(places),
        "ai_evaluation_enabled": settings.ai_evaluation_enabled,
        "adapters": registry.stats,
        "total_adapted": registry.total_accepted,
        "total_rejected": registry.total_rejected,
    }

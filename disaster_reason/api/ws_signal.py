"""WebSocket endpoint for signal ingestion.

Path: /ws/signal

Accepts JSON matching the Signal schema, validates it at the boundary,
routes it through the IncidentPipeline, and acknowledges with the cluster
and incident it landed in.  If strict validation fails, falls back to the
adapter registry for raw upstream payloads.

Rejections are answered with ``{"status": "error"}``; the connection
stays open.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from disaster_reason.adapters.registry import AdaptationError, AdapterRegistry, NoAdapterFoundError
from disaster_reason.core.pipeline import IncidentPipeline
from disaster_reason.domain.errors import InvalidSignal
from disaster_reason.domain.signal import Signal

logger = logging.getLogger(__name__)


def parse_signal(raw: object, adapter_registry: AdapterRegistry | None) -> Signal:
    """Canonical Signal first, then the first adapter that claims the payload.

    Raises:
        InvalidSignal: Neither path produced a Signal.
    """
    if not isinstance(raw, dict):
        raise InvalidSignal("payload must be a JSON object")
    try:
        return Signal.model_validate(raw)
    except ValidationError as exc:
        if adapter_registry is None:
            raise InvalidSignal(f"schema validation failed: {exc.error_count()} error(s)") from exc
        try:
            signal = adapter_registry.adapt(raw)
        except (NoAdapterFoundError, AdaptationError) as adapt_exc:
            logger.debug("Adapter fallback failed: %s", adapt_exc)
            raise InvalidSignal(str(adapt_exc)) from adapt_exc
        logger.debug("Adapted raw payload into signal %s", signal.signal_id)
        return signal


def create_signal_router(
    pipeline: IncidentPipeline,
    adapter_registry: AdapterRegistry | None = None,
) -> APIRouter:
    """Factory that wires the signal endpoint to a concrete IncidentPipeline."""

    router = APIRouter()

    @router.websocket("/ws/signal")
    async def ingest_signal(websocket: WebSocket) -> None:
        await websocket.accept()
        logger.info("Signal source connected")

        try:
            while True:
                raw = await websocket.receive_json()

                # ── Validate and route ───────────────────────────────────
                try:
                    signal = parse_signal(raw, adapter_registry)
                    result = await pipeline.ingest(signal)
                except InvalidSignal as exc:
                    await websocket.send_json({"status": "error", "detail": exc.reason})
                    continue

                # ── Acknowledge ──────────────────────────────────────────
                await websocket.send_json(result.to_ack())

        except WebSocketDisconnect:
            logger.info("Signal source disconnected")

    return router

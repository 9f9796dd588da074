"""Tests for the IncidentPipeline orchestration and its ingest acknowledgements."""

from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest

from disaster_reason.domain.enums import ClusterStatus, EventType, IncidentStatus, VerificationType
from disaster_reason.domain.errors import IncidentNotFound, InvalidSignal
from disaster_reason.domain.signal import Signal
from disaster_reason.foundation.clock import utc_now

from tests.test_lifecycle import _bmkg, _build, _monitor_incident, _quake
from tests.test_signal import _valid_signal


class TestIngest:
    @pytest.mark.asyncio
    async def test_first_signal_founds_cluster_without_incident(self) -> None:
        env = _build()
        result = await env.pipeline.ingest(_quake())

        ack = result.to_ack()
        assert ack["status"] == "accepted"
        assert ack["cluster_created"] is True
        assert ack["event_type"] == "earthquake"
        assert ack["incident_id"] is None
        assert ack["incident_status"] is None
        assert ack["transitions"] == []

    @pytest.mark.asyncio
    async def test_third_corroborating_signal_promotes(self) -> None:
        env = _build()
        await env.pipeline.ingest(_quake())
        await env.pipeline.ingest(_quake())
        result = await env.pipeline.ingest(_quake())

        ack = result.to_ack()
        assert ack["cluster_created"] is False
        assert ack["incident_status"] == "monitor"
        assert ack["transitions"] == ["monitor"]
        assert result.cluster.status == ClusterStatus.PROMOTED
        assert result.cluster.incident_id == result.incident_id

    @pytest.mark.asyncio
    async def test_single_official_report_promotes_and_escalates(self) -> None:
        env = _build()
        result = await env.pipeline.ingest(_bmkg())
        assert result.status == IncidentStatus.ALERT
        assert result.to_ack()["transitions"] == ["monitor", "alert"]

    @pytest.mark.asyncio
    async def test_replayed_signal_is_not_counted_twice(self) -> None:
        env = _build()
        signal = _quake()
        first = await env.pipeline.ingest(signal)
        again = await env.pipeline.ingest(signal)

        assert again.cluster.cluster_id == first.cluster.cluster_id
        assert again.cluster.size == 1
        assert again.outcome is None
        assert await env.pipeline._signals.count() == 1

    @pytest.mark.asyncio
    async def test_signal_without_location_rejected(self) -> None:
        env = _build()
        bad = Signal.model_validate(_valid_signal(location=None))
        with pytest.raises(InvalidSignal):
            await env.pipeline.ingest(bad)
        assert (await env.clusterer.summary()).total_clusters == 0

    @pytest.mark.asyncio
    async def test_unrelated_cities_stay_apart(self) -> None:
        env = _build()
        quake = await env.pipeline.ingest(_quake())
        flood = await env.pipeline.ingest(Signal.model_validate(_valid_signal()))
        assert flood.cluster.cluster_id != quake.cluster.cluster_id
        assert flood.event_type == EventType.FLOOD


class TestVerificationAndAdmin:
    @pytest.mark.asyncio
    async def test_verification_on_unknown_incident(self) -> None:
        env = _build()
        with pytest.raises(IncidentNotFound):
            await env.pipeline.submit_verification(uuid4(), "u1", VerificationType.CONFIRM)

    @pytest.mark.asyncio
    async def test_verification_weighted_by_directory_reputation(self) -> None:
        env = _build(reputations={"warden": 0.9})
        incident = await _monitor_incident(env)
        await env.pipeline.submit_verification(incident.incident_id, "warden", VerificationType.CONFIRM)
        await env.pipeline.submit_verification(incident.incident_id, "stranger", VerificationType.CONFIRM)
        verifications = await env.incidents.verifications(incident.incident_id)
        assert {v.user_id: v.reputation for v in verifications} == {"warden": 0.9, "stranger": 0.25}

    @pytest.mark.asyncio
    async def test_unknown_users_cannot_resolve_alone(self) -> None:
        env = _build()
        incident = await _monitor_incident(env)
        for i in range(6):
            outcome = await env.pipeline.submit_verification(
                incident.incident_id, f"fresh-{i}", VerificationType.RESOLVED,
            )
            assert not outcome.transitioned
        assert (await env.incidents.require(incident.incident_id)).status == IncidentStatus.MONITOR

    @pytest.mark.asyncio
    async def test_admin_transition_passes_through(self) -> None:
        env = _build()
        result = None
        for _ in range(3):
            result = await env.pipeline.ingest(_quake())
        event = await env.pipeline.admin_transition(
            result.incident_id, IncidentStatus.SUPPRESS, "prank video", "ops-1",
        )
        assert event.to_status == IncidentStatus.SUPPRESS
        assert event.changed_by == "ops-1"


class TestResolveStale:
    @pytest.mark.asyncio
    async def test_quiet_incident_resolved_and_cluster_closed(self) -> None:
        env = _build()
        result = None
        for _ in range(3):
            result = await env.pipeline.ingest(_quake())

        outcomes = await env.pipeline.resolve_stale(utc_now() + timedelta(hours=5))

        assert [o.incident.status for o in outcomes] == [IncidentStatus.RESOLVED]
        cluster = await env.clusterer.get(result.cluster.cluster_id)
        assert cluster.is_closed

    @pytest.mark.asyncio
    async def test_recent_incident_untouched(self) -> None:
        env = _build()
        for _ in range(3):
            await env.pipeline.ingest(_quake())
        assert await env.pipeline.resolve_stale(utc_now() + timedelta(minutes=30)) == []

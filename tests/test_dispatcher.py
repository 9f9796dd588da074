"""Tests for the NotificationDispatcher, the place directory and the NotificationStore."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from uuid import uuid4

import pytest
from pydantic import ValidationError

from disaster_reason.domain.enums import EventType, IncidentStatus, RecommendedAction, Severity, TriggerSource
from disaster_reason.domain.errors import NotificationWriteFailure, StorageUnavailable
from disaster_reason.domain.incident import Incident, LifecycleEvent
from disaster_reason.domain.notification import NotificationOutboxEntry, WatchedPlace
from disaster_reason.domain.signal import GeoPoint
from disaster_reason.foundation.clock import utc_day
from disaster_reason.notify.dispatcher import InMemoryPlaceDirectory, NotificationDispatcher
from disaster_reason.store.notification_store import NotificationStore

from tests.test_lifecycle import _SwitchableEvaluator, _build, _monitor_incident


# ── Helpers ──────────────────────────────────────────────────────────────────

_CENTER = GeoPoint(lat=-6.8200, lng=107.1400)
_NOW = datetime(2026, 2, 13, 8, 0, tzinfo=timezone.utc)


def _place(user: str = "alice", place: str = "home", lat: float = -6.8300, lng: float = 107.1500, **kw) -> WatchedPlace:
    return WatchedPlace(user_id=user, user_place_id=place, location=GeoPoint(lat=lat, lng=lng), **kw)


def _incident(**overrides) -> Incident:
    base = dict(
        cluster_id=uuid4(),
        event_type=EventType.FLOOD,
        severity=Severity.MEDIUM,
        confidence_score=0.7,
        status=IncidentStatus.ALERT,
        center=_CENTER,
    )
    base.update(overrides)
    return Incident(**base)


def _transition(incident: Incident, from_status, to_status) -> LifecycleEvent:
    return LifecycleEvent(
        incident_id=incident.incident_id,
        from_status=from_status,
        to_status=to_status,
        triggered_by=TriggerSource.SYSTEM,
        changed_by="system",
        confidence_score=incident.confidence_score,
    )


def _entry(status: IncidentStatus = IncidentStatus.ALERT, created: datetime = _NOW, ttl_minutes: int = 60, **kw) -> NotificationOutboxEntry:
    base = dict(
        user_id="alice",
        incident_id=uuid4(),
        user_place_id="home",
        notification_type=status,
        created_at=created,
        expires_at=created + timedelta(minutes=ttl_minutes),
    )
    base.update(kw)
    return NotificationOutboxEntry(**base)


# ── Place directory ──────────────────────────────────────────────────────────

class TestPlaceDirectory:
    @pytest.mark.asyncio
    async def test_places_within_radius(self) -> None:
        directory = InMemoryPlaceDirectory([
            _place("alice"),
            _place("bob", lat=-7.5, lng=110.4),
        ])
        near = await directory.places_near(_CENTER.lat, _CENTER.lng, 50_000)
        assert [p.user_id for p in near] == ["alice"]

    @pytest.mark.asyncio
    async def test_place_radius_extends_reach(self) -> None:
        # ~111 km north, watching a 150 km radius
        directory = InMemoryPlaceDirectory([_place("carol", lat=-5.82, lng=107.14, radius_m=150_000)])
        near = await directory.places_near(_CENTER.lat, _CENTER.lng, 50_000)
        assert [p.user_id for p in near] == ["carol"]

    def test_remove(self) -> None:
        directory = InMemoryPlaceDirectory([_place()])
        directory.remove("alice", "home")
        assert len(directory) == 0

    @pytest.mark.asyncio
    async def test_loaded_from_json(self, tmp_path) -> None:
        path = tmp_path / "places.json"
        path.write_text(json.dumps([
            {"user_id": "alice", "user_place_id": "home", "location": {"lat": -6.83, "lng": 107.15}},
            {
                "user_id": "bob",
                "user_place_id": "office",
                "location": {"lat": -7.5, "lng": 110.4},
                "muted_event_types": ["flood"],
            },
        ]))
        directory = InMemoryPlaceDirectory.from_json(path)
        assert len(directory) == 2
        near = await directory.places_near(_CENTER.lat, _CENTER.lng, 50_000)
        assert [p.user_id for p in near] == ["alice"]

    def test_invalid_place_file_rejected(self, tmp_path) -> None:
        path = tmp_path / "places.json"
        path.write_text(json.dumps([{"user_id": "alice", "user_place_id": "home"}]))
        with pytest.raises(ValidationError):
            InMemoryPlaceDirectory.from_json(path)



class TestWatchedPlacePreferences:
    def test_muted_event_type(self) -> None:
        place = _place(muted_event_types=frozenset({EventType.FLOOD}))
        assert not place.wants(EventType.FLOOD, 0.9)
        assert place.wants(EventType.FIRE, 0.9)

    def test_min_confidence(self) -> None:
        place = _place(min_confidence=0.8)
        assert not place.wants(EventType.FLOOD, 0.7)
        assert place.wants(EventType.FLOOD, 0.8)

    def test_inactive(self) -> None:
        assert not _place(is_active=False).wants(EventType.FLOOD, 1.0)


# ── Notification store ───────────────────────────────────────────────────────

class TestNotificationStore:
    @pytest.mark.asyncio
    async def test_same_status_written_once(self) -> None:
        store = NotificationStore()
        incident_id = uuid4()
        assert await store.record_dispatch(_entry(incident_id=incident_id), _NOW)
        assert not await store.record_dispatch(_entry(incident_id=incident_id), _NOW)
        assert len(await store.outbox()) == 1

    @pytest.mark.asyncio
    async def test_state_tracks_last_status(self) -> None:
        store = NotificationStore()
        entry = _entry()
        await store.record_dispatch(entry, _NOW)
        state = await store.state(entry.key)
        assert state.last_notified_status == IncidentStatus.ALERT
        assert state.last_notified_at == _NOW

    @pytest.mark.asyncio
    async def test_drain_hands_out_oldest_first_and_removes(self) -> None:
        store = NotificationStore()
        late = _entry(user_id="bob", created=_NOW + timedelta(minutes=5))
        early = _entry(user_id="alice", created=_NOW)
        await store.record_dispatch(late, _NOW)
        await store.record_dispatch(early, _NOW)

        drained = await store.drain(limit=1, now=_NOW + timedelta(minutes=10))
        assert [e.user_id for e in drained] == ["alice"]
        assert [e.user_id for e in await store.outbox()] == ["bob"]

    @pytest.mark.asyncio
    async def test_drain_skips_expired(self) -> None:
        store = NotificationStore()
        await store.record_dispatch(_entry(ttl_minutes=1), _NOW)
        assert await store.drain(now=_NOW + timedelta(minutes=2)) == []

    @pytest.mark.asyncio
    async def test_purge_expired(self) -> None:
        store = NotificationStore()
        await store.record_dispatch(_entry(user_id="a", ttl_minutes=1), _NOW)
        await store.record_dispatch(_entry(user_id="b", ttl_minutes=120), _NOW)
        assert await store.purge_expired(_NOW + timedelta(minutes=30)) == 1
        assert [e.user_id for e in await store.outbox()] == ["b"]

    @pytest.mark.asyncio
    async def test_purge_keeps_dedup_state(self) -> None:
        store = NotificationStore()
        entry = _entry(ttl_minutes=1)
        await store.record_dispatch(entry, _NOW)
        await store.purge_expired(_NOW + timedelta(minutes=5))
        assert not await store.record_dispatch(_entry(incident_id=entry.incident_id, ttl_minutes=1), _NOW)

    @pytest.mark.asyncio
    async def test_audit_counts_distinct_users_per_day(self) -> None:
        store = NotificationStore()
        incident_id = uuid4()
        await store.record_dispatch(_entry(incident_id=incident_id, user_id="a", user_place_id="home"), _NOW)
        await store.record_dispatch(_entry(incident_id=incident_id, user_id="a", user_place_id="work"), _NOW)
        await store.record_dispatch(_entry(incident_id=incident_id, user_id="b"), _NOW)
        await store.record_dispatch(
            _entry(incident_id=incident_id, user_id="c"), _NOW + timedelta(days=1),
        )

        rows = await store.audit(utc_day(_NOW))
        assert len(rows) == 1
        assert rows[0].notified_user_count == 2
        assert len(await store.audit()) == 2

    @pytest.mark.asyncio
    async def test_drain_limit_validated(self) -> None:
        with pytest.raises(ValueError):
            await NotificationStore().drain(limit=0)


# ── Dispatcher ───────────────────────────────────────────────────────────────

class TestDispatcher:
    @pytest.mark.asyncio
    async def test_one_entry_per_nearby_place(self) -> None:
        store = NotificationStore()
        directory = InMemoryPlaceDirectory([
            _place("alice", "home"),
            _place("alice", "office", lat=-6.81, lng=107.13),
            _place("bob", "far", lat=-7.5, lng=110.4),
        ])
        dispatcher = NotificationDispatcher(store, directory)
        incident = _incident()

        count = await dispatcher.on_transition(incident, _transition(incident, IncidentStatus.MONITOR, IncidentStatus.ALERT))

        assert count == 2
        entries = await store.outbox()
        assert {(e.user_id, e.user_place_id) for e in entries} == {("alice", "home"), ("alice", "office")}
        assert all(e.notification_type == IncidentStatus.ALERT for e in entries)

    @pytest.mark.asyncio
    async def test_outbox_ttl(self) -> None:
        store = NotificationStore()
        dispatcher = NotificationDispatcher(store, InMemoryPlaceDirectory([_place()]), outbox_ttl=timedelta(minutes=15))
        incident = _incident()
        await dispatcher.on_transition(incident, _transition(incident, IncidentStatus.MONITOR, IncidentStatus.ALERT))
        entry = (await store.outbox())[0]
        assert entry.expires_at - entry.created_at == timedelta(minutes=15)

    @pytest.mark.asyncio
    async def test_replayed_transition_not_renotified(self) -> None:
        store = NotificationStore()
        dispatcher = NotificationDispatcher(store, InMemoryPlaceDirectory([_place()]))
        incident = _incident()
        event = _transition(incident, IncidentStatus.MONITOR, IncidentStatus.ALERT)
        assert await dispatcher.on_transition(incident, event) == 1
        assert await dispatcher.on_transition(incident, event) == 0
        assert len(await store.outbox()) == 1

    @pytest.mark.asyncio
    async def test_opted_out_places_skipped(self) -> None:
        store = NotificationStore()
        directory = InMemoryPlaceDirectory([
            _place("muted", muted_event_types=frozenset({EventType.FLOOD})),
            _place("picky", min_confidence=0.9),
            _place("keen"),
        ])
        dispatcher = NotificationDispatcher(store, directory)
        incident = _incident(confidence_score=0.7)
        await dispatcher.on_transition(incident, _transition(incident, IncidentStatus.MONITOR, IncidentStatus.ALERT))
        assert [e.user_id for e in await store.outbox()] == ["keen"]

    @pytest.mark.asyncio
    async def test_write_failure_is_retried(self) -> None:
        store = NotificationStore()
        dispatcher = NotificationDispatcher(store, InMemoryPlaceDirectory([_place()]), write_attempts=2)
        incident = _incident()
        real = store.record_dispatch
        calls = []

        async def flaky(entry, now=None):
            calls.append(entry.key)
            if len(calls) == 1:
                raise NotificationWriteFailure("disk full")
            return await real(entry, now)

        with patch.object(store, "record_dispatch", side_effect=flaky):
            count = await dispatcher.on_transition(incident, _transition(incident, IncidentStatus.MONITOR, IncidentStatus.ALERT))

        assert count == 1
        assert len(calls) == 2
        assert len(await store.outbox()) == 1

    @pytest.mark.asyncio
    async def test_failing_tuple_does_not_block_others(self) -> None:
        store = NotificationStore()
        directory = InMemoryPlaceDirectory([_place("alice"), _place("bob")])
        dispatcher = NotificationDispatcher(store, directory, write_attempts=2)
        incident = _incident()
        real = store.record_dispatch

        async def alice_always_fails(entry, now=None):
            if entry.user_id == "alice":
                raise NotificationWriteFailure("bad row")
            return await real(entry, now)

        with patch.object(store, "record_dispatch", side_effect=alice_always_fails):
            count = await dispatcher.on_transition(incident, _transition(incident, IncidentStatus.MONITOR, IncidentStatus.ALERT))

        assert count == 1
        assert [e.user_id for e in await store.outbox()] == ["bob"]
        assert await store.state(("alice", incident.incident_id, "home")) is None

    @pytest.mark.asyncio
    async def test_storage_unavailable_propagates(self) -> None:
        store = NotificationStore()
        dispatcher = NotificationDispatcher(store, InMemoryPlaceDirectory([_place()]))
        incident = _incident()
        with patch.object(store, "record_dispatch", side_effect=StorageUnavailable("db down")):
            with pytest.raises(StorageUnavailable):
                await dispatcher.on_transition(incident, _transition(incident, IncidentStatus.MONITOR, IncidentStatus.ALERT))

    def test_write_attempts_validated(self) -> None:
        with pytest.raises(ValueError):
            NotificationDispatcher(NotificationStore(), InMemoryPlaceDirectory(), write_attempts=0)


# ── End-to-end fan-out ───────────────────────────────────────────────────────

class TestFanOutScenarios:
    @pytest.mark.asyncio
    async def test_alert_to_monitor_sends_exactly_one_more(self) -> None:
        evaluator = _SwitchableEvaluator(0.4, RecommendedAction.ALERT)
        env = _build(evaluator=evaluator, places=[_place("alice")])
        incident = await _monitor_incident(env)
        assert incident.status == IncidentStatus.ALERT
        before = await env.notifications.outbox(incident.incident_id)
        assert [e.notification_type for e in before] == [IncidentStatus.MONITOR, IncidentStatus.ALERT]

        evaluator.evaluation = evaluator.evaluation.model_copy(
            update={"recommended_action": RecommendedAction.MONITOR},
        )
        outcome = await env.manager.reevaluate(incident.incident_id)
        assert [e.to_status for e in outcome.events] == [IncidentStatus.MONITOR]

        after = await env.notifications.outbox(incident.incident_id)
        assert len(after) == len(before) + 1
        assert after[-1].notification_type == IncidentStatus.MONITOR

        # Re-evaluating with nothing new changes nothing
        await env.manager.reevaluate(incident.incident_id)
        assert len(await env.notifications.outbox(incident.incident_id)) == len(after)

    @pytest.mark.asyncio
    async def test_no_duplicate_entries_per_status_run(self) -> None:
        env = _build(places=[_place("alice"), _place("bob", "work")])
        incident = await _monitor_incident(env)
        for _ in range(3):
            await env.manager.reevaluate(incident.incident_id)

        entries = await env.notifications.outbox(incident.incident_id)
        keys = [(e.user_id, e.user_place_id, e.notification_type) for e in entries]
        assert len(keys) == len(set(keys)) == 2

        rows = await env.notifications.audit()
        assert rows[0].incident_id == incident.incident_id
        assert rows[0].notified_user_count == 2

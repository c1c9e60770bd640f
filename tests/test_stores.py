"""
test_stores.py — Store contract, run against both backends.

The SQL backend runs on SQLite through aiosqlite; it is skipped when
aiosqlite is not installed.

Run with:
    pytest tests/test_stores.py -v
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any

import asyncio

import pytest

from conftest import T0, make_event, subscriber
from hazardwatch.alerts.matcher import AlertMatcher
from hazardwatch.alerts.models import Notification
from hazardwatch.core.database import create_engine, get_session_factory, init_db
from hazardwatch.core.errors import DuplicateNotificationError, PersistenceError
from hazardwatch.spatial.severity import HazardKind
from hazardwatch.storage.base import HazardStore, NotificationStore, SubscriberStore
from hazardwatch.storage.memory import (
    InMemoryHazardStore,
    InMemoryNotificationStore,
    InMemorySubscriberStore,
)


@dataclass
class Stores:
    hazards: Any
    subscribers: Any
    notifications: Any


@pytest.fixture(params=["memory", "sql"])
async def stores(request, tmp_path):
    if request.param == "memory":
        yield Stores(InMemoryHazardStore(), InMemorySubscriberStore(), InMemoryNotificationStore())
        return

    pytest.importorskip("aiosqlite")
    from hazardwatch.storage.sql import SqlHazardStore, SqlNotificationStore, SqlSubscriberStore

    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'hazardwatch.db'}")
    await init_db(engine)
    factory = get_session_factory(engine)
    yield Stores(SqlHazardStore(factory), SqlSubscriberStore(factory), SqlNotificationStore(factory))
    await engine.dispose()


def note(sub_id="u", key="quake:test:1", minutes=0, **kw):
    return Notification(
        subscriber_id=sub_id,
        identity_key=key,
        kind=HazardKind.EARTHQUAKE,
        title="Earthquake Alert: M6.2",
        message="A magnitude 6.2 earthquake occurred",
        created_at=T0 + timedelta(minutes=minutes),
        **kw,
    )


class TestProtocols:

    async def test_backends_satisfy_protocols(self, stores):
        assert isinstance(stores.hazards, HazardStore)
        assert isinstance(stores.subscribers, SubscriberStore)
        assert isinstance(stores.notifications, NotificationStore)


# ═══════════════════════════════════════════════════════════════════════════
# Hazard events
# ═══════════════════════════════════════════════════════════════════════════

class TestHazardStore:

    async def test_round_trip(self, stores):
        event = make_event(details={"significance": 620, "depth_class": "shallow"})
        await stores.hazards.upsert(event)
        assert await stores.hazards.get(event.identity_key) == event

    async def test_missing(self, stores):
        assert await stores.hazards.get("quake:test:none") is None

    async def test_upsert_replaces(self, stores):
        event = make_event(key="k")
        await stores.hazards.upsert(event)
        await stores.hazards.upsert(replace(event, magnitude_or_intensity=6.8))
        stored = await stores.hazards.get("k")
        assert stored.magnitude_or_intensity == 6.8

    async def test_query_since(self, stores):
        old = make_event(key="old", observed_at=T0 - timedelta(days=2))
        quake = make_event(key="quake", observed_at=T0)
        storm = make_event(HazardKind.STORM, 130, key="storm", observed_at=T0 + timedelta(hours=1))
        for e in (old, quake, storm):
            await stores.hazards.upsert(e)

        recent = await stores.hazards.query_since(T0 - timedelta(hours=1))
        assert [e.identity_key for e in recent] == ["storm", "quake"]
        storms = await stores.hazards.query_since(T0 - timedelta(days=7), HazardKind.STORM)
        assert [e.identity_key for e in storms] == ["storm"]

    async def test_synthetic_housekeeping(self, stores):
        await stores.hazards.upsert(make_event(key="real"))
        await stores.hazards.upsert(make_event(key="drill-1", synthetic=True))
        await stores.hazards.upsert(make_event(key="drill-2", synthetic=True))

        assert sorted(e.identity_key for e in await stores.hazards.list_synthetic()) == ["drill-1", "drill-2"]
        assert await stores.hazards.delete("drill-1")
        assert not await stores.hazards.delete("drill-1")
        assert await stores.hazards.delete_synthetic() == 1
        assert await stores.hazards.get("real") is not None


# ═══════════════════════════════════════════════════════════════════════════
# Subscribers
# ═══════════════════════════════════════════════════════════════════════════

class TestSubscriberStore:

    async def test_round_trip_with_geofence(self, stores):
        sub = subscriber("u", min_magnitude=4.5, fence=(14.6, 121.0, 75.0))
        await stores.subscribers.upsert(sub)
        stored = await stores.subscribers.get("u")
        assert stored.geofence == sub.geofence
        assert stored.min_magnitude == 4.5
        assert stored.enabled

    async def test_update_keeps_created_at(self, stores):
        first = await stores.subscribers.upsert(subscriber("u"))
        later = replace(subscriber("u", enabled=False), created_at=first.created_at + timedelta(days=1))
        updated = await stores.subscribers.upsert(later)
        assert updated.created_at == first.created_at
        assert not updated.enabled
        assert (await stores.subscribers.get("u")).geofence is None

    async def test_listing(self, stores):
        await stores.subscribers.upsert(subscriber("on"))
        await stores.subscribers.upsert(subscriber("off", enabled=False))
        assert sorted(s.id for s in await stores.subscribers.list_all()) == ["off", "on"]
        assert [s.id for s in await stores.subscribers.list_enabled()] == ["on"]

    async def test_missing(self, stores):
        assert await stores.subscribers.get("nobody") is None


# ═══════════════════════════════════════════════════════════════════════════
# Notifications
# ═══════════════════════════════════════════════════════════════════════════

class TestNotificationStore:

    async def test_insert_and_get(self, stores):
        n = note(distance_km=12.34, signal_number=None)
        await stores.notifications.insert_if_absent(n)
        stored = await stores.notifications.get(n.id)
        assert stored.identity_key == n.identity_key
        assert stored.created_at == n.created_at
        assert stored.distance_km == pytest.approx(12.34)
        assert await stores.notifications.exists("u", "quake:test:1")

    async def test_duplicate_pair_rejected(self, stores):
        await stores.notifications.insert_if_absent(note())
        with pytest.raises(DuplicateNotificationError):
            await stores.notifications.insert_if_absent(note())
        assert await stores.notifications.count_for_pair("u", "quake:test:1") == 1

    async def test_same_event_different_subscribers(self, stores):
        await stores.notifications.insert_if_absent(note("a"))
        await stores.notifications.insert_if_absent(note("b"))
        assert await stores.notifications.count_for_pair("a", "quake:test:1") == 1
        assert await stores.notifications.count_for_pair("b", "quake:test:1") == 1

    async def test_list_newest_first_with_limit(self, stores):
        for i in range(5):
            await stores.notifications.insert_if_absent(note(key=f"k{i}", minutes=i))
        listed = await stores.notifications.list_for_subscriber("u", limit=3)
        assert [n.identity_key for n in listed] == ["k4", "k3", "k2"]

    async def test_read_state(self, stores):
        first, second, other = note(key="k1"), note(key="k2"), note("v", key="k1")
        for n in (first, second, other):
            await stores.notifications.insert_if_absent(n)

        assert await stores.notifications.unread_count("u") == 2
        assert await stores.notifications.mark_read(first.id)
        assert not await stores.notifications.mark_read("NTF-MISSING")
        assert await stores.notifications.unread_count("u") == 1
        assert await stores.notifications.mark_all_read("u") == 1
        assert await stores.notifications.unread_count("u") == 0
        assert await stores.notifications.unread_count("v") == 1

    async def test_delete_frees_pair(self, stores):
        n = note()
        await stores.notifications.insert_if_absent(n)
        assert await stores.notifications.delete(n.id)
        assert not await stores.notifications.delete(n.id)
        assert not await stores.notifications.exists("u", "quake:test:1")
        await stores.notifications.insert_if_absent(note())


class TestConcurrentMatching:

    async def test_parallel_runs_notify_pair_once(self, stores, monkeypatch):
        await stores.subscribers.upsert(subscriber("u", min_magnitude=5.0))
        lookup = stores.notifications.exists

        async def exists_then_yield(subscriber_id, identity_key):
            # Both runs see "absent" before either inserts
            found = await lookup(subscriber_id, identity_key)
            await asyncio.sleep(0.01)
            return found

        monkeypatch.setattr(stores.notifications, "exists", exists_then_yield)
        matcher = AlertMatcher(stores.subscribers, stores.notifications, notify_all_when_unconfigured=False)
        event = make_event(key="quake:phivolcs:race")

        first, second = await asyncio.gather(matcher.evaluate([event]), matcher.evaluate([event]))

        assert sorted([len(first), len(second)]) == [0, 1]
        assert await stores.notifications.count_for_pair("u", event.identity_key) == 1

    async def test_parallel_inserts_one_winner(self, stores):
        results = await asyncio.gather(
            *(stores.notifications.insert_if_absent(note()) for _ in range(4)),
            return_exceptions=True,
        )
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(losers) == 3
        assert all(isinstance(r, DuplicateNotificationError) for r in losers)
        assert await stores.notifications.count_for_pair("u", "quake:test:1") == 1


class TestSqlFailures:

    async def test_missing_tables_raise_persistence_error(self, tmp_path):
        pytest.importorskip("aiosqlite")
        from hazardwatch.storage.sql import SqlHazardStore

        engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
        store = SqlHazardStore(get_session_factory(engine))
        try:
            with pytest.raises(PersistenceError):
                await store.upsert(make_event())
        finally:
            await engine.dispose()

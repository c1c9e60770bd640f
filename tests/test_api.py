"""
test_api.py — HTTP surface: hazards, alert settings, notifications, operator.

The app is driven in-process through httpx's ASGI transport with a
Services container built on in-memory stores and scripted adapters, so
no lifespan, network or scheduler loop is involved.

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from conftest import ScriptedAdapter, quake_record, storm_record
from hazardwatch.core.config import settings
from hazardwatch.core.middleware import hazard_from_path
from hazardwatch.main import build_services, create_app
from hazardwatch.spatial.severity import HazardKind
from hazardwatch.storage.memory import (
    InMemoryHazardStore,
    InMemoryNotificationStore,
    InMemorySubscriberStore,
)

NOW = datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
def adapters():
    return [
        ScriptedAdapter("phivolcs", HazardKind.EARTHQUAKE, [
            quake_record(magnitude=6.2, when=NOW - timedelta(minutes=30)),
            quake_record(magnitude=4.1, lat=10.31, lon=123.88, when=NOW - timedelta(hours=2), place="Cebu"),
        ]),
        ScriptedAdapter("pagasa_tc", HazardKind.STORM, [
            storm_record(wind=130, when=NOW - timedelta(hours=1)),
        ], key_namespace="wpac"),
    ]


@pytest.fixture
async def services(adapters, monkeypatch):
    monkeypatch.setattr(settings, "OPERATOR_TOKEN", None)
    monkeypatch.setattr(settings, "ENVIRONMENT", "test")
    services = build_services(
        InMemoryHazardStore(),
        InMemorySubscriberStore(),
        InMemoryNotificationStore(),
        adapters,
    )
    services.scheduler.retry_delay = 0.0
    yield services
    await services.scheduler.stop()


@pytest.fixture
async def client(services):
    transport = httpx.ASGITransport(app=create_app(services))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def settle(services):
    """Wait for matcher hand-offs queued on the scheduler."""
    pending = list(services.scheduler._pending)
    if pending:
        await asyncio.gather(*pending)


async def run_cycle(client, kind="earthquake"):
    resp = await client.post(f"/api/v1/operator/cycles/{kind}")
    assert resp.status_code == 200
    return resp.json()


# ═══════════════════════════════════════════════════════════════════════════
# Hazards
# ═══════════════════════════════════════════════════════════════════════════

class TestHazards:

    async def test_active_before_any_cycle(self, client):
        resp = await client.get("/api/v1/hazards/earthquake")
        assert resp.status_code == 200
        body = resp.json()
        assert body["count"] == 0
        assert body["fresh"] is False
        assert body["last_cycle_at"] is None

    async def test_active_after_cycle(self, client):
        report = await run_cycle(client)
        assert report["state"] == "persisted"
        assert report["merged_count"] == 2

        body = (await client.get("/api/v1/hazards/earthquake")).json()
        assert body["fresh"] is True
        assert body["degraded"] is False
        assert body["last_cycle_at"] is not None
        assert [e["magnitude_or_intensity"] for e in body["events"]] == [6.2, 4.1]
        top = body["events"][0]
        assert top["identity_key"].startswith("quake:")
        assert top["source_provenance"] == ["phivolcs"]
        assert top["is_synthetic"] is False

    async def test_degraded_when_sources_fail(self, client, adapters):
        await run_cycle(client)
        adapters[0].fail()
        report = await run_cycle(client)
        assert report["degraded"] is True
        assert report["adapters"][0]["error"]

        body = (await client.get("/api/v1/hazards/earthquake")).json()
        assert body["degraded"] is True
        assert body["count"] == 2

    async def test_unknown_kind_rejected(self, client):
        resp = await client.get("/api/v1/hazards/volcano")
        assert resp.status_code == 422

    async def test_recent_from_store(self, client):
        await run_cycle(client)
        await run_cycle(client, "storm")

        body = (await client.get("/api/v1/hazards/recent", params={"hours": 24})).json()
        assert body["count"] == 3
        observed = [e["observed_at"] for e in body["events"]]
        assert observed == sorted(observed, reverse=True)

        short = (await client.get("/api/v1/hazards/recent", params={"hours": 1.5, "kind": "earthquake"})).json()
        assert short["count"] == 1
        assert short["events"][0]["kind"] == "earthquake"

    async def test_event_by_key(self, client):
        await run_cycle(client, "storm")
        key = (await client.get("/api/v1/hazards/storm")).json()["events"][0]["identity_key"]

        resp = await client.get(f"/api/v1/hazards/events/{key}")
        assert resp.status_code == 200
        assert resp.json()["identity_key"] == key
        assert resp.json()["severity_tier"] == "HIGH"

    async def test_event_missing(self, client):
        resp = await client.get("/api/v1/hazards/events/quake:phivolcs:nothing")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"


# ═══════════════════════════════════════════════════════════════════════════
# Alert settings
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertSettings:

    async def test_defaults_for_unknown_subscriber(self, client):
        body = (await client.get("/api/v1/subscribers/user-1/alert-settings")).json()
        assert body["configured"] is False
        assert body["enabled"] is False
        assert body["min_magnitude"] == settings.DEFAULT_MIN_MAGNITUDE
        assert body["geofence"] is None
        assert body["updated_at"] is None

    async def test_put_then_get(self, client):
        payload = {
            "enabled": True,
            "min_magnitude": 4.5,
            "geofence": {"latitude": 14.6, "longitude": 121.0, "radius_km": 50},
        }
        resp = await client.put("/api/v1/subscribers/user-1/alert-settings", json=payload)
        assert resp.status_code == 200
        assert resp.json()["configured"] is True

        body = (await client.get("/api/v1/subscribers/user-1/alert-settings")).json()
        assert body["enabled"] is True
        assert body["min_magnitude"] == 4.5
        assert body["geofence"]["radius_km"] == 50
        assert body["updated_at"] is not None

    @pytest.mark.parametrize("payload", [
        {"min_magnitude": 11},
        {"geofence": {"latitude": 95, "longitude": 121, "radius_km": 10}},
        {"geofence": {"latitude": 14, "longitude": 121, "radius_km": 0}},
    ])
    async def test_invalid_settings(self, client, payload):
        resp = await client.put("/api/v1/subscribers/user-1/alert-settings", json=payload)
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["fields"]


# ═══════════════════════════════════════════════════════════════════════════
# Notifications
# ═══════════════════════════════════════════════════════════════════════════

class TestNotifications:

    async def subscribe_and_cycle(self, client, services):
        await client.put(
            "/api/v1/subscribers/user-1/alert-settings",
            json={"enabled": True, "min_magnitude": 4.0},
        )
        await run_cycle(client)
        await settle(services)

    async def test_cycle_creates_notifications(self, client, services):
        await self.subscribe_and_cycle(client, services)

        body = (await client.get("/api/v1/subscribers/user-1/notifications")).json()
        assert body["count"] == 2
        assert body["unread"] == 2
        assert body["notifications"][0]["title"].startswith("Earthquake Alert")

    async def test_recycle_does_not_duplicate(self, client, services):
        await self.subscribe_and_cycle(client, services)
        await run_cycle(client)
        await settle(services)

        body = (await client.get("/api/v1/subscribers/user-1/notifications")).json()
        assert body["count"] == 2

    async def test_limit(self, client, services):
        await self.subscribe_and_cycle(client, services)
        body = (await client.get("/api/v1/subscribers/user-1/notifications", params={"limit": 1})).json()
        assert body["count"] == 1
        assert body["unread"] == 2

    async def test_read_flow(self, client, services):
        await self.subscribe_and_cycle(client, services)
        notes = (await client.get("/api/v1/subscribers/user-1/notifications")).json()["notifications"]

        resp = await client.post(f"/api/v1/notifications/{notes[0]['id']}/read")
        assert resp.json() == {"updated": 1}
        unread = (await client.get("/api/v1/subscribers/user-1/notifications/unread-count")).json()
        assert unread == {"subscriber_id": "user-1", "unread": 1}

        resp = await client.post("/api/v1/subscribers/user-1/notifications/read-all")
        assert resp.json() == {"updated": 1}
        unread = (await client.get("/api/v1/subscribers/user-1/notifications/unread-count")).json()
        assert unread["unread"] == 0

    async def test_delete(self, client, services):
        await self.subscribe_and_cycle(client, services)
        notes = (await client.get("/api/v1/subscribers/user-1/notifications")).json()["notifications"]

        resp = await client.delete(f"/api/v1/notifications/{notes[0]['id']}")
        assert resp.status_code == 204
        resp = await client.delete(f"/api/v1/notifications/{notes[0]['id']}")
        assert resp.status_code == 404

    async def test_unknown_notification(self, client):
        resp = await client.post("/api/v1/notifications/NTF-MISSING/read")
        assert resp.status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Operator
# ═══════════════════════════════════════════════════════════════════════════

class TestOperator:

    async def test_inject_notifies_and_lists(self, client, services):
        await client.put(
            "/api/v1/subscribers/user-1/alert-settings",
            json={"enabled": True, "min_magnitude": 5.0},
        )
        resp = await client.post(
            "/api/v1/operator/synthetic-events",
            json={"latitude": 14.6, "longitude": 121.0, "intensity": 6.2, "event_id": "drill-1"},
        )
        assert resp.status_code == 201
        event = resp.json()
        assert event["identity_key"] == "quake:synthetic:drill-1"
        assert event["is_synthetic"] is True
        await settle(services)

        notes = (await client.get("/api/v1/subscribers/user-1/notifications")).json()["notifications"]
        assert len(notes) == 1
        assert notes[0]["title"].startswith("[TEST] ")
        assert notes[0]["is_synthetic"] is True

        listed = (await client.get("/api/v1/operator/synthetic-events")).json()
        assert listed["count"] == 1

        recent = (await client.get("/api/v1/hazards/recent")).json()
        assert recent["events"][0]["identity_key"] == "quake:synthetic:drill-1"
        active = (await client.get("/api/v1/hazards/earthquake")).json()
        assert active["count"] == 0

    async def test_delete_and_clear(self, client):
        for eid in ("a", "b", "c"):
            await client.post(
                "/api/v1/operator/synthetic-events",
                json={"latitude": 14.6, "longitude": 121.0, "intensity": 5.0, "event_id": eid},
            )

        resp = await client.delete("/api/v1/operator/synthetic-events/quake:synthetic:a")
        assert resp.json() == {"deleted": 1}
        resp = await client.delete("/api/v1/operator/synthetic-events/quake:synthetic:a")
        assert resp.status_code == 404

        resp = await client.delete("/api/v1/operator/synthetic-events")
        assert resp.json() == {"deleted": 2}

    async def test_inject_storm(self, client):
        resp = await client.post(
            "/api/v1/operator/synthetic-events",
            json={"kind": "storm", "latitude": 15.0, "longitude": 125.0, "intensity": 150,
                  "name": "Drill", "category": "TY"},
        )
        assert resp.status_code == 201
        assert resp.json()["identity_key"] == "storm:synthetic:drill"

    async def test_invalid_coordinates(self, client):
        resp = await client.post(
            "/api/v1/operator/synthetic-events",
            json={"latitude": 120, "longitude": 121.0, "intensity": 6.0},
        )
        assert resp.status_code == 422

    async def test_token_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "OPERATOR_TOKEN", "s3cret")

        resp = await client.get("/api/v1/operator/synthetic-events")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "OPERATOR_ONLY"

        resp = await client.get("/api/v1/operator/synthetic-events", headers={"X-Operator-Token": "wrong"})
        assert resp.status_code == 403

        resp = await client.get("/api/v1/operator/synthetic-events", headers={"X-Operator-Token": "s3cret"})
        assert resp.status_code == 200

    async def test_closed_in_production_without_token(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ENVIRONMENT", "production")
        resp = await client.post("/api/v1/operator/cycles/earthquake")
        assert resp.status_code == 403


# ═══════════════════════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:

    async def test_root(self, client):
        body = (await client.get("/")).json()
        assert body["hazards"] == ["earthquake", "storm", "flood"]

    async def test_liveness(self, client):
        assert (await client.get("/health/live")).json() == {"status": "alive"}

    async def test_deep_health_lists_hazards(self, client, monkeypatch):
        monkeypatch.setattr(settings, "STORE_BACKEND", "memory")
        monkeypatch.setattr(settings, "REDIS_ENABLED", False)
        await run_cycle(client)

        body = (await client.get("/health")).json()
        names = [c["name"] for c in body["components"]]
        assert names == ["store", "redis", "hazard:earthquake", "hazard:storm", "hazard:flood"]
        quake = body["components"][2]
        assert quake["details"]["state"] == "persisted"
        assert body["status"] == "healthy"

    async def test_degraded_hazard_still_ready(self, client, adapters, monkeypatch):
        monkeypatch.setattr(settings, "STORE_BACKEND", "memory")
        monkeypatch.setattr(settings, "REDIS_ENABLED", False)
        adapters[0].fail()
        await run_cycle(client)

        resp = await client.get("/health/ready")
        assert resp.status_code == 200
        assert resp.json()["status"] == "degraded"


class TestMiddleware:

    async def test_request_id_echoed(self, client):
        resp = await client.get("/health/live", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"
        assert resp.headers["X-Process-Time"].endswith("ms")

    async def test_request_id_generated(self, client):
        resp = await client.get("/health/live")
        assert len(resp.headers["X-Request-ID"]) == 16

    async def test_operator_calls_audited(self, client, caplog):
        with caplog.at_level("INFO", logger="hazardwatch.audit"):
            await client.get("/api/v1/operator/synthetic-events")
        audit = [r for r in caplog.records if r.name == "hazardwatch.audit"]
        assert len(audit) == 1
        assert "token absent" in audit[0].getMessage()

    @pytest.mark.parametrize("path,expected", [
        ("/api/v1/hazards/storm", "storm"),
        ("/api/v1/operator/cycles/flood", "flood"),
        ("/api/v1/hazards/recent", None),
        ("/api/v1/hazards/events/quake:phivolcs:x", None),
    ])
    def test_hazard_from_path(self, path, expected):
        assert hazard_from_path(path) == expected

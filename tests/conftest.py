"""
Shared fixtures: in-memory stores, scripted adapters and event builders.
"""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from hazardwatch.alerts.matcher import AlertMatcher
from hazardwatch.alerts.models import Geofence, Subscriber
from hazardwatch.core.cache import TTLCache
from hazardwatch.core.errors import SourceError
from hazardwatch.hazards.models import HazardEvent, Location, ProvisionalRecord
from hazardwatch.ingestion.base import SourceAdapter
from hazardwatch.pipeline.orchestrator import FetchOrchestrator
from hazardwatch.spatial.severity import HazardKind
from hazardwatch.storage.memory import (
    InMemoryHazardStore,
    InMemoryNotificationStore,
    InMemorySubscriberStore,
)

# Manila (14.5995°N, 120.9842°E)
MANILA_LAT = 14.5995
MANILA_LON = 120.9842

T0 = datetime(2025, 11, 8, 7, 38, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class ScriptedAdapter(SourceAdapter):
    """Adapter returning canned records, raising, or stalling."""

    def __init__(
        self,
        source_id: str,
        kind: HazardKind = HazardKind.EARTHQUAKE,
        records: Optional[List[ProvisionalRecord]] = None,
        *,
        authority: int = 10,
        key_namespace: Optional[str] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        empty_is_failure: bool = True,
        timeout: float = 10.0,
    ):
        super().__init__(client=None, timeout=timeout)
        self.source_id = source_id
        self.hazard_kind = kind
        self.authority = authority
        self.key_namespace = key_namespace
        self.empty_is_failure = empty_is_failure
        self.records = records or []
        self.error = error
        self.delay = delay
        self.calls = 0

    async def _fetch_records(self) -> List[ProvisionalRecord]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.records)

    def fail(self, message: str = "HTTP 503") -> None:
        self.error = SourceError(self.source_id, message)


def quake_record(
    magnitude=5.5,
    lat=MANILA_LAT,
    lon=MANILA_LON,
    when: Optional[datetime] = T0,
    source_id: str = "phivolcs",
    place: str = "Manila Bay",
    **kw,
) -> ProvisionalRecord:
    return ProvisionalRecord(
        source_id=source_id,
        kind=HazardKind.EARTHQUAKE,
        latitude=lat,
        longitude=lon,
        intensity=magnitude,
        observed_at=when,
        depth=kw.pop("depth", 10),
        place=place,
        **kw,
    )


def storm_record(name="Trami", wind=95, lat=15.0, lon=125.0, category=None, source_id="pagasa_tc", **kw):
    return ProvisionalRecord(
        source_id=source_id,
        kind=HazardKind.STORM,
        latitude=lat,
        longitude=lon,
        intensity=wind,
        observed_at=kw.pop("when", T0),
        name=name,
        category=category,
        key_namespace=kw.pop("key_namespace", "wpac"),
        **kw,
    )


def flood_record(name="Cagayan River", ratio=2.4, lat=17.6167, lon=121.7167, source_id="open_meteo_flood", **kw):
    return ProvisionalRecord(
        source_id=source_id,
        kind=HazardKind.FLOOD,
        latitude=lat,
        longitude=lon,
        intensity=ratio,
        observed_at=kw.pop("when", T0),
        name=name,
        key_namespace=kw.pop("key_namespace", "ph"),
        **kw,
    )


def make_event(
    kind: HazardKind = HazardKind.EARTHQUAKE,
    intensity: float = 6.2,
    lat: float = MANILA_LAT,
    lon: float = MANILA_LON,
    key: Optional[str] = None,
    synthetic: bool = False,
    details: Optional[dict] = None,
    observed_at: datetime = T0,
) -> HazardEvent:
    return HazardEvent(
        identity_key=key or f"{kind.value}:test:{intensity}:{lat}:{lon}",
        kind=kind,
        observed_at=observed_at,
        ingested_at=observed_at + timedelta(minutes=1),
        location=Location(lat, lon),
        magnitude_or_intensity=intensity,
        source_provenance=("synthetic",) if synthetic else ("test",),
        is_synthetic=synthetic,
        title="Test event",
        place="Test place",
        details=details or {},
    )


def subscriber(
    sid: str = "user-1",
    min_magnitude: float = 5.0,
    fence: Optional[tuple] = None,
    enabled: bool = True,
) -> Subscriber:
    return Subscriber(
        id=sid,
        min_magnitude=min_magnitude,
        geofence=Geofence(*fence) if fence else None,
        enabled=enabled,
    )


@pytest.fixture
def hazard_store():
    return InMemoryHazardStore()


@pytest.fixture
def subscriber_store():
    return InMemorySubscriberStore()


@pytest.fixture
def notification_store():
    return InMemoryNotificationStore()


@pytest.fixture
def matcher(subscriber_store, notification_store):
    return AlertMatcher(subscriber_store, notification_store, notify_all_when_unconfigured=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return TTLCache(clock=clock)


@pytest.fixture
def make_orchestrator(hazard_store, matcher, cache):
    """Factory: orchestrator over the given adapters, matching inline."""

    def _build(*adapters, fetch_budget: float = 5.0, **kw):
        return FetchOrchestrator(
            adapters,
            hazard_store,
            matcher=kw.pop("matcher", matcher),
            cache=cache,
            fetch_budget=fetch_budget,
            **kw,
        )

    return _build

"""
synthetic.py — Operator-injected test events.

A synthetic event goes through the same normalizer, durable store and
alert matcher as a real one, so the whole pipeline can be exercised
end-to-end without waiting for a real hazard. It stays distinguishable
downstream: is_synthetic is set, provenance is ("synthetic",), identity
keys live in the "synthetic" namespace and notification titles carry a
[TEST] prefix.

Re-injecting the same event_id updates the stored event but never creates
a second notification for a subscriber.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from hazardwatch.alerts.matcher import AlertMatcher
from hazardwatch.core.errors import NotFoundError
from hazardwatch.hazards.models import SYNTHETIC_SOURCE, HazardEvent, ProvisionalRecord
from hazardwatch.hazards.normalizer import normalize
from hazardwatch.spatial.severity import HazardKind
from hazardwatch.storage.base import HazardStore

logger = logging.getLogger(__name__)


class SyntheticInjector:
    def __init__(self, hazard_store: HazardStore, matcher: AlertMatcher, *, scheduler=None):
        self.hazard_store = hazard_store
        self.matcher = matcher
        self.scheduler = scheduler

    async def inject(
        self,
        kind: HazardKind,
        latitude: float,
        longitude: float,
        intensity: float,
        *,
        name: Optional[str] = None,
        place: Optional[str] = None,
        depth_km: Optional[float] = None,
        category: Optional[str] = None,
        event_id: Optional[str] = None,
        observed_at: Optional[datetime] = None,
    ) -> HazardEvent:
        """
        Normalize, store and match one synthetic event.

        When a scheduler is attached, matching runs on it (delay 0) and
        this returns before notifications exist.
        """
        now = datetime.now(timezone.utc)
        extra: Dict[str, Any] = {}
        if event_id:
            extra["event_id"] = event_id
        record = ProvisionalRecord(
            source_id=SYNTHETIC_SOURCE,
            kind=HazardKind(kind),
            latitude=latitude,
            longitude=longitude,
            intensity=intensity,
            observed_at=observed_at or now,
            depth=depth_km,
            name=name,
            place=place,
            category=category,
            synthetic=True,
            extra=extra,
        )
        event = normalize(record, SYNTHETIC_SOURCE, kind, ingested_at=now)

        existing = await self.hazard_store.get(event.identity_key)
        if existing is not None:
            event = replace(event, ingested_at=existing.ingested_at)
        await self.hazard_store.upsert(event)
        logger.info(
            "Injected synthetic %s %s", event.kind.value, event.identity_key,
            extra={"identity_key": event.identity_key, "hazard": event.kind.value},
        )

        if self.scheduler is not None:
            self.scheduler.schedule(
                lambda: self.matcher.evaluate_event(event), 0.0,
                name=f"match-synthetic-{event.identity_key}",
            )
        else:
            await self.matcher.evaluate_event(event)
        return event

    async def list_events(self) -> List[HazardEvent]:
        events = await self.hazard_store.list_synthetic()
        return sorted(events, key=lambda e: e.observed_at, reverse=True)

    async def delete(self, identity_key: str) -> None:
        event = await self.hazard_store.get(identity_key)
        if event is None or not event.is_synthetic:
            raise NotFoundError("Synthetic event", identity_key=identity_key)
        await self.hazard_store.delete(identity_key)

    async def clear(self) -> int:
        deleted = await self.hazard_store.delete_synthetic()
        logger.info("Cleared %d synthetic events", deleted)
        return deleted

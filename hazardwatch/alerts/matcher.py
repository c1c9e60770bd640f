"""
matcher.py — Evaluate new hazard events against subscriber alert settings.

For every newly-first-seen event and every enabled subscriber:

    1. Threshold  — the event must reach the subscriber's minimum
    2. Geo-fence  — if set, the event must lie inside it
    3. Message    — templated from the event, distance and storm signal
    4. Dedup      — atomic insert-if-absent on (subscriber, identity_key)

═══════════════════════════════════════════════════════════════════════════
THRESHOLD MAPPING
═══════════════════════════════════════════════════════════════════════════

Subscribers configure a single minimum *magnitude*. For earthquakes it is
compared directly. Storms and floods have no magnitude, so the minimum is
mapped onto a severity tier with the earthquake tier table and compared
against the event's own tier:

    min_magnitude    required tier
    ─────────────    ─────────────
    < 4.0            LOW
    4.0 – 5.9        MODERATE
    6.0 – 6.9        HIGH
    ≥ 7.0            EXTREME

═══════════════════════════════════════════════════════════════════════════
GEO-FENCE
═══════════════════════════════════════════════════════════════════════════

    distance = haversine(geofence centre, event location)

Every kind matches only when distance ≤ radius_km. For storms the signal
the storm would raise at the geofence centre is computed as well and goes
into the message text. A bounding-box test rejects far-away quakes and
floods before the haversine call.

═══════════════════════════════════════════════════════════════════════════
UNCONFIGURED FALLBACK
═══════════════════════════════════════════════════════════════════════════

When no subscriber has alerts enabled and notify_all_when_unconfigured is
set, every known subscriber is notified of every new event with no
threshold or geo-fence check. This mirrors the bootstrap behaviour of the
first deployment and is kept behind its own flag.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from hazardwatch.alerts.models import Notification, Subscriber
from hazardwatch.core.config import settings
from hazardwatch.core.errors import DuplicateNotificationError
from hazardwatch.hazards.models import HazardEvent
from hazardwatch.spatial.severity import (
    HazardKind,
    StormCategory,
    bounding_box,
    haversine_km,
    quake_tier,
    storm_category_from_wind,
    storm_signal_number,
)
from hazardwatch.storage.base import NotificationStore, SubscriberStore

logger = logging.getLogger(__name__)

SYNTHETIC_TITLE_PREFIX = "[TEST] "


@dataclass(frozen=True)
class MatchDecision:
    matched: bool
    reason: str = ""
    distance_km: Optional[float] = None
    signal_number: Optional[int] = None


# ═══════════════════════════════════════════════════════════════════════════
# Pure matching
# ═══════════════════════════════════════════════════════════════════════════

def meets_threshold(event: HazardEvent, subscriber: Subscriber) -> bool:
    if event.kind is HazardKind.EARTHQUAKE:
        return event.magnitude_or_intensity >= subscriber.min_magnitude
    return event.severity_rank >= int(quake_tier(subscriber.min_magnitude))


def storm_category(event: HazardEvent) -> StormCategory:
    raw = event.details.get("category")
    if raw:
        try:
            return StormCategory.parse(str(raw))
        except ValueError:
            pass
    return storm_category_from_wind(event.magnitude_or_intensity)


def _outside_box(event: HazardEvent, subscriber: Subscriber) -> bool:
    fence = subscriber.geofence
    min_lat, max_lat, min_lon, max_lon = bounding_box(
        fence.latitude, fence.longitude, fence.radius_km,
    )
    lat, lon = event.location.latitude, event.location.longitude
    return not (min_lat <= lat <= max_lat and min_lon <= lon <= max_lon)


def match(
    event: HazardEvent,
    subscriber: Subscriber,
    *,
    bypass_criteria: bool = False,
) -> MatchDecision:
    """Decide whether subscriber should be notified about event."""
    if bypass_criteria:
        return MatchDecision(True, "unconfigured_fallback")

    if not meets_threshold(event, subscriber):
        return MatchDecision(False, "below_threshold")

    fence = subscriber.geofence
    if fence is None:
        return MatchDecision(True, "threshold")

    is_storm = event.kind is HazardKind.STORM
    if not is_storm and _outside_box(event, subscriber):
        return MatchDecision(False, "outside_geofence")

    distance = haversine_km(
        fence.latitude, fence.longitude,
        event.location.latitude, event.location.longitude,
    )
    signal = storm_signal_number(storm_category(event), distance) if is_storm else None

    if distance > fence.radius_km:
        return MatchDecision(False, "outside_geofence", distance, signal)
    return MatchDecision(True, "inside_geofence", distance, signal)


# ═══════════════════════════════════════════════════════════════════════════
# Message templates
# ═══════════════════════════════════════════════════════════════════════════

def _quake_text(event: HazardEvent, subscriber: Subscriber, decision: MatchDecision):
    mag = event.magnitude_or_intensity
    if decision.reason == "unconfigured_fallback":
        where = "detected"
    elif subscriber.geofence is not None:
        where = f"within {subscriber.geofence.radius_km:g}km of your alert location"
    else:
        where = "matching your criteria"
    message = f"A magnitude {mag:.1f} earthquake occurred {where}: {event.place or 'unknown location'}"
    if decision.distance_km is not None:
        message += f" ({decision.distance_km:.0f} km away)"
    return f"Earthquake Alert: M{mag:.1f}", message


def _storm_text(event: HazardEvent, subscriber: Subscriber, decision: MatchDecision):
    message = (
        f"{event.title} is active with sustained winds of "
        f"{event.magnitude_or_intensity:.0f} km/h"
    )
    if decision.distance_km is not None:
        message += f", {decision.distance_km:.0f} km from your alert location"
    if decision.signal_number:
        message += f". Expected wind signal: Signal No. {decision.signal_number}"
    return f"Storm Alert: {event.title}", message


def _flood_text(event: HazardEvent, subscriber: Subscriber, decision: MatchDecision):
    name = event.details.get("name") or event.place or event.title
    percent = event.details.get("percent_of_normal", event.magnitude_or_intensity * 100)
    status = event.details.get("status", "alert")
    message = (
        f"{name} discharge is at {percent:.0f}% of normal ({status})"
    )
    if event.place:
        message += f" in {event.place}"
    if decision.distance_km is not None:
        message += f", {decision.distance_km:.0f} km from your alert location"
    return f"Flood Alert: {name}", message


_TEMPLATES = {
    HazardKind.EARTHQUAKE: _quake_text,
    HazardKind.STORM: _storm_text,
    HazardKind.FLOOD: _flood_text,
}


def build_notification(
    event: HazardEvent, subscriber: Subscriber, decision: MatchDecision,
) -> Notification:
    title, message = _TEMPLATES[event.kind](event, subscriber, decision)
    if event.is_synthetic:
        title = SYNTHETIC_TITLE_PREFIX + title
    return Notification(
        subscriber_id=subscriber.id,
        identity_key=event.identity_key,
        kind=event.kind,
        title=title,
        message=message,
        is_synthetic=event.is_synthetic,
        distance_km=decision.distance_km,
        signal_number=decision.signal_number,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Matcher
# ═══════════════════════════════════════════════════════════════════════════

class AlertMatcher:
    """Turns new hazard events into deduplicated notifications."""

    def __init__(
        self,
        subscribers: SubscriberStore,
        notifications: NotificationStore,
        *,
        notify_all_when_unconfigured: Optional[bool] = None,
    ):
        self.subscribers = subscribers
        self.notifications = notifications
        if notify_all_when_unconfigured is None:
            notify_all_when_unconfigured = settings.NOTIFY_ALL_WHEN_UNCONFIGURED
        self.notify_all_when_unconfigured = notify_all_when_unconfigured

    async def _audience(self):
        enabled = await self.subscribers.list_enabled()
        if enabled or not self.notify_all_when_unconfigured:
            return enabled, False
        return await self.subscribers.list_all(), True

    async def evaluate(self, events: Iterable[HazardEvent]) -> List[Notification]:
        """Evaluate each event against the current audience. PersistenceError propagates."""
        events = list(events)
        if not events:
            return []
        audience, bypass = await self._audience()
        if bypass and audience:
            logger.info(
                "No subscriber has alerts enabled; notifying all %d known subscribers",
                len(audience),
            )

        created: List[Notification] = []
        for event in events:
            created.extend(await self._evaluate_one(event, audience, bypass))
        return created

    async def evaluate_event(self, event: HazardEvent) -> List[Notification]:
        return await self.evaluate([event])

    async def _evaluate_one(
        self, event: HazardEvent, audience: List[Subscriber], bypass: bool,
    ) -> List[Notification]:
        created: List[Notification] = []
        for subscriber in audience:
            decision = match(event, subscriber, bypass_criteria=bypass)
            if not decision.matched:
                continue
            if await self.notifications.exists(subscriber.id, event.identity_key):
                continue
            notification = build_notification(event, subscriber, decision)
            try:
                await self.notifications.insert_if_absent(notification)
            except DuplicateNotificationError:
                # Lost the race to a concurrent run
                continue
            created.append(notification)

        if created:
            logger.info(
                "Created %d notifications for %s",
                len(created), event.identity_key,
                extra={"identity_key": event.identity_key},
            )
        return created

"""
models.py — Subscriber and notification records for the alert matcher.

Defines:
    • Geofence     — alert centre + radius
    • Subscriber   — per-user alert settings
    • Notification — one delivered alert, unique per (subscriber, event)

═══════════════════════════════════════════════════════════════════════════
DEFAULT ALERT SETTINGS
═══════════════════════════════════════════════════════════════════════════

A user who never saved settings is reported with

    enabled        False
    min_magnitude  5.0
    geofence       None

No geofence means "match on magnitude alone, everywhere".
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from hazardwatch.core.config import settings
from hazardwatch.spatial.severity import HazardKind


def _generate_id() -> str:
    return f"NTF-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Geofence:
    latitude: float
    longitude: float
    radius_km: float

    def __post_init__(self):
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"Geofence latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"Geofence longitude out of range: {self.longitude}")
        if self.radius_km <= 0:
            raise ValueError(f"Geofence radius must be positive, got {self.radius_km}")

    def to_dict(self) -> Dict[str, float]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "radius_km": self.radius_km,
        }


@dataclass
class Subscriber:
    """Alert settings of one user."""
    id: str
    min_magnitude: float = field(default_factory=lambda: settings.DEFAULT_MIN_MAGNITUDE)
    geofence: Optional[Geofence] = None
    enabled: bool = False
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "enabled": self.enabled,
            "min_magnitude": self.min_magnitude,
            "geofence": self.geofence.to_dict() if self.geofence else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class Notification:
    """
    An alert raised for one subscriber about one hazard event.

    (subscriber_id, identity_key) is the dedup key: at most one
    notification exists per pair.
    """
    subscriber_id: str
    identity_key: str
    kind: HazardKind
    title: str
    message: str
    id: str = field(default_factory=_generate_id)
    read: bool = False
    is_synthetic: bool = False
    distance_km: Optional[float] = None
    signal_number: Optional[int] = None
    created_at: datetime = field(default_factory=_now)

    @property
    def dedup_key(self) -> tuple:
        return (self.subscriber_id, self.identity_key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "subscriber_id": self.subscriber_id,
            "identity_key": self.identity_key,
            "kind": self.kind.value,
            "title": self.title,
            "message": self.message,
            "read": self.read,
            "is_synthetic": self.is_synthetic,
            "distance_km": (
                round(self.distance_km, 1) if self.distance_km is not None else None
            ),
            "signal_number": self.signal_number,
            "created_at": self.created_at.isoformat(),
        }

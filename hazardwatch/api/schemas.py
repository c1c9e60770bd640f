"""
Pydantic schemas for the HazardWatch API.

Separated from the route handlers so they are reusable across the
codebase (tests, operator tooling).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from hazardwatch.alerts.models import Geofence, Notification, Subscriber
from hazardwatch.core.config import settings
from hazardwatch.hazards.models import HazardEvent
from hazardwatch.spatial.severity import HazardKind


# ---------------------------------------------------------------------------
# Hazards
# ---------------------------------------------------------------------------

class LocationOut(BaseModel):
    latitude: float
    longitude: float
    depth_km: Optional[float] = None


class HazardEventOut(BaseModel):
    identity_key: str
    kind: HazardKind
    observed_at: datetime
    ingested_at: datetime
    location: LocationOut
    magnitude_or_intensity: float
    severity_tier: Optional[str]
    source_provenance: List[str]
    is_synthetic: bool
    title: str
    place: str
    url: str
    details: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_event(cls, event: HazardEvent) -> "HazardEventOut":
        return cls.model_validate(event.to_dict())


class ActiveHazardsOut(BaseModel):
    """Cached events for one hazard kind."""
    kind: HazardKind
    count: int
    fresh: bool = Field(..., description="False when the cache entry is past its TTL")
    degraded: bool = Field(..., description="True when the last cycle fell back to stale data")
    last_cycle_at: Optional[datetime] = None
    events: List[HazardEventOut]


class RecentHazardsOut(BaseModel):
    hours: float
    count: int
    events: List[HazardEventOut]


# ---------------------------------------------------------------------------
# Subscribers / alert settings
# ---------------------------------------------------------------------------

class GeofenceSchema(BaseModel):
    latitude: float = Field(..., ge=-90.0, le=90.0, examples=[14.5995])
    longitude: float = Field(..., ge=-180.0, le=180.0, examples=[120.9842])
    radius_km: float = Field(..., gt=0.0, le=20000.0, examples=[50.0])


class AlertSettingsIn(BaseModel):
    """Body for PUT /api/v1/subscribers/{id}/alert-settings."""
    enabled: bool = False
    min_magnitude: float = Field(
        default_factory=lambda: settings.DEFAULT_MIN_MAGNITUDE,
        ge=0.0, le=10.0,
        description="Minimum quake magnitude; mapped to a severity tier for storms and floods",
    )
    geofence: Optional[GeofenceSchema] = None

    def to_subscriber(self, subscriber_id: str) -> Subscriber:
        fence = None
        if self.geofence is not None:
            fence = Geofence(self.geofence.latitude, self.geofence.longitude, self.geofence.radius_km)
        return Subscriber(
            id=subscriber_id,
            enabled=self.enabled,
            min_magnitude=self.min_magnitude,
            geofence=fence,
        )


class AlertSettingsOut(BaseModel):
    subscriber_id: str
    configured: bool = Field(..., description="False when defaults are being reported")
    enabled: bool
    min_magnitude: float
    geofence: Optional[GeofenceSchema] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_subscriber(cls, subscriber: Subscriber, configured: bool = True) -> "AlertSettingsOut":
        fence = subscriber.geofence
        return cls(
            subscriber_id=subscriber.id,
            configured=configured,
            enabled=subscriber.enabled,
            min_magnitude=subscriber.min_magnitude,
            geofence=GeofenceSchema(**fence.to_dict()) if fence else None,
            updated_at=subscriber.updated_at if configured else None,
        )


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

class NotificationOut(BaseModel):
    id: str
    subscriber_id: str
    identity_key: str
    kind: HazardKind
    title: str
    message: str
    read: bool
    is_synthetic: bool
    distance_km: Optional[float] = None
    signal_number: Optional[int] = None
    created_at: datetime

    @classmethod
    def from_notification(cls, n: Notification) -> "NotificationOut":
        return cls.model_validate(n.to_dict())


class NotificationListOut(BaseModel):
    subscriber_id: str
    count: int
    unread: int
    notifications: List[NotificationOut]


class UnreadCountOut(BaseModel):
    subscriber_id: str
    unread: int


class MarkedOut(BaseModel):
    updated: int


# ---------------------------------------------------------------------------
# Operator
# ---------------------------------------------------------------------------

class SyntheticEventIn(BaseModel):
    """
    Operator-injected test event.

    intensity is the magnitude (earthquake), sustained wind in km/h
    (storm) or discharge ratio (flood).
    """
    kind: HazardKind = HazardKind.EARTHQUAKE
    latitude: float = Field(..., ge=-90.0, le=90.0, examples=[14.6])
    longitude: float = Field(..., ge=-180.0, le=180.0, examples=[121.0])
    intensity: float = Field(..., examples=[6.2])
    name: Optional[str] = Field(None, description="Storm name or river basin", examples=["Test Storm"])
    place: Optional[str] = Field(None, examples=["Quezon City"])
    depth_km: Optional[float] = Field(None, ge=0.0, le=800.0)
    category: Optional[str] = Field(None, description="Storm category code", examples=["TY"])
    event_id: Optional[str] = Field(None, description="Stable id; re-injecting it updates the event")
    observed_at: Optional[datetime] = None


class SyntheticListOut(BaseModel):
    count: int
    events: List[HazardEventOut]


class DeletedOut(BaseModel):
    deleted: int

"""
FastAPI routes: subscriber alert settings and notifications.

    GET    /api/v1/subscribers/{id}/alert-settings
    PUT    /api/v1/subscribers/{id}/alert-settings
    GET    /api/v1/subscribers/{id}/notifications?limit=
    GET    /api/v1/subscribers/{id}/notifications/unread-count
    POST   /api/v1/subscribers/{id}/notifications/read-all
    POST   /api/v1/notifications/{nid}/read
    DELETE /api/v1/notifications/{nid}
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from hazardwatch.alerts.models import Subscriber
from hazardwatch.api.deps import Services, get_services
from hazardwatch.api.schemas import (
    AlertSettingsIn,
    AlertSettingsOut,
    MarkedOut,
    NotificationListOut,
    NotificationOut,
    UnreadCountOut,
)
from hazardwatch.core.config import settings
from hazardwatch.core.errors import NotFoundError

router = APIRouter(prefix="/api/v1", tags=["subscribers"])


# ---------------------------------------------------------------------------
# Alert settings
# ---------------------------------------------------------------------------

@router.get("/subscribers/{subscriber_id}/alert-settings", response_model=AlertSettingsOut)
async def get_alert_settings(subscriber_id: str, services: Services = Depends(get_services)):
    """Saved settings, or the defaults (disabled, M5.0, no geofence)."""
    subscriber = await services.subscriber_store.get(subscriber_id)
    if subscriber is None:
        return AlertSettingsOut.from_subscriber(Subscriber(id=subscriber_id), configured=False)
    return AlertSettingsOut.from_subscriber(subscriber)


@router.put("/subscribers/{subscriber_id}/alert-settings", response_model=AlertSettingsOut)
async def put_alert_settings(
    subscriber_id: str,
    body: AlertSettingsIn,
    services: Services = Depends(get_services),
):
    subscriber = replace(
        body.to_subscriber(subscriber_id),
        updated_at=datetime.now(timezone.utc),
    )
    saved = await services.subscriber_store.upsert(subscriber)
    return AlertSettingsOut.from_subscriber(saved)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

@router.get("/subscribers/{subscriber_id}/notifications", response_model=NotificationListOut)
async def list_notifications(
    subscriber_id: str,
    limit: Optional[int] = Query(None, ge=1, le=500),
    services: Services = Depends(get_services),
):
    """Newest first."""
    store = services.notification_store
    items = await store.list_for_subscriber(
        subscriber_id, limit or settings.NOTIFICATION_PAGE_SIZE,
    )
    return NotificationListOut(
        subscriber_id=subscriber_id,
        count=len(items),
        unread=await store.unread_count(subscriber_id),
        notifications=[NotificationOut.from_notification(n) for n in items],
    )


@router.get(
    "/subscribers/{subscriber_id}/notifications/unread-count",
    response_model=UnreadCountOut,
)
async def unread_count(subscriber_id: str, services: Services = Depends(get_services)):
    count = await services.notification_store.unread_count(subscriber_id)
    return UnreadCountOut(subscriber_id=subscriber_id, unread=count)


@router.post(
    "/subscribers/{subscriber_id}/notifications/read-all",
    response_model=MarkedOut,
)
async def mark_all_read(subscriber_id: str, services: Services = Depends(get_services)):
    updated = await services.notification_store.mark_all_read(subscriber_id)
    return MarkedOut(updated=updated)


@router.post("/notifications/{notification_id}/read", response_model=MarkedOut)
async def mark_read(notification_id: str, services: Services = Depends(get_services)):
    if not await services.notification_store.mark_read(notification_id):
        raise NotFoundError("Notification", id=notification_id)
    return MarkedOut(updated=1)


@router.delete("/notifications/{notification_id}", status_code=204)
async def delete_notification(notification_id: str, services: Services = Depends(get_services)):
    if not await services.notification_store.delete(notification_id):
        raise NotFoundError("Notification", id=notification_id)

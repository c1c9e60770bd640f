"""
FastAPI routes: hazard event queries.

    GET /api/v1/hazards/recent?hours=24&kind=   — durable store, by observed time
    GET /api/v1/hazards/events/{identity_key}   — one stored event
    GET /api/v1/hazards/{kind}                  — active set from the cache
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query

from hazardwatch.api.deps import Services, get_services
from hazardwatch.api.schemas import ActiveHazardsOut, HazardEventOut, RecentHazardsOut
from hazardwatch.core.errors import NotFoundError
from hazardwatch.spatial.severity import HazardKind

router = APIRouter(prefix="/api/v1/hazards", tags=["hazards"])


@router.get("/recent", response_model=RecentHazardsOut)
async def recent_hazards(
    hours: float = Query(24.0, gt=0, le=24 * 30, description="Freshness window"),
    kind: Optional[HazardKind] = Query(None),
    services: Services = Depends(get_services),
):
    """Stored events (real and synthetic) observed within the window, newest first."""
    since = datetime.now(timezone.utc) - timedelta(hours=hours)
    events = await services.hazard_store.query_since(since, kind)
    return RecentHazardsOut(
        hours=hours,
        count=len(events),
        events=[HazardEventOut.from_event(e) for e in events],
    )


@router.get("/events/{identity_key:path}", response_model=HazardEventOut)
async def get_hazard(identity_key: str, services: Services = Depends(get_services)):
    event = await services.hazard_store.get(identity_key)
    if event is None:
        raise NotFoundError("Hazard event", identity_key=identity_key)
    return HazardEventOut.from_event(event)


@router.get("/{kind}", response_model=ActiveHazardsOut)
async def active_hazards(kind: HazardKind, services: Services = Depends(get_services)):
    """
    Active events for a hazard kind, most severe first.

    Served from the cache whether fresh or stale; degraded is set when the
    last cycle could not reach any source.
    """
    active = services.orchestrator.get_active_events(kind)
    last = active.last_cycle
    return ActiveHazardsOut(
        kind=kind,
        count=len(active.events),
        fresh=active.fresh,
        degraded=active.degraded,
        last_cycle_at=last.finished_at if last else None,
        events=[HazardEventOut.from_event(e) for e in active.events],
    )

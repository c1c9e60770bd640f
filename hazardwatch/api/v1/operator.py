"""
FastAPI routes: operator tooling (X-Operator-Token).

    POST   /api/v1/operator/synthetic-events         — inject + run matcher
    GET    /api/v1/operator/synthetic-events         — list test events
    DELETE /api/v1/operator/synthetic-events         — clear all test events
    DELETE /api/v1/operator/synthetic-events/{key}   — delete one test event
    POST   /api/v1/operator/cycles/{kind}            — manual re-processing run
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from hazardwatch.api.deps import Services, get_services, require_operator
from hazardwatch.api.schemas import (
    DeletedOut,
    HazardEventOut,
    SyntheticEventIn,
    SyntheticListOut,
)
from hazardwatch.spatial.severity import HazardKind

router = APIRouter(
    prefix="/api/v1/operator",
    tags=["operator"],
    dependencies=[Depends(require_operator)],
)


@router.post("/synthetic-events", response_model=HazardEventOut, status_code=201)
async def inject_synthetic_event(body: SyntheticEventIn, services: Services = Depends(get_services)):
    """Run a synthetic event through normalizer, store and alert matcher."""
    event = await services.injector.inject(
        body.kind,
        body.latitude,
        body.longitude,
        body.intensity,
        name=body.name,
        place=body.place,
        depth_km=body.depth_km,
        category=body.category,
        event_id=body.event_id,
        observed_at=body.observed_at,
    )
    return HazardEventOut.from_event(event)


@router.get("/synthetic-events", response_model=SyntheticListOut)
async def list_synthetic_events(services: Services = Depends(get_services)):
    events = await services.injector.list_events()
    return SyntheticListOut(
        count=len(events),
        events=[HazardEventOut.from_event(e) for e in events],
    )


@router.delete("/synthetic-events", response_model=DeletedOut)
async def clear_synthetic_events(services: Services = Depends(get_services)):
    return DeletedOut(deleted=await services.injector.clear())


@router.delete("/synthetic-events/{identity_key:path}", response_model=DeletedOut)
async def delete_synthetic_event(identity_key: str, services: Services = Depends(get_services)):
    await services.injector.delete(identity_key)
    return DeletedOut(deleted=1)


@router.post("/cycles/{kind}")
async def run_cycle(kind: HazardKind, services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Run one orchestrator cycle now and return its report."""
    report = await services.orchestrator.run_cycle(kind)
    return report.to_dict()

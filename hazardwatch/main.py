"""
FastAPI application entry point.

Run with:
    uvicorn hazardwatch.main:app --reload --port 8000

The lifespan wires stores, adapters, orchestrator, matcher and scheduler
into one Services container on app.state. Tests build their own
container and pass it to create_app().
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import List, Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# ── Core infrastructure ──
from hazardwatch.core.cache import TTLCache, close_redis
from hazardwatch.core.config import settings
from hazardwatch.core.database import close_db, get_session_factory, init_db
from hazardwatch.core.errors import register_error_handlers
from hazardwatch.core.health import is_ready, run_health_check
from hazardwatch.core.http import build_client
from hazardwatch.core.logging_config import get_logger, setup_logging
from hazardwatch.core.middleware import RequestLoggingMiddleware

# ── Pipeline ──
from hazardwatch.alerts.matcher import AlertMatcher
from hazardwatch.api.deps import Services
from hazardwatch.ingestion.base import SourceAdapter
from hazardwatch.ingestion.open_meteo_flood import OpenMeteoFloodAdapter
from hazardwatch.ingestion.pagasa_flood import PagasaFloodAdapter
from hazardwatch.ingestion.pagasa_storms import PagasaStormAdapter
from hazardwatch.ingestion.phivolcs import PhivolcsAdapter
from hazardwatch.ingestion.tropical_storm_feed import TropicalStormFeedAdapter
from hazardwatch.ingestion.usgs import UsgsAdapter
from hazardwatch.pipeline.orchestrator import FetchOrchestrator
from hazardwatch.pipeline.scheduler import HazardScheduler
from hazardwatch.pipeline.synthetic import SyntheticInjector
from hazardwatch.storage.memory import (
    InMemoryHazardStore,
    InMemoryNotificationStore,
    InMemorySubscriberStore,
)

# ── API routers ──
from hazardwatch.api.v1.hazards import router as hazards_router
from hazardwatch.api.v1.operator import router as operator_router
from hazardwatch.api.v1.subscribers import router as subscribers_router

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


def build_adapters(client: Optional[httpx.AsyncClient] = None) -> List[SourceAdapter]:
    """One adapter per upstream source, sharing one HTTP client."""
    return [
        PhivolcsAdapter(client),
        UsgsAdapter(client),
        PagasaStormAdapter(client),
        TropicalStormFeedAdapter(client),
        OpenMeteoFloodAdapter(client),
        PagasaFloodAdapter(client),
    ]


async def build_stores():
    if settings.STORE_BACKEND == "sql":
        from hazardwatch.storage.sql import (
            SqlHazardStore,
            SqlNotificationStore,
            SqlSubscriberStore,
        )

        await init_db()
        factory = get_session_factory()
        return SqlHazardStore(factory), SqlSubscriberStore(factory), SqlNotificationStore(factory)
    return InMemoryHazardStore(), InMemorySubscriberStore(), InMemoryNotificationStore()


def build_services(
    hazard_store,
    subscriber_store,
    notification_store,
    adapters: List[SourceAdapter],
    *,
    cache: Optional[TTLCache] = None,
) -> Services:
    matcher = AlertMatcher(subscriber_store, notification_store)
    scheduler = HazardScheduler()
    orchestrator = FetchOrchestrator(
        adapters,
        hazard_store,
        matcher=matcher,
        scheduler=scheduler,
        cache=cache,
    )
    scheduler.orchestrator = orchestrator
    injector = SyntheticInjector(hazard_store, matcher, scheduler=scheduler)
    return Services(
        hazard_store=hazard_store,
        subscriber_store=subscriber_store,
        notification_store=notification_store,
        matcher=matcher,
        orchestrator=orchestrator,
        scheduler=scheduler,
        injector=injector,
    )


# ── Application lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown events."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    client: Optional[httpx.AsyncClient] = None
    services: Optional[Services] = getattr(app.state, "services", None)
    if services is None:
        client = build_client()
        stores = await build_stores()
        services = build_services(*stores, build_adapters(client))
        app.state.services = services

    await services.orchestrator.hydrate()
    if settings.SCHEDULER_ENABLED:
        await services.scheduler.start()

    yield

    logger.info("Shutting down %s", settings.APP_NAME)
    await services.scheduler.stop()
    await services.orchestrator.close()
    if client is not None:
        await client.aclose()
    await close_redis()
    if settings.STORE_BACKEND == "sql":
        await close_db()


# ── Create application ──

def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Philippine natural-hazard aggregation service. "
            "Collects earthquakes (PHIVOLCS, USGS), tropical cyclones "
            "(PAGASA, tropical storm feed) and river floods (Open-Meteo "
            "GloFAS, PAGASA bulletins), merges them into one canonical "
            "event stream with stale-cache fallback, and raises "
            "deduplicated subscriber notifications."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    # ── Middleware stack (outermost first) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS if not settings.CORS_ALLOW_ALL else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_error_handlers(app)

    app.include_router(hazards_router)
    app.include_router(subscribers_router)
    app.include_router(operator_router)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "hazards": ["earthquake", "storm", "flood"],
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Deep health probe — store, redis and the last cycle per hazard."""
        report = await run_health_check(app.state.services.orchestrator)
        return report.to_dict()

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Kubernetes liveness probe — is the process alive?"""
        return {"status": "alive"}

    @app.get("/health/ready", tags=["health"])
    async def readiness():
        """Kubernetes readiness probe — can we serve traffic?"""
        report = await run_health_check(app.state.services.orchestrator)
        if not is_ready(report):
            return JSONResponse(status_code=503, content=report.to_dict())
        return report.to_dict()

    return app


app = create_app()

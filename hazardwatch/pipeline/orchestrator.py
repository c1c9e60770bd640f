"""
orchestrator.py — Per-hazard fetch → merge → classify → persist cycle.

═══════════════════════════════════════════════════════════════════════════
CYCLE STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    Idle ──► Fetching ──► Merging ──► Classifying ──► Persisted ──► Idle
                │                                         ▲
                └──── no adapter returned data ───────────┘
                      (stale cache, degraded=True)

    Fetching     all adapters for the kind run concurrently; the batch
                 waits at most FETCH_BUDGET_SECONDS and abandons stragglers
    Merging      normalize every record, drop malformed ones, group by
                 identity key (see merge.py)
    Classifying  carry ingested_at (and inferred observed_at) forward from
                 earlier sightings, drop anything without a severity tier
    Persisted    durable store, then TTL cache + Redis mirror, then hand
                 newly-first-seen keys to the alert matcher

A PersistenceError while writing the durable store aborts the cycle for
that kind only. The cache and the previous-key set are left untouched, so
the next cycle retries the same events naturally.

═══════════════════════════════════════════════════════════════════════════
NEW-KEY DETECTION
═══════════════════════════════════════════════════════════════════════════

Only keys absent from the previous cycle's merged set go to the matcher;
events whose metadata changed do not re-trigger alerts. After a restart
the previous set is hydrated from the Redis mirror when available. The
notification store's (subscriber, key) uniqueness covers any overlap.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from hazardwatch.core.cache import TTLCache, mirror_get, mirror_set
from hazardwatch.core.config import settings
from hazardwatch.core.errors import MalformedRecordError, PersistenceError
from hazardwatch.core.logging_config import log_context
from hazardwatch.hazards.models import HazardEvent
from hazardwatch.hazards.normalizer import BelowFloodThreshold, normalize
from hazardwatch.ingestion.base import AdapterResult, SourceAdapter
from hazardwatch.pipeline.merge import Contribution, merge_events, sort_events
from hazardwatch.spatial.severity import HazardKind
from hazardwatch.storage.base import HazardStore

logger = logging.getLogger(__name__)


class CycleState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    MERGING = "merging"
    CLASSIFYING = "classifying"
    PERSISTED = "persisted"
    ABORTED = "aborted"


def cache_key(kind: HazardKind) -> str:
    return f"hazards:{HazardKind(kind).value}"


def default_ttls() -> Dict[HazardKind, float]:
    return {
        HazardKind.EARTHQUAKE: settings.QUAKE_CACHE_TTL,
        HazardKind.STORM: settings.STORM_CACHE_TTL,
        HazardKind.FLOOD: settings.FLOOD_CACHE_TTL,
    }


@dataclass
class CycleReport:
    hazard: HazardKind
    cycle_id: str
    state: CycleState = CycleState.IDLE
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    adapter_outcomes: List[AdapterResult] = field(default_factory=list)
    dropped_records: int = 0
    merged_count: int = 0
    new_keys: List[str] = field(default_factory=list)
    degraded: bool = False
    error: Optional[str] = None

    @property
    def duration_ms(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hazard": self.hazard.value,
            "cycle_id": self.cycle_id,
            "state": self.state.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": round(self.duration_ms, 1),
            "adapters": [r.to_dict() for r in self.adapter_outcomes],
            "dropped_records": self.dropped_records,
            "merged_count": self.merged_count,
            "new_keys": list(self.new_keys),
            "degraded": self.degraded,
            "error": self.error,
        }


@dataclass(frozen=True)
class ActiveEvents:
    kind: HazardKind
    events: List[HazardEvent]
    fresh: bool
    degraded: bool
    last_cycle: Optional[CycleReport] = None


class FetchOrchestrator:
    """
    Drives one hazard kind at a time through the cycle state machine.

    Cycles of different kinds may run concurrently; cycles of the same kind
    are serialised so a manual re-run never interleaves with the timer.
    """

    def __init__(
        self,
        adapters: Iterable[SourceAdapter],
        hazard_store: HazardStore,
        *,
        matcher=None,
        scheduler=None,
        cache: Optional[TTLCache] = None,
        fetch_budget: Optional[float] = None,
        ttls: Optional[Mapping[HazardKind, float]] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.adapters: Dict[HazardKind, List[SourceAdapter]] = {k: [] for k in HazardKind}
        for adapter in adapters:
            self.adapters[adapter.hazard_kind].append(adapter)
        self.hazard_store = hazard_store
        self.matcher = matcher
        self.scheduler = scheduler
        self.cache = cache or TTLCache()
        self.fetch_budget = fetch_budget or settings.FETCH_BUDGET_SECONDS
        self.ttls = dict(ttls or default_ttls())
        self._now = now
        self._previous: Dict[HazardKind, Dict[str, HazardEvent]] = {}
        self._reports: Dict[HazardKind, CycleReport] = {}
        self._locks: Dict[HazardKind, asyncio.Lock] = {k: asyncio.Lock() for k in HazardKind}

    # ── Queries ──

    def last_report(self, kind: HazardKind) -> Optional[CycleReport]:
        return self._reports.get(HazardKind(kind))

    def get_active_events(self, kind: HazardKind) -> ActiveEvents:
        """Cached set for kind, fresh or stale, plus the degraded flag."""
        kind = HazardKind(kind)
        value, fresh = self.cache.get(cache_key(kind))
        report = self._reports.get(kind)
        return ActiveEvents(
            kind=kind,
            events=list(value or []),
            fresh=fresh,
            degraded=bool(report and report.degraded),
            last_cycle=report,
        )

    # ── Startup ──

    async def hydrate(self) -> int:
        """Seed stale cache entries and previous-key sets from the Redis mirror."""
        restored = 0
        for kind in HazardKind:
            payload = await mirror_get(cache_key(kind))
            if not payload:
                continue
            try:
                events = [HazardEvent.from_dict(d) for d in payload]
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Ignoring unreadable mirror payload for %s: %s", kind.value, exc)
                continue
            if self.cache.seed_stale(cache_key(kind), events, self.ttls[kind]):
                self._previous.setdefault(kind, {e.identity_key: e for e in events})
                restored += len(events)
        if restored:
            logger.info("Hydrated %d cached events from mirror", restored)
        return restored

    # ── Cycle ──

    async def run_cycle(self, kind: HazardKind) -> CycleReport:
        kind = HazardKind(kind)
        async with self._locks[kind]:
            report = CycleReport(hazard=kind, cycle_id=uuid.uuid4().hex[:12], started_at=self._now())
            with log_context(hazard=kind.value, cycle_id=report.cycle_id):
                try:
                    await self._run(kind, report)
                except PersistenceError as exc:
                    report.state = CycleState.ABORTED
                    report.error = exc.message
                    logger.error(
                        "Cycle aborted for %s: %s", kind.value, exc.message,
                        extra={"hazard": kind.value},
                    )
                report.finished_at = self._now()
                self._reports[kind] = report
                logger.info(
                    "Cycle %s for %s finished: %s, %d events, %d new%s",
                    report.cycle_id, kind.value, report.state.value,
                    report.merged_count, len(report.new_keys),
                    " (degraded)" if report.degraded else "",
                    extra={
                        "hazard": kind.value,
                        "degraded": report.degraded,
                        "merged_count": report.merged_count,
                        "new_count": len(report.new_keys),
                        "duration_ms": report.duration_ms,
                    },
                )
            return report

    async def _run(self, kind: HazardKind, report: CycleReport) -> None:
        key = cache_key(kind)

        report.state = CycleState.FETCHING
        fetched_at = self.cache.now()
        ingested_at = report.started_at
        results = await self.fetch_all(self.adapters[kind])
        report.adapter_outcomes = results

        if not any(r.records for r in results):
            self._fall_back(kind, report)
            return

        report.state = CycleState.MERGING
        authority = {a.source_id: a.authority for a in self.adapters[kind]}
        contributions = []
        for order, result in enumerate(results):
            for record in result.records:
                try:
                    event = normalize(record, result.source_id, kind, ingested_at=ingested_at)
                except BelowFloodThreshold as exc:
                    report.dropped_records += 1
                    logger.debug("Dropped record: %s", exc.message)
                    continue
                except MalformedRecordError as exc:
                    report.dropped_records += 1
                    logger.warning("Dropped record: %s", exc.message, extra={"source": exc.source})
                    continue
                contributions.append(
                    Contribution(event, authority.get(result.source_id, 100), order)
                )
        merged = merge_events(contributions)

        report.state = CycleState.CLASSIFYING
        events = sort_events(await self._classify(kind, merged))

        previous = self._previous.get(kind)
        if previous is None:
            previous = self._previous_from_cache(kind)

        for event in events:
            await self.hazard_store.upsert(event)

        self.cache.set(key, events, self.ttls[kind], fetched_at=fetched_at)
        await mirror_set(key, [e.to_dict() for e in events])

        report.state = CycleState.PERSISTED
        report.merged_count = len(events)
        new_events = [e for e in events if e.identity_key not in previous]
        report.new_keys = [e.identity_key for e in new_events]
        self._previous[kind] = {e.identity_key: e for e in events}

        if new_events:
            await self._hand_off(kind, new_events, report)

    async def fetch_all(self, adapters: Sequence[SourceAdapter]) -> List[AdapterResult]:
        """Run adapters concurrently within the fetch budget; collect every outcome."""
        if not adapters:
            return []
        tasks = {asyncio.create_task(a.fetch()): a for a in adapters}
        done, pending = await asyncio.wait(tasks, timeout=self.fetch_budget)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        results: List[AdapterResult] = []
        for task, adapter in tasks.items():
            if task in pending:
                logger.warning("Adapter %s abandoned after fetch budget", adapter.source_id,
                               extra={"source": adapter.source_id})
                results.append(AdapterResult(
                    adapter.source_id, error=f"exceeded {self.fetch_budget:.0f}s fetch budget",
                ))
                continue
            exc = task.exception()
            if exc is not None:
                logger.warning("Adapter %s raised %s: %s", adapter.source_id,
                               type(exc).__name__, exc, extra={"source": adapter.source_id})
                results.append(AdapterResult(adapter.source_id, error=f"{type(exc).__name__}: {exc}"))
                continue
            results.append(task.result())
        return results

    async def _classify(self, kind: HazardKind, merged: List[HazardEvent]) -> List[HazardEvent]:
        previous = self._previous.get(kind) or {}
        events = []
        for event in merged:
            if event.severity_tier is None:
                logger.debug("Dropping %s: no severity tier", event.identity_key)
                continue
            earlier = previous.get(event.identity_key)
            if earlier is None:
                earlier = await self.hazard_store.get(event.identity_key)
            if earlier is not None:
                event = self._carry_forward(event, earlier)
            events.append(event)
        return events

    @staticmethod
    def _carry_forward(event: HazardEvent, earlier: HazardEvent) -> HazardEvent:
        changes: Dict[str, Any] = {}
        if earlier.ingested_at < event.ingested_at:
            changes["ingested_at"] = earlier.ingested_at
        if event.details.get("observed_at_inferred") and earlier.observed_at != event.observed_at:
            changes["observed_at"] = earlier.observed_at
        return replace(event, **changes) if changes else event

    def _previous_from_cache(self, kind: HazardKind) -> Dict[str, HazardEvent]:
        stale = self.cache.get_stale_if_present(cache_key(kind)) or []
        return {e.identity_key: e for e in stale}

    def _fall_back(self, kind: HazardKind, report: CycleReport) -> None:
        stale = self.cache.get_stale_if_present(cache_key(kind))
        report.degraded = True
        report.merged_count = len(stale or [])
        report.state = CycleState.PERSISTED
        logger.warning(
            "No data from %d adapters for %s; serving %d stale events",
            len(report.adapter_outcomes), kind.value, report.merged_count,
            extra={"hazard": kind.value, "degraded": True},
        )

    async def _hand_off(self, kind: HazardKind, events: List[HazardEvent], report: CycleReport) -> None:
        if self.matcher is None:
            return
        if self.scheduler is not None:
            self.scheduler.schedule(
                lambda: self.matcher.evaluate(events),
                0.0,
                name=f"match-{kind.value}-{report.cycle_id}",
            )
            return
        try:
            await self.matcher.evaluate(events)
        except PersistenceError as exc:
            report.error = exc.message
            logger.error("Alert evaluation failed for %s: %s", kind.value, exc.message)

    async def close(self) -> None:
        for adapters in self.adapters.values():
            for adapter in adapters:
                await adapter.close()

"""
base.py — Source adapter contract.

Every upstream provider is wrapped in a SourceAdapter subclass that turns
one HTTP round-trip (or a small fan-out over mirror URLs) into a list of
ProvisionalRecords. fetch() never raises for the expected failure modes:

    • network error / timeout
    • HTTP 4xx / 5xx
    • unparseable payload or markup
    • empty result from a scraped page (likely a layout change)

Each of these becomes an AdapterResult with no records and a descriptive
error string, so one broken source can never end a pipeline cycle.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, List, Optional

import httpx

from hazardwatch.core.config import settings
from hazardwatch.core.errors import SourceError
from hazardwatch.core.http import build_client
from hazardwatch.hazards.models import ProvisionalRecord
from hazardwatch.spatial.severity import HazardKind

logger = logging.getLogger(__name__)


@dataclass
class AdapterResult:
    """Outcome of one adapter call."""
    source_id: str
    records: List[ProvisionalRecord] = field(default_factory=list)
    error: Optional[str] = None
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.records)

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "record_count": len(self.records),
            "error": self.error,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }


class SourceAdapter(ABC):
    """
    Base class for upstream hazard sources.

    Subclasses set the class attributes and implement _fetch_records().
    authority orders provenance when readings merge: lower is more
    authoritative. key_namespace lets adapters that describe the same
    physical catalogue share identity keys.
    """

    source_id: str = ""
    hazard_kind: HazardKind = HazardKind.EARTHQUAKE
    authority: int = 100
    key_namespace: Optional[str] = None
    # Structured APIs may legitimately report nothing active
    empty_is_failure: bool = True

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout or settings.ADAPTER_TIMEOUT_SECONDS

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = build_client(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()

    async def fetch(self) -> AdapterResult:
        """Run the adapter under its deadline and report the outcome."""
        start = time.monotonic()
        error: Optional[str] = None
        records: List[ProvisionalRecord] = []
        try:
            records = await asyncio.wait_for(self._fetch_records(), timeout=self.timeout)
        except asyncio.TimeoutError:
            error = f"timed out after {self.timeout:.0f}s"
        except SourceError as exc:
            error = exc.message
        except httpx.HTTPError as exc:
            error = f"{type(exc).__name__}: {exc}"
        except ValueError as exc:
            error = f"unparseable payload: {exc}"

        if error is None and not records and self.empty_is_failure:
            error = "no records"

        for record in records:
            record.source_id = self.source_id
            if record.key_namespace is None:
                record.key_namespace = self.key_namespace

        elapsed_ms = (time.monotonic() - start) * 1000
        if error:
            logger.warning(
                "Adapter %s returned no data: %s (%.0fms)",
                self.source_id, error, elapsed_ms,
                extra={"source": self.source_id, "duration_ms": elapsed_ms},
            )
        else:
            logger.debug(
                "Adapter %s returned %d records (%.0fms)",
                self.source_id, len(records), elapsed_ms,
                extra={"source": self.source_id, "duration_ms": elapsed_ms},
            )
        return AdapterResult(self.source_id, records, error, elapsed_ms)

    @abstractmethod
    async def _fetch_records(self) -> List[ProvisionalRecord]:
        """Fetch and parse; may raise SourceError, httpx.HTTPError or ValueError."""

    # ── HTTP helpers ──

    async def _get(self, url: str, params: Optional[dict] = None) -> httpx.Response:
        response = await self.client.get(url, params=params)
        if response.status_code >= 400:
            raise SourceError(self.source_id, f"HTTP {response.status_code} from {url}")
        return response

    async def _get_json(self, url: str, params: Optional[dict] = None) -> Any:
        return (await self._get(url, params)).json()

    async def _get_text(self, url: str) -> str:
        return (await self._get(url)).text

    async def _first_non_empty(
        self,
        urls: Iterable[str],
        parse: Callable[[str, str], Awaitable[List[ProvisionalRecord]]],
    ) -> List[ProvisionalRecord]:
        """
        Try mirror URLs in order; return the first non-empty parse.

        parse receives (url, body). Per-URL failures are logged and skipped.
        """
        last_error: Optional[str] = None
        for url in urls:
            try:
                body = await self._get_text(url)
                records = await parse(url, body)
            except (SourceError, httpx.HTTPError, ValueError) as exc:
                last_error = str(exc)
                logger.debug("%s: %s failed: %s", self.source_id, url, exc)
                continue
            if records:
                return records
        if last_error:
            raise SourceError(self.source_id, f"all URLs failed, last error: {last_error}")
        return []

"""
open_meteo_flood.py — Open-Meteo GloFAS river discharge for major PH basins.

One request per basin, all in flight concurrently:

    GET /v1/flood?latitude=..&longitude=..
        &daily=river_discharge,river_discharge_mean&forecast_days=1

ratio = river_discharge / river_discharge_mean. Basins at or below 1.2×
normal are not flooding and are dropped here.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import httpx

from hazardwatch.core.config import settings
from hazardwatch.core.errors import SourceError
from hazardwatch.hazards.models import ProvisionalRecord
from hazardwatch.ingestion.base import SourceAdapter
from hazardwatch.spatial.severity import FLOOD_MIN_RATIO, HazardKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Basin:
    name: str
    latitude: float
    longitude: float
    province: str
    region: str


PHILIPPINE_BASINS: Sequence[Basin] = (
    Basin("Pasig River", 14.5995, 120.9842, "Metro Manila", "NCR"),
    Basin("Marikina River", 14.65, 121.1, "Metro Manila", "NCR"),
    Basin("Cagayan River", 17.6167, 121.7167, "Cagayan", "Cagayan Valley"),
    Basin("Pampanga River", 15.0, 120.7, "Pampanga", "Central Luzon"),
    Basin("Agno River", 16.2, 120.4, "Pangasinan", "Ilocos Region"),
    Basin("Bicol River", 13.6, 123.2, "Camarines Sur", "Bicol Region"),
    Basin("Agusan River", 8.5, 125.5, "Agusan del Sur", "Caraga"),
    Basin("Mindanao River", 7.2, 124.2, "Cotabato", "Soccsksargen"),
)


class OpenMeteoFloodAdapter(SourceAdapter):
    source_id = "open_meteo_flood"
    hazard_kind = HazardKind.FLOOD
    authority = 10
    key_namespace = "ph"
    empty_is_failure = False

    def __init__(
        self,
        client=None,
        *,
        url: Optional[str] = None,
        basins: Optional[Sequence[Basin]] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(client, timeout=timeout)
        self.url = url or settings.OPEN_METEO_FLOOD_URL
        self.basins = tuple(basins or PHILIPPINE_BASINS)

    async def _fetch_basin(self, basin: Basin) -> Optional[ProvisionalRecord]:
        params = {
            "latitude": basin.latitude,
            "longitude": basin.longitude,
            "daily": "river_discharge,river_discharge_mean",
            "forecast_days": 1,
        }
        data = await self._get_json(self.url, params)
        daily = (data.get("daily") if isinstance(data, dict) else None) or {}
        discharge = (daily.get("river_discharge") or [None])[0]
        mean = (daily.get("river_discharge_mean") or [None])[0]
        if not discharge or not mean:
            return None

        ratio = discharge / mean
        if ratio <= FLOOD_MIN_RATIO:
            return None

        return ProvisionalRecord(
            source_id=self.source_id,
            kind=HazardKind.FLOOD,
            latitude=basin.latitude,
            longitude=basin.longitude,
            intensity=ratio,
            observed_at=(daily.get("time") or [None])[0],
            name=basin.name,
            place=f"{basin.province}, {basin.region}",
            url=str(httpx.URL(self.url, params=params)),
            extra={
                "discharge": discharge,
                "mean_discharge": mean,
                "province": basin.province,
                "region": basin.region,
            },
        )

    async def _fetch_records(self) -> List[ProvisionalRecord]:
        results = await asyncio.gather(
            *(self._fetch_basin(b) for b in self.basins),
            return_exceptions=True,
        )
        records: List[ProvisionalRecord] = []
        failures = 0
        for basin, result in zip(self.basins, results):
            if isinstance(result, (SourceError, httpx.HTTPError, ValueError)):
                failures += 1
                logger.debug("Basin %s failed: %s", basin.name, result)
            elif isinstance(result, BaseException):
                raise result
            elif result is not None:
                records.append(result)

        if failures == len(self.basins):
            raise SourceError(self.source_id, f"all {failures} basin requests failed")
        return records

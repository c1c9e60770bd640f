"""
tropical_storm_feed.py — International tropical-cyclone tracking feed (JSON).

The feed is a JSON array of storm objects:

    {"id": "...", "name": "Trami", "category": "STS",
     "latitude": 14.2, "longitude": 125.1, "windSpeed": 95,
     "windUnit": "km/h", "gustSpeed": 115, "pressure": 985,
     "direction": "WNW", "speed": 20, "status": "active",
     "lastUpdate": 1730000000000, "advisoryNumber": "12"}

Only storms with status "active" inside the buffered Philippine box are
kept.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from hazardwatch.core.config import settings
from hazardwatch.core.errors import SourceError
from hazardwatch.hazards.models import ProvisionalRecord
from hazardwatch.hazards.normalizer import parse_number
from hazardwatch.ingestion.base import SourceAdapter
from hazardwatch.spatial.severity import HazardKind

logger = logging.getLogger(__name__)


def parse_feed_item(item: Dict[str, Any], url: str = "") -> Optional[ProvisionalRecord]:
    if not isinstance(item, dict):
        return None
    status = str(item.get("status") or "active").lower()
    if status != "active":
        return None
    lat = parse_number(item.get("latitude"))
    lon = parse_number(item.get("longitude"))
    if lat is None or lon is None or not settings.in_region(lat, lon):
        return None

    unit = str(item.get("windUnit") or "km/h").lower()
    extra: Dict[str, Any] = {"status": status}
    for key, target in (
        ("id", "feed_id"),
        ("advisoryNumber", "advisory_number"),
        ("pressure", "pressure_hpa"),
        ("gustSpeed", "gust_kmh"),
    ):
        if item.get(key) is not None:
            extra[target] = item[key]
    if item.get("direction") or item.get("speed") is not None:
        extra["movement"] = {
            "direction": item.get("direction") or "",
            "speed_kmh": parse_number(item.get("speed")) or 0.0,
        }

    return ProvisionalRecord(
        source_id=TropicalStormFeedAdapter.source_id,
        kind=HazardKind.STORM,
        latitude=lat,
        longitude=lon,
        intensity=item.get("windSpeed"),
        intensity_unit="kt" if unit in ("kt", "kts", "knots") else "kmh",
        observed_at=item.get("lastUpdate"),
        name=str(item.get("name") or "").strip() or None,
        place="Western Pacific",
        url=url,
        category=item.get("category"),
        extra=extra,
    )


class TropicalStormFeedAdapter(SourceAdapter):
    source_id = "tropical_storm_feed"
    hazard_kind = HazardKind.STORM
    authority = 20
    key_namespace = "wpac"
    empty_is_failure = False

    def __init__(self, client=None, *, url: Optional[str] = None, timeout: Optional[float] = None):
        super().__init__(client, timeout=timeout)
        self.url = url or settings.TROPICAL_STORM_FEED_URL

    async def _fetch_records(self) -> List[ProvisionalRecord]:
        data = await self._get_json(self.url)
        if isinstance(data, dict):
            data = data.get("storms", data.get("data"))
        if not isinstance(data, list):
            raise SourceError(self.source_id, "expected a JSON array of storms")

        records = []
        for item in data:
            record = parse_feed_item(item, self.url)
            if record is not None and record.name:
                records.append(record)
        return records

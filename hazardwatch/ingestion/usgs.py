"""
usgs.py — USGS GeoJSON summary feed, scoped to the Philippine region box.

USGS GeoJSON format:
    feature = {
        "type": "Feature",
        "properties": { "mag": 5.2, "place": "...", "time": 1708617600000, ... },
        "geometry": { "type": "Point", "coordinates": [lon, lat, depth_km] },
        "id": "us7000m..."
    }
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from hazardwatch.core.config import settings
from hazardwatch.core.errors import SourceError
from hazardwatch.hazards.models import ProvisionalRecord
from hazardwatch.ingestion.base import SourceAdapter
from hazardwatch.spatial.severity import HazardKind

logger = logging.getLogger(__name__)


def parse_usgs_feature(feature: Dict[str, Any]) -> Optional[ProvisionalRecord]:
    """One GeoJSON feature → ProvisionalRecord, or None when malformed."""
    try:
        props = feature["properties"]
        coords = feature["geometry"]["coordinates"]  # [lon, lat, depth]
        return ProvisionalRecord(
            source_id="usgs",
            kind=HazardKind.EARTHQUAKE,
            latitude=float(coords[1]),
            longitude=float(coords[0]),
            intensity=props.get("mag"),
            observed_at=props.get("time"),  # epoch milliseconds
            depth=float(coords[2]) if len(coords) > 2 and coords[2] is not None else None,
            place=str(props.get("place") or "Unknown"),
            url=str(props.get("url") or ""),
            extra={
                "usgs_id": str(feature.get("id", "")),
                "magnitude_type": str(props.get("magType") or "ml"),
                "tsunami": bool(props.get("tsunami", 0)),
                "status": str(props.get("status") or "automatic"),
            },
        )
    except (KeyError, TypeError, ValueError, IndexError) as exc:
        logger.warning("Failed to parse USGS feature: %s", exc)
        return None


class UsgsAdapter(SourceAdapter):
    source_id = "usgs"
    hazard_kind = HazardKind.EARTHQUAKE
    authority = 20
    empty_is_failure = False

    def __init__(self, client=None, *, url: Optional[str] = None, timeout: Optional[float] = None):
        super().__init__(client, timeout=timeout)
        self.url = url or settings.USGS_FEED_URL

    async def _fetch_records(self) -> List[ProvisionalRecord]:
        data = await self._get_json(self.url)
        if not isinstance(data, dict) or "features" not in data:
            raise SourceError(self.source_id, "response is not a GeoJSON FeatureCollection")

        records = []
        for feature in data.get("features") or []:
            record = parse_usgs_feature(feature)
            if record is None:
                continue
            if not settings.in_region(record.latitude, record.longitude):
                continue
            records.append(record)
        return records

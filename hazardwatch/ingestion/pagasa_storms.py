"""
pagasa_storms.py — PAGASA tropical-cyclone bulletin scraper.

Bulletins are free text. A storm is introduced by its category and name,

    Severe Tropical Storm "KRISTINE" (TRAMI)

followed by sentences giving the centre position ("14.5 °N, 124.3 °E"),
"maximum sustained winds of 85 km/h", gustiness, movement, pressure and
the wind signals currently raised. Several bulletin URLs are tried in
order and the first page yielding storms wins.

Storms are keyed by international name when PAGASA gives one, so readings
merge with the international tracking feed under the shared "wpac" key
namespace.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Sequence

from hazardwatch.core.config import settings
from hazardwatch.hazards.models import ProvisionalRecord
from hazardwatch.hazards.normalizer import slugify
from hazardwatch.ingestion.base import SourceAdapter
from hazardwatch.ingestion.parsers import (
    PageWideStrategy,
    ParserCascade,
    TableRowStrategy,
    TextRegexStrategy,
)
from hazardwatch.spatial.severity import HazardKind, StormCategory

STORM_HEADER_RE = re.compile(
    r"(?i:(?P<category>super\s+typhoon|severe\s+tropical\s+storm|tropical\s+storm"
    r"|tropical\s+depression|typhoon))\s+"
    r"[\"“']?(?P<name>[A-Z][A-Z\-]{2,})[\"”']?"
    r"(?:\s*\((?P<intl>[A-Z][A-Za-z\-]{2,})\))?"
)
POSITION_RE = re.compile(
    r"(\d{1,2}(?:\.\d+)?)\s*°?\s*N\s*,?\s*(\d{2,3}(?:\.\d+)?)\s*°?\s*E"
)
WIND_RE = re.compile(
    r"sustained\s+winds?\s+of\s+(\d{2,3})\s*(km/h|kph|knots|kt)", re.IGNORECASE,
)
GUST_RE = re.compile(r"gust(?:iness|s)?\s+of\s+up\s+to\s+(\d{2,3})\s*(?:km/h|kph)", re.IGNORECASE)
MOVEMENT_RE = re.compile(r"moving\s+([a-z\- ]+?)\s+(?:at\s+)?(\d{1,3})\s*km/h", re.IGNORECASE)
PRESSURE_RE = re.compile(r"(\d{3,4})\s*hPa", re.IGNORECASE)
ISSUED_RE = re.compile(
    r"issued\s+at\s+(\d{1,2}:\d{2}\s*[AP]M)[,\s]+(\d{1,2}\s+[A-Za-z]+\s+\d{4})",
    re.IGNORECASE,
)
SIGNAL_RE = re.compile(
    r"(?:PSWS|Public\s+Storm\s+Warning\s+Signal|(?:Wind\s+)?Signal)\s*(?:No\.?)?\s*#?\s*([1-5])",
    re.IGNORECASE,
)

# Bulletin text following a header is searched up to this many characters
_SEGMENT_CHARS = 2000


def extract_storm(segment: str, url: str) -> Optional[ProvisionalRecord]:
    """Build a record from text beginning with a storm header."""
    header = STORM_HEADER_RE.search(segment)
    if not header:
        return None
    position = POSITION_RE.search(segment)
    if not position:
        return None

    local_name = header.group("name").title()
    intl_name = header.group("intl")
    extra: Dict[str, object] = {"local_name": local_name}
    if intl_name:
        extra["international_name"] = intl_name.title()

    wind = WIND_RE.search(segment)
    gust = GUST_RE.search(segment)
    if gust:
        extra["gust_kmh"] = float(gust.group(1))
    movement = MOVEMENT_RE.search(segment)
    if movement:
        extra["movement"] = {
            "direction": " ".join(movement.group(1).split()),
            "speed_kmh": float(movement.group(2)),
        }
    pressure = PRESSURE_RE.search(segment)
    if pressure:
        extra["pressure_hpa"] = float(pressure.group(1))
    signals = sorted({int(s) for s in SIGNAL_RE.findall(segment)})
    if signals:
        extra["signals_raised"] = signals

    issued = ISSUED_RE.search(segment)
    observed_at = f"{issued.group(2)} - {issued.group(1)}" if issued else None

    return ProvisionalRecord(
        source_id=PagasaStormAdapter.source_id,
        kind=HazardKind.STORM,
        latitude=position.group(1),
        longitude=position.group(2),
        intensity=wind.group(1) if wind else None,
        intensity_unit="kt" if wind and wind.group(2).lower() in ("knots", "kt") else "kmh",
        observed_at=observed_at,
        name=(intl_name or local_name).title(),
        place="Philippine Area of Responsibility",
        url=url,
        category=header.group("category"),
        extra=extra,
    )


def scan_bulletin(text: str, url: str) -> List[ProvisionalRecord]:
    """Split running text at each storm header and extract every storm."""
    headers = list(STORM_HEADER_RE.finditer(text))
    records = []
    for i, header in enumerate(headers):
        end = headers[i + 1].start() if i + 1 < len(headers) else len(text)
        segment = text[header.start():min(end, header.start() + _SEGMENT_CHARS)]
        record = extract_storm(segment, url)
        if record is not None:
            records.append(record)
    return records


class PagasaStormAdapter(SourceAdapter):
    source_id = "pagasa_tc"
    hazard_kind = HazardKind.STORM
    authority = 10
    key_namespace = "wpac"

    def __init__(self, client=None, *, urls: Optional[Sequence[str]] = None, timeout: Optional[float] = None):
        super().__init__(client, timeout=timeout)
        self.urls = list(urls or settings.PAGASA_TC_URLS)

    def _cascade(self, url: str) -> ParserCascade:
        return ParserCascade([
            TableRowStrategy(lambda cells, _row: self._parse_row(cells, url), min_cells=5),
            TextRegexStrategy(
                STORM_HEADER_RE,
                lambda m, text: extract_storm(text[m.start():m.start() + _SEGMENT_CHARS], url),
                selectors=(".tropical-cyclone-bulletin", "article", ".panel", ".content", "p"),
            ),
            PageWideStrategy(lambda text: scan_bulletin(text, url)),
        ])

    def _parse_row(self, cells: List[str], url: str) -> Optional[ProvisionalRecord]:
        """Tracking-table layout: Name | Category | Lat | Lon | Max winds (km/h)."""
        name, category, lat, lon, wind = cells[:5]
        try:
            StormCategory.parse(category)
        except ValueError:
            return None
        return ProvisionalRecord(
            source_id=self.source_id,
            kind=HazardKind.STORM,
            latitude=lat,
            longitude=lon,
            intensity=wind,
            name=name.strip().title(),
            category=category,
            place="Philippine Area of Responsibility",
            url=url,
        )

    async def _parse_page(self, url: str, html: str) -> List[ProvisionalRecord]:
        return self._dedupe(self._cascade(url).try_extract(html))

    @staticmethod
    def _dedupe(records: List[ProvisionalRecord]) -> List[ProvisionalRecord]:
        by_name: Dict[str, ProvisionalRecord] = {}
        for record in records:
            by_name.setdefault(slugify(record.name or ""), record)
        return list(by_name.values())

    async def _fetch_records(self) -> List[ProvisionalRecord]:
        return await self._first_non_empty(self.urls, self._parse_page)

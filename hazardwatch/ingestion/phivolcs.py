"""
phivolcs.py — PHIVOLCS latest-earthquake page scraper.

The page is a Word-exported HTML table (class MsoNormalTable) with columns

    Date - Time (Philippine Time) | Latitude | Longitude | Depth (km) |
    Magnitude | Location

Times are Philippine wall-clock time, e.g. "08 November 2025 - 03:38 PM";
the normalizer applies the UTC+08:00 offset. The date cell links to a
per-event detail page using Windows-style backslash paths.
"""

from __future__ import annotations

import re
from typing import List, Optional
from urllib.parse import urljoin

from bs4.element import Tag

from hazardwatch.core.config import settings
from hazardwatch.hazards.models import ProvisionalRecord
from hazardwatch.ingestion.base import SourceAdapter
from hazardwatch.ingestion.parsers import (
    PageWideStrategy,
    ParserCascade,
    TableRowStrategy,
    TextRegexStrategy,
)
from hazardwatch.spatial.severity import HazardKind

# One event in running text: time, lat, lon, depth, magnitude, location
EVENT_TEXT_RE = re.compile(
    r"(?P<time>\d{1,2}\s+[A-Za-z]+\s+\d{4}\s*-\s*\d{1,2}:\d{2}\s*[AP]M)\s+"
    r"(?P<lat>\d{1,2}\.\d+)\s+(?P<lon>\d{2,3}\.\d+)\s+"
    r"(?P<depth>\d{1,3}(?:\.\d+)?)\s+(?P<mag>\d(?:\.\d+)?)\s+"
    r"(?P<place>.{3,160}?)(?=\s+\d{1,2}\s+[A-Za-z]+\s+\d{4}\s*-|$)",
    re.IGNORECASE,
)


def _is_data_table(text: str) -> bool:
    return "Date - Time" in text or "Philippine Time" in text


class PhivolcsAdapter(SourceAdapter):
    source_id = "phivolcs"
    hazard_kind = HazardKind.EARTHQUAKE
    authority = 10

    def __init__(self, client=None, *, url: Optional[str] = None, timeout: Optional[float] = None):
        super().__init__(client, timeout=timeout)
        self.url = url or settings.PHIVOLCS_URL
        self.cascade = ParserCascade([
            TableRowStrategy(
                self._parse_row,
                min_cells=6,
                table_selector="table.MsoNormalTable, table",
                table_filter=_is_data_table,
            ),
            TextRegexStrategy(EVENT_TEXT_RE, self._from_match, selectors=("tr", "p")),
            PageWideStrategy(self._scan_text),
        ])

    async def _fetch_records(self) -> List[ProvisionalRecord]:
        html = await self._get_text(self.url)
        return self.cascade.try_extract(html)

    def _detail_link(self, cell: Optional[Tag]) -> Optional[str]:
        if cell is None:
            return None
        anchor = cell.find("a")
        href = anchor.get("href") if anchor else None
        if not href:
            return None
        return urljoin(self.url, href.replace("\\", "/").strip())

    def _parse_row(self, cells: List[str], row: Tag) -> Optional[ProvisionalRecord]:
        when, lat, lon, depth, magnitude, place = cells[:6]
        if len(when) <= 10 or "date" in when.lower():
            return None
        first = row.find("td")
        return ProvisionalRecord(
            source_id=self.source_id,
            kind=HazardKind.EARTHQUAKE,
            latitude=lat,
            longitude=lon,
            intensity=magnitude,
            observed_at=when,
            depth=depth,
            place=place or "Philippines",
            url=self._detail_link(first) or self.url,
            extra={"magnitude_type": "ml"},
        )

    def _from_match(self, match: "re.Match[str]", _text: str) -> ProvisionalRecord:
        return ProvisionalRecord(
            source_id=self.source_id,
            kind=HazardKind.EARTHQUAKE,
            latitude=match.group("lat"),
            longitude=match.group("lon"),
            intensity=match.group("mag"),
            observed_at=match.group("time"),
            depth=match.group("depth"),
            place=match.group("place").strip(),
            url=self.url,
            extra={"magnitude_type": "ml"},
        )

    def _scan_text(self, text: str) -> List[ProvisionalRecord]:
        return [self._from_match(m, text) for m in EVENT_TEXT_RE.finditer(text)]

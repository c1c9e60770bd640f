"""
pagasa_flood.py — PAGASA flood bulletin scraper.

Bulletin pages are fetched concurrently. On each page, content blocks are
scanned selector by selector (articles first, table rows last); a block
counts when it mentions flooding, inundation or water level and is at
least 20 characters long. The first known place name in the block is
resolved through a small gazetteer, and the first severity word maps to a
representative discharge ratio inside the matching flood tier.

Place names on a major river's catchment resolve to the basin itself, so
PAGASA readings share identity keys with the Open-Meteo basin readings.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import httpx

from hazardwatch.core.config import settings
from hazardwatch.core.errors import SourceError
from hazardwatch.hazards.models import ProvisionalRecord
from hazardwatch.ingestion.base import SourceAdapter
from hazardwatch.ingestion.open_meteo_flood import PHILIPPINE_BASINS
from hazardwatch.ingestion.parsers import PageWideStrategy, ParserCascade, TextRegexStrategy
from hazardwatch.spatial.severity import HazardKind, SeverityTier

logger = logging.getLogger(__name__)

BLOCK_SELECTORS = (
    "article", ".news-item", ".alert", ".warning",
    ".content", ".main-content", ".page-content",
    "table tbody tr", ".table tbody tr",
)
MIN_BLOCK_LENGTH = 20

FLOOD_WORDS_RE = re.compile(r"flood|inundation|water level", re.IGNORECASE)
SEVERITY_WORD_RE = re.compile(
    r"\b(low|moderate|high|extreme|severe|critical|warning|alert)\b", re.IGNORECASE,
)


@dataclass(frozen=True)
class Place:
    name: str
    province: str
    region: str
    latitude: float
    longitude: float


_BASINS = {b.name: b for b in PHILIPPINE_BASINS}


def _basin(name: str) -> Place:
    b = _BASINS[name]
    return Place(b.name, b.province, b.region, b.latitude, b.longitude)


GAZETTEER: Dict[str, Place] = {
    "metro manila": _basin("Pasig River"),
    "manila": _basin("Pasig River"),
    "pasig": _basin("Pasig River"),
    "marikina": _basin("Marikina River"),
    "cagayan": _basin("Cagayan River"),
    "pampanga": _basin("Pampanga River"),
    "agno": _basin("Agno River"),
    "pangasinan": _basin("Agno River"),
    "bicol": _basin("Bicol River"),
    "agusan": _basin("Agusan River"),
    "mindanao": _basin("Mindanao River"),
    "cebu": Place("Cebu City", "Cebu", "Central Visayas", 10.3157, 123.8854),
    "davao": Place("Davao City", "Davao del Sur", "Davao Region", 7.1907, 125.4553),
    "iloilo": Place("Iloilo City", "Iloilo", "Western Visayas", 10.7202, 122.5621),
    "bataan": Place("Bataan", "Bataan", "Central Luzon", 14.6786, 120.5370),
    "laguna": Place("Laguna", "Laguna", "CALABARZON", 14.2669, 121.4618),
    "rizal": Place("Rizal", "Rizal", "CALABARZON", 14.65, 121.2),
    "bulacan": Place("Bulacan", "Bulacan", "Central Luzon", 14.7943, 120.8799),
}

# Longest names first so "metro manila" wins over "manila" at the same position
PLACE_RE = re.compile(
    r"\b(" + "|".join(sorted(map(re.escape, GAZETTEER), key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)

# Representative discharge ratio inside each flood tier
TIER_RATIO: Dict[SeverityTier, float] = {
    SeverityTier.LOW: 1.35,
    SeverityTier.MODERATE: 1.75,
    SeverityTier.HIGH: 2.5,
    SeverityTier.EXTREME: 3.5,
}


def severity_from_text(text: str) -> SeverityTier:
    """First severity word in text; MODERATE when there is none."""
    match = SEVERITY_WORD_RE.search(text)
    if not match:
        return SeverityTier.MODERATE
    word = match.group(1).lower()
    if word in ("extreme", "critical"):
        return SeverityTier.EXTREME
    if word in ("high", "severe"):
        return SeverityTier.HIGH
    if word == "moderate":
        return SeverityTier.MODERATE
    return SeverityTier.LOW


def block_to_record(match: "re.Match[str]", text: str, url: str) -> Optional[ProvisionalRecord]:
    place = GAZETTEER.get(match.group(1).lower())
    if place is None:
        return None
    tier = severity_from_text(text)
    return ProvisionalRecord(
        source_id=PagasaFloodAdapter.source_id,
        kind=HazardKind.FLOOD,
        latitude=place.latitude,
        longitude=place.longitude,
        intensity=TIER_RATIO[tier],
        name=place.name,
        place=f"{place.province}, {place.region}",
        url=url,
        extra={
            "province": place.province,
            "region": place.region,
            "mentioned": match.group(1),
            "description": text[:500],
            "reported_severity": tier.label,
        },
    )


def scan_page_text(text: str, url: str) -> List[ProvisionalRecord]:
    """Sentence-level fallback when no content block matched."""
    records = []
    for sentence in re.split(r"(?<=[.!?])\s+", text):
        if len(sentence) < MIN_BLOCK_LENGTH or not FLOOD_WORDS_RE.search(sentence):
            continue
        match = PLACE_RE.search(sentence)
        if match:
            record = block_to_record(match, sentence, url)
            if record is not None:
                records.append(record)
    return records


def build_cascade(url: str) -> ParserCascade:
    return ParserCascade([
        TextRegexStrategy(
            PLACE_RE,
            lambda m, text: block_to_record(m, text, url),
            selectors=BLOCK_SELECTORS,
            min_length=MIN_BLOCK_LENGTH,
            block_filter=lambda text: bool(FLOOD_WORDS_RE.search(text)),
            first_match_only=True,
        ),
        PageWideStrategy(lambda text: scan_page_text(text, url)),
    ])


class PagasaFloodAdapter(SourceAdapter):
    source_id = "pagasa_flood"
    hazard_kind = HazardKind.FLOOD
    authority = 20
    key_namespace = "ph"
    # No bulletin is the normal state outside flood season
    empty_is_failure = False

    def __init__(self, client=None, *, urls: Optional[Sequence[str]] = None, timeout: Optional[float] = None):
        super().__init__(client, timeout=timeout)
        self.urls = list(urls or settings.PAGASA_FLOOD_URLS)

    async def _fetch_page(self, url: str) -> List[ProvisionalRecord]:
        html = await self._get_text(url)
        return build_cascade(url).try_extract(html)

    async def _fetch_records(self) -> List[ProvisionalRecord]:
        results = await asyncio.gather(
            *(self._fetch_page(u) for u in self.urls),
            return_exceptions=True,
        )
        records: List[ProvisionalRecord] = []
        seen = set()
        failures = 0
        for url, result in zip(self.urls, results):
            if isinstance(result, (SourceError, httpx.HTTPError, ValueError)):
                failures += 1
                logger.debug("%s failed: %s", url, result)
                continue
            if isinstance(result, BaseException):
                raise result
            for record in result:
                key = (record.name or "").lower()
                if key not in seen:
                    seen.add(key)
                    records.append(record)

        if failures == len(self.urls):
            raise SourceError(self.source_id, "all bulletin pages failed")
        return records

"""
normalizer.py — Map provisional adapter records onto the canonical HazardEvent.

normalize() is a pure function: identical input always yields an identical
HazardEvent, which is what makes re-processing the same upstream data
idempotent. It never consults the clock; when a record carries no
timestamp the caller-supplied ingested_at stands in for observed_at and the
event is flagged with details["observed_at_inferred"].

Responsibilities:
    1. Coordinate / number extraction from scraped strings ("12 km", "14.60°N")
    2. Unit conversion (knots, m/s → km/h; metres → km)
    3. Timestamp parsing at the source's fixed UTC offset
       (PHIVOLCS and PAGASA publish Philippine Time, UTC+08:00)
    4. Identity-key derivation
    5. Severity delegation to hazardwatch.spatial.severity

Identity keys:
    quake:<ns>:<YYYYmmddTHHMM utc>:<lat 2dp>:<lon 2dp>
    storm:<ns>:<name slug>
    flood:<ns>:<basin slug>

<ns> is the record's key_namespace (defaults to the source id); synthetic
records use "synthetic".
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional

from hazardwatch.core.errors import MalformedRecordError
from hazardwatch.hazards.models import (
    SYNTHETIC_SOURCE,
    HazardEvent,
    Location,
    ProvisionalRecord,
)
from hazardwatch.spatial.severity import (
    CATEGORY_MIN_WIND_KMH,
    HazardKind,
    StormCategory,
    flood_severity,
    quake_significance,
    storm_category_from_wind,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PHILIPPINE_TIME = timezone(timedelta(hours=8), "PHT")

# Fixed offsets of sources that publish local wall-clock time
SOURCE_TIMEZONES: Dict[str, timezone] = {
    "phivolcs": PHILIPPINE_TIME,
    "pagasa_tc": PHILIPPINE_TIME,
    "pagasa_flood": PHILIPPINE_TIME,
}

KNOT_TO_KMH = 1.852
MS_TO_KMH = 3.6

# Wind assumed for a storm reported by category alone
CATEGORY_NOMINAL_WIND_KMH: Dict[StormCategory, float] = {
    **CATEGORY_MIN_WIND_KMH,
    StormCategory.TD: 45.0,
}

_NUMBER_RE = re.compile(r"-?\d+(?:[.,]\d+)?")
_LONG_DATE_RE = re.compile(
    r"(\d{1,2})\s+([A-Za-z]+)\s+(\d{4})\s*-\s*(\d{1,2}):(\d{2})\s*(AM|PM)",
    re.IGNORECASE,
)
_NAIVE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%d %B %Y %H:%M",
    "%B %d, %Y %I:%M %p",
)
_MONTHS = {
    name: i for i, name in enumerate(
        ("january", "february", "march", "april", "may", "june", "july",
         "august", "september", "october", "november", "december"),
        start=1,
    )
}


class BelowFloodThreshold(MalformedRecordError):
    """Discharge ratio ≤ 1.2: a normal river, not a flood event."""


# ---------------------------------------------------------------------------
# Field parsing
# ---------------------------------------------------------------------------

def parse_number(value: Any) -> Optional[float]:
    """
    First number in value, or None.

    Hemisphere suffixes flip the sign: "7.5°S" → -7.5, "120.2 W" → -120.2.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    match = _NUMBER_RE.search(text)
    if not match:
        return None
    number = float(match.group(0).replace(",", "."))
    tail = text[match.end():].strip(" °º").upper()
    if tail[:1] in ("S", "W") and number > 0:
        number = -number
    return number


def parse_depth_km(value: Any) -> Optional[float]:
    """Depth in km from "12 km", "012", 12.0 or "5000 m"."""
    depth = parse_number(value)
    if depth is None:
        return None
    text = str(value).lower()
    if re.search(r"\d\s*m\b", text) and "km" not in text:
        depth /= 1000.0
    return max(0.0, depth)


def to_kmh(value: float, unit: Optional[str]) -> float:
    unit = (unit or "kmh").lower().replace("/", "").replace(" ", "")
    if unit in ("kt", "kts", "knot", "knots"):
        return value * KNOT_TO_KMH
    if unit in ("ms", "mps"):
        return value * MS_TO_KMH
    return value


def parse_observed_at(value: Any, tz: timezone = timezone.utc) -> Optional[datetime]:
    """
    Parse a source timestamp into an aware UTC datetime.

    Naive wall-clock strings are interpreted in tz (the source's fixed
    offset), never in machine-local time. Numbers are epoch milliseconds
    when larger than 1e11, otherwise epoch seconds.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=tz)
        return dt.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=tz).astimezone(timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000.0 if abs(value) > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    text = re.sub(r"philippine\s+(standard\s+)?time|\bPHT\b|\bPST\b", "", str(value), flags=re.IGNORECASE)
    text = " ".join(text.split())

    m = _LONG_DATE_RE.search(text)
    if m:
        day, month_name, year, hour, minute, ampm = m.groups()
        month = _MONTHS.get(month_name.lower())
        if month:
            hour24 = int(hour) % 12 + (12 if ampm.upper() == "PM" else 0)
            return datetime(
                int(year), month, int(day), hour24, int(minute), tzinfo=tz,
            ).astimezone(timezone.utc)

    try:
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        dt = None
    if dt is not None:
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=tz)
        return dt.astimezone(timezone.utc)

    for fmt in _NAIVE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=tz).astimezone(timezone.utc)
        except ValueError:
            continue
    return None


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def classify_depth(depth_km: float) -> str:
    """Seismological depth class: shallow ≤ 70 km < intermediate ≤ 300 km < deep."""
    if depth_km <= 70.0:
        return "shallow"
    if depth_km <= 300.0:
        return "intermediate"
    return "deep"


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def normalize(
    raw: ProvisionalRecord,
    source_id: Optional[str] = None,
    kind: Optional[HazardKind] = None,
    *,
    ingested_at: Optional[datetime] = None,
) -> HazardEvent:
    """
    Build the canonical HazardEvent for one provisional record.

    Raises
    ------
    MalformedRecordError
        Coordinates, intensity, name or timestamp unusable.
    BelowFloodThreshold
        Flood record whose discharge ratio does not qualify.
    """
    source_id = source_id or raw.source_id
    kind = HazardKind(kind or raw.kind)

    lat = parse_number(raw.latitude)
    lon = parse_number(raw.longitude)
    if lat is None or lon is None or not (-90 <= lat <= 90) or not (-180 <= lon <= 180):
        raise MalformedRecordError(source_id, "unusable coordinates",
                                   latitude=raw.latitude, longitude=raw.longitude)

    tz = SOURCE_TIMEZONES.get(source_id, timezone.utc)
    observed_at = parse_observed_at(raw.observed_at, tz)
    inferred = False
    if observed_at is None:
        if raw.observed_at not in (None, ""):
            raise MalformedRecordError(source_id, "unparseable timestamp",
                                       observed_at=str(raw.observed_at))
        if ingested_at is None:
            raise MalformedRecordError(source_id, "record has no timestamp")
        observed_at = ingested_at
        inferred = True

    namespace = SYNTHETIC_SOURCE if raw.synthetic else (raw.key_namespace or source_id)
    details: Dict[str, Any] = {}
    if inferred:
        details["observed_at_inferred"] = True

    if kind is HazardKind.EARTHQUAKE:
        intensity, key, title, loc = _earthquake(raw, source_id, lat, lon, observed_at, namespace, details)
    elif kind is HazardKind.STORM:
        intensity, key, title, loc = _storm(raw, source_id, lat, lon, namespace, details)
    else:
        intensity, key, title, loc = _flood(raw, source_id, lat, lon, namespace, details)

    if raw.synthetic and raw.extra.get("event_id"):
        key = f"{key.split(':', 1)[0]}:{SYNTHETIC_SOURCE}:{slugify(str(raw.extra['event_id']))}"

    for k, v in raw.extra.items():
        details.setdefault(k, v)

    return HazardEvent(
        identity_key=key,
        kind=kind,
        observed_at=observed_at,
        ingested_at=ingested_at or observed_at,
        location=loc,
        magnitude_or_intensity=intensity,
        source_provenance=(SYNTHETIC_SOURCE,) if raw.synthetic else (source_id,),
        is_synthetic=raw.synthetic,
        title=title,
        place=raw.place or raw.name or "",
        url=raw.url or "",
        details=details,
    )


def _earthquake(raw, source_id, lat, lon, observed_at, namespace, details):
    magnitude = parse_number(raw.intensity)
    if magnitude is None or not (-2.0 <= magnitude <= 10.0):
        raise MalformedRecordError(source_id, "unusable magnitude", magnitude=raw.intensity)
    depth = parse_depth_km(raw.depth)

    details["significance"] = quake_significance(magnitude)
    if depth is not None:
        details["depth_class"] = classify_depth(depth)

    key = (
        f"quake:{namespace}:{observed_at.strftime('%Y%m%dT%H%M')}"
        f":{lat:.2f}:{lon:.2f}"
    )
    place = raw.place or "Philippines"
    title = f"M {magnitude:.1f} - {place}"
    return magnitude, key, title, Location(lat, lon, depth)


def _storm(raw, source_id, lat, lon, namespace, details):
    if not raw.name or not raw.name.strip():
        raise MalformedRecordError(source_id, "storm without a name")

    wind = parse_number(raw.intensity)
    wind_kmh = to_kmh(wind, raw.intensity_unit) if wind is not None else None

    reported: Optional[StormCategory] = None
    if raw.category:
        try:
            reported = StormCategory.parse(raw.category)
        except ValueError:
            logger.debug("Ignoring unknown storm category %r from %s", raw.category, source_id)

    if wind_kmh is None and reported is None:
        raise MalformedRecordError(source_id, "storm without wind speed or category",
                                   name=raw.name)

    # Category-derived wind: a reported category lifts the reading to its floor
    intensity = max(
        wind_kmh or 0.0,
        CATEGORY_NOMINAL_WIND_KMH[reported] if reported else 0.0,
    )
    category = storm_category_from_wind(intensity)
    details["name"] = raw.name.strip()
    details["category"] = category.value
    if reported is not None:
        details["reported_category"] = reported.value

    key = f"storm:{namespace}:{slugify(raw.name)}"
    title = f"{category.value} {raw.name.strip()}"
    return intensity, key, title, Location(lat, lon)


def _flood(raw, source_id, lat, lon, namespace, details):
    if not raw.name or not raw.name.strip():
        raise MalformedRecordError(source_id, "flood record without a basin name")

    ratio = parse_number(raw.intensity)
    if ratio is None:
        discharge = parse_number(raw.extra.get("discharge"))
        mean = parse_number(raw.extra.get("mean_discharge"))
        if discharge is None or not mean:
            raise MalformedRecordError(source_id, "no discharge ratio", name=raw.name)
        ratio = discharge / mean

    flood = flood_severity(ratio)
    if flood is None:
        raise BelowFloodThreshold(source_id, "discharge ratio below flood threshold",
                                  name=raw.name, ratio=ratio)
    details["name"] = raw.name.strip()
    details["status"] = flood.status
    details["percent_of_normal"] = round(ratio * 100)

    key = f"flood:{namespace}:{slugify(raw.name)}"
    title = f"{raw.name.strip()} flooding"
    return ratio, key, title, Location(lat, lon)

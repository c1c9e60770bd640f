"""
severity.py — Pure distance, severity and storm-signal classification.

Every distance or severity computation in the service goes through this
module: adapters, the normalizer, the orchestrator's merge step, the
alert matcher and the API layer all call these functions rather than
re-deriving the formulas. Nothing here performs I/O or reads the clock.

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

with R = 6371 km. The expression is symmetric in (P₁, P₂): swapping the
points only negates Δφ and Δλ, which the squared sines absorb exactly.

Flood Severity — Discharge Ratio
=================================
    ratio = river_discharge / river_discharge_mean

    ratio ≤ 1.2          → not a flood event (filtered upstream)
    1.2 < ratio ≤ 1.5    → LOW       / monitoring
    1.5 < ratio ≤ 2.0    → MODERATE  / alert
    2.0 < ratio ≤ 3.0    → HIGH      / alarm
    ratio > 3.0          → EXTREME   / alarm

Public Storm Warning Signal (PSWS)
===================================
Signal number 0–5 from tropical-cyclone category and distance to the
storm centre. Each category has its own distance breakpoints; a stronger
category is never assigned a lower signal than a weaker one at the same
distance, and for a fixed category the signal never rises with distance.

    ┌──────────┬──────┬──────┬──────┬──────┬───────┐
    │ Category │  5   │  4   │  3   │  2   │   1   │
    ├──────────┼──────┼──────┼──────┼──────┼───────┤
    │ SuperTY  │ ≤50  │ ≤100 │ ≤200 │ ≤400 │ ≤1000 │
    │ STY      │  —   │ ≤50  │ ≤100 │ ≤200 │ ≤500  │
    │ TY       │  —   │  —   │ ≤50  │ ≤100 │ ≤300  │
    │ STS      │  —   │  —   │  —   │ ≤50  │ ≤150  │
    │ TS       │  —   │  —   │  —   │  —   │ ≤50   │
    │ TD       │  —   │  —   │  —   │  —   │ ≤50   │
    └──────────┴──────┴──────┴──────┴──────┴───────┘
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, Optional, Tuple


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_KM: float = 6371.0

FLOOD_MIN_RATIO = 1.2
FLOOD_MODERATE_RATIO = 1.5
FLOOD_HIGH_RATIO = 2.0
FLOOD_EXTREME_RATIO = 3.0


class HazardKind(str, Enum):
    """The three hazard families handled by the pipeline."""
    EARTHQUAKE = "earthquake"
    STORM = "storm"
    FLOOD = "flood"


class SeverityTier(IntEnum):
    """
    Derived severity classification — integer ordering enables comparison.

    Higher value = more severe.
    """
    LOW = 1
    MODERATE = 2
    HIGH = 3
    EXTREME = 4

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls, label: str) -> "SeverityTier":
        return cls[label.strip().upper()]


class StormCategory(str, Enum):
    """PAGASA tropical-cyclone categories, weakest first."""
    TD = "TD"              # Tropical Depression
    TS = "TS"              # Tropical Storm
    STS = "STS"            # Severe Tropical Storm
    TY = "TY"              # Typhoon
    STY = "STY"            # Super Typhoon (PAGASA)
    SUPER_TY = "SuperTY"   # Super Typhoon (≥ 130 kt)

    @property
    def rank(self) -> int:
        return _CATEGORY_ORDER.index(self)

    @classmethod
    def parse(cls, raw: str) -> "StormCategory":
        """Parse a category code or spelled-out name."""
        text = raw.strip()
        for member in cls:
            if text.upper() == member.value.upper():
                return member
        key = " ".join(text.lower().replace("-", " ").split())
        if key in _CATEGORY_NAMES:
            return _CATEGORY_NAMES[key]
        raise ValueError(f"Unknown storm category: {raw!r}")


_CATEGORY_ORDER = [
    StormCategory.TD,
    StormCategory.TS,
    StormCategory.STS,
    StormCategory.TY,
    StormCategory.STY,
    StormCategory.SUPER_TY,
]

_CATEGORY_NAMES: Dict[str, StormCategory] = {
    "tropical depression": StormCategory.TD,
    "tropical storm": StormCategory.TS,
    "severe tropical storm": StormCategory.STS,
    "typhoon": StormCategory.TY,
    "super typhoon": StormCategory.STY,
}

# Lower bound of sustained wind (km/h) for each category
CATEGORY_MIN_WIND_KMH: Dict[StormCategory, float] = {
    StormCategory.TD: 0.0,
    StormCategory.TS: 62.0,
    StormCategory.STS: 89.0,
    StormCategory.TY: 118.0,
    StormCategory.STY: 185.0,
    StormCategory.SUPER_TY: 240.0,
}

CATEGORY_TIER: Dict[StormCategory, SeverityTier] = {
    StormCategory.TD: SeverityTier.LOW,
    StormCategory.TS: SeverityTier.LOW,
    StormCategory.STS: SeverityTier.MODERATE,
    StormCategory.TY: SeverityTier.HIGH,
    StormCategory.STY: SeverityTier.EXTREME,
    StormCategory.SUPER_TY: SeverityTier.EXTREME,
}

# (max distance km, signal) pairs, nearest first
SIGNAL_BREAKPOINTS: Dict[StormCategory, Tuple[Tuple[float, int], ...]] = {
    StormCategory.SUPER_TY: ((50, 5), (100, 4), (200, 3), (400, 2), (1000, 1)),
    StormCategory.STY: ((50, 4), (100, 3), (200, 2), (500, 1)),
    StormCategory.TY: ((50, 3), (100, 2), (300, 1)),
    StormCategory.STS: ((50, 2), (150, 1)),
    StormCategory.TS: ((50, 1),),
    StormCategory.TD: ((50, 1),),
}


# ---------------------------------------------------------------------------
# Distance
# ---------------------------------------------------------------------------

def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance in kilometres between two points.

    Examples
    --------
    >>> haversine_km(14.6, 121.0, 14.6, 121.0)
    0.0
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2.0) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    )
    a = min(1.0, max(0.0, a))
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c


def bounding_box(
    lat: float, lon: float, radius_km: float,
) -> Tuple[float, float, float, float]:
    """
    (min_lat, max_lat, min_lon, max_lon) enclosing a circle of radius_km.

    Used as a cheap pre-filter before running haversine_km.
    """
    angular = radius_km / EARTH_RADIUS_KM

    min_lat = lat - math.degrees(angular)
    max_lat = lat + math.degrees(angular)

    cos_lat = math.cos(math.radians(lat))
    if cos_lat > 1e-10:
        delta_lon = math.degrees(angular / cos_lat)
    else:
        delta_lon = 180.0

    return (
        max(min_lat, -90.0),
        min(max_lat, 90.0),
        max(lon - delta_lon, -180.0),
        min(lon + delta_lon, 180.0),
    )


# ---------------------------------------------------------------------------
# Flood
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FloodClass:
    """Flood severity tier plus the water-level status word."""
    tier: SeverityTier
    status: str  # monitoring | alert | alarm


def flood_severity(discharge_ratio: float) -> Optional[FloodClass]:
    """
    Classify a discharge ratio; None means "not a flood event".

    >>> flood_severity(1.2) is None
    True
    >>> flood_severity(3.0).tier
    <SeverityTier.HIGH: 3>
    """
    if discharge_ratio > FLOOD_EXTREME_RATIO:
        return FloodClass(SeverityTier.EXTREME, "alarm")
    if discharge_ratio > FLOOD_HIGH_RATIO:
        return FloodClass(SeverityTier.HIGH, "alarm")
    if discharge_ratio > FLOOD_MODERATE_RATIO:
        return FloodClass(SeverityTier.MODERATE, "alert")
    if discharge_ratio > FLOOD_MIN_RATIO:
        return FloodClass(SeverityTier.LOW, "monitoring")
    return None


# ---------------------------------------------------------------------------
# Storm
# ---------------------------------------------------------------------------

def storm_category_from_wind(wind_kmh: float) -> StormCategory:
    """Category for a sustained wind speed in km/h."""
    category = StormCategory.TD
    for cat in _CATEGORY_ORDER:
        if wind_kmh >= CATEGORY_MIN_WIND_KMH[cat]:
            category = cat
    return category


def storm_signal_number(category: StormCategory, distance_km: float) -> int:
    """
    PSWS number (0–5) for a storm of `category` at `distance_km`.

    >>> storm_signal_number(StormCategory.SUPER_TY, 40)
    5
    >>> storm_signal_number(StormCategory.TS, 60)
    0
    """
    if distance_km < 0:
        raise ValueError(f"Distance must be non-negative, got {distance_km}")
    for max_km, signal in SIGNAL_BREAKPOINTS[StormCategory(category)]:
        if distance_km <= max_km:
            return signal
    return 0


# ---------------------------------------------------------------------------
# Earthquake
# ---------------------------------------------------------------------------

def quake_significance(magnitude: float) -> int:
    """Coarse ranking score: magnitude × 100, rounded half up."""
    return int(math.floor(magnitude * 100.0 + 0.5))


def quake_tier(magnitude: float) -> SeverityTier:
    if magnitude >= 7.0:
        return SeverityTier.EXTREME
    if magnitude >= 6.0:
        return SeverityTier.HIGH
    if magnitude >= 4.0:
        return SeverityTier.MODERATE
    return SeverityTier.LOW


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

def classify_severity(
    magnitude_or_intensity: float, kind: HazardKind,
) -> Optional[SeverityTier]:
    """
    Severity tier for a hazard's raw intensity measure.

    magnitude_or_intensity is the quake magnitude, the storm's sustained
    wind in km/h, or the flood discharge ratio. Returns None only for a
    flood ratio that does not qualify as a flood.
    """
    kind = HazardKind(kind)
    if kind is HazardKind.EARTHQUAKE:
        return quake_tier(magnitude_or_intensity)
    if kind is HazardKind.STORM:
        return CATEGORY_TIER[storm_category_from_wind(magnitude_or_intensity)]
    flood = flood_severity(magnitude_or_intensity)
    return flood.tier if flood else None

"""
models.py — Canonical hazard records shared by every pipeline stage.

Defines:
    • ProvisionalRecord — an adapter's raw, not-yet-normalized extraction
    • Location          — latitude / longitude / optional depth
    • HazardEvent       — the canonical earthquake / storm / flood record

═══════════════════════════════════════════════════════════════════════════
HAZARD EVENT ENVELOPE
═══════════════════════════════════════════════════════════════════════════

    Field                    Earthquake        Storm            Flood
    ──────────────────────   ───────────────   ──────────────   ────────────────
    magnitude_or_intensity   magnitude         wind (km/h)      discharge ratio
    identity_key             source+time+pos   source+name      source+basin
    details                  depth class,      category,        status word,
                             significance      gust, movement   discharge values

severity_tier is a read-only property: it is always recomputed from
magnitude_or_intensity and kind, so it cannot drift from the reading it
describes. Events are immutable; the merge step builds new instances.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from hazardwatch.spatial.severity import (
    HazardKind,
    SeverityTier,
    classify_severity,
)

SYNTHETIC_SOURCE = "synthetic"


@dataclass
class ProvisionalRecord:
    """
    Raw adapter output. Values may still be strings straight from markup.

    intensity holds the magnitude, the wind speed (see intensity_unit) or
    the discharge ratio, depending on kind.
    """
    source_id: str
    kind: HazardKind
    latitude: Any
    longitude: Any
    intensity: Any
    observed_at: Any = None
    depth: Any = None
    name: Optional[str] = None
    place: Optional[str] = None
    url: Optional[str] = None
    category: Optional[str] = None
    intensity_unit: Optional[str] = None  # kmh | kt | ms (storms only)
    key_namespace: Optional[str] = None
    synthetic: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    depth_km: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"latitude": self.latitude, "longitude": self.longitude}
        if self.depth_km is not None:
            d["depth_km"] = self.depth_km
        return d


@dataclass(frozen=True)
class HazardEvent:
    """Canonical hazard record."""

    identity_key: str
    kind: HazardKind
    observed_at: datetime
    ingested_at: datetime
    location: Location
    magnitude_or_intensity: float
    source_provenance: Tuple[str, ...]
    is_synthetic: bool = False
    title: str = ""
    place: str = ""
    url: str = ""
    details: Mapping[str, Any] = field(default_factory=dict)

    @property
    def severity_tier(self) -> Optional[SeverityTier]:
        return classify_severity(self.magnitude_or_intensity, self.kind)

    @property
    def severity_rank(self) -> int:
        tier = self.severity_tier
        return int(tier) if tier is not None else 0

    @property
    def primary_source(self) -> str:
        return self.source_provenance[0] if self.source_provenance else ""

    def to_dict(self) -> Dict[str, Any]:
        tier = self.severity_tier
        return {
            "identity_key": self.identity_key,
            "kind": self.kind.value,
            "observed_at": self.observed_at.isoformat(),
            "ingested_at": self.ingested_at.isoformat(),
            "location": self.location.to_dict(),
            "magnitude_or_intensity": self.magnitude_or_intensity,
            "severity_tier": tier.label if tier else None,
            "source_provenance": list(self.source_provenance),
            "is_synthetic": self.is_synthetic,
            "title": self.title,
            "place": self.place,
            "url": self.url,
            "details": dict(self.details),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HazardEvent":
        loc = data["location"]
        return cls(
            identity_key=data["identity_key"],
            kind=HazardKind(data["kind"]),
            observed_at=_parse_iso(data["observed_at"]),
            ingested_at=_parse_iso(data["ingested_at"]),
            location=Location(
                latitude=float(loc["latitude"]),
                longitude=float(loc["longitude"]),
                depth_km=loc.get("depth_km"),
            ),
            magnitude_or_intensity=float(data["magnitude_or_intensity"]),
            source_provenance=tuple(data.get("source_provenance", ())),
            is_synthetic=bool(data.get("is_synthetic", False)),
            title=data.get("title", ""),
            place=data.get("place", ""),
            url=data.get("url", ""),
            details=dict(data.get("details") or {}),
        )


def _parse_iso(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt

"""
merge.py — Collapse normalized readings that share an identity key.

Rules for one group of contributions:

    provenance       union, ordered by adapter authority then first-seen
    ingested_at      earliest
    observed_at      most authoritative contribution with a real timestamp
    reading          location / intensity / title of the highest-severity
                     contribution (ties: larger intensity, then authority)
    details          reading contributor's, filled in from the others
    is_synthetic     any contribution synthetic

Higher severity wins rather than newest: public-safety data errs toward
caution. The merged list is sorted by severity descending, then
observed_at descending.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List

from hazardwatch.hazards.models import HazardEvent


@dataclass(frozen=True)
class Contribution:
    event: HazardEvent
    authority: int = 100
    order: int = 0


def _provenance(ranked: List[Contribution]) -> tuple:
    seen: List[str] = []
    for c in ranked:
        for source in c.event.source_provenance:
            if source not in seen:
                seen.append(source)
    return tuple(seen)


def merge_group(contributions: Iterable[Contribution]) -> HazardEvent:
    ranked = sorted(contributions, key=lambda c: (c.authority, c.order))
    if not ranked:
        raise ValueError("merge_group needs at least one contribution")
    if len(ranked) == 1:
        return ranked[0].event

    reading = max(
        enumerate(ranked),
        key=lambda ic: (ic[1].event.severity_rank, ic[1].event.magnitude_or_intensity, -ic[0]),
    )[1].event

    timed = [c for c in ranked if not c.event.details.get("observed_at_inferred")]
    observed_at = (timed or ranked)[0].event.observed_at

    details = dict(reading.details)
    for c in ranked:
        for k, v in c.event.details.items():
            details.setdefault(k, v)
    if timed:
        details.pop("observed_at_inferred", None)

    url = reading.url or next((c.event.url for c in ranked if c.event.url), "")

    return replace(
        reading,
        observed_at=observed_at,
        ingested_at=min(c.event.ingested_at for c in ranked),
        source_provenance=_provenance(ranked),
        is_synthetic=any(c.event.is_synthetic for c in ranked),
        url=url,
        details=details,
    )


def sort_events(events: Iterable[HazardEvent]) -> List[HazardEvent]:
    return sorted(
        events,
        key=lambda e: (e.severity_rank, e.observed_at),
        reverse=True,
    )


def merge_events(contributions: Iterable[Contribution]) -> List[HazardEvent]:
    """One merged HazardEvent per identity key, most severe first."""
    groups: Dict[str, List[Contribution]] = {}
    for c in contributions:
        groups.setdefault(c.event.identity_key, []).append(c)
    return sort_events(merge_group(group) for group in groups.values())

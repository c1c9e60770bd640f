"""
test_merge.py — Collapsing readings that share an identity key.

Run with:
    pytest tests/test_merge.py -v
"""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from conftest import T0, make_event
from hazardwatch.pipeline.merge import Contribution, merge_events, merge_group, sort_events
from hazardwatch.spatial.severity import HazardKind, SeverityTier


def storm(source, wind, *, key="storm:wpac:trami", observed_at=T0, details=None, url=""):
    event = make_event(HazardKind.STORM, wind, key=key, observed_at=observed_at, details=details)
    return replace(event, source_provenance=(source,), url=url)


class TestMergeGroup:

    def test_single_contribution_unchanged(self):
        event = storm("pagasa_tc", 95)
        assert merge_group([Contribution(event)]) is event

    def test_empty_group_rejected(self):
        with pytest.raises(ValueError):
            merge_group([])

    def test_higher_severity_reading_wins(self):
        pagasa = storm("pagasa_tc", 95, details={"category": "STS"})
        feed = storm("tropical_storm_feed", 130, details={"category": "TY"})
        merged = merge_group([Contribution(pagasa, 10, 0), Contribution(feed, 20, 1)])
        assert merged.magnitude_or_intensity == 130
        assert merged.severity_tier is SeverityTier.HIGH
        assert merged.details["category"] == "TY"

    def test_provenance_ordered_by_authority(self):
        pagasa = storm("pagasa_tc", 95)
        feed = storm("tropical_storm_feed", 130)
        merged = merge_group([Contribution(feed, 20, 0), Contribution(pagasa, 10, 1)])
        assert merged.source_provenance == ("pagasa_tc", "tropical_storm_feed")

    def test_provenance_first_seen_on_equal_authority(self):
        a = storm("a", 95)
        b = storm("b", 95)
        merged = merge_group([Contribution(b, 10, 0), Contribution(a, 10, 1)])
        assert merged.source_provenance == ("b", "a")

    def test_equal_severity_larger_intensity_wins(self):
        low = storm("a", 120)
        high = storm("b", 150)
        merged = merge_group([Contribution(low, 10, 0), Contribution(high, 20, 1)])
        assert merged.magnitude_or_intensity == 150

    def test_earliest_ingested_at(self):
        first = storm("a", 95)
        later = replace(storm("b", 95), ingested_at=first.ingested_at + timedelta(minutes=15))
        merged = merge_group([Contribution(later, 10, 0), Contribution(first, 20, 1)])
        assert merged.ingested_at == first.ingested_at

    def test_observed_at_skips_inferred(self):
        inferred = storm("a", 95, observed_at=T0 + timedelta(hours=2), details={"observed_at_inferred": True})
        timed = storm("b", 90, observed_at=T0)
        merged = merge_group([Contribution(inferred, 10, 0), Contribution(timed, 20, 1)])
        assert merged.observed_at == T0
        assert "observed_at_inferred" not in merged.details

    def test_details_filled_from_other_sources(self):
        pagasa = storm("pagasa_tc", 95, details={"signals_raised": [2]})
        feed = storm("tropical_storm_feed", 130, details={"advisory_number": "12"})
        merged = merge_group([Contribution(pagasa, 10, 0), Contribution(feed, 20, 1)])
        assert merged.details["advisory_number"] == "12"
        assert merged.details["signals_raised"] == [2]

    def test_url_falls_back_to_any_contribution(self):
        a = storm("a", 150)
        b = storm("b", 95, url="https://bulletin")
        merged = merge_group([Contribution(a, 10, 0), Contribution(b, 20, 1)])
        assert merged.url == "https://bulletin"

    def test_synthetic_flag_propagates(self):
        real = storm("a", 95)
        synthetic = replace(storm("b", 95), is_synthetic=True)
        assert merge_group([Contribution(real), Contribution(synthetic, order=1)]).is_synthetic


class TestMergeEvents:

    def test_one_event_per_key(self):
        events = [
            Contribution(storm("a", 95, key="storm:wpac:trami"), 10, 0),
            Contribution(storm("b", 130, key="storm:wpac:trami"), 20, 1),
            Contribution(storm("a", 70, key="storm:wpac:yinxing"), 10, 0),
        ]
        merged = merge_events(events)
        assert [e.identity_key for e in merged] == ["storm:wpac:trami", "storm:wpac:yinxing"]

    def test_no_contributions(self):
        assert merge_events([]) == []


class TestSortEvents:

    def test_severity_then_recency(self):
        old_high = make_event(intensity=6.5, key="a", observed_at=T0)
        new_high = make_event(intensity=6.1, key="b", observed_at=T0 + timedelta(hours=1))
        moderate = make_event(intensity=5.0, key="c", observed_at=T0 + timedelta(hours=2))
        ordered = sort_events([moderate, old_high, new_high])
        assert [e.identity_key for e in ordered] == ["b", "a", "c"]

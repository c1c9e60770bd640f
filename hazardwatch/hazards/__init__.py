"""
hazards — Canonical hazard event model and the normalizer that builds it.
"""

from .models import HazardEvent, Location, ProvisionalRecord, SYNTHETIC_SOURCE
from .normalizer import BelowFloodThreshold, normalize

__all__ = [
    "HazardEvent",
    "Location",
    "ProvisionalRecord",
    "SYNTHETIC_SOURCE",
    "BelowFloodThreshold",
    "normalize",
]

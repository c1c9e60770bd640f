"""
HazardWatch — Philippine natural-hazard aggregation and alerting service.

Collects earthquake, tropical-cyclone and flood events from several
unreliable upstream sources, normalizes and merges them, caches them with
stale fallback, and raises deduplicated notifications for subscribers.
"""

__version__ = "1.0.0"

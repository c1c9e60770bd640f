"""
alerts — Subscriber alert matching and notification deduplication.

Sub-modules:
    models   — Subscriber, Geofence, Notification
    matcher  — evaluates new hazard events against subscriber criteria
"""

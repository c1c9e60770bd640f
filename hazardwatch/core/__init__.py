"""
Core package — cross-cutting concerns.

Modules:
    config    — environment variables & settings
    logging   — structured JSON logging
    errors    — exception hierarchy & handlers
    health    — health check aggregation
    database  — async SQLAlchemy engine and sessions
    cache     — TTL cache with optional Redis mirror
    http      — shared httpx client factory
"""

"""
ingestion — Upstream source adapters.

Sub-modules:
    base                 — SourceAdapter contract and AdapterResult
    parsers              — strategy cascade for scraped markup
    phivolcs, usgs       — earthquake sources
    pagasa_storms,
    tropical_storm_feed  — tropical-cyclone sources
    open_meteo_flood,
    pagasa_flood         — flood sources
"""

"""
pipeline — Fetch orchestration, periodic scheduling and synthetic injection.
"""

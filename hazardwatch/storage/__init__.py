"""
storage — Repository interfaces plus in-memory and SQLAlchemy backends.
"""

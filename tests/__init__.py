"""
unistore Test Suite.

This package contains:
- unit/: Unit tests (query model, in-memory engine, datastore, container)
- integration/: Integration tests (SQLite engine on a temporary directory)
"""

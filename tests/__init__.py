"""
MfgLedger Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (service flows, SQLite, HTTP API)
"""

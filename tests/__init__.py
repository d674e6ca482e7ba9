"""
Feed Push Bridge Test Suite.

This package contains:
- unit/: Unit tests (no network, no listeners)
- integration/: Integration tests (connector with in-memory push client, aiohttp apps)
"""

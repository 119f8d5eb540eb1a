"""Realtime synchronization and local caching layer for a team messaging client."""

__version__ = "0.1.0"

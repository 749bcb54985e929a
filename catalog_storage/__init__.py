"""Persistence core for the schema catalog.

Typed records (Storables) stored through swappable SQL dialects, a
cache-backed storage manager in front of them, and an outbox processor
that replays catalog events against an external metadata graph.
"""

__version__ = "1.0.0"

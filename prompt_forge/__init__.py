"""
Prompt Forge: a versioned prompt store.

Every saved revision of a prompt becomes an immutable record in a local
SQLite store, grouped into branching lineages, with an ordered migration
mechanism that keeps the store's schema current.
"""

__version__ = "0.1.0"

"""SQLite persistence."""

from fieldcron.storage.store import SQLiteStore

__all__ = ["SQLiteStore"]

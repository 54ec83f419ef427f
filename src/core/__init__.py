# src/core/__init__.py
"""
Доменный слой (Core Domain).
In-memory состояние relay, независимое от транспорта.
"""

from src.core.cache import ChangeDetector, PresenceTracker, RecordStore

__all__ = [
    "ChangeDetector",
    "PresenceTracker",
    "RecordStore",
]

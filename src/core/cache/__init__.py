# src/core/cache/__init__.py
"""
In-memory кэш событий.
Хранилище категорий, присутствие пользователей, детектор изменений.
"""

from src.core.cache.changes import ChangeDetector
from src.core.cache.models import (
    CategoryView,
    MergeReport,
    PresenceEntry,
    Record,
    UserPresence,
    UserSnapshot,
)
from src.core.cache.policies import CategoryPolicy, PolicyRegistry
from src.core.cache.presence import PresenceTracker
from src.core.cache.store import RecordStore

__all__ = [
    "CategoryPolicy",
    "CategoryView",
    "ChangeDetector",
    "MergeReport",
    "PolicyRegistry",
    "PresenceEntry",
    "PresenceTracker",
    "Record",
    "RecordStore",
    "UserPresence",
    "UserSnapshot",
]

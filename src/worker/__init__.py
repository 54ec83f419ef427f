# src/worker/__init__.py
"""
Фоновые воркеры обслуживания in-memory кэша.
"""

from src.worker.maintenance import CacheMaintainer, SweepReport

__all__ = ["CacheMaintainer", "SweepReport"]

# src/shared/events/__init__.py
"""
События для доставки клиентам.
"""

from src.shared.events.base import EventMetadata, RelayEvent

__all__ = ["EventMetadata", "RelayEvent"]

# src/shared/events/base.py
"""
События, доставляемые клиентам через WebSocket, SSE и очередь опроса.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from src.common.constants import EventType


class EventMetadata(BaseModel):
    """Метаданные события для трассировки и дедупликации на клиенте."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RelayEvent(BaseModel):
    """
    Событие для доставки клиенту.

    Сериализуется в плоский JSON-объект через to_message().
    """

    type: EventType
    user_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: EventMetadata = Field(default_factory=EventMetadata)

    @property
    def event_id(self) -> str:
        """Уникальный идентификатор события."""
        return self.metadata.event_id

    def to_message(self) -> dict[str, Any]:
        """Сообщение для транспорта."""
        return {
            "type": self.type.value,
            "event_id": self.metadata.event_id,
            "timestamp": self.metadata.timestamp.isoformat().replace("+00:00", "Z"),
            "user_id": self.user_id,
            "data": self.data,
        }

    # === ФАБРИКИ ===

    @classmethod
    def connected(cls, user_id: str | None, transport: str) -> "RelayEvent":
        """Подтверждение установки соединения."""
        return cls(
            type=EventType.CONNECTED,
            user_id=user_id,
            data={"transport": transport, "scope": "user" if user_id else "global"},
        )

    @classmethod
    def data_update(cls, category: str, **data: Any) -> "RelayEvent":
        """Общее уведомление об изменении категории."""
        return cls(type=EventType.DATA_UPDATE, data={"category": category, **data})

    @classmethod
    def notification(cls, user_id: str, message: str, level: str = "info") -> "RelayEvent":
        """Уведомление для Mini App."""
        return cls(
            type=EventType.NOTIFICATION,
            user_id=user_id,
            data={"level": level, "message": message},
        )

# src/core/cache/models.py
"""
Модели данных in-memory кэша.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import MergeStrategy


# Поля, из которых берётся время создания записи (по приоритету)
TIMESTAMP_KEYS: tuple[str, ...] = ("timestamp", "created_at", "date")

# Значения больше этого порога считаются миллисекундами (Date.now() на фронтенде)
_EPOCH_MS_THRESHOLD = 10**11


def utcnow() -> datetime:
    """Текущее время в UTC."""
    return datetime.now(timezone.utc)


def normalize_user_id(user_id: int | str | None) -> str | None:
    """Приводит ID пользователя к строке (query-параметры и JSON дают разные типы)."""
    if user_id is None:
        return None
    value = str(user_id).strip()
    return value or None


def parse_timestamp(value: Any) -> datetime | None:
    """
    Разбирает метку времени из payload.

    Поддерживает datetime, ISO-строки (в т.ч. с суффиксом Z),
    UNIX-время в секундах и миллисекундах.
    Возвращает None, если значение не распознано.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > _EPOCH_MS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Record(BaseModel):
    """
    Одна запись категории.

    `id` — ключ дедупликации (строка), `data` — исходный payload без поля
    `timestamp`. Значение записи для сравнения — это id и data;
    метка времени в сравнение не входит.
    """

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    timestamp: datetime
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any], received_at: datetime) -> "Record":
        """Создаёт запись из входящего словаря."""
        body = copy.deepcopy(payload)

        raw_id = body.get("id")
        record_id = None if raw_id is None or raw_id == "" else str(raw_id)
        if record_id is not None:
            # В data хранится тот же нормализованный id, что и в Record.id
            body["id"] = record_id

        timestamp = None
        for key in TIMESTAMP_KEYS:
            timestamp = parse_timestamp(body.get(key))
            if timestamp is not None:
                break

        body.pop("timestamp", None)
        return cls(id=record_id, timestamp=timestamp or received_at, data=body)

    def same_value(self, other: "Record") -> bool:
        """Глубокое сравнение значений (без учёта времени)."""
        return self.id == other.id and self.data == other.data

    def to_dict(self) -> dict[str, Any]:
        """Представление записи для API."""
        result = copy.deepcopy(self.data)
        result["timestamp"] = self.timestamp.isoformat()
        return result


class UserSnapshot(BaseModel):
    """Полный срез данных пользователя, присылаемый ботом."""

    model_config = ConfigDict(extra="allow")

    orders_count: int = Field(0, ge=0)
    messages_count: int = Field(0, ge=0)
    orders: list[dict[str, Any]] = Field(default_factory=list)


class CategoryView(BaseModel):
    """Текущее содержимое категории."""

    category: str
    strategy: MergeStrategy
    items: list[dict[str, Any]] | None = None
    value: Any = None
    count: int = 0


@dataclass
class MergeReport:
    """Итог пакетной записи в категорию."""
    category: str
    strategy: MergeStrategy
    received: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    count: int = 0

    @property
    def changed(self) -> bool:
        """Изменилось ли содержимое категории."""
        return self.created > 0 or self.updated > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "strategy": self.strategy.value,
            "received": self.received,
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "count": self.count,
        }


@dataclass
class UserPresence:
    """Состояние присутствия пользователя."""
    user_id: str
    registered_at: datetime
    last_seen: datetime
    snapshot: UserSnapshot | None = None
    snapshot_at: datetime | None = None
    profile: dict[str, Any] = field(default_factory=dict)
    last_payload_type: str | None = None


@dataclass(frozen=True)
class PresenceEntry:
    """Элемент списка активности с вычисленным флагом is_active."""
    user_id: str
    registered_at: datetime
    last_seen: datetime
    is_active: bool
    has_snapshot: bool
    profile: dict[str, Any] = field(default_factory=dict)
    last_payload_type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "registered_at": self.registered_at.isoformat(),
            "last_seen": self.last_seen.isoformat(),
            "is_active": self.is_active,
            "has_snapshot": self.has_snapshot,
            "profile": copy.deepcopy(self.profile),
            "last_payload_type": self.last_payload_type,
        }

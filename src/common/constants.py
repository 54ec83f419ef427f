# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class MergeStrategy(str, Enum):
    """Политика слияния данных категории."""
    UNION_BY_ID = "union-by-id"
    REPLACE = "replace"
    SCALAR = "scalar"


class UpsertOutcome(str, Enum):
    """Результат записи одной записи в хранилище."""
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    UNKNOWN_CATEGORY = "unknown_category"


class EventType(str, Enum):
    """Типы событий, доставляемых клиентам."""
    CONNECTED = "connected"
    DATA_UPDATE = "data_update"
    DATA_READY = "data_ready"
    NEW_ORDERS = "new_orders"
    NEW_MESSAGES = "new_messages"
    STATUS_CHANGES = "status_changes"
    NOTIFICATION = "notification"


class DeliveryStatus(str, Enum):
    """Статус исходящего вызова Telegram Bot API."""
    DELIVERED = "delivered"
    FAILED = "failed"


# Ключ глобальной области подписки (канал без пользователя)
GLOBAL_SCOPE = "__global__"

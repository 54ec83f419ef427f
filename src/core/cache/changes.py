# src/core/cache/changes.py
"""
Вычисление событий по разнице двух срезов данных пользователя.
"""

from __future__ import annotations

import copy
from typing import Any

from src.common.constants import EventType
from src.core.cache.models import UserSnapshot, normalize_user_id
from src.shared.events import RelayEvent


def _order_key(order: dict[str, Any]) -> str | None:
    raw = order.get("id", order.get("order_id"))
    return None if raw is None else str(raw)


class ChangeDetector:
    """
    Сравнивает предыдущий и новый срез пользователя.

    Порядок событий фиксирован: new_orders, new_messages, status_changes.
    При первом наблюдении выдаётся только data_ready.
    """

    def __init__(self, status_field: str = "status") -> None:
        self._status_field = status_field

    def detect(
        self,
        user_id: int | str,
        previous: UserSnapshot | None,
        new: UserSnapshot | None,
    ) -> list[RelayEvent]:
        uid = normalize_user_id(user_id)
        if new is None:
            return []

        if previous is None:
            return [
                RelayEvent(
                    type=EventType.DATA_READY,
                    user_id=uid,
                    data={
                        "orders_count": new.orders_count,
                        "messages_count": new.messages_count,
                    },
                )
            ]

        events: list[RelayEvent] = []

        new_orders = new.orders_count - previous.orders_count
        if new_orders > 0:
            events.append(RelayEvent(
                type=EventType.NEW_ORDERS,
                user_id=uid,
                data={"count": new_orders, "orders": copy.deepcopy(new.orders)},
            ))

        new_messages = new.messages_count - previous.messages_count
        if new_messages > 0:
            data: dict[str, Any] = {"count": new_messages}
            messages = (new.model_extra or {}).get("messages")
            if isinstance(messages, list):
                data["messages"] = copy.deepcopy(messages)
            events.append(RelayEvent(type=EventType.NEW_MESSAGES, user_id=uid, data=data))

        changes = self.status_changes(previous.orders, new.orders)
        if changes:
            events.append(RelayEvent(
                type=EventType.STATUS_CHANGES,
                user_id=uid,
                data={"changes": changes},
            ))

        return events

    def status_changes(
        self,
        old_orders: list[dict[str, Any]],
        new_orders: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        """Смена статуса у заказов, присутствующих в обоих списках."""
        old_status: dict[str, Any] = {}
        for order in old_orders:
            key = _order_key(order)
            if key is not None:
                old_status[key] = order.get(self._status_field)

        changes: list[dict[str, Any]] = []
        for order in new_orders:
            key = _order_key(order)
            if key is None or key not in old_status:
                continue
            status = order.get(self._status_field)
            if status != old_status[key]:
                changes.append({
                    "order_id": order.get("id", order.get("order_id")),
                    "old_status": old_status[key],
                    "new_status": status,
                })
        return changes

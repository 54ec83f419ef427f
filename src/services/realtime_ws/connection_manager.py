# src/services/realtime_ws/connection_manager.py
"""
Реестр каналов доставки и рассылка событий.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any

from src.common.constants import GLOBAL_SCOPE
from src.common.logger import get_logger
from src.core.cache.models import normalize_user_id
from src.services.realtime_ws.channels import DeliveryChannel
from src.shared.events import RelayEvent

logger = get_logger("realtime")


@dataclass
class PublishReport:
    """Итог одной рассылки."""
    delivered: int = 0
    failed: int = 0
    queued: bool = False
    removed: list[str] = field(default_factory=list)


class Broadcaster:
    """
    Менеджер каналов доставки.

    Поддерживает:
    - Несколько каналов на пользователя (вкладки, устройства)
    - Глобальные каналы (без пользователя)
    - Очередь ожидания на пользователя, если живых каналов нет
    - Удаление канала при первой ошибке отправки
    """

    def __init__(self, pending_queue_max: int = 100) -> None:
        # scope (user_id или GLOBAL_SCOPE) -> channel_id -> канал
        self._channels: dict[str, dict[str, DeliveryChannel]] = {}

        # user_id -> неотправленные сообщения
        self._pending: dict[str, deque[dict[str, Any]]] = {}
        self._pending_max = pending_queue_max

        # Для статистики
        self._total_channels: int = 0
        self._total_messages_sent: int = 0
        self._total_failed_sends: int = 0

    @staticmethod
    def _scope(user_id: int | str | None) -> str:
        uid = normalize_user_id(user_id)
        return uid if uid is not None else GLOBAL_SCOPE

    # =========================================================================
    # РЕГИСТРАЦИЯ
    # =========================================================================

    def subscribe(self, user_id: int | str | None, channel: DeliveryChannel) -> None:
        """Зарегистрировать канал пользователя (или глобальный при user_id=None)."""
        scope = self._scope(user_id)
        channel.scope = scope
        self._channels.setdefault(scope, {})[channel.channel_id] = channel
        self._total_channels += 1
        logger.debug("Канал %s подписан на %s", channel.channel_id, scope)

    def unsubscribe(self, channel: DeliveryChannel) -> bool:
        """
        Удалить канал из реестра.

        Returns:
            True если канал был зарегистрирован
        """
        scope = channel.scope
        if scope is None or scope not in self._channels:
            return False

        channels = self._channels[scope]
        removed = channels.pop(channel.channel_id, None) is not None
        if not channels:
            del self._channels[scope]
        if removed:
            logger.debug("Канал %s отписан от %s", channel.channel_id, scope)
        return removed

    def channels_for(self, user_id: int | str | None) -> list[DeliveryChannel]:
        """Снимок каналов пользователя (или глобальных)."""
        return list(self._channels.get(self._scope(user_id), {}).values())

    def has_live_channel(self, user_id: int | str) -> bool:
        uid = normalize_user_id(user_id)
        return uid is not None and bool(self._channels.get(uid))

    # =========================================================================
    # РАССЫЛКА
    # =========================================================================

    async def publish(
        self,
        user_id: int | str,
        event: RelayEvent,
        *,
        include_global: bool = False,
    ) -> PublishReport:
        """
        Отправить событие во все живые каналы пользователя.

        Без живых каналов событие кладётся в очередь ожидания. Ошибка
        одного канала удаляет его из реестра и не прерывает рассылку.
        """
        uid = normalize_user_id(user_id)
        if uid is None:
            raise ValueError("user_id обязателен")

        message = event.to_message()
        targets = self.channels_for(uid)
        report = PublishReport()

        if not targets:
            self._enqueue(uid, message)
            report.queued = True

        if include_global:
            targets.extend(self.channels_for(None))

        await self._deliver(targets, message, report)
        return report

    async def publish_global(self, event: RelayEvent) -> PublishReport:
        """Отправить событие во все глобальные каналы."""
        report = PublishReport()
        await self._deliver(self.channels_for(None), event.to_message(), report)
        return report

    async def _deliver(
        self,
        targets: list[DeliveryChannel],
        message: dict[str, Any],
        report: PublishReport,
    ) -> None:
        for channel in targets:
            try:
                await channel.send(message)
            except Exception as e:
                self.unsubscribe(channel)
                report.failed += 1
                report.removed.append(channel.channel_id)
                self._total_failed_sends += 1
                logger.debug("Канал %s удалён после ошибки отправки: %r", channel.channel_id, e)
            else:
                report.delivered += 1
                self._total_messages_sent += 1

    # =========================================================================
    # ОЧЕРЕДЬ ОЖИДАНИЯ
    # =========================================================================

    def _enqueue(self, user_id: str, message: dict[str, Any]) -> None:
        queue = self._pending.get(user_id)
        if queue is None:
            queue = deque(maxlen=self._pending_max)
            self._pending[user_id] = queue
        queue.append(message)

    def drain_queue(self, user_id: int | str) -> list[dict[str, Any]]:
        """Вернуть и очистить очередь ожидания пользователя."""
        uid = normalize_user_id(user_id)
        if uid is None:
            return []
        return list(self._pending.pop(uid, ()))

    def discard_queue(self, user_id: int | str) -> int:
        """Удалить очередь без доставки. Возвращает число потерянных сообщений."""
        uid = normalize_user_id(user_id)
        return len(self._pending.pop(uid, ())) if uid else 0

    def pending_count(self, user_id: int | str) -> int:
        uid = normalize_user_id(user_id)
        return len(self._pending.get(uid, ())) if uid else 0

    # =========================================================================
    # ЗАКРЫТИЕ
    # =========================================================================

    async def close_user(self, user_id: int | str) -> int:
        """
        Снять с регистрации и закрыть все каналы пользователя.

        Returns:
            Количество закрытых каналов
        """
        uid = normalize_user_id(user_id)
        if uid is None:
            return 0
        channels = list(self._channels.pop(uid, {}).values())
        for channel in channels:
            await self._close_channel(channel)
        return len(channels)

    async def close_all(self) -> int:
        """Закрыть все каналы (остановка приложения)."""
        registry, self._channels = self._channels, {}
        closed = 0
        for channels in registry.values():
            for channel in channels.values():
                await self._close_channel(channel)
                closed += 1
        return closed

    async def _close_channel(self, channel: DeliveryChannel) -> None:
        try:
            await channel.close()
        except Exception as e:
            logger.debug("Ошибка закрытия канала %s: %r", channel.channel_id, e)

    # =========================================================================
    # СТАТИСТИКА
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        """Получить статистику."""
        return {
            "active_channels": sum(len(c) for c in self._channels.values()),
            "global_channels": len(self._channels.get(GLOBAL_SCOPE, {})),
            "users_connected": len([s for s in self._channels if s != GLOBAL_SCOPE]),
            "pending_queues": len(self._pending),
            "pending_messages": sum(len(q) for q in self._pending.values()),
            "total_channels_ever": self._total_channels,
            "total_messages_sent": self._total_messages_sent,
            "total_failed_sends": self._total_failed_sends,
            "channels_by_transport": self._count_by_transport(),
        }

    def _count_by_transport(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for channels in self._channels.values():
            for channel in channels.values():
                counts[channel.transport] = counts.get(channel.transport, 0) + 1
        return counts

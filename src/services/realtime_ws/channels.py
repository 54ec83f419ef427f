# src/services/realtime_ws/channels.py
"""
Каналы доставки событий: WebSocket и очередь для SSE-потока.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import WebSocket

from src.common.logger import get_logger

logger = get_logger("realtime")


class ChannelClosedError(Exception):
    """Запись в закрытый канал."""
    pass


class DeliveryChannel(ABC):
    """
    Открытый транспорт доставки.

    Транспорт принадлежит обработчику соединения; Broadcaster владеет
    только регистрацией канала.
    """

    transport: str = "unknown"

    def __init__(self) -> None:
        self.channel_id: str = uuid4().hex
        self.scope: str | None = None
        self.connected_at: datetime = datetime.now(timezone.utc)
        self.closed: bool = False

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        """Отправить сообщение. Любое исключение означает мёртвый канал."""

    @abstractmethod
    async def close(self) -> None:
        """Закрыть транспорт."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.channel_id} scope={self.scope}>"


class WebSocketChannel(DeliveryChannel):
    """Канал поверх принятого FastAPI WebSocket."""

    transport = "websocket"

    def __init__(self, websocket: WebSocket) -> None:
        super().__init__()
        self.websocket = websocket

    async def send(self, message: dict[str, Any]) -> None:
        if self.closed:
            raise ChannelClosedError(self.channel_id)
        await self.websocket.send_json(message)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self.websocket.close()
        except RuntimeError as e:
            # Соединение уже закрыто клиентом
            logger.debug("WebSocket %s уже закрыт: %s", self.channel_id, e)


class QueueChannel(DeliveryChannel):
    """
    Канал с ограниченной очередью, которую вычитывает SSE-поток.

    Переполнение очереди (медленный клиент) считается ошибкой отправки.
    """

    transport = "sse"

    def __init__(self, maxsize: int = 50) -> None:
        super().__init__()
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(maxsize=maxsize)

    async def send(self, message: dict[str, Any]) -> None:
        if self.closed:
            raise ChannelClosedError(self.channel_id)
        self._queue.put_nowait(message)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Сигнал завершения потока; при полной очереди вытесняем старое сообщение
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(None)

    async def get(self) -> dict[str, Any] | None:
        """Следующее сообщение или None, если канал закрыт."""
        return await self._queue.get()

    def qsize(self) -> int:
        return self._queue.qsize()


def format_sse(message: dict[str, Any]) -> str:
    """Форматирует сообщение в кадр Server-Sent Events."""
    data = json.dumps(message, ensure_ascii=False, default=str)
    event = message.get("type")
    if event:
        return f"event: {event}\ndata: {data}\n\n"
    return f"data: {data}\n\n"

# src/services/realtime_ws/routes.py
"""
Долгоживущие каналы доставки.

WebSocket endpoints:
- /ws?user_id=... — поток пользователя (без user_id — глобальный)

SSE endpoints:
- GET /events — глобальный поток
- GET /events/{user_id} — поток пользователя

Входящие WebSocket-сообщения:
- любое сообщение считается heartbeat
- {"action": "ping"} — ответ {"type": "pong"}
- {"action": "poll"} — досылка очереди ожидания
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from src.common.constants import TypeMsg
from src.common.logger import log_info
from src.config.loader import Settings
from src.core.cache.models import normalize_user_id
from src.services.realtime_ws.channels import QueueChannel, WebSocketChannel, format_sse
from src.services.relay.dependencies import get_relay_service, get_settings_dep
from src.services.relay.service import RelayService

router = APIRouter(tags=["Realtime"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# === WEBSOCKET ===

@router.websocket("/ws")
async def websocket_stream(
    websocket: WebSocket,
    user_id: str | None = Query(default=None),
    service: RelayService = Depends(get_relay_service),
) -> None:
    """WebSocket-поток событий пользователя или глобальный."""
    await websocket.accept()
    channel = WebSocketChannel(websocket)
    # Пустой или пробельный user_id означает глобальный поток
    user_id = normalize_user_id(user_id)

    try:
        await service.open_channel(user_id, channel)
        await log_info(f"WebSocket подключен: user={user_id}", type_msg=TypeMsg.DEBUG)

        while True:
            raw = await websocket.receive_text()
            await _handle_client_message(service, channel, user_id, raw)

    except WebSocketDisconnect:
        pass
    except RuntimeError as e:
        # Канал закрыт сервером (очистка неактивных пользователей)
        await log_info(f"WebSocket {channel.channel_id} закрыт: {e}", type_msg=TypeMsg.DEBUG)
    finally:
        service.close_channel(channel)
        channel.closed = True
        await log_info(f"WebSocket отключен: user={user_id}", type_msg=TypeMsg.DEBUG)


async def _handle_client_message(
    service: RelayService,
    channel: WebSocketChannel,
    user_id: str | None,
    raw: str,
) -> None:
    """Обработать сообщение от клиента."""
    if user_id:
        service.heartbeat(user_id)

    try:
        data: Any = json.loads(raw)
    except json.JSONDecodeError:
        return

    action = data.get("action") if isinstance(data, dict) else None

    if action == "ping":
        await channel.send({"type": "pong"})

    elif action == "poll" and user_id:
        for message in service.poll(user_id):
            await channel.send(message)


# === SSE ===

async def event_stream(
    service: RelayService,
    channel: QueueChannel,
    user_id: str | None,
    *,
    keepalive: float,
    is_disconnected: Callable[[], Awaitable[bool]],
) -> AsyncIterator[str]:
    """
    Генератор кадров SSE для канала.

    По таймауту отправляет комментарий keepalive и обновляет присутствие.
    Завершается при закрытии канала или отключении клиента.
    """
    user_id = normalize_user_id(user_id)
    await service.open_channel(user_id, channel)
    try:
        while True:
            if await is_disconnected():
                break
            try:
                message = await asyncio.wait_for(channel.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                if user_id:
                    service.heartbeat(user_id)
                yield ": keepalive\n\n"
                continue

            if message is None:
                break
            yield format_sse(message)
    finally:
        service.close_channel(channel)
        channel.closed = True


def _sse_response(
    request: Request,
    service: RelayService,
    settings: Settings,
    user_id: str | None,
) -> StreamingResponse:
    # Очередь вмещает досылку очереди ожидания при подключении
    channel = QueueChannel(maxsize=settings.cache.SSE_QUEUE_SIZE + settings.cache.PENDING_QUEUE_MAX)
    stream = event_stream(
        service,
        channel,
        user_id,
        keepalive=settings.cache.SSE_KEEPALIVE_INTERVAL,
        is_disconnected=request.is_disconnected,
    )
    return StreamingResponse(stream, media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/events")
async def global_events(
    request: Request,
    service: RelayService = Depends(get_relay_service),
    settings: Settings = Depends(get_settings_dep),
) -> StreamingResponse:
    """Глобальный SSE-поток (изменения категорий)."""
    return _sse_response(request, service, settings, None)


@router.get("/events/{user_id}")
async def user_events(
    user_id: str,
    request: Request,
    service: RelayService = Depends(get_relay_service),
    settings: Settings = Depends(get_settings_dep),
) -> StreamingResponse:
    """SSE-поток событий пользователя."""
    return _sse_response(request, service, settings, user_id)

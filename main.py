#!/usr/bin/env python3
# main.py
"""
Главная точка входа Mini App Relay.
Запускает HTTP/WebSocket сервер relay через uvicorn.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from src.config import settings
from src.common.logger import setup_logging, log_info, log_error
from src.common.constants import TypeMsg


# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None
_running_tasks: list[asyncio.Task] = []


def setup_signal_handlers() -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        """Обработчик сигналов SIGINT и SIGTERM."""
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()
            for task in _running_tasks:
                if not task.done():
                    task.cancel()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def run_relay() -> None:
    """Запускает relay-сервер (REST, SSE, WebSocket)."""
    import uvicorn

    host = settings.deployment.RELAY_HOST
    port = settings.deployment.RELAY_PORT
    await log_info(f"Запуск Mini App Relay на {host}:{port}...", type_msg=TypeMsg.INFO)

    if not settings.telegram.BOT_TOKEN:
        await log_info(
            "BOT_TOKEN не задан: ответы через Bot API будут возвращать failed",
            type_msg=TypeMsg.WARNING,
        )

    config = uvicorn.Config(
        "src.services.relay.app:app",
        host=host,
        port=port,
        log_level="debug" if settings.system.DEBUG else "info",
    )

    server = uvicorn.Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        await log_info("Relay: graceful shutdown", type_msg=TypeMsg.DEBUG)
        await server.shutdown()


async def main() -> None:
    """Главная функция запуска."""
    setup_logging()
    setup_signal_handlers()

    await log_info(
        f"{settings.system.PROJECT_NAME} v{settings.system.VERSION} — запуск",
        type_msg=TypeMsg.INFO,
    )

    relay_task = asyncio.create_task(run_relay())
    _running_tasks.append(relay_task)

    try:
        await relay_task
    except asyncio.CancelledError:
        await log_info("Задача отменена, выполняется graceful shutdown", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Критическая ошибка: {e}", exc_info=True)
        raise
    finally:
        for task in _running_tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*_running_tasks, return_exceptions=True)
        _running_tasks.clear()
        await log_info("Приложение остановлено", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    """Выводит справку по использованию."""
    print(f"""
Mini App Relay v{settings.system.VERSION} — relay между Telegram Mini App и ботом

Использование:
    python main.py

Переменные окружения:
    BOT_TOKEN              — токен бота для answerWebAppQuery и sendMessage
    ADMIN_ID               — чат для payload без queryId
    HOST, PORT             — адрес сервера (по умолчанию 0.0.0.0:3000)
    PUBLIC_STATIC_URL      — хостинг статики Mini App
    TUNNEL_URL             — публичный URL API
    """)


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1].lower() in ("--help", "-h"):
        print_usage()
        sys.exit(0)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass

# src/services/__init__.py
"""
Сервисы приложения.

Сервисы:
- relay: HTTP API, приём данных из Mini App и от бота
- realtime_ws: каналы доставки событий (WebSocket, SSE) и рассылка
"""

__all__: list[str] = []

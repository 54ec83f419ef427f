# src/services/realtime_ws/__init__.py
"""
Доставка событий в реальном времени.

Обеспечивает:
- Реестр каналов доставки (WebSocket, SSE) по пользователям
- Глобальные каналы для изменений категорий
- Очередь ожидания для пользователей без живых каналов
"""

# src/services/relay/__init__.py
"""
Relay между Telegram Mini App и ботом.

Обеспечивает:
- Приём данных из Mini App и ответ через WebApp Query
- Приём данных и срезов пользователей от бота
- Выдачу данных через REST, опрос очереди, SSE и WebSocket
"""

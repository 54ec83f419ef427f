# src/shared/__init__.py
"""
Общий код сервисов.

Модули:
- events: события для доставки клиентам
- models: общие модели ответов HTTP API
"""

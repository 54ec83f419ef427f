# src/common/exceptions.py
"""
Исключения уровня приложения.
HTTP-слой отображает их в ответы с кодом 400.
"""

from __future__ import annotations


class RelayError(Exception):
    """Базовая ошибка relay-сервера."""

    error_code: str = "relay_error"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(RelayError):
    """Отсутствуют обязательные поля запроса."""

    error_code = "bad_request"


class UnknownCategoryError(RelayError):
    """Категория не входит в зарегистрированный набор."""

    error_code = "unknown_type"

    def __init__(self, category: str) -> None:
        super().__init__(f"Неизвестная категория: {category}", {"category": category})
        self.category = category

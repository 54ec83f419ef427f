# src/core/cache/policies.py
"""
Декларативные политики категорий.

Каждая категория явно объявляет стратегию слияния — она не выводится
из формы payload.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator

from src.common.constants import MergeStrategy
from src.common.exceptions import UnknownCategoryError


@dataclass(frozen=True)
class CategoryPolicy:
    """Политика одной категории."""
    name: str
    strategy: MergeStrategy

    @property
    def is_scalar(self) -> bool:
        """Хранит ли категория одно значение вместо списка записей."""
        return self.strategy == MergeStrategy.SCALAR

    def empty_value(self) -> Any:
        """Пустое значение категории."""
        return None if self.is_scalar else []


# Политики по умолчанию
DEFAULT_POLICIES: dict[str, MergeStrategy] = {
    "updates": MergeStrategy.UNION_BY_ID,
    "reviews": MergeStrategy.UNION_BY_ID,
    "requests": MergeStrategy.UNION_BY_ID,
    "chat_messages": MergeStrategy.UNION_BY_ID,
    "orders": MergeStrategy.REPLACE,
    "rating": MergeStrategy.SCALAR,
}


class PolicyRegistry:
    """Фиксированный набор категорий с их политиками."""

    def __init__(self, policies: list[CategoryPolicy]) -> None:
        self._policies: dict[str, CategoryPolicy] = {p.name: p for p in policies}

    @classmethod
    def from_mapping(cls, overrides: dict[str, str] | None = None) -> "PolicyRegistry":
        """
        Создаёт реестр из политик по умолчанию и переопределений конфига.

        Args:
            overrides: {"category": "union-by-id" | "replace" | "scalar"}

        Raises:
            ValueError: если стратегия не распознана
        """
        strategies = dict(DEFAULT_POLICIES)
        for name, strategy in (overrides or {}).items():
            strategies[name] = MergeStrategy(strategy)
        return cls([CategoryPolicy(name, strategy) for name, strategy in strategies.items()])

    def get(self, name: str) -> CategoryPolicy | None:
        return self._policies.get(name)

    def require(self, name: str | None) -> CategoryPolicy:
        """Возвращает политику или бросает UnknownCategoryError."""
        policy = self._policies.get(name) if name else None
        if policy is None:
            raise UnknownCategoryError(str(name))
        return policy

    def names(self) -> list[str]:
        return list(self._policies)

    def sequence_categories(self) -> list[str]:
        """Категории, хранящие списки записей."""
        return [p.name for p in self._policies.values() if not p.is_scalar]

    def __contains__(self, name: object) -> bool:
        return name in self._policies

    def __iter__(self) -> Iterator[CategoryPolicy]:
        return iter(list(self._policies.values()))

    def __len__(self) -> int:
        return len(self._policies)

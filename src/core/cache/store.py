# src/core/cache/store.py
"""
In-memory хранилище записей по категориям.

Все мутации синхронные: новое значение категории вычисляется целиком
и присваивается одной операцией, поэтому конкурентные обработчики
event loop никогда не видят частично изменённую категорию.
"""

from __future__ import annotations

import copy
import itertools
from collections.abc import Callable
from datetime import datetime
from typing import Any

from src.common.constants import MergeStrategy, UpsertOutcome
from src.common.logger import get_logger
from src.core.cache.merge import union_by_id
from src.core.cache.models import CategoryView, MergeReport, Record, utcnow
from src.core.cache.policies import PolicyRegistry

logger = get_logger("cache")


class RecordStore:
    """
    Хранилище категорий.

    Категория — либо упорядоченный список Record, либо одно скалярное значение
    (в зависимости от политики). Набор категорий фиксирован реестром политик.
    """

    def __init__(
        self,
        policies: PolicyRegistry,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._policies = policies
        self._clock = clock
        self._ids = itertools.count(1)
        self._data: dict[str, Any] = self._empty_state()

    @property
    def policies(self) -> PolicyRegistry:
        return self._policies

    def _empty_state(self) -> dict[str, Any]:
        return {policy.name: policy.empty_value() for policy in self._policies}

    def now(self) -> datetime:
        """Текущее время по часам хранилища."""
        return self._clock()

    def next_id(self) -> int:
        """Монотонный генератор идентификаторов."""
        return next(self._ids)

    # =========================================================================
    # ЗАПИСЬ
    # =========================================================================

    def upsert_one(self, category: str, record: Record) -> UpsertOutcome:
        """
        Добавляет или обновляет одну запись.

        Запись без id всегда добавляется. Запись с известным id заменяет
        сохранённую только если значение отличается. Неизвестная категория
        только логируется.
        """
        policy = self._policies.get(category)
        if policy is None:
            logger.warning("upsert в неизвестную категорию %r отклонён", category)
            return UpsertOutcome.UNKNOWN_CATEGORY

        if policy.is_scalar:
            if self._data[category] == record.data:
                return UpsertOutcome.UNCHANGED
            self._data[category] = copy.deepcopy(record.data)
            logger.debug("Категория %s: скалярное значение обновлено", category)
            return UpsertOutcome.UPDATED

        items: list[Record] = self._data[category]
        if record.id is not None:
            for pos, existing in enumerate(items):
                if existing.id != record.id:
                    continue
                if existing.same_value(record):
                    return UpsertOutcome.UNCHANGED
                new_items = list(items)
                new_items[pos] = record
                self._data[category] = new_items
                logger.debug("Категория %s: запись %s обновлена", category, record.id)
                return UpsertOutcome.UPDATED

        self._data[category] = [*items, record]
        return UpsertOutcome.CREATED

    def merge_batch(self, category: str, records: list[Record]) -> MergeReport:
        """
        Пакетная запись согласно политике категории.

        - union-by-id: объединение по id, новее побеждает
        - replace: коллекция заменяется пакетом целиком
        - scalar: значение заменяется data последней записи пакета

        Raises:
            UnknownCategoryError: категория не зарегистрирована
        """
        policy = self._policies.require(category)
        report = MergeReport(category=category, strategy=policy.strategy, received=len(records))

        if policy.strategy == MergeStrategy.SCALAR:
            value = records[-1].data if records else None
            return self._assign_scalar(category, value, report)

        if policy.strategy == MergeStrategy.REPLACE:
            new_items = list(records)
            report.created = len(new_items)
        else:
            merged = union_by_id(self._data[category], records)
            new_items = merged.records
            report.created = merged.created
            report.updated = merged.updated
            report.unchanged = merged.unchanged

        self._data[category] = new_items
        report.count = len(new_items)
        logger.debug(
            "Категория %s (%s): +%d ~%d =%d, всего %d",
            category, policy.strategy.value, report.created, report.updated,
            report.unchanged, report.count,
        )
        return report

    def set_scalar(self, category: str, value: Any) -> MergeReport:
        """
        Устанавливает значение скалярной категории.

        Raises:
            UnknownCategoryError: категория не зарегистрирована
            ValueError: категория хранит список записей
        """
        policy = self._policies.require(category)
        if not policy.is_scalar:
            raise ValueError(f"Категория {category} не является скалярной")
        report = MergeReport(category=category, strategy=policy.strategy, received=1)
        return self._assign_scalar(category, value, report)

    def _assign_scalar(self, category: str, value: Any, report: MergeReport) -> MergeReport:
        if self._data[category] == value:
            report.unchanged = 1
        else:
            self._data[category] = copy.deepcopy(value)
            report.updated = 1
        report.count = 0 if self._data[category] is None else 1
        return report

    def transform(self, category: str, fn: Callable[[list[Record]], list[Record]]) -> tuple[int, int]:
        """
        Применяет функцию к снимку списочной категории и публикует результат.

        Returns:
            (длина до, длина после)
        """
        policy = self._policies.require(category)
        if policy.is_scalar:
            raise ValueError(f"Категория {category} не является списочной")
        snapshot = list(self._data[category])
        new_items = fn(snapshot)
        self._data[category] = list(new_items)
        return len(snapshot), len(new_items)

    def clear(self, category: str | None = None) -> list[str]:
        """
        Сбрасывает одну категорию или все.

        Returns:
            Список очищенных категорий

        Raises:
            UnknownCategoryError: категория не зарегистрирована
        """
        if category is None:
            self._data = self._empty_state()
            logger.info("Все категории очищены")
            return self._policies.names()

        policy = self._policies.require(category)
        self._data[category] = policy.empty_value()
        logger.info("Категория %s очищена", category)
        return [category]

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    def records(self, category: str) -> list[Record]:
        """Снимок записей списочной категории."""
        policy = self._policies.require(category)
        if policy.is_scalar:
            return []
        return list(self._data[category])

    def get_category(self, category: str) -> CategoryView:
        """
        Текущее содержимое категории; count вычисляется, а не хранится.

        Raises:
            UnknownCategoryError: категория не зарегистрирована
        """
        policy = self._policies.require(category)
        current = self._data[category]

        if policy.is_scalar:
            return CategoryView(
                category=category,
                strategy=policy.strategy,
                value=copy.deepcopy(current),
                count=0 if current is None else 1,
            )

        return CategoryView(
            category=category,
            strategy=policy.strategy,
            items=[record.to_dict() for record in current],
            count=len(current),
        )

    def count(self, category: str) -> int:
        policy = self._policies.require(category)
        current = self._data[category]
        if policy.is_scalar:
            return 0 if current is None else 1
        return len(current)

    def stats(self) -> dict[str, int]:
        """Количество записей по категориям."""
        return {name: self.count(name) for name in self._policies.names()}

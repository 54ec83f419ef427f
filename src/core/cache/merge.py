# src/core/cache/merge.py
"""
Чистые функции слияния и очистки списков записей.

Правило разрешения по id общее для приёма данных и для фоновой
дедупликации: побеждает запись с более поздним timestamp,
при равенстве остаётся уже сохранённая. Записи без id всегда уникальны.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from src.core.cache.models import Record


@dataclass
class UnionResult:
    """Результат объединения по id."""
    records: list[Record]
    created: int = 0
    updated: int = 0
    unchanged: int = 0


def union_by_id(existing: list[Record], incoming: list[Record]) -> UnionResult:
    """
    Объединяет входящие записи с существующими.

    Совпавшие по id записи заменяются на месте, если входящая новее;
    остальные добавляются в конец в порядке поступления.
    """
    result = UnionResult(records=list(existing))
    index: dict[str, int] = {}
    for pos, record in enumerate(result.records):
        if record.id is not None and record.id not in index:
            index[record.id] = pos

    for record in incoming:
        if record.id is None:
            result.records.append(record)
            result.created += 1
            continue

        pos = index.get(record.id)
        if pos is None:
            index[record.id] = len(result.records)
            result.records.append(record)
            result.created += 1
            continue

        current = result.records[pos]
        if record.timestamp > current.timestamp:
            result.records[pos] = record
            if current.same_value(record):
                result.unchanged += 1
            else:
                result.updated += 1
        else:
            result.unchanged += 1

    return result


def dedupe_records(records: list[Record]) -> list[Record]:
    """
    Схлопывает записи с одинаковым id, оставляя самую новую.

    Победитель занимает позицию первого вхождения.
    """
    result: list[Record] = []
    index: dict[str, int] = {}
    for record in records:
        if record.id is None:
            result.append(record)
            continue

        pos = index.get(record.id)
        if pos is None:
            index[record.id] = len(result)
            result.append(record)
        elif record.timestamp > result[pos].timestamp:
            result[pos] = record
    return result


def drop_expired(records: list[Record], cutoff: datetime) -> list[Record]:
    """Удаляет записи старше cutoff."""
    return [r for r in records if r.timestamp >= cutoff]


def cap_records(records: list[Record], max_length: int) -> list[Record]:
    """
    Ограничивает длину списка, выбрасывая самые старые по timestamp.

    Относительный порядок оставшихся записей сохраняется.
    """
    excess = len(records) - max_length
    if excess <= 0:
        return list(records)

    oldest_first = sorted(range(len(records)), key=lambda i: (records[i].timestamp, i))
    dropped = set(oldest_first[:excess])
    return [r for i, r in enumerate(records) if i not in dropped]

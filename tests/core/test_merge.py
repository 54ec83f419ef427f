# tests/core/test_merge.py
"""
Тесты для функций слияния и очистки списков записей.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.core.cache.merge import cap_records, dedupe_records, drop_expired, union_by_id
from src.core.cache.models import Record, parse_timestamp

T0 = datetime(2024, 5, 1, tzinfo=timezone.utc)


def rec(record_id: str | None, minutes: int, **data) -> Record:
    return Record(id=record_id, timestamp=T0 + timedelta(minutes=minutes), data=data)


class TestUnionById:
    """Тесты для union_by_id."""

    def test_newer_replaces_in_place(self) -> None:
        existing = [rec("a", 0, v=1), rec("b", 0, v=1)]
        result = union_by_id(existing, [rec("a", 5, v=2)])

        assert [r.id for r in result.records] == ["a", "b"]
        assert result.records[0].data == {"v": 2}
        assert result.updated == 1

    def test_older_is_ignored(self) -> None:
        result = union_by_id([rec("a", 5, v=2)], [rec("a", 0, v=1)])
        assert result.records[0].data == {"v": 2}
        assert result.unchanged == 1

    def test_newer_with_same_value_counts_unchanged(self) -> None:
        result = union_by_id([rec("a", 0, v=1)], [rec("a", 5, v=1)])
        assert result.unchanged == 1
        assert result.updated == 0

    def test_does_not_mutate_input(self) -> None:
        existing = [rec("a", 0)]
        union_by_id(existing, [rec("b", 0)])
        assert len(existing) == 1

    def test_duplicates_inside_batch(self) -> None:
        result = union_by_id([], [rec("a", 0, v=1), rec("a", 5, v=2), rec("a", 3, v=3)])
        assert len(result.records) == 1
        assert result.records[0].data == {"v": 2}


class TestDedupeRecords:
    """Тесты для dedupe_records."""

    def test_keeps_newest_at_first_position(self) -> None:
        records = [rec("a", 0, v=1), rec("b", 0), rec("a", 10, v=2), rec(None, 0), rec(None, 0)]
        result = dedupe_records(records)

        assert [r.id for r in result] == ["a", "b", None, None]
        assert result[0].data == {"v": 2}

    def test_tie_keeps_earlier(self) -> None:
        result = dedupe_records([rec("a", 0, v="first"), rec("a", 0, v="second")])
        assert result[0].data == {"v": "first"}


class TestDropExpired:
    """Тесты для drop_expired."""

    def test_drops_older_than_cutoff(self) -> None:
        records = [rec("a", 0), rec("b", 10), rec("c", 20)]
        result = drop_expired(records, T0 + timedelta(minutes=10))
        assert [r.id for r in result] == ["b", "c"]


class TestCapRecords:
    """Тесты для cap_records."""

    def test_keeps_newest_in_original_order(self) -> None:
        records = [rec("a", 30), rec("b", 0), rec("c", 20), rec("d", 10)]
        result = cap_records(records, 2)
        assert [r.id for r in result] == ["a", "c"]

    def test_under_limit_unchanged(self) -> None:
        records = [rec("a", 0), rec("b", 1)]
        assert cap_records(records, 5) == records


class TestParseTimestamp:
    """Тесты для parse_timestamp."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("2024-05-01T00:00:00Z", T0),
            ("2024-05-01T00:00:00", T0),
            (T0.timestamp(), T0),
            (T0.timestamp() * 1000, T0),
            (T0.replace(tzinfo=None), T0),
        ],
    )
    def test_supported_formats(self, value, expected) -> None:
        assert parse_timestamp(value) == expected

    @pytest.mark.parametrize("value", [None, True, "not a date", [1], {}])
    def test_unsupported_returns_none(self, value) -> None:
        assert parse_timestamp(value) is None

    def test_record_falls_back_to_created_at(self) -> None:
        record = Record.from_payload({"id": 1, "created_at": "2024-05-01T00:00:00Z"}, T0 + timedelta(days=1))
        assert record.timestamp == T0
        assert record.data["created_at"] == "2024-05-01T00:00:00Z"

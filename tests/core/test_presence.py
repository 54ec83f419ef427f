# tests/core/test_presence.py
"""
Тесты для PresenceTracker.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.core.cache.models import UserSnapshot


class TestRegisterAndHeartbeat:
    """Регистрация и heartbeat."""

    def test_register_is_idempotent(self, presence, clock) -> None:
        first = presence.register(123, profile={"first_name": "Тест"})
        clock.advance(seconds=30)
        second = presence.register("123")

        assert len(presence) == 1
        assert second.registered_at == first.registered_at
        assert second.last_seen == clock()
        assert second.profile == {"first_name": "Тест"}

    def test_register_requires_user_id(self, presence) -> None:
        with pytest.raises(ValueError):
            presence.register("")

    def test_register_keeps_payload_type(self, presence) -> None:
        presence.register(1, payload_type="review")
        presence.register(1)
        assert presence.get(1).last_payload_type == "review"

    def test_heartbeat_unknown_user_is_noop(self, presence) -> None:
        assert presence.heartbeat(999) is False
        assert 999 not in presence

    def test_heartbeat_refreshes_last_seen(self, presence, clock) -> None:
        presence.register(1)
        clock.advance(minutes=10)
        assert presence.heartbeat(1) is True
        assert presence.get(1).last_seen == clock()


class TestActivity:
    """Активность и очистка."""

    def test_is_active_boundary(self, presence, clock) -> None:
        presence.register(1)
        clock.advance(minutes=14, seconds=59)
        assert presence.is_active(1) is True
        clock.advance(seconds=1)
        assert presence.is_active(1) is False

    def test_active_list_recomputed_each_call(self, presence, clock) -> None:
        presence.register(1)
        assert [e.is_active for e in presence.get_active_list()] == [True]

        clock.advance(minutes=20)
        assert [e.is_active for e in presence.get_active_list()] == [False]

    def test_sweep_removes_inactive_users(self, presence, clock) -> None:
        presence.register(1)
        clock.advance(minutes=10)
        presence.register(2)
        clock.advance(minutes=6)

        removed = presence.sweep()

        assert removed == ["1"]
        assert [e.user_id for e in presence.get_active_list()] == ["2"]

    def test_sweep_with_no_stale_users(self, presence) -> None:
        presence.register(1)
        assert presence.sweep() == []
        assert len(presence) == 1


class TestSnapshots:
    """Срезы данных пользователя."""

    def test_update_snapshot_returns_previous(self, presence) -> None:
        first = UserSnapshot(orders_count=1)
        second = UserSnapshot(orders_count=2)

        assert presence.update_snapshot(5, first) is None
        assert presence.update_snapshot(5, second) == first
        assert 5 in presence

    def test_get_snapshot_respects_max_age(self, presence, clock) -> None:
        presence.update_snapshot(5, UserSnapshot(orders_count=1))
        clock.advance(minutes=4)
        assert presence.get_snapshot(5, timedelta(minutes=5)) is not None

        clock.advance(minutes=1)
        assert presence.get_snapshot(5, timedelta(minutes=5)) is None

    def test_get_snapshot_unknown_user(self, presence) -> None:
        assert presence.get_snapshot(404, timedelta(minutes=5)) is None

    def test_has_snapshot_flag(self, presence) -> None:
        presence.register(1)
        presence.update_snapshot(2, UserSnapshot())
        flags = {e.user_id: e.has_snapshot for e in presence.get_active_list()}
        assert flags == {"1": False, "2": True}

# src/core/cache/presence.py
"""
Отслеживание присутствия пользователей.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterator
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from src.common.logger import get_logger
from src.core.cache.models import (
    PresenceEntry,
    UserPresence,
    UserSnapshot,
    normalize_user_id,
    utcnow,
)

logger = get_logger("presence")


class PresenceTracker:
    """
    user_id -> время последней активности и последний срез данных.

    Пользователь активен, пока с последней активности прошло меньше
    inactivity_timeout. Неактивные удаляются вызовом sweep().
    """

    def __init__(
        self,
        inactivity_timeout: timedelta = timedelta(minutes=15),
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._timeout = inactivity_timeout
        self._clock = clock
        self._users: dict[str, UserPresence] = {}

    @property
    def inactivity_timeout(self) -> timedelta:
        return self._timeout

    def register(
        self,
        user_id: int | str,
        profile: dict[str, Any] | None = None,
        payload_type: str | None = None,
    ) -> UserPresence:
        """Создаёт или обновляет запись присутствия (идемпотентно)."""
        uid = normalize_user_id(user_id)
        if uid is None:
            raise ValueError("user_id обязателен")

        now = self._clock()
        current = self._users.get(uid)
        if current is None:
            presence = UserPresence(
                user_id=uid,
                registered_at=now,
                last_seen=now,
                profile=copy.deepcopy(profile) if profile else {},
                last_payload_type=payload_type,
            )
            logger.debug("Пользователь %s зарегистрирован", uid)
        else:
            presence = replace(
                current,
                last_seen=now,
                profile=copy.deepcopy(profile) if profile else current.profile,
                last_payload_type=payload_type or current.last_payload_type,
            )

        self._users[uid] = presence
        return presence

    def heartbeat(self, user_id: int | str) -> bool:
        """Обновляет last_seen. Для незарегистрированного пользователя ничего не делает."""
        uid = normalize_user_id(user_id)
        current = self._users.get(uid) if uid else None
        if current is None:
            return False
        self._users[uid] = replace(current, last_seen=self._clock())
        return True

    def is_active(self, user_id: int | str) -> bool:
        uid = normalize_user_id(user_id)
        current = self._users.get(uid) if uid else None
        if current is None:
            return False
        return self._is_active(current, self._clock())

    def _is_active(self, presence: UserPresence, now: datetime) -> bool:
        return now - presence.last_seen < self._timeout

    def get(self, user_id: int | str) -> UserPresence | None:
        uid = normalize_user_id(user_id)
        return self._users.get(uid) if uid else None

    def get_active_list(self) -> Iterator[PresenceEntry]:
        """Ленивая последовательность записей с флагом is_active; вычисляется заново при каждом вызове."""
        now = self._clock()
        for presence in list(self._users.values()):
            yield PresenceEntry(
                user_id=presence.user_id,
                registered_at=presence.registered_at,
                last_seen=presence.last_seen,
                is_active=self._is_active(presence, now),
                has_snapshot=presence.snapshot is not None,
                profile=presence.profile,
                last_payload_type=presence.last_payload_type,
            )

    # =========================================================================
    # СРЕЗЫ ДАННЫХ
    # =========================================================================

    def update_snapshot(self, user_id: int | str, snapshot: UserSnapshot) -> UserSnapshot | None:
        """
        Сохраняет новый срез пользователя, регистрируя его при необходимости.

        Returns:
            Предыдущий срез или None при первом наблюдении
        """
        uid = normalize_user_id(user_id)
        if uid is None:
            raise ValueError("user_id обязателен")

        now = self._clock()
        current = self._users.get(uid)
        previous = current.snapshot if current else None
        if current is None:
            presence = UserPresence(user_id=uid, registered_at=now, last_seen=now)
        else:
            presence = current

        self._users[uid] = replace(presence, last_seen=now, snapshot=snapshot, snapshot_at=now)
        return previous

    def get_snapshot(self, user_id: int | str, max_age: timedelta) -> UserSnapshot | None:
        """Срез пользователя, если он свежее max_age; иначе None."""
        presence = self.get(user_id)
        if presence is None or presence.snapshot is None or presence.snapshot_at is None:
            return None
        if self._clock() - presence.snapshot_at >= max_age:
            return None
        return presence.snapshot

    # =========================================================================
    # ОБСЛУЖИВАНИЕ
    # =========================================================================

    def sweep(self) -> list[str]:
        """
        Удаляет неактивных пользователей.

        Returns:
            ID удалённых пользователей
        """
        now = self._clock()
        removed = [uid for uid, p in self._users.items() if not self._is_active(p, now)]
        if removed:
            stale = set(removed)
            self._users = {uid: p for uid, p in self._users.items() if uid not in stale}
        return removed

    def clear(self) -> None:
        self._users = {}

    def __len__(self) -> int:
        return len(self._users)

    def __contains__(self, user_id: object) -> bool:
        return normalize_user_id(user_id) in self._users  # type: ignore[arg-type]

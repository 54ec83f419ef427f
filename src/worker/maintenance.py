# src/worker/maintenance.py
"""
Фоновое обслуживание in-memory кэша.

Три независимых периодических цикла:
- presence: удаление неактивных пользователей и их каналов
- dedup: схлопывание записей с одинаковым id
- retention: dedup, удаление старых записей, ограничение длины категорий
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info
from src.core.cache.merge import cap_records, dedupe_records, drop_expired
from src.core.cache.models import Record, utcnow
from src.core.cache.presence import PresenceTracker
from src.core.cache.store import RecordStore
from src.services.realtime_ws.connection_manager import Broadcaster


@dataclass
class SweepReport:
    """Итог одного прохода обслуживания."""
    sweep: str
    removed: dict[str, int] = field(default_factory=dict)
    users: list[str] = field(default_factory=list)
    channels_closed: int = 0

    @property
    def total_removed(self) -> int:
        return sum(self.removed.values()) + len(self.users)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sweep": self.sweep,
            "removed": dict(self.removed),
            "users": list(self.users),
            "channels_closed": self.channels_closed,
        }


class CacheMaintainer:
    """
    Воркер обслуживания кэша.

    Каждый проход синхронно читает снимок категории, вычисляет новый
    список и публикует его одним присваиванием. Ошибка прохода
    логируется, цикл продолжается.
    """

    def __init__(
        self,
        store: RecordStore,
        presence: PresenceTracker,
        broadcaster: Broadcaster,
        *,
        retention_max_age: timedelta = timedelta(days=7),
        max_length: int = 1000,
        presence_interval: float = 300,
        dedup_interval: float = 600,
        retention_interval: float = 1800,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._presence = presence
        self._broadcaster = broadcaster
        self._retention_max_age = retention_max_age
        self._max_length = max_length
        self._intervals = {
            "presence": presence_interval,
            "dedup": dedup_interval,
            "retention": retention_interval,
        }
        self._clock = clock
        self._running = False
        self._tasks: list[asyncio.Task] = []

    @property
    def name(self) -> str:
        return "CacheMaintainer"

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Запускает периодические циклы."""
        if self._running:
            return

        self._running = True
        sweeps: dict[str, Callable[[], Awaitable[SweepReport]]] = {
            "presence": self.run_presence_sweep,
            "dedup": self.run_dedup_sweep,
            "retention": self.run_retention_sweep,
        }
        for name, sweep in sweeps.items():
            self._tasks.append(asyncio.create_task(
                self._run_periodic(name, self._intervals[name], sweep),
                name=f"maintenance:{name}",
            ))
        await log_info(f"Воркер {self.name} запущен", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        """Останавливает циклы."""
        if not self._running:
            return

        self._running = False
        for task in self._tasks:
            task.cancel()

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self._tasks.clear()
        await log_info(f"Воркер {self.name} остановлен", type_msg=TypeMsg.INFO)

    async def _run_periodic(
        self,
        name: str,
        interval: float,
        sweep: Callable[[], Awaitable[SweepReport]],
    ) -> None:
        while self._running:
            await asyncio.sleep(interval)
            try:
                report = await sweep()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                await log_error(f"Ошибка прохода {name}: {e}", exc_info=True)
                continue

            if report.total_removed:
                await log_info(
                    f"Проход {name}: {report.to_dict()}",
                    type_msg=TypeMsg.DEBUG,
                )

    # =========================================================================
    # ПРОХОДЫ
    # =========================================================================

    async def run_presence_sweep(self) -> SweepReport:
        """Удаляет неактивных пользователей, закрывает их каналы и очереди."""
        report = SweepReport(sweep="presence")
        report.users = self._presence.sweep()
        for user_id in report.users:
            self._broadcaster.discard_queue(user_id)
            report.channels_closed += await self._broadcaster.close_user(user_id)
        return report

    async def run_dedup_sweep(self) -> SweepReport:
        """Схлопывает записи с одинаковым id во всех списочных категориях."""
        report = SweepReport(sweep="dedup")
        for category in self._store.policies.sequence_categories():
            before, after = self._store.transform(category, dedupe_records)
            if before != after:
                report.removed[category] = before - after
        return report

    async def run_retention_sweep(self) -> SweepReport:
        """Dedup, затем удаление записей старше окна хранения, затем ограничение длины."""
        report = SweepReport(sweep="retention")
        cutoff = self._clock() - self._retention_max_age

        def retain(records: list[Record]) -> list[Record]:
            kept = drop_expired(dedupe_records(records), cutoff)
            return cap_records(kept, self._max_length)

        for category in self._store.policies.sequence_categories():
            before, after = self._store.transform(category, retain)
            if before != after:
                report.removed[category] = before - after
        return report

# src/services/relay/service.py
"""
Сервис relay: операции, доступные HTTP-слою.

Координирует хранилище категорий, присутствие пользователей,
детектор изменений, рассылку событий и исходящие вызовы Bot API.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from urllib.parse import urlencode

from pydantic import ValidationError as PydanticValidationError

from src.common.constants import TypeMsg, UpsertOutcome
from src.common.exceptions import ValidationError
from src.common.logger import log_info, log_warning
from src.core.cache.changes import ChangeDetector
from src.core.cache.models import (
    CategoryView,
    MergeReport,
    PresenceEntry,
    Record,
    UserSnapshot,
    normalize_user_id,
)
from src.core.cache.presence import PresenceTracker
from src.core.cache.store import RecordStore
from src.services.realtime_ws.channels import DeliveryChannel
from src.services.realtime_ws.connection_manager import Broadcaster
from src.services.relay.notifier import ADMIN_PREFIX, Notifier, NotifyResult, format_payload
from src.shared.events import RelayEvent

DELIVERY_NOTICE = "Результат отправлен в чат"


@dataclass
class WebAppIngestResult:
    """Итог приёма payload от Mini App."""
    category: str
    outcome: UpsertOutcome
    notify: NotifyResult
    user_id: str | None = None
    events: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.notify.delivered,
            "category": self.category,
            "outcome": self.outcome.value,
            "user_id": self.user_id,
            "events": self.events,
            "notify": self.notify.to_dict(),
        }


class RelayService:
    """
    Фасад над in-memory состоянием.

    Все компоненты состояния передаются явно; сервис не создаёт
    глобальных объектов.
    """

    def __init__(
        self,
        store: RecordStore,
        presence: PresenceTracker,
        broadcaster: Broadcaster,
        notifier: Notifier,
        *,
        detector: ChangeDetector | None = None,
        webapp_categories: dict[str, str] | None = None,
        default_category: str = "updates",
        admin_chat_id: int | None = None,
        snapshot_stale_after: timedelta = timedelta(minutes=5),
        bot_username: str = "",
        public_static_url: str = "",
        tunnel_url: str = "",
        port: int = 3000,
    ) -> None:
        self._store = store
        self._presence = presence
        self._broadcaster = broadcaster
        self._notifier = notifier
        self._detector = detector or ChangeDetector()
        self._webapp_categories = dict(webapp_categories or {})
        self._default_category = default_category
        self._admin_chat_id = admin_chat_id
        self._snapshot_stale_after = snapshot_stale_after
        self._bot_username = bot_username
        self._public_static_url = public_static_url
        self._tunnel_url = tunnel_url
        self._port = port

        # Категория по умолчанию обязана существовать
        self._store.policies.require(default_category)

    @property
    def store(self) -> RecordStore:
        return self._store

    @property
    def presence(self) -> PresenceTracker:
        return self._presence

    @property
    def broadcaster(self) -> Broadcaster:
        return self._broadcaster

    @property
    def detector(self) -> ChangeDetector:
        return self._detector

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    # =========================================================================
    # ПРИЁМ ДАННЫХ
    # =========================================================================

    def resolve_webapp_category(self, payload: dict[str, Any]) -> str:
        """
        Категория для payload от Mini App.

        Явное поле category имеет приоритет, затем отображение по type,
        иначе категория по умолчанию.

        Raises:
            UnknownCategoryError: явно указана незарегистрированная категория
        """
        explicit = payload.get("category")
        if explicit is not None:
            return self._store.policies.require(str(explicit)).name

        payload_type = payload.get("type")
        category = self._webapp_categories.get(str(payload_type), self._default_category)
        if category not in self._store.policies:
            return self._default_category
        return category

    async def ingest_webapp_event(
        self,
        payload: dict[str, Any] | None,
        query_id: str | None = None,
        init_data: str | None = None,
    ) -> WebAppIngestResult:
        """
        Принимает payload от Mini App.

        1. Обновляет присутствие по userData
        2. Записывает payload в категорию
        3. Обрабатывает вложенный snapshot
        4. Отвечает на WebApp Query или пишет администратору

        Raises:
            ValidationError: payload отсутствует
            UnknownCategoryError: явно указана неизвестная категория
        """
        if not payload or not isinstance(payload, dict):
            raise ValidationError("No payload")

        category = self.resolve_webapp_category(payload)
        snapshot_raw = payload.get("snapshot")
        snapshot = self._parse_snapshot(snapshot_raw) if snapshot_raw is not None else None

        user_data = payload.get("userData")
        user_id = None
        if isinstance(user_data, dict):
            user_id = normalize_user_id(user_data.get("id"))
        if user_id is None:
            user_id = normalize_user_id(payload.get("user_id"))

        if user_id is not None:
            self._presence.register(
                user_id,
                profile=user_data if isinstance(user_data, dict) else None,
                payload_type=payload.get("type"),
            )

        body = {k: v for k, v in payload.items() if k != "snapshot"}
        record = Record.from_payload(body, self._store.now())
        outcome = self._store.upsert_one(category, record)

        await log_info(
            f"[Relay] webapp-data type={payload.get('type')} user={user_id} -> {category}: {outcome.value}",
            type_msg=TypeMsg.DEBUG,
        )

        if outcome in (UpsertOutcome.CREATED, UpsertOutcome.UPDATED):
            await self._broadcaster.publish_global(RelayEvent.data_update(
                category,
                count=self._store.count(category),
                outcome=outcome.value,
                source="webapp",
            ))

        events = 0
        if snapshot is not None and user_id is not None:
            events = len(await self._apply_snapshot(user_id, snapshot))

        # Копия снимается до любого await на внешний вызов
        outbound = copy.deepcopy(payload)
        notify = await self._acknowledge(outbound, query_id, user_id)

        return WebAppIngestResult(
            category=category,
            outcome=outcome,
            notify=notify,
            user_id=user_id,
            events=events,
        )

    async def _acknowledge(
        self,
        payload: dict[str, Any],
        query_id: str | None,
        user_id: str | None,
    ) -> NotifyResult:
        if query_id:
            result_id = str(self._store.next_id())
            result = await self._notifier.answer_web_app_query(query_id, result_id, payload)
            if result.delivered and user_id is not None:
                await self._broadcaster.publish(
                    user_id,
                    RelayEvent.notification(user_id, DELIVERY_NOTICE, level="success"),
                )
            return result

        if self._admin_chat_id is None:
            await log_warning("[Relay] Payload без queryId, а ADMIN_ID не задан")
            return NotifyResult.failed("ADMIN_ID не задан")

        return await self._notifier.send_message(
            self._admin_chat_id,
            format_payload(payload, ADMIN_PREFIX),
        )

    async def ingest_bot_records(self, category: str, body: Any) -> MergeReport:
        """
        Принимает одну запись или пакет от бота.

        Принимаются: объект, список объектов или {"records": [...]}.

        Raises:
            UnknownCategoryError: категория не зарегистрирована
            ValidationError: тело запроса некорректно
        """
        policy = self._store.policies.require(category)

        if isinstance(body, dict) and isinstance(body.get("records"), list):
            items = body["records"]
        elif isinstance(body, list):
            items = body
        elif isinstance(body, dict):
            items = [body]
        elif policy.is_scalar and body is not None:
            # Скаляр можно передать как есть: число, строку
            report = self._store.set_scalar(category, body)
            await self._publish_data_update(report)
            return report
        else:
            raise ValidationError("Ожидался объект или список объектов")

        for item in items:
            if not isinstance(item, dict):
                raise ValidationError("Каждая запись должна быть объектом", {"item": repr(item)[:200]})

        received_at = self._store.now()
        records = [Record.from_payload(item, received_at) for item in items]
        report = self._store.merge_batch(category, records)

        await log_info(
            f"[Relay] bot -> {category}: +{report.created} ~{report.updated} ={report.unchanged}",
            type_msg=TypeMsg.DEBUG,
        )
        await self._publish_data_update(report)
        return report

    async def _publish_data_update(self, report: MergeReport) -> None:
        await self._broadcaster.publish_global(RelayEvent.data_update(
            report.category,
            count=report.count,
            outcome="updated" if report.changed else "unchanged",
            source="bot",
        ))

    async def ingest_user_snapshot(self, user_id: int | str, snapshot: Any) -> list[RelayEvent]:
        """
        Принимает срез данных пользователя от бота.

        Returns:
            События, отправленные пользователю

        Raises:
            ValidationError: нет user_id или срез некорректен
        """
        uid = normalize_user_id(user_id)
        if uid is None:
            raise ValidationError("user_id обязателен")

        return await self._apply_snapshot(uid, self._parse_snapshot(snapshot))

    async def _apply_snapshot(self, user_id: str, snapshot: UserSnapshot) -> list[RelayEvent]:
        previous = self._presence.update_snapshot(user_id, snapshot)
        events = self._detector.detect(user_id, previous, snapshot)
        for event in events:
            await self._broadcaster.publish(user_id, event)
        return events

    @staticmethod
    def _parse_snapshot(snapshot: Any) -> UserSnapshot:
        if isinstance(snapshot, UserSnapshot):
            return snapshot
        if not isinstance(snapshot, dict):
            raise ValidationError("snapshot должен быть объектом")
        try:
            return UserSnapshot.model_validate(snapshot)
        except PydanticValidationError as e:
            raise ValidationError("Некорректный snapshot", {"errors": e.errors(include_url=False)}) from e

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    def get_category(self, category: str) -> CategoryView:
        return self._store.get_category(category)

    def get_all(self) -> dict[str, Any]:
        """Полный дамп состояния."""
        categories = {}
        for name in self._store.policies.names():
            view = self._store.get_category(name)
            categories[name] = view.value if view.items is None else view.items
        return {
            "categories": categories,
            "users": {entry.user_id: entry.to_dict() for entry in self._presence.get_active_list()},
            "timestamp": self._store.now().isoformat(),
        }

    def get_stats(self) -> dict[str, Any]:
        return {
            "categories": self._store.stats(),
            "users": len(self._presence),
            "channels": self._broadcaster.get_stats(),
        }

    def get_user_snapshot(self, user_id: int | str) -> UserSnapshot | None:
        """Срез пользователя, если он свежее окна устаревания."""
        uid = normalize_user_id(user_id)
        if uid is None:
            raise ValidationError("user_id обязателен")
        return self._presence.get_snapshot(uid, self._snapshot_stale_after)

    # =========================================================================
    # КОМАНДЫ
    # =========================================================================

    def register_user(self, user_id: int | str, profile: dict[str, Any] | None = None) -> PresenceEntry:
        uid = normalize_user_id(user_id)
        if uid is None:
            raise ValidationError("user_id обязателен")
        self._presence.register(uid, profile=profile)
        return self._entry(uid)

    def heartbeat(self, user_id: int | str) -> bool:
        uid = normalize_user_id(user_id)
        if uid is None:
            raise ValidationError("user_id обязателен")
        return self._presence.heartbeat(uid)

    def active_users(self, only_active: bool = True) -> list[PresenceEntry]:
        return [e for e in self._presence.get_active_list() if e.is_active or not only_active]

    def _entry(self, uid: str) -> PresenceEntry:
        return next(e for e in self._presence.get_active_list() if e.user_id == uid)

    async def clear(self, category: str | None = None) -> list[str]:
        """Очищает категорию или все и уведомляет глобальных подписчиков."""
        cleared = self._store.clear(category)
        for name in cleared:
            await self._broadcaster.publish_global(
                RelayEvent.data_update(name, count=0, outcome="cleared", source="api")
            )
        return cleared

    def poll(self, user_id: int | str | None) -> list[dict[str, Any]]:
        """Забирает очередь ожидания пользователя."""
        uid = normalize_user_id(user_id)
        if uid is None:
            raise ValidationError("no user_id")
        self._presence.heartbeat(uid)
        return self._broadcaster.drain_queue(uid)

    # =========================================================================
    # ПОДПИСКИ
    # =========================================================================

    async def open_channel(self, user_id: int | str | None, channel: DeliveryChannel) -> None:
        """
        Отправляет событие connected, досылает очередь ожидания и только
        затем регистрирует канал.

        События, опубликованные пока идёт досылка, попадают в очередь и
        досылаются следующей итерацией; подписка происходит без await после
        последней пустой выборки, поэтому порядок событий сохраняется.
        """
        uid = normalize_user_id(user_id)
        if uid is not None:
            self._presence.register(uid)

        await channel.send(RelayEvent.connected(uid, channel.transport).to_message())

        if uid is not None:
            while True:
                backlog = self._broadcaster.drain_queue(uid)
                if not backlog:
                    break
                for message in backlog:
                    await channel.send(message)

        self._broadcaster.subscribe(uid, channel)

    def close_channel(self, channel: DeliveryChannel) -> None:
        self._broadcaster.unsubscribe(channel)

    # =========================================================================
    # MINI APP URL
    # =========================================================================

    @property
    def bot_username(self) -> str:
        return self._bot_username

    @property
    def api_base_url(self) -> str:
        return self._tunnel_url or f"http://localhost:{self._port}"

    @property
    def static_base_url(self) -> str:
        return self._public_static_url or f"http://localhost:{self._port}"

    def miniapp_url(self) -> dict[str, str]:
        """URL Mini App с параметрами api и bot."""
        params = {"api": self.api_base_url}
        if self._bot_username:
            params["bot"] = self._bot_username
        url = f"{self.static_base_url.rstrip('/')}/index.html?{urlencode(params)}"
        return {"url": url, "api": self.api_base_url, "static": self.static_base_url}

    async def resolve_bot_username(self) -> str:
        """Запрашивает username бота через getMe, если он не задан в конфиге."""
        if self._bot_username:
            return self._bot_username
        username = await self._notifier.get_me()
        if username:
            self._bot_username = username
            await log_info(f"[Relay] Username бота: {username}")
        return self._bot_username

    async def close(self) -> None:
        await self._broadcaster.close_all()
        await self._notifier.close()

# src/services/relay/dependencies.py
"""
Dependency Injection для relay-сервиса.

Состояние создаётся один раз на приложение и хранится в app.state,
а не в глобальных переменных модуля.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi.requests import HTTPConnection

from src.config.loader import Settings
from src.core.cache.changes import ChangeDetector
from src.core.cache.policies import PolicyRegistry
from src.core.cache.presence import PresenceTracker
from src.core.cache.store import RecordStore
from src.services.realtime_ws.connection_manager import Broadcaster
from src.services.relay.notifier import Notifier, TelegramNotifier
from src.services.relay.service import RelayService
from src.worker.maintenance import CacheMaintainer


def build_relay_service(settings: Settings, notifier: Notifier | None = None) -> RelayService:
    """Собирает сервис и его компоненты из настроек."""
    policies = PolicyRegistry.from_mapping(settings.categories.CATEGORY_POLICIES)
    store = RecordStore(policies)
    presence = PresenceTracker(timedelta(seconds=settings.cache.INACTIVITY_TIMEOUT))
    broadcaster = Broadcaster(pending_queue_max=settings.cache.PENDING_QUEUE_MAX)

    if notifier is None:
        notifier = TelegramNotifier(
            settings.telegram.BOT_TOKEN,
            request_timeout=settings.telegram.REQUEST_TIMEOUT,
            answer_title=settings.telegram.ANSWER_TITLE,
        )

    return RelayService(
        store,
        presence,
        broadcaster,
        notifier,
        detector=ChangeDetector(),
        webapp_categories=settings.categories.WEBAPP_TYPE_CATEGORIES,
        default_category=settings.categories.DEFAULT_WEBAPP_CATEGORY,
        admin_chat_id=settings.telegram.ADMIN_ID,
        snapshot_stale_after=timedelta(seconds=settings.cache.SNAPSHOT_STALE_AFTER),
        bot_username=settings.telegram.BOT_USERNAME,
        public_static_url=settings.telegram.PUBLIC_STATIC_URL,
        tunnel_url=settings.telegram.TUNNEL_URL,
        port=settings.deployment.RELAY_PORT,
    )


def build_maintainer(settings: Settings, service: RelayService) -> CacheMaintainer:
    """Воркер обслуживания над состоянием сервиса."""
    cache = settings.cache
    return CacheMaintainer(
        service.store,
        service.presence,
        service.broadcaster,
        retention_max_age=timedelta(seconds=cache.RETENTION_MAX_AGE),
        max_length=cache.CATEGORY_MAX_LENGTH,
        presence_interval=cache.PRESENCE_SWEEP_INTERVAL,
        dedup_interval=cache.DEDUP_SWEEP_INTERVAL,
        retention_interval=cache.RETENTION_SWEEP_INTERVAL,
        clock=service.store.now,
    )


def get_relay_service(connection: HTTPConnection) -> RelayService:
    """Сервис приложения (HTTP и WebSocket)."""
    service = getattr(connection.app.state, "relay_service", None)
    if service is None:
        raise RuntimeError("RelayService не инициализирован")
    return service


def get_settings_dep(connection: HTTPConnection) -> Settings:
    """Настройки приложения."""
    return connection.app.state.settings

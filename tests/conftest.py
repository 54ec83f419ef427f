# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("BOT_TOKEN", "test_bot_token")

from src.config.loader import Settings
from src.core.cache.changes import ChangeDetector
from src.core.cache.models import Record
from src.core.cache.policies import PolicyRegistry
from src.core.cache.presence import PresenceTracker
from src.core.cache.store import RecordStore
from src.services.realtime_ws.channels import DeliveryChannel
from src.services.realtime_ws.connection_manager import Broadcaster
from src.services.relay.notifier import Notifier, NotifyResult
from src.services.relay.service import RelayService


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# ВСПОМОГАТЕЛЬНЫЕ КЛАССЫ
# =============================================================================

class FakeClock:
    """Управляемые часы."""

    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class FakeChannel(DeliveryChannel):
    """Канал, запоминающий сообщения; может падать при отправке."""

    transport = "fake"

    def __init__(self, fail: bool = False) -> None:
        super().__init__()
        self.fail = fail
        self.messages: list[dict[str, Any]] = []
        self.close_calls = 0

    async def send(self, message: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionResetError("client gone")
        self.messages.append(message)

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True

    @property
    def types(self) -> list[str]:
        return [m["type"] for m in self.messages]


class FakeNotifier(Notifier):
    """Notifier без сети: запоминает вызовы, результат настраивается."""

    def __init__(self) -> None:
        self.answers: list[tuple[str, str, dict[str, Any]]] = []
        self.messages: list[tuple[int | str, str]] = []
        self.answer_result = NotifyResult.ok({"inline_message_id": "abc"})
        self.send_result = NotifyResult.ok({"message_id": 1})
        self.username: str | None = "relay_test_bot"
        self.closed = False

    async def answer_web_app_query(self, query_id: str, result_id: str, payload: dict[str, Any]) -> NotifyResult:
        self.answers.append((query_id, result_id, payload))
        return self.answer_result

    async def send_message(self, chat_id: int | str, text: str) -> NotifyResult:
        self.messages.append((chat_id, text))
        return self.send_result

    async def get_me(self) -> str | None:
        return self.username

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "test",
        "PROJECT_NAME": "miniapp_relay_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "LOG_LEVEL": "DEBUG",
        "ENVIRONMENT": "test",
        "RUN_DEV_MODE": False,
        "LOG_TO_FILE": False,
        "LOG_FORMAT": "colored",
        "RELAY_HOST": "127.0.0.1",
        "RELAY_PORT": 3100,
        "BOT_TOKEN": "test_bot_token",
        "BOT_USERNAME": "relay_test_bot",
        "ADMIN_ID": 585028258,
        "PUBLIC_STATIC_URL": "https://static.example.com",
        "TUNNEL_URL": "https://api.example.com",
        "INACTIVITY_TIMEOUT": 900,
        "SNAPSHOT_STALE_AFTER": 300,
        "RETENTION_MAX_AGE": 604800,
        "CATEGORY_MAX_LENGTH": 1000,
        "PENDING_QUEUE_MAX": 100,
        "SSE_QUEUE_SIZE": 50,
        "SSE_KEEPALIVE_INTERVAL": 15,
        "MAINTENANCE_ENABLED": False,
        "CATEGORY_POLICIES": {},
        "WEBAPP_TYPE_CATEGORIES": {
            "review": "reviews",
            "request": "requests",
            "chat_message": "chat_messages",
            "order": "orders",
            "rating": "rating",
        },
        "DEFAULT_WEBAPP_CATEGORY": "updates",
    }


@pytest.fixture
def test_settings(mock_config: dict[str, Any], monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Настройки из мок-конфигурации без переопределений окружения."""
    for key in ("HOST", "PORT", "BOT_USERNAME", "ADMIN_ID", "PUBLIC_STATIC_URL", "TUNNEL_URL"):
        monkeypatch.delenv(key, raising=False)
    return Settings.from_dict(mock_config)


# =============================================================================
# ФИКСТУРЫ СОСТОЯНИЯ
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policies() -> PolicyRegistry:
    return PolicyRegistry.from_mapping()


@pytest.fixture
def store(policies: PolicyRegistry, clock: FakeClock) -> RecordStore:
    return RecordStore(policies, clock=clock)


@pytest.fixture
def presence(clock: FakeClock) -> PresenceTracker:
    return PresenceTracker(timedelta(minutes=15), clock=clock)


@pytest.fixture
def broadcaster() -> Broadcaster:
    return Broadcaster(pending_queue_max=100)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def channel_factory() -> Callable[..., FakeChannel]:
    """Фабрика тестовых каналов."""
    return FakeChannel


@pytest.fixture
def service(
    store: RecordStore,
    presence: PresenceTracker,
    broadcaster: Broadcaster,
    notifier: FakeNotifier,
) -> RelayService:
    return RelayService(
        store,
        presence,
        broadcaster,
        notifier,
        detector=ChangeDetector(),
        webapp_categories={
            "review": "reviews",
            "request": "requests",
            "chat_message": "chat_messages",
            "order": "orders",
            "rating": "rating",
        },
        admin_chat_id=585028258,
        bot_username="relay_test_bot",
        tunnel_url="https://api.example.com",
        public_static_url="https://static.example.com",
    )


@pytest.fixture
def make_record(clock: FakeClock) -> Callable[..., Record]:
    """Фабрика записей: make_record(id, ts_offset_seconds, **data)."""

    def _make(record_id: Any = None, offset: float = 0, **data: Any) -> Record:
        payload = dict(data)
        if record_id is not None:
            payload["id"] = record_id
        return Record.from_payload(payload, clock() + timedelta(seconds=offset))

    return _make

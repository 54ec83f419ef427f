# src/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины — config/config.json.
Секретные данные переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "miniapp_relay"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "DEBUG"
    ENVIRONMENT: str = "development"
    RUN_DEV_MODE: bool = True


class DeploymentSettings(BaseModel):
    """Настройки развертывания."""
    RELAY_HOST: str = "0.0.0.0"
    RELAY_PORT: int = 3000


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = True
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760
    LOG_BACKUP_COUNT: int = 5


class TelegramSettings(BaseModel):
    """Настройки Telegram API и Mini App."""
    BOT_TOKEN: str = ""
    BOT_USERNAME: str = ""
    ADMIN_ID: int | None = None
    PUBLIC_STATIC_URL: str = ""
    TUNNEL_URL: str = ""
    REQUEST_TIMEOUT: float = 10.0
    ANSWER_TITLE: str = "Данные из Mini App"

    @field_validator("BOT_TOKEN", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает токен из переменных окружения, если не задан."""
        if not v:
            return os.getenv("BOT_TOKEN", "")
        return v

    @field_validator("ADMIN_ID", mode="before")
    @classmethod
    def parse_admin_id(cls, v: int | str | None) -> int | None:
        """Пустая строка означает «не задан»."""
        if v in (None, ""):
            return None
        return int(v)


class CacheSettings(BaseModel):
    """Настройки in-memory кэша и периодического обслуживания (секунды)."""
    INACTIVITY_TIMEOUT: int = 900
    SNAPSHOT_STALE_AFTER: int = 300
    RETENTION_MAX_AGE: int = 7 * 24 * 3600
    CATEGORY_MAX_LENGTH: int = 1000
    PRESENCE_SWEEP_INTERVAL: int = 300
    DEDUP_SWEEP_INTERVAL: int = 600
    RETENTION_SWEEP_INTERVAL: int = 1800
    PENDING_QUEUE_MAX: int = 100
    SSE_QUEUE_SIZE: int = 50
    SSE_KEEPALIVE_INTERVAL: int = 15
    MAINTENANCE_ENABLED: bool = True


class CategorySettings(BaseModel):
    """Политики категорий и маппинг типов payload Mini App."""
    CATEGORY_POLICIES: dict[str, str] = Field(default_factory=dict)
    WEBAPP_TYPE_CATEGORIES: dict[str, str] = Field(default_factory=dict)
    DEFAULT_WEBAPP_CATEGORY: str = "updates"


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    categories: CategorySettings = Field(default_factory=CategorySettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def from_config_json(cls) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты переопределяются из переменных окружения.
        """
        return cls.from_dict(load_config_json())

    @classmethod
    def from_dict(cls, config_data: dict[str, Any]) -> "Settings":
        """Создаёт Settings из плоского словаря в формате config.json."""
        # Фильтруем комментарии (ключи, начинающиеся с _comment_)
        filtered_data = {k: v for k, v in config_data.items() if not k.startswith("_comment_")}

        # Маппинг полей в секции
        return cls(
            system=SystemSettings(
                PROJECT_NAME=filtered_data.get("PROJECT_NAME", "miniapp_relay"),
                VERSION=filtered_data.get("VERSION", "1.0.0"),
                DEBUG=filtered_data.get("DEBUG", True),
                LOG_LEVEL=filtered_data.get("LOG_LEVEL", "DEBUG"),
                ENVIRONMENT=filtered_data.get("ENVIRONMENT", "development"),
                RUN_DEV_MODE=filtered_data.get("RUN_DEV_MODE", True),
            ),
            deployment=DeploymentSettings(
                RELAY_HOST=os.getenv("HOST", filtered_data.get("RELAY_HOST", "0.0.0.0")),
                RELAY_PORT=int(os.getenv("PORT", filtered_data.get("RELAY_PORT", 3000))),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=filtered_data.get("LOG_LEVEL", "DEBUG"),
                LOG_TO_FILE=filtered_data.get("LOG_TO_FILE", True),
                LOG_FILE_PATH=filtered_data.get("LOG_FILE_PATH", "logs/app.log"),
                LOG_FORMAT=filtered_data.get("LOG_FORMAT", "json"),
                LOG_MAX_BYTES=filtered_data.get("LOG_MAX_BYTES", 10485760),
                LOG_BACKUP_COUNT=filtered_data.get("LOG_BACKUP_COUNT", 5),
            ),
            telegram=TelegramSettings(
                BOT_TOKEN=os.getenv("BOT_TOKEN", filtered_data.get("BOT_TOKEN", "")),
                BOT_USERNAME=os.getenv("BOT_USERNAME", filtered_data.get("BOT_USERNAME", "")),
                ADMIN_ID=os.getenv("ADMIN_ID", filtered_data.get("ADMIN_ID")),
                PUBLIC_STATIC_URL=os.getenv("PUBLIC_STATIC_URL", filtered_data.get("PUBLIC_STATIC_URL", "")),
                TUNNEL_URL=os.getenv("TUNNEL_URL", filtered_data.get("TUNNEL_URL", "")),
                REQUEST_TIMEOUT=filtered_data.get("TELEGRAM_REQUEST_TIMEOUT", 10.0),
                ANSWER_TITLE=filtered_data.get("ANSWER_TITLE", "Данные из Mini App"),
            ),
            cache=CacheSettings(
                INACTIVITY_TIMEOUT=filtered_data.get("INACTIVITY_TIMEOUT", 900),
                SNAPSHOT_STALE_AFTER=filtered_data.get("SNAPSHOT_STALE_AFTER", 300),
                RETENTION_MAX_AGE=filtered_data.get("RETENTION_MAX_AGE", 7 * 24 * 3600),
                CATEGORY_MAX_LENGTH=filtered_data.get("CATEGORY_MAX_LENGTH", 1000),
                PRESENCE_SWEEP_INTERVAL=filtered_data.get("PRESENCE_SWEEP_INTERVAL", 300),
                DEDUP_SWEEP_INTERVAL=filtered_data.get("DEDUP_SWEEP_INTERVAL", 600),
                RETENTION_SWEEP_INTERVAL=filtered_data.get("RETENTION_SWEEP_INTERVAL", 1800),
                PENDING_QUEUE_MAX=filtered_data.get("PENDING_QUEUE_MAX", 100),
                SSE_QUEUE_SIZE=filtered_data.get("SSE_QUEUE_SIZE", 50),
                SSE_KEEPALIVE_INTERVAL=filtered_data.get("SSE_KEEPALIVE_INTERVAL", 15),
                MAINTENANCE_ENABLED=filtered_data.get("MAINTENANCE_ENABLED", True),
            ),
            categories=CategorySettings(
                CATEGORY_POLICIES=filtered_data.get("CATEGORY_POLICIES", {}),
                WEBAPP_TYPE_CATEGORIES=filtered_data.get("WEBAPP_TYPE_CATEGORIES", {}),
                DEFAULT_WEBAPP_CATEGORY=filtered_data.get("DEFAULT_WEBAPP_CATEGORY", "updates"),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    # Загружаем .env файл
    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()

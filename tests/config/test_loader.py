# tests/config/test_loader.py
"""
Тесты для модуля загрузки конфигурации.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from src.config.loader import (
    CacheSettings,
    CategorySettings,
    DeploymentSettings,
    LoggingSettings,
    Settings,
    SystemSettings,
    TelegramSettings,
    get_config_path,
    get_project_root,
    load_config_json,
)


class TestGetProjectRoot:
    """Тесты для функции get_project_root."""

    def test_returns_path_object(self) -> None:
        """Проверяет, что возвращается объект Path."""
        assert isinstance(get_project_root(), Path)

    def test_root_contains_src_and_config(self) -> None:
        """Проверяет наличие директорий src и config в корне."""
        root = get_project_root()
        assert (root / "src").exists()
        assert (root / "config").exists()


class TestGetConfigPath:
    """Тесты для функции get_config_path."""

    def test_path_ends_with_config_json(self) -> None:
        """Проверяет правильность имени файла."""
        path = get_config_path()
        assert path.name == "config.json"
        assert path.parent.name == "config"


class TestLoadConfigJson:
    """Тесты для функции load_config_json."""

    def test_contains_required_keys(self) -> None:
        """Проверяет наличие обязательных ключей."""
        config = load_config_json()

        required_keys = [
            "PROJECT_NAME",
            "RELAY_PORT",
            "CATEGORY_POLICIES",
            "WEBAPP_TYPE_CATEGORIES",
            "DEFAULT_WEBAPP_CATEGORY",
        ]

        for key in required_keys:
            assert key in config, f"Отсутствует ключ: {key}"

    def test_category_policies_are_known(self) -> None:
        """Проверяет, что все политики из config.json допустимы."""
        config = load_config_json()
        assert set(config["CATEGORY_POLICIES"].values()) <= {"union-by-id", "replace", "scalar"}

    def test_raises_file_not_found(self, tmp_path: Path) -> None:
        """Проверяет исключение при отсутствии файла."""
        with patch("src.config.loader.get_config_path") as mock_path:
            mock_path.return_value = tmp_path / "nonexistent.json"

            with pytest.raises(FileNotFoundError):
                load_config_json()


class TestSectionDefaults:
    """Значения по умолчанию секций."""

    def test_system(self) -> None:
        settings = SystemSettings()
        assert settings.PROJECT_NAME == "miniapp_relay"
        assert settings.ENVIRONMENT == "development"

    def test_deployment(self) -> None:
        settings = DeploymentSettings()
        assert settings.RELAY_HOST == "0.0.0.0"
        assert settings.RELAY_PORT == 3000

    def test_logging(self) -> None:
        settings = LoggingSettings()
        assert settings.LOG_FILE_PATH == "logs/app.log"
        assert settings.LOG_BACKUP_COUNT == 5

    def test_cache(self) -> None:
        settings = CacheSettings()
        assert settings.INACTIVITY_TIMEOUT == 900
        assert settings.RETENTION_MAX_AGE == 604800
        assert settings.CATEGORY_MAX_LENGTH == 1000
        assert settings.MAINTENANCE_ENABLED is True

    def test_categories(self) -> None:
        settings = CategorySettings()
        assert settings.CATEGORY_POLICIES == {}
        assert settings.DEFAULT_WEBAPP_CATEGORY == "updates"


class TestTelegramSettings:
    """Тесты для модели TelegramSettings."""

    def test_token_from_env_when_empty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Пустой токен берётся из окружения."""
        monkeypatch.setenv("BOT_TOKEN", "env_token")
        assert TelegramSettings(BOT_TOKEN="").BOT_TOKEN == "env_token"

    def test_explicit_token_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BOT_TOKEN", "env_token")
        assert TelegramSettings(BOT_TOKEN="explicit").BOT_TOKEN == "explicit"

    @pytest.mark.parametrize("raw, expected", [("", None), (None, None), ("585028258", 585028258), (42, 42)])
    def test_admin_id_parsing(self, raw: Any, expected: int | None) -> None:
        assert TelegramSettings(ADMIN_ID=raw).ADMIN_ID == expected


class TestSettingsFromDict:
    """Тесты для Settings.from_dict."""

    def test_maps_sections(self, test_settings: Settings) -> None:
        """Плоский словарь раскладывается по секциям."""
        assert test_settings.system.PROJECT_NAME == "miniapp_relay_test"
        assert test_settings.deployment.RELAY_PORT == 3100
        assert test_settings.logging.LOG_TO_FILE is False
        assert test_settings.telegram.ADMIN_ID == 585028258
        assert test_settings.telegram.TUNNEL_URL == "https://api.example.com"
        assert test_settings.cache.SSE_QUEUE_SIZE == 50
        assert test_settings.cache.MAINTENANCE_ENABLED is False
        assert test_settings.categories.WEBAPP_TYPE_CATEGORIES["review"] == "reviews"

    def test_comment_keys_ignored(self, mock_config: dict[str, Any], monkeypatch: pytest.MonkeyPatch) -> None:
        """Ключи _comment_ не попадают в настройки."""
        monkeypatch.delenv("PORT", raising=False)
        mock_config["_comment_port"] = "RELAY_PORT"
        settings = Settings.from_dict(mock_config)
        assert settings.deployment.RELAY_PORT == 3100

    def test_env_overrides(self, mock_config: dict[str, Any], monkeypatch: pytest.MonkeyPatch) -> None:
        """HOST, PORT и ADMIN_ID переопределяются окружением."""
        monkeypatch.setenv("HOST", "10.0.0.1")
        monkeypatch.setenv("PORT", "8080")
        monkeypatch.setenv("ADMIN_ID", "111")

        settings = Settings.from_dict(mock_config)

        assert settings.deployment.RELAY_HOST == "10.0.0.1"
        assert settings.deployment.RELAY_PORT == 8080
        assert settings.telegram.ADMIN_ID == 111

    def test_defaults_for_missing_keys(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Пустой словарь даёт значения по умолчанию."""
        for key in ("HOST", "PORT", "ADMIN_ID", "TUNNEL_URL"):
            monkeypatch.delenv(key, raising=False)

        settings = Settings.from_dict({})

        assert settings.deployment.RELAY_PORT == 3000
        assert settings.telegram.ADMIN_ID is None
        assert settings.cache.PENDING_QUEUE_MAX == 100
        assert settings.categories.DEFAULT_WEBAPP_CATEGORY == "updates"

    def test_from_config_json(self) -> None:
        """Загрузка из реального config.json."""
        settings = Settings.from_config_json()
        assert settings.categories.CATEGORY_POLICIES["rating"] == "scalar"
        assert settings.categories.CATEGORY_POLICIES["orders"] == "replace"

"""Unit tests for tasktrack.engine.config — tasktrack.yaml loading & validation."""

import pytest

from tasktrack.engine.config import (
    CONFIG_FILENAME,
    NotificationsConfig,
    Settings,
    get_settings,
    load_settings,
    reset_settings,
)
from tasktrack.engine.errors import ConfigError


class TestDefaults:

    def test_settings_defaults(self):
        s = Settings()
        assert s.environment == "dev"
        assert s.api.prefix == "/api/v1"
        assert s.security.api_key_header == "X-API-Key"
        assert s.lifecycle.require_future_due is True
        assert s.lifecycle.archive_after_days == 30
        assert s.notifications.max_attempts == 3
        assert s.notifications.backend == "log"
        assert s.dashboard.recent_limit == 10
        assert s.celery.queue == "notifications"

    def test_invalid_environment(self):
        with pytest.raises(ValueError):
            Settings(environment="qa")

    def test_invalid_backend(self):
        with pytest.raises(ValueError):
            NotificationsConfig(backend="smtp")

    def test_bcrypt_rounds_lower_bound(self):
        with pytest.raises(ValueError):
            Settings(security={"bcrypt_rounds": 2})


class TestLoadSettings:

    def test_missing_file_gives_defaults(self, tmp_path):
        s = load_settings(str(tmp_path / "nope.yaml"))
        assert s == Settings()

    def test_load_yaml(self, tmp_path):
        path = tmp_path / CONFIG_FILENAME
        path.write_text(
            "app:\n"
            "  name: Tracker\n"
            "  environment: staging\n"
            "database:\n"
            "  url: sqlite:///tracker.db\n"
            "lifecycle:\n"
            "  archive_after_days: 7\n"
            "notifications:\n"
            "  backend: http\n"
            "  delivery_url: https://notify.example.com/send\n"
            "dashboard:\n"
            "  recent_limit: 5\n",
            encoding="utf-8",
        )
        s = load_settings(str(path))
        assert s.name == "Tracker"
        assert s.environment == "staging"
        assert s.database.url == "sqlite:///tracker.db"
        assert s.lifecycle.archive_after_days == 7
        assert s.notifications.backend == "http"
        assert s.dashboard.recent_limit == 5

    def test_empty_file(self, tmp_path):
        path = tmp_path / CONFIG_FILENAME
        path.write_text("", encoding="utf-8")
        assert load_settings(str(path)).name == "TaskTrack"

    def test_invalid_yaml_values_raise_config_error(self, tmp_path):
        path = tmp_path / CONFIG_FILENAME
        path.write_text("environment: qa\ndashboard:\n  recent_limit: 0\n", encoding="utf-8")
        with pytest.raises(ConfigError) as exc_info:
            load_settings(str(path))
        assert len(exc_info.value.context["errors"]) == 2

    def test_discovers_file_from_cwd(self, tmp_path, monkeypatch):
        (tmp_path / CONFIG_FILENAME).write_text("app:\n  name: Found\n", encoding="utf-8")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        assert load_settings().name == "Found"


class TestGetSettings:

    def test_cached(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        first = get_settings()
        assert get_settings() is first

    def test_reset(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        first = get_settings()
        reset_settings()
        assert get_settings() is not first

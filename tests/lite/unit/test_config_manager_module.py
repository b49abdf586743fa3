"""Unit tests for agendum_lite.config_manager."""

import os
from types import SimpleNamespace

import pytest

from agendum_lite.config_manager import ConfigManager, get_config_value, parse_env_lines

pytestmark = [pytest.mark.unit, pytest.mark.fast]


class TestParseEnvLines:
    def test_parse_env_lines_when_export_and_quotes_then_stripped(self) -> None:
        """The export prefix and surrounding quotes are removed."""
        content = "export AGENDUM_LANG='en'\n=orphan\nAGENDUM_DATA_DIR = \"/srv/a=b\"\n"
        assert parse_env_lines(content) == {
            "AGENDUM_LANG": "en",
            "AGENDUM_DATA_DIR": "/srv/a=b",
        }


class TestConfigManager:
    def test_load_env_file_when_present_then_only_missing_keys_set(
        self, tmp_path, monkeypatch
    ) -> None:
        """Loading the .env file never overrides the real environment."""
        env_file = tmp_path / ".env"
        env_file.write_text(
            "AGENDUM_LANG=en\n"
            "AGENDUM_TIMEZONE=\"Europe/Paris\"\n"
            "not a pair\n"
            "\n"
            "# AGENDUM_DATA_DIR=/nope\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("AGENDUM_LANG", "fr")
        monkeypatch.setenv("AGENDUM_TIMEZONE", "")
        monkeypatch.delenv("AGENDUM_TIMEZONE")

        loaded = ConfigManager(env_file).load_env_file()

        assert loaded == ["AGENDUM_TIMEZONE"]
        assert os.environ["AGENDUM_TIMEZONE"] == "Europe/Paris"
        assert os.environ["AGENDUM_LANG"] == "fr"
        assert "AGENDUM_DATA_DIR" not in os.environ

    def test_load_env_file_when_missing_then_nothing_loaded(self, tmp_path) -> None:
        """A missing .env file loads nothing."""
        assert ConfigManager(tmp_path / ".env").load_env_file() == []

    def test_build_config_from_env_when_vars_set_then_mapped(self, monkeypatch) -> None:
        """Each AGENDUM_* variable maps to its config key."""
        monkeypatch.setenv("AGENDUM_PROXY_BASE_URL", "https://proxy.example.org")
        monkeypatch.setenv("AGENDUM_AUTO_REFRESH_INTERVAL", "7200")
        monkeypatch.setenv("AGENDUM_MANUAL_REFRESH_COOLDOWN", "often")
        monkeypatch.setenv("AGENDUM_LOG_LEVEL", "debug")
        monkeypatch.setenv("AGENDUM_REFRESH_TICK", " 120 ")

        cfg = ConfigManager().build_config_from_env()

        assert cfg == {
            "proxy_base_url": "https://proxy.example.org",
            "auto_refresh_interval_seconds": 7200,
            "log_level": "debug",
            "refresh_tick_seconds": 120,
        }

    def test_load_full_config_when_base_given_then_env_wins(self, tmp_path, monkeypatch) -> None:
        """Environment values override the base mapping."""
        monkeypatch.setenv("AGENDUM_LANG", "en")
        cfg = ConfigManager(tmp_path / ".env").load_full_config({"lang": "fr", "timezone": "UTC"})
        assert cfg == {"lang": "en", "timezone": "UTC"}


class TestGetConfigValue:
    def test_get_config_value_when_dict_or_object_then_value_or_default(self) -> None:
        """Lookup works on mappings and objects alike."""
        assert get_config_value({"lang": "en"}, "lang") == "en"
        assert get_config_value({}, "lang", "fr") == "fr"
        assert get_config_value(SimpleNamespace(lang="en"), "lang") == "en"
        assert get_config_value(SimpleNamespace(), "lang", "fr") == "fr"
        assert get_config_value(None, "lang", "fr") == "fr"

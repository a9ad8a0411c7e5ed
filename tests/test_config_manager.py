"""
Tests for the INI configuration layer.
"""

import pytest

from craftkit.exceptions import ConfigurationError
from craftkit.storage.config_manager import ConfigManager


@pytest.fixture
def config_file(tmp_path):
    return tmp_path / "craftkit" / "config.ini"


def write(path, body: str):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body, encoding="utf-8")


class TestConfigManager:
    """Tests for loading, overriding and migrating the config file."""

    def test_default_file_is_created(self, config_file):
        config = ConfigManager(config_file).load_config()

        assert config_file.is_file()
        text = config_file.read_text(encoding="utf-8")
        assert "[craftkit]" in text
        assert "max_workers = 8" in text
        assert config.max_workers == 8
        assert config.java_path == "java"
        assert config.config_path == str(config_file.parent)

    def test_file_values_and_cli_overrides(self, config_file, tmp_path):
        write(
            config_file,
            f"[craftkit]\nroot_dir = {tmp_path / 'games'}\n"
            "max_workers = 16\njava_path = /opt/java/bin/java\n",
        )

        config = ConfigManager(config_file).load_config(
            {"max_workers": 4, "java_path": None}
        )

        assert config.max_workers == 4
        assert config.java_path == "/opt/java/bin/java"
        assert config.root_path == tmp_path / "games"

    def test_missing_keys_are_migrated(self, config_file):
        write(config_file, "[craftkit]\nmax_workers = 3\n")

        config = ConfigManager(config_file).load_config()

        text = config_file.read_text(encoding="utf-8")
        assert "java_path = java" in text
        assert "max_workers = 3" in text
        assert config.max_workers == 3

    def test_retryable_statuses(self, config_file):
        write(config_file, "[craftkit]\nretryable_statuses = 429, 503\n")

        config = ConfigManager(config_file).load_config()

        assert config.retryable_statuses == [429, 503]
        policy = config.retry_policy()
        assert policy.is_retryable(503)
        assert not policy.is_retryable(500)

    def test_home_directory_is_expanded(self, config_file):
        write(config_file, "[craftkit]\nroot_dir = ~/games\n")
        config = ConfigManager(config_file).load_config()
        assert not config.root_dir.startswith("~")

    @pytest.mark.parametrize(
        "body",
        [
            "max_workers = lots",
            "max_workers = 100",
            "max_attempts = 0",
            "retryable_statuses = 42",
            "min_memory_mb = 4096\nmax_memory_mb = 1024",
        ],
    )
    def test_invalid_values(self, config_file, body):
        write(config_file, f"[craftkit]\n{body}\n")
        with pytest.raises(ConfigurationError):
            ConfigManager(config_file).load_config()

    def test_unparseable_file(self, config_file):
        write(config_file, "max_workers = 3\n")
        with pytest.raises(ConfigurationError):
            ConfigManager(config_file).load_config()

    def test_save_config(self, config_file):
        manager = ConfigManager(config_file)
        manager.save_config({"client_id": "my-app", "max_workers": 2})

        config = ConfigManager(config_file).load_config()

        assert config.client_id == "my-app"
        assert config.max_workers == 2

"""
Tests for the command-line interface that need no network.
"""

import pytest
from typer.testing import CliRunner

import craftkit.cli.app as cli
from craftkit import __version__
from craftkit.models.session import AuthSession
from craftkit.storage.cache import CacheManager
from craftkit.storage.instance import InstanceLayout
from craftkit.storage.session_store import SessionStore

from .helpers import make_zip


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "config" / "config.ini"
    monkeypatch.setattr(cli, "CONFIG_FILE", path)
    return path


@pytest.fixture
def root_dir(tmp_path, config_file):
    root = tmp_path / "instance"
    config_file.parent.mkdir(parents=True)
    config_file.write_text(f"[craftkit]\nroot_dir = {root}\n", encoding="utf-8")
    return root


class TestCli:
    def test_version(self, runner):
        result = runner.invoke(cli.app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_validate_creates_a_default_config(self, runner, config_file):
        result = runner.invoke(cli.app, ["validate"])

        assert result.exit_code == 0
        assert "Validated Settings" in result.output
        assert config_file.is_file()

    def test_validate_rejects_invalid_values(self, runner, config_file):
        config_file.parent.mkdir(parents=True)
        config_file.write_text("[craftkit]\nmax_workers = 0\n", encoding="utf-8")

        result = runner.invoke(cli.app, ["validate"])

        assert result.exit_code == 1
        assert "Configuration is invalid" in result.output

    def test_show_config_without_a_file(self, runner, config_file):
        result = runner.invoke(cli.app, ["--show-config"])
        assert result.exit_code == 1

    def test_show_config(self, runner, root_dir):
        result = runner.invoke(cli.app, ["--show-config"])
        assert result.exit_code == 0
        assert "max_workers" in result.output

    def test_clear_cache(self, runner, root_dir):
        CacheManager(root_dir / ".cache").set("http://example.org", [1])

        result = runner.invoke(cli.app, ["--clear-cache"])

        assert result.exit_code == 0
        assert "1 entries removed" in result.output

    def test_logout(self, runner, root_dir):
        store = SessionStore(root_dir / "session.json")
        store.save(AuthSession.offline("Steve"))

        result = runner.invoke(cli.app, ["logout"])

        assert result.exit_code == 0
        assert store.load() is None

    def test_mods_reports_a_missing_dependency(self, runner, root_dir):
        layout = InstanceLayout(root_dir)
        layout.write_descriptor(
            "1.20.1",
            {
                "id": "1.20.1",
                "mainClass": "net.minecraft.client.main.Main",
                "assetIndex": {"id": "5"},
                "arguments": {"game": [], "jvm": []},
            },
        )
        layout.write_descriptor(
            "fabric-loader-0.15.0-1.20.1",
            {
                "id": "fabric-loader-0.15.0-1.20.1",
                "inheritsFrom": "1.20.1",
                "mainClass": "net.fabricmc.loader.impl.launch.knot.KnotClient",
                "libraries": [{"name": "net.fabricmc:fabric-loader:0.15.0"}],
            },
        )
        make_zip(
            layout.mods_dir / "sodium.jar",
            {
                "fabric.mod.json": {
                    "id": "sodium",
                    "version": "0.5.3",
                    "depends": {"fabricloader": ">=0.12", "fabric-api": "*"},
                }
            },
        )

        result = runner.invoke(cli.app, ["mods", "fabric-loader-0.15.0-1.20.1"])

        assert result.exit_code == 1
        assert "sodium.jar" in result.output
        assert "fabric-api" in result.output

"""Tests for YAML configuration loading and target parsing."""

import yaml
import pytest

from orchestration_hub.config.config_manager import (
    DEFAULT_PROJECTS, ConfigManager, parse_projects,
)
from orchestration_hub.core.errors import ConfigurationError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("ORCHESTRATION_ENV", "PROJECTS", "ANTHROPIC_API_KEY", "LOG_LEVEL", "PORT",
                 "AI_MODEL", "SVC_URL", "API_PORT", "SVC_INTERVAL",
                 "API_DEBUG", "DATA_DIR"):
        monkeypatch.delenv(name, raising=False)


def write_config(path, data) -> None:
    path.write_text(yaml.safe_dump(data))


BASE_CONFIG = {
    "targets": [
        {"name": "svc-a", "url": "${SVC_URL:http://svc-a:3000}/", "health_check_interval": 5},
        {"name": "svc-b", "url": "http://svc-b:3000", "critical": False},
    ],
    "ai": {"api_key": "${ANTHROPIC_API_KEY:}"},
}


class TestLoadConfig:
    async def test_targets_and_defaults(self, tmp_path) -> None:
        config_file = tmp_path / "hub.yaml"
        write_config(config_file, BASE_CONFIG)
        manager = ConfigManager(config_file)

        assert await manager.load_config() is True

        targets = manager.get_targets()
        assert [t.name for t in targets] == ["svc-a", "svc-b"]
        assert targets[0].url == "http://svc-a:3000"
        assert targets[0].health_check_interval == 5.0
        assert targets[0].metrics_check_interval == 30.0
        assert targets[1].critical is False
        assert manager.get_section("monitor.timeout_seconds") == 5
        assert manager.get_section("storage.backend") == "memory"
        assert manager.get_section("thresholds.cpu_percent") == 80
        assert manager.get_section("api.port") == 3001
        assert manager.get_section("does.not.exist", "fallback") == "fallback"

    async def test_environment_substitution(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("SVC_URL", "https://svc-a.internal")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-live")
        config_file = tmp_path / "hub.yaml"
        write_config(config_file, BASE_CONFIG)
        manager = ConfigManager(config_file)

        assert await manager.load_config() is True
        assert manager.get_targets()[0].url == "https://svc-a.internal"
        assert manager.get_section("ai.api_key") == "sk-live"

    async def test_numeric_placeholders_are_typed(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("SVC_INTERVAL", "15")
        config_file = tmp_path / "hub.yaml"
        write_config(config_file, {
            "targets": [{"name": "svc-a", "url": "http://svc-a",
                         "health_check_interval": "${SVC_INTERVAL:10}"}],
            "api": {"port": "${API_PORT:4002}", "debug": "${API_DEBUG:false}"},
            "storage": {"data_directory": "${DATA_DIR:./data}"},
        })
        manager = ConfigManager(config_file)

        assert await manager.load_config() is True
        assert manager.get_section("api.port") == 4002
        assert manager.get_section("api.debug") is False
        assert manager.get_section("storage.data_directory") == "./data"
        assert manager.get_targets()[0].health_check_interval == 15.0

    async def test_environment_override_file(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("ORCHESTRATION_ENV", "staging")
        write_config(tmp_path / "hub.yaml", BASE_CONFIG)
        write_config(tmp_path / "staging.yaml", {"monitor": {"timeout_seconds": 2},
                                                 "storage": {"backend": "jsonl"}})
        manager = ConfigManager(tmp_path / "hub.yaml")

        assert await manager.load_config() is True
        assert manager.get_section("monitor.timeout_seconds") == 2
        assert manager.get_section("monitor.health_path") == "/health"
        assert manager.get_section("storage.backend") == "jsonl"

    async def test_missing_file(self, tmp_path) -> None:
        assert await ConfigManager(tmp_path / "absent.yaml").load_config() is False

    async def test_empty_file(self, tmp_path) -> None:
        config_file = tmp_path / "hub.yaml"
        config_file.write_text("")
        assert await ConfigManager(config_file).load_config() is False

    @pytest.mark.parametrize("targets", [
        [{"name": "svc", "url": "ftp://svc"}],
        [{"name": "svc", "url": "http://a"}, {"name": "svc", "url": "http://b"}],
        [{"url": "http://a"}],
        [{"name": "svc", "url": "http://a", "health_check_interval": 0}],
    ])
    async def test_invalid_targets(self, tmp_path, targets) -> None:
        config_file = tmp_path / "hub.yaml"
        write_config(config_file, {"targets": targets})
        assert await ConfigManager(config_file).load_config() is False

    async def test_invalid_storage_backend(self, tmp_path) -> None:
        config_file = tmp_path / "hub.yaml"
        write_config(config_file, dict(BASE_CONFIG, storage={"backend": "postgres"}))
        assert await ConfigManager(config_file).load_config() is False

    async def test_missing_api_key_is_only_a_warning(self, tmp_path) -> None:
        config_file = tmp_path / "hub.yaml"
        write_config(config_file, BASE_CONFIG)
        manager = ConfigManager(config_file)

        assert await manager.load_config() is True
        assert [e.path for e in manager.validation_errors] == ["ai.api_key"]
        assert manager.validation_errors[0].severity == "warning"


class TestProjectsFallback:
    async def test_projects_env(self, monkeypatch) -> None:
        monkeypatch.setenv("PROJECTS", "api:http://localhost:3000, worker:http://localhost:3002")
        manager = ConfigManager()

        assert await manager.load_config() is True
        targets = manager.get_targets()
        assert [(t.name, t.url) for t in targets] == [
            ("api", "http://localhost:3000"), ("worker", "http://localhost:3002"),
        ]
        assert targets[0].health_check_interval == 10.0

    async def test_built_in_projects(self) -> None:
        manager = ConfigManager()
        assert await manager.load_config() is True
        assert len(manager.get_targets()) == len(DEFAULT_PROJECTS.split(","))

    def test_parse_projects_rejects_malformed_entries(self) -> None:
        with pytest.raises(ConfigurationError):
            parse_projects("api:http://a,broken")

    def test_parse_projects_skips_blank_entries(self) -> None:
        assert [t["name"] for t in parse_projects("a:http://a,,")] == ["a"]

    def test_get_targets_requires_targets(self) -> None:
        manager = ConfigManager()
        manager.config = {"targets": []}
        with pytest.raises(ConfigurationError):
            manager.get_targets()


def test_export_masks_secrets(tmp_path) -> None:
    manager = ConfigManager()
    manager.config = {"ai": {"api_key": "sk-live", "model": "m"}, "targets": []}

    assert manager.export_config(tmp_path / "out.yaml") is True
    exported = yaml.safe_load((tmp_path / "out.yaml").read_text())
    assert exported["ai"] == {"api_key": "***MASKED***", "model": "m"}

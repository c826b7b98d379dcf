"""Unit tests for configuration loading and environment overrides."""

import json

import pytest

from hc06bridge.config_loader import BAUD_RATE, DEFAULT_PORT, Config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("PORT", "HC06_BRIDGE_HOST", "HC06_BRIDGE_CORS_ORIGINS",
                 "HC06_BRIDGE_ENV", "HC06_BRIDGE_CONFIG"):
        monkeypatch.delenv(name, raising=False)


class TestConfig:
    """Test defaults, file values and env overrides."""

    def test_defaults(self):
        cfg = Config.load()

        assert cfg.server.port == DEFAULT_PORT == 3001
        assert cfg.server.host == "0.0.0.0"
        assert cfg.server.cors_origins == ["*"]
        assert cfg.logging.verbose is False
        assert BAUD_RATE == 9600

    def test_port_env_override(self, monkeypatch):
        monkeypatch.setenv("PORT", "4100")

        assert Config.load().server.port == 4100

    def test_invalid_port_falls_back(self, monkeypatch):
        monkeypatch.setenv("PORT", "not-a-port")

        assert Config.load().server.port == DEFAULT_PORT

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = Config.load(tmp_path / "absent.json")

        assert cfg.server.port == DEFAULT_PORT

    def test_file_values_and_env_precedence(self, tmp_path, monkeypatch):
        path = tmp_path / "bridge.json"
        path.write_text(json.dumps({
            "HOST": "127.0.0.1",
            "PORT": 3050,
            "CORS_ORIGINS": ["http://localhost:5173"],
            "LOG_FILE": "/tmp/bridge.log",
        }))
        monkeypatch.setenv("PORT", "3060")

        cfg = Config.load(path)

        assert cfg.server.host == "127.0.0.1"
        assert cfg.server.port == 3060
        assert cfg.server.cors_origins == ["http://localhost:5173"]
        assert cfg.logging.log_file == "/tmp/bridge.log"

    def test_config_path_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / "bridge.json"
        path.write_text(json.dumps({"PORT": 3999}))
        monkeypatch.setenv("HC06_BRIDGE_CONFIG", str(path))

        assert Config.load().server.port == 3999

    def test_cors_and_dev_env(self, monkeypatch):
        monkeypatch.setenv("HC06_BRIDGE_CORS_ORIGINS", "http://a.local, http://b.local,")
        monkeypatch.setenv("HC06_BRIDGE_ENV", "dev")

        cfg = Config.load()

        assert cfg.server.cors_origins == ["http://a.local", "http://b.local"]
        assert cfg.logging.verbose is True

    def test_save_round_trips_through_load(self, tmp_path):
        cfg = Config.load()
        cfg.server.port = 3123
        path = tmp_path / "saved.json"

        cfg.save(path)

        assert Config.load(path).server.port == 3123

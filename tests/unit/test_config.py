"""Unit tests for configuration loading and editing."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from slimage.config import (
    ConfigManager,
    EnvVarNotFoundError,
    SlimageConfig,
    resolve_env_value,
)
from slimage.cli.commands.config import parse_value


class TestResolveEnvValue:
    """Tests for env: value resolution."""

    def test_plain_value_unchanged(self) -> None:
        assert resolve_env_value("https://hooks.test") == "https://hooks.test"
        assert resolve_env_value(None) is None

    def test_env_reference(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SLIMAGE_TEST_ENDPOINT", "https://hooks.test/env")
        assert resolve_env_value("env:SLIMAGE_TEST_ENDPOINT") == "https://hooks.test/env"

    def test_missing_env_strict(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SLIMAGE_MISSING", raising=False)
        with pytest.raises(EnvVarNotFoundError) as exc_info:
            resolve_env_value("env:SLIMAGE_MISSING")
        assert exc_info.value.var_name == "SLIMAGE_MISSING"
        assert resolve_env_value("env:SLIMAGE_MISSING", strict=False) is None

    def test_gateway_endpoint_lenient(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """An unset endpoint variable means 'not configured', not an error."""
        monkeypatch.delenv("SLIMAGE_MISSING", raising=False)
        cfg = SlimageConfig.model_validate({"gateway": {"endpoint": "env:SLIMAGE_MISSING"}})
        assert cfg.gateway.get_resolved_endpoint() is None


class TestSlimageConfig:
    """Tests for model defaults and validation."""

    def test_defaults(self) -> None:
        cfg = SlimageConfig()
        assert cfg.scan.window_size == 30
        assert cfg.scan.heavy_threshold_bytes == 500 * 1024
        assert cfg.run.item_timeout == 45.0
        assert cfg.run.skip_patterns == ["placeholder"]
        assert cfg.convert.quality == 0.8
        assert cfg.convert.format == "webp"
        assert cfg.store.backend == "local"

    def test_jpg_alias(self) -> None:
        assert SlimageConfig.model_validate({"convert": {"format": "JPG"}}).convert.format == "jpeg"

    @pytest.mark.parametrize(
        "data",
        [
            {"convert": {"format": "gif"}},
            {"convert": {"quality": 1.5}},
            {"scan": {"window_size": 0}},
            {"run": {"item_timeout": 0}},
            {"store": {"backend": "s3"}},
        ],
    )
    def test_invalid_values(self, data: dict) -> None:
        with pytest.raises(ValidationError):
            SlimageConfig.model_validate(data)


class TestConfigManager:
    """Tests for the config file fallback chain and set/save."""

    @pytest.fixture
    def isolated(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("SLIMAGE_CONFIG", raising=False)
        monkeypatch.setattr(ConfigManager, "DEFAULT_USER_CONFIG_DIR", tmp_path / "home")
        return tmp_path

    def test_defaults_without_files(self, isolated: Path) -> None:
        manager = ConfigManager()
        cfg = manager.load()
        assert manager.config_path is None
        assert cfg.scan.window_size == 30

    def test_cwd_file(self, isolated: Path) -> None:
        (isolated / "slimage.json").write_text(json.dumps({"scan": {"window_size": 12}}))
        manager = ConfigManager()
        assert manager.load().scan.window_size == 12
        assert manager.config_path == isolated / "slimage.json"

    def test_env_var_beats_cwd(self, isolated: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (isolated / "slimage.json").write_text(json.dumps({"scan": {"window_size": 12}}))
        other = isolated / "other.json"
        other.write_text(json.dumps({"scan": {"window_size": 7}}))
        monkeypatch.setenv("SLIMAGE_CONFIG", str(other))

        assert ConfigManager().load().scan.window_size == 7

    def test_explicit_path_wins(self, isolated: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        explicit = isolated / "explicit.json"
        explicit.write_text(json.dumps({"scan": {"window_size": 3}}))
        monkeypatch.setenv("SLIMAGE_CONFIG", str(isolated / "missing.json"))

        assert ConfigManager().load(config_path=explicit).scan.window_size == 3

    def test_user_dir_fallback(self, isolated: Path) -> None:
        home = isolated / "home"
        home.mkdir()
        (home / "config.json").write_text(json.dumps({"run": {"pacing_delay": 0}}))
        assert ConfigManager().load().run.pacing_delay == 0

    def test_get_dotted(self, isolated: Path) -> None:
        manager = ConfigManager()
        manager.load()
        assert manager.get("scan.window_size") == 30
        assert manager.get("scan.nope", "fallback") == "fallback"

    def test_set_validates(self, isolated: Path) -> None:
        manager = ConfigManager()
        manager.load()
        with pytest.raises(ValidationError):
            manager.set("scan.window_size", "abc")
        assert manager.get("scan.window_size") == 30

    def test_save_writes_only_changed_keys(self, isolated: Path) -> None:
        path = isolated / "slimage.json"
        path.write_text(json.dumps({"store": {"records_file": "./mine.json"}}))
        manager = ConfigManager()
        manager.load()

        manager.set("scan.window_size", 50)
        manager.save()

        saved = json.loads(path.read_text())
        assert saved == {"store": {"records_file": "./mine.json"}, "scan": {"window_size": 50}}


class TestParseValue:
    """Tests for CLI value parsing."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("true", True),
            ("False", False),
            ("null", None),
            ("42", 42),
            ("0.5", 0.5),
            ('["placeholder", "default"]', ["placeholder", "default"]),
            ("https://hooks.test/x", "https://hooks.test/x"),
        ],
    )
    def test_parse(self, raw: str, expected: object) -> None:
        assert parse_value(raw) == expected

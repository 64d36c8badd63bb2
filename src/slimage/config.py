"""Configuration management for slimage."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from slimage.constants import (
    CONFIG_FILENAME,
    DEFAULT_ASSETS_DIR,
    DEFAULT_DIRECT_FETCH_TIMEOUT,
    DEFAULT_ELEMENT_LOAD_TIMEOUT,
    DEFAULT_GATEWAY_TIMEOUT,
    DEFAULT_HEAVY_THRESHOLD_BYTES,
    DEFAULT_ITEM_TIMEOUT,
    DEFAULT_LOG_LEVEL,
    DEFAULT_LOG_RETENTION,
    DEFAULT_LOG_ROTATION,
    DEFAULT_PACING_DELAY,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_PUBLIC_BASE_URL,
    DEFAULT_QUALITY,
    DEFAULT_RECORD_NAMESPACE,
    DEFAULT_RECORDS_FILE,
    DEFAULT_SKIP_PATTERNS,
    DEFAULT_STATE_DIR,
    DEFAULT_STORE_TIMEOUT,
    DEFAULT_SUPABASE_BUCKET,
    DEFAULT_SUPABASE_SETTINGS_TABLE,
    DEFAULT_SUPABASE_TABLE,
    DEFAULT_TARGET_FORMAT,
    DEFAULT_WINDOW_SIZE,
    TARGET_CONTENT_TYPES,
)


class EnvVarNotFoundError(ValueError):
    """Raised when an environment variable referenced by env: syntax is not found."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name
        super().__init__(f"Environment variable not found: {var_name}")


def resolve_env_value(value: str | None, strict: bool = True) -> str | None:
    """Resolve ``env:VAR_NAME`` syntax to the environment variable's value.

    Args:
        value: The value to resolve. Plain values are returned unchanged.
        strict: If True, raise when the variable is missing; otherwise return None.

    Raises:
        EnvVarNotFoundError: If strict=True and the variable is not set.
    """
    if isinstance(value, str) and value.startswith("env:"):
        env_var = value[4:]
        env_value = os.environ.get(env_var)
        if env_value is None:
            if strict:
                raise EnvVarNotFoundError(env_var)
            return None
        return env_value
    return value


class ScanConfig(BaseModel):
    """Classification of records into candidates."""

    window_size: int = Field(default=DEFAULT_WINDOW_SIZE, ge=1)
    heavy_threshold_bytes: int = Field(default=DEFAULT_HEAVY_THRESHOLD_BYTES, ge=0)
    probe_timeout: float = Field(default=DEFAULT_PROBE_TIMEOUT, gt=0)
    force_all: bool = False


class RunConfig(BaseModel):
    """Sequential batch run settings."""

    item_timeout: float = Field(default=DEFAULT_ITEM_TIMEOUT, gt=0)
    pacing_delay: float = Field(default=DEFAULT_PACING_DELAY, ge=0)
    skip_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_SKIP_PATTERNS))


class ConvertConfig(BaseModel):
    """Local re-encoding settings."""

    mode: Literal["auto", "gateway", "local"] = "auto"
    quality: float = Field(default=DEFAULT_QUALITY, gt=0, le=1)
    format: str = DEFAULT_TARGET_FORMAT
    direct_fetch_timeout: float = Field(default=DEFAULT_DIRECT_FETCH_TIMEOUT, gt=0)
    element_load_timeout: float = Field(default=DEFAULT_ELEMENT_LOAD_TIMEOUT, gt=0)
    browser: bool = True

    @field_validator("format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        value = value.lower()
        if value == "jpg":
            value = "jpeg"
        if value not in TARGET_CONTENT_TYPES:
            raise ValueError(
                f"Unsupported format '{value}', expected one of {sorted(TARGET_CONTENT_TYPES)}"
            )
        return value


class GatewayConfig(BaseModel):
    """External conversion endpoint."""

    endpoint: str | None = None
    timeout: float = Field(default=DEFAULT_GATEWAY_TIMEOUT, gt=0)

    def get_resolved_endpoint(self) -> str | None:
        return resolve_env_value(self.endpoint, strict=False) or None


class StoreConfig(BaseModel):
    """Record and asset storage backends."""

    backend: Literal["local", "supabase"] = "local"
    timeout: float = Field(default=DEFAULT_STORE_TIMEOUT, gt=0)
    namespace: str = DEFAULT_RECORD_NAMESPACE
    # local backend
    records_file: str = DEFAULT_RECORDS_FILE
    assets_dir: str = DEFAULT_ASSETS_DIR
    public_base_url: str = DEFAULT_PUBLIC_BASE_URL
    # supabase backend
    supabase_url: str | None = None
    supabase_key: str | None = "env:SUPABASE_KEY"
    table: str = DEFAULT_SUPABASE_TABLE
    bucket: str = DEFAULT_SUPABASE_BUCKET
    settings_table: str = DEFAULT_SUPABASE_SETTINGS_TABLE

    def get_resolved_key(self, strict: bool = True) -> str | None:
        return resolve_env_value(self.supabase_key, strict=strict)

    def location(self) -> str:
        """A string identifying where records live (used for state naming)."""
        if self.backend == "supabase":
            return f"supabase:{self.supabase_url}/{self.table}"
        return f"local:{Path(self.records_file).expanduser().resolve()}"


class LogConfig(BaseModel):
    """Logging configuration."""

    level: str = DEFAULT_LOG_LEVEL
    dir: str | None = None
    rotation: str = DEFAULT_LOG_ROTATION
    retention: str = DEFAULT_LOG_RETENTION


class SlimageConfig(BaseModel):
    """Main configuration model."""

    scan: ScanConfig = Field(default_factory=ScanConfig)
    run: RunConfig = Field(default_factory=RunConfig)
    convert: ConvertConfig = Field(default_factory=ConvertConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    log: LogConfig = Field(default_factory=LogConfig)
    state_dir: str = DEFAULT_STATE_DIR


def _set_nested_value(data: dict[str, Any], key_path: str, value: Any) -> None:
    """Set a value in a nested dict by dot-separated key path."""
    parts = key_path.split(".")
    current = data
    for part in parts[:-1]:
        if part not in current or not isinstance(current[part], dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


class ConfigManager:
    """Configuration manager for loading and merging configs."""

    CONFIG_FILENAME = CONFIG_FILENAME
    DEFAULT_USER_CONFIG_DIR = Path.home() / ".slimage"

    def __init__(self) -> None:
        self._config: SlimageConfig | None = None
        self._config_path: Path | None = None
        self._raw_data: dict[str, Any] = {}
        self._modified_keys: set[str] = set()

    @property
    def config(self) -> SlimageConfig:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            self._config = self.load()
        return self._config

    @property
    def config_path(self) -> Path | None:
        return self._config_path

    def load(
        self,
        config_path: Path | str | None = None,
        env_override: bool = True,
    ) -> SlimageConfig:
        """Load configuration with a fallback chain.

        Priority (highest to lowest):
        1. Explicit config_path parameter
        2. SLIMAGE_CONFIG environment variable
        3. ./slimage.json (current directory)
        4. ~/.slimage/config.json (user directory)
        5. Default values
        """
        config_data: dict[str, Any] = {}

        resolved_path = self._resolve_config_path(config_path, env_override)
        if resolved_path and resolved_path.exists():
            with open(resolved_path, encoding="utf-8") as f:
                config_data = json.load(f)
            self._config_path = resolved_path

        self._raw_data = config_data.copy()
        self._modified_keys.clear()

        self._config = SlimageConfig.model_validate(config_data)
        return self._config

    def _resolve_config_path(
        self,
        config_path: Path | str | None,
        env_override: bool,
    ) -> Path | None:
        if config_path:
            return Path(config_path)

        if env_override:
            env_path = os.environ.get("SLIMAGE_CONFIG")
            if env_path:
                return Path(env_path)

        cwd_config = Path.cwd() / self.CONFIG_FILENAME
        if cwd_config.exists():
            return cwd_config

        user_config = self.DEFAULT_USER_CONFIG_DIR / "config.json"
        if user_config.exists():
            return user_config

        return None

    def save(self, path: Path | str | None = None, full_dump: bool = False) -> Path:
        """Save configuration.

        Without ``full_dump`` only keys changed through ``set`` are written
        back into the original JSON, keeping the user's layout intact.
        """
        if self._config is None:
            self._config = SlimageConfig()

        save_path = Path(path) if path else self._config_path
        if save_path is None:
            save_path = Path.cwd() / self.CONFIG_FILENAME

        if full_dump:
            output_data = self._config.model_dump(mode="json")
        else:
            output_data = self._raw_data.copy()
            for key in self._modified_keys:
                _set_nested_value(output_data, key, self.get(key))

        save_path.parent.mkdir(parents=True, exist_ok=True)
        with open(save_path, "w", encoding="utf-8") as f:
            json.dump(output_data, f, indent=2, ensure_ascii=False)
            f.write("\n")

        return save_path

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dot-separated key path.

        Example: config_manager.get("scan.window_size")
        """
        value: Any = self.config
        for part in key.split("."):
            if isinstance(value, BaseModel):
                value = getattr(value, part, None)
            elif isinstance(value, dict):
                value = value.get(part)
            else:
                return default

            if value is None:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value by dot-separated key path.

        The value is validated by re-validating the whole model, so
        ``set("scan.window_size", "abc")`` raises a pydantic ValidationError.
        """
        data = self.config.model_dump()
        _set_nested_value(data, key, value)
        self._config = SlimageConfig.model_validate(data)
        self._modified_keys.add(key)

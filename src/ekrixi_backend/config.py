"""Configuration module for the Ekrixi backend.

Settings come from three places, later ones winning:
1. Built-in defaults
2. An optional config.yaml (non-secret settings only)
3. Environment variables (and a local .env file, if present)

Key design principles:
- The Gemini API key is read from the environment only, never from config.yaml
- Settings are loaded once at startup and never mutated afterwards
- Validation happens at startup to fail fast with clear errors, before the
  server binds a port
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable

from dotenv import load_dotenv
from limits import parse as parse_rate_limit_string
from ruamel.yaml import YAML

logger = logging.getLogger(__name__)

API_KEY_ENV_VAR = "GEMINI_API_KEY"

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_TEXT_MODEL = "gemini-2.0-flash-exp"
DEFAULT_CONTENT_MODEL = "gemini-1.5-pro-002"
DEFAULT_RATE_LIMIT = "100/15 minutes"
DEFAULT_RATE_LIMIT_STORAGE_URI = "memory://"
DEFAULT_MAX_BODY_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_LOG_LEVEL = "INFO"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigurationError(ValueError):
    """Raised when settings are missing or invalid at startup."""


def _parse_str(raw: Any) -> str:
    value = str(raw).strip()
    if not value:
        raise ValueError("value is empty")
    return value


def _parse_positive_int(raw: Any) -> int:
    if isinstance(raw, bool):
        raise ValueError("expected an integer")
    value = int(raw)
    if value <= 0:
        raise ValueError("must be positive")
    return value


def _parse_positive_float(raw: Any) -> float:
    if isinstance(raw, bool):
        raise ValueError("expected a number")
    value = float(raw)
    if value <= 0:
        raise ValueError("must be positive")
    return value


def _parse_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    value = str(raw).strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ValueError("expected a boolean")


def _parse_rate_limit(raw: Any) -> str:
    value = _parse_str(raw)
    # Raises ValueError for strings like "lots per minute"
    parse_rate_limit_string(value)
    return value


def _parse_log_level(raw: Any) -> str:
    value = _parse_str(raw).upper()
    if value not in LOG_LEVELS:
        raise ValueError(f"expected one of {', '.join(LOG_LEVELS)}")
    return value


# (attribute, environment variable, config.yaml key, parser)
_SETTING_SOURCES: list[tuple[str, str, str, Callable[[Any], Any]]] = [
    ("host", "HOST", "host", _parse_str),
    ("port", "PORT", "port", _parse_positive_int),
    ("frontend_url", "FRONTEND_URL", "frontendUrl", _parse_str),
    ("default_text_model", "DEFAULT_TEXT_MODEL", "defaultTextModel", _parse_str),
    (
        "default_content_model",
        "DEFAULT_CONTENT_MODEL",
        "defaultContentModel",
        _parse_str,
    ),
    ("rate_limit", "RATE_LIMIT", "rateLimit", _parse_rate_limit),
    (
        "rate_limit_storage_uri",
        "RATE_LIMIT_STORAGE_URI",
        "rateLimitStorageUri",
        _parse_str,
    ),
    ("max_body_bytes", "MAX_BODY_BYTES", "maxBodyBytes", _parse_positive_int),
    (
        "upstream_timeout_seconds",
        "UPSTREAM_TIMEOUT_SECONDS",
        "upstreamTimeoutSeconds",
        _parse_positive_float,
    ),
    ("trust_proxy", "TRUST_PROXY", "trustProxy", _parse_bool),
    ("log_level", "LOG_LEVEL", "logLevel", _parse_log_level),
]

_KNOWN_YAML_KEYS = {yaml_key for _, _, yaml_key, _ in _SETTING_SOURCES}


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, established once at startup."""

    api_key: str = field(repr=False)
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    frontend_url: str | None = None  # None allows any origin
    default_text_model: str = DEFAULT_TEXT_MODEL
    default_content_model: str = DEFAULT_CONTENT_MODEL
    rate_limit: str = DEFAULT_RATE_LIMIT
    rate_limit_storage_uri: str = DEFAULT_RATE_LIMIT_STORAGE_URI
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    upstream_timeout_seconds: float | None = None
    trust_proxy: bool = False
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def load(
        cls,
        config_path: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> "Settings":
        """Load settings from config.yaml and the environment.

        Args:
            config_path: Path to a config.yaml. When omitted, ./config.yaml is
                used if it exists; the file is optional in that case.
            environ: Environment mapping. Defaults to os.environ, after loading
                a .env file from the working directory.

        Returns:
            Validated Settings

        Raises:
            ConfigurationError: If the API key is missing or a value is invalid
        """
        if environ is None:
            load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
            environ = os.environ

        file_values = _read_config_file(config_path)

        api_key = environ.get(API_KEY_ENV_VAR, "").strip()
        if not api_key:
            raise ConfigurationError(
                f"{API_KEY_ENV_VAR} environment variable is not set"
            )

        values: dict[str, Any] = {}
        for attr, env_var, yaml_key, parse in _SETTING_SOURCES:
            raw: Any = environ.get(env_var)
            source = env_var
            if raw is None or raw == "":
                raw = file_values.get(yaml_key)
                source = f"{yaml_key} in config file"
            if raw is None:
                continue
            try:
                values[attr] = parse(raw)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value for {source}: {raw!r} ({e})"
                ) from e

        settings = cls(api_key=api_key, **values)
        logger.info(f"Loaded settings: {settings.describe()}")
        return settings

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy with the given non-None values replaced."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self

    @property
    def cors_origins(self) -> list[str]:
        return [self.frontend_url] if self.frontend_url else ["*"]

    def describe(self) -> dict[str, Any]:
        """Log-safe view of the settings (never includes the API key)."""
        return {
            "host": self.host,
            "port": self.port,
            "allowed_origin": self.frontend_url or "*",
            "default_text_model": self.default_text_model,
            "default_content_model": self.default_content_model,
            "rate_limit": self.rate_limit,
            "max_body_bytes": self.max_body_bytes,
            "upstream_timeout_seconds": self.upstream_timeout_seconds,
            "trust_proxy": self.trust_proxy,
            "api_key_configured": bool(self.api_key),
        }


def _read_config_file(config_path: Path | None) -> dict[str, Any]:
    """Read config.yaml into a dict. Missing default file means no overrides."""
    if config_path is None:
        config_path = Path.cwd() / "config.yaml"
        if not config_path.exists():
            return {}
    elif not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    yaml = YAML(typ="safe")
    with config_path.open() as f:
        data = yaml.load(f)

    if not data or not isinstance(data, dict):
        raise ConfigurationError(
            f"Config file {config_path} is empty or invalid YAML"
        )

    for key in data:
        if key in ("apiKey", "api_key", API_KEY_ENV_VAR):
            logger.warning(
                f"Ignoring '{key}' in {config_path}: "
                f"the API key is read from {API_KEY_ENV_VAR} only"
            )
        elif key not in _KNOWN_YAML_KEYS:
            logger.warning(f"Unknown config key '{key}' in {config_path}")

    logger.info(f"Loaded config file {config_path}")
    return dict(data)

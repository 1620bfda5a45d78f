"""Configuration loading and validation for PicoLM Gateway."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path

from picolm_gateway.inference.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    api_key: str = ""


@dataclass
class PicoLMConfig:
    binary: str = ""
    model_path: str = ""
    timeout_seconds: int = 0  # 0 = derive from max_tokens
    max_tokens: int = 256
    threads: int = 4
    temperature: float = 0.7
    top_p: float = 0.9
    context_length: int = 2048
    cache_dir: str = ""
    model_name: str = "picolm-local"
    # Derived deadline: base + max_tokens * per_token, capped at max
    timeout_base_seconds: float = 60.0
    timeout_per_token_seconds: float = 0.5
    timeout_max_seconds: float = 600.0
    chars_per_token: int = 4  # usage estimate divisor

    def validate(self) -> None:
        """Range-check sampling defaults. Raises ConfigurationError."""
        if not 0 <= self.temperature <= 1:
            raise ConfigurationError(
                f"temperature must be between 0 and 1, got {self.temperature}"
            )
        if not 0 <= self.top_p <= 1:
            raise ConfigurationError(f"top_p must be between 0 and 1, got {self.top_p}")
        if self.max_tokens <= 0:
            raise ConfigurationError(f"max_tokens must be positive, got {self.max_tokens}")
        if self.threads <= 0:
            raise ConfigurationError(f"threads must be positive, got {self.threads}")
        if self.timeout_seconds < 0:
            raise ConfigurationError(
                f"timeout_seconds must not be negative, got {self.timeout_seconds}"
            )
        if self.chars_per_token <= 0:
            raise ConfigurationError(
                f"chars_per_token must be positive, got {self.chars_per_token}"
            )


@dataclass
class LoggingConfig:
    level: str = "info"  # debug, info, warn, error
    format: str = "text"  # text or json
    output: str = "stdout"  # stdout or file
    file_path: str = "logs/server.log"
    log_requests: bool = True


@dataclass
class GatewayConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    picolm: PicoLMConfig = field(default_factory=PicoLMConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def default_config_path() -> Path:
    return Path.home() / ".config" / "picolm-gateway" / "config.toml"


def load_config(config_path: str | Path | None = None) -> GatewayConfig:
    """Load configuration from TOML file, falling back to defaults.

    Search order:
    1. Explicit config_path argument (must exist)
    2. ~/.config/picolm-gateway/config.toml
    3. Built-in defaults

    Raises ConfigurationError when the file is unreadable or values are out
    of range.
    """
    config = GatewayConfig()

    # Load defaults from bundled config
    default_path = Path(__file__).parent / "config.default.toml"
    if default_path.exists():
        _merge_toml(config, default_path)

    if config_path:
        user_path = Path(config_path)
        if not user_path.exists():
            raise ConfigurationError(f"config file not found: {user_path}")
    else:
        user_path = default_config_path()

    if user_path.exists():
        _merge_toml(config, user_path)

    # Support PICOLM_API_KEY environment variable as alternative to config file
    env_api_key = os.environ.get("PICOLM_API_KEY")
    if env_api_key:
        config.server.api_key = env_api_key

    config.picolm.validate()

    config.picolm.binary = expand_home(config.picolm.binary)
    config.picolm.model_path = expand_home(config.picolm.model_path)
    config.picolm.cache_dir = expand_home(config.picolm.cache_dir)

    return config


def _merge_toml(config: GatewayConfig, path: Path) -> None:
    """Merge a TOML file into the config, overwriting only specified fields."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigurationError(f"failed to read config file {path}: {exc}") from exc

    for section in fields(config):
        values = data.get(section.name)
        if not isinstance(values, dict):
            continue
        target = getattr(config, section.name)
        for key, value in values.items():
            if hasattr(target, key):
                setattr(target, key, value)
            else:
                logger.warning("Ignoring unknown config key [%s] %s", section.name, key)


def expand_home(path: str) -> str:
    """Expand a leading ``~`` to the user's home directory."""
    if not path or not path.startswith("~"):
        return path
    return os.path.expanduser(path)

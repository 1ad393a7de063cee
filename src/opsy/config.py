"""Environment-backed application configuration."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path

import yaml

from opsy.errors import ConfigError

CONFIG_DIR_NAME = ".opsy"
CACHE_DIR_NAME = "cache"
CONFIG_FILE_NAME = "config.yaml"
ENV_PREFIX = "OPSY_"

DEFAULT_MODEL = "claude-3-5-sonnet-latest"
DEFAULT_API_URL = "https://api.anthropic.com/v1/messages"
DEFAULT_SHELL = "/bin/bash"
VALID_LOG_LEVELS = {"debug", "info", "warn", "error"}


@dataclass(slots=True)
class AnthropicConfig:
    """Language-model API settings."""

    api_key: str | None = None
    model: str = DEFAULT_MODEL
    temperature: float = 0.5
    max_tokens: int = 1024
    api_url: str = DEFAULT_API_URL
    request_timeout: float = 120.0


@dataclass(slots=True)
class ExecConfig:
    timeout: int = 0
    shell: str = DEFAULT_SHELL


@dataclass(slots=True)
class ToolsConfig:
    """Tool execution settings; ``exec.timeout`` of 0 falls back to ``timeout``."""

    timeout: int = 120
    exec: ExecConfig = field(default_factory=ExecConfig)

    @property
    def exec_timeout(self) -> int:
        return self.exec.timeout if self.exec.timeout > 0 else self.timeout


@dataclass(slots=True)
class LoggingConfig:
    path: str = str(Path.home() / CONFIG_DIR_NAME / "log.log")
    level: str = "info"


@dataclass(slots=True)
class AppConfig:
    """Runtime settings loaded from the config file and environment variables."""

    anthropic: AnthropicConfig = field(default_factory=AnthropicConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    max_turns: int = 0

    @classmethod
    def from_env(
        cls,
        *,
        home: Path | None = None,
        config_file: str | Path | None = None,
    ) -> AppConfig:
        home_dir = home if home is not None else Path.home()
        if config_file is not None:
            file_config = _load_file_config(Path(config_file).expanduser())
        else:
            file_config = _load_preferred_file_config(home_dir)
        anthropic_config = _section(file_config, "anthropic")
        tools_config = _section(file_config, "tools")
        exec_config = _section(tools_config, "exec")
        logging_config = _section(file_config, "logging")
        defaults = cls()

        return cls(
            anthropic=AnthropicConfig(
                api_key=(
                    _env("ANTHROPIC_API_KEY")
                    or os.getenv("ANTHROPIC_API_KEY")
                    or _to_optional_string(anthropic_config.get("api_key"))
                ),
                model=(
                    _env("ANTHROPIC_MODEL")
                    or _to_optional_string(anthropic_config.get("model"))
                    or defaults.anthropic.model
                ),
                temperature=_to_float(
                    _env("ANTHROPIC_TEMPERATURE") or anthropic_config.get("temperature"),
                    default=defaults.anthropic.temperature,
                ),
                max_tokens=_to_int(
                    _env("ANTHROPIC_MAX_TOKENS") or anthropic_config.get("max_tokens"),
                    default=defaults.anthropic.max_tokens,
                ),
                api_url=(
                    _env("ANTHROPIC_API_URL")
                    or _to_optional_string(anthropic_config.get("api_url"))
                    or defaults.anthropic.api_url
                ),
                request_timeout=_to_float(
                    _env("ANTHROPIC_REQUEST_TIMEOUT") or anthropic_config.get("request_timeout"),
                    default=defaults.anthropic.request_timeout,
                ),
            ),
            tools=ToolsConfig(
                timeout=_to_int(
                    _env("TOOLS_TIMEOUT") or tools_config.get("timeout"),
                    default=defaults.tools.timeout,
                ),
                exec=ExecConfig(
                    timeout=_to_int(
                        _env("TOOLS_EXEC_TIMEOUT") or exec_config.get("timeout"),
                        default=defaults.tools.exec.timeout,
                    ),
                    shell=(
                        _env("TOOLS_EXEC_SHELL")
                        or _to_optional_string(exec_config.get("shell"))
                        or defaults.tools.exec.shell
                    ),
                ),
            ),
            logging=LoggingConfig(
                path=(
                    _env("LOGGING_PATH")
                    or _to_optional_string(logging_config.get("path"))
                    or str(home_dir / CONFIG_DIR_NAME / "log.log")
                ),
                level=(
                    _env("LOGGING_LEVEL")
                    or _to_optional_string(logging_config.get("level"))
                    or defaults.logging.level
                ).lower(),
            ),
            max_turns=_to_int(
                _env("MAX_TURNS") or file_config.get("max_turns"),
                default=defaults.max_turns,
            ),
        )

    def validate(self) -> None:
        """Raise :class:`ConfigError` when a setting cannot be used."""
        if not self.anthropic.api_key:
            msg = "anthropic API key is required"
            raise ConfigError(msg)
        if not 0 <= self.anthropic.temperature <= 1:
            msg = "anthropic temperature must be between 0 and 1"
            raise ConfigError(msg)
        if self.anthropic.max_tokens < 1:
            msg = "anthropic max tokens must be greater than 0"
            raise ConfigError(msg)
        if self.logging.level not in VALID_LOG_LEVELS:
            msg = f"invalid logging level: {self.logging.level}"
            raise ConfigError(msg)
        if self.tools.timeout < 0 or self.tools.exec.timeout < 0:
            msg = "tool timeouts must not be negative"
            raise ConfigError(msg)
        if self.max_turns < 0:
            msg = "max turns must not be negative"
            raise ConfigError(msg)
        shell = self.tools.exec.shell
        if not shell or not os.path.isfile(shell) or not os.access(shell, os.X_OK):
            msg = f"invalid exec shell: {shell!r}"
            raise ConfigError(msg)

    def to_file_dict(self) -> dict[str, object]:
        """Serializable form written by :func:`bootstrap_home`; never includes the API key."""
        payload = asdict(self)
        anthropic = payload["anthropic"]
        if isinstance(anthropic, dict):
            anthropic.pop("api_key", None)
        return payload


def config_dir(home: Path | None = None) -> Path:
    return (home if home is not None else Path.home()) / CONFIG_DIR_NAME


def bootstrap_home(home: Path | None = None) -> Path:
    """Create the opsy directories and a default config file when missing."""
    directory = config_dir(home)
    try:
        directory.mkdir(parents=True, exist_ok=True)
        (directory / CACHE_DIR_NAME).mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        msg = f"failed to create directories: {exc}"
        raise ConfigError(msg) from exc

    config_path = directory / CONFIG_FILE_NAME
    if not config_path.exists():
        defaults = AppConfig(logging=LoggingConfig(path=str(directory / "log.log")))
        try:
            with config_path.open("w", encoding="utf-8") as fh:
                yaml.safe_dump(defaults.to_file_dict(), fh, sort_keys=False)
        except OSError as exc:
            msg = f"failed to write config: {exc}"
            raise ConfigError(msg) from exc
    return config_path


def _env(name: str) -> str | None:
    return _to_optional_string(os.getenv(f"{ENV_PREFIX}{name}"))


def _section(config: dict[str, object], key: str) -> dict[str, object]:
    value = config.get(key)
    return value if isinstance(value, dict) else {}


def _to_optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _load_file_config(path: Path) -> dict[str, object]:
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            parsed = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError):
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {}


def _load_preferred_file_config(home: Path) -> dict[str, object]:
    explicit_path = os.getenv(f"{ENV_PREFIX}CONFIG_FILE")
    if explicit_path:
        return _load_file_config(Path(explicit_path).expanduser())
    return _load_file_config(config_dir(home) / CONFIG_FILE_NAME)


def _to_int(value: object, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return default
    return default


def _to_float(value: object, *, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return default
    return default

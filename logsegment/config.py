"""Configuration loading from CLI args, env vars, and optional YAML file."""

import logging
import os
from dataclasses import dataclass

import yaml

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """Invalid combination or value of settings."""


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class Config:
    path: str | None = None          # file to read; "-" or None for stdin
    follow: bool = False
    timeout_ms: int = 50             # bounded wait per read in follow mode
    backlog: int = 100               # lines shown when starting to follow a file
    encoding: str = "utf-8"
    errors: str = "replace"
    command: tuple[str, ...] = ()    # read this process's stdout instead
    log_level: str = "WARNING"

    def validate(self) -> "Config":
        if self.timeout_ms <= 0:
            raise ConfigError(f"timeout_ms must be positive, got {self.timeout_ms}")
        if self.backlog < 0:
            raise ConfigError(f"backlog must not be negative, got {self.backlog}")
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"Unknown log level {self.log_level!r}")
        if self.command and self.path not in (None, "-"):
            raise ConfigError("A path and --command cannot be used together")
        return self


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        logger.info("Loaded YAML config from %s", path)
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file {path} is not valid YAML: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def _pick(cli_value, env_name: str, yaml_data: dict, key: str, default, convert=str):
    """First set value of: CLI arg, environment variable, YAML key, default."""
    if cli_value is not None:
        return cli_value
    if env_name in os.environ:
        return convert(os.environ[env_name])
    if key in yaml_data:
        return convert(yaml_data[key]) if isinstance(yaml_data[key], str) else yaml_data[key]
    return default


def load_config(cli_args, yaml_data: dict) -> Config:
    """Build Config from CLI args, env vars, and parsed YAML data."""
    try:
        command = getattr(cli_args, "command", None) or yaml_data.get("command") or ()
        if isinstance(command, str):
            command = command.split()

        return Config(
            path=getattr(cli_args, "path", None) or yaml_data.get("path"),
            follow=bool(_pick(
                True if getattr(cli_args, "follow", False) else None,
                "LOGSEG_FOLLOW", yaml_data, "follow", Config.follow, _parse_bool,
            )),
            timeout_ms=int(_pick(
                getattr(cli_args, "timeout_ms", None),
                "LOGSEG_TIMEOUT_MS", yaml_data, "timeout_ms", Config.timeout_ms, int,
            )),
            backlog=int(_pick(
                getattr(cli_args, "backlog", None),
                "LOGSEG_BACKLOG", yaml_data, "backlog", Config.backlog, int,
            )),
            encoding=_pick(
                getattr(cli_args, "encoding", None),
                "LOGSEG_ENCODING", yaml_data, "encoding", Config.encoding,
            ),
            errors=yaml_data.get("errors", Config.errors),
            command=tuple(command),
            log_level=str(_pick(
                getattr(cli_args, "log_level", None),
                "LOG_LEVEL", yaml_data, "log_level", Config.log_level,
            )).upper(),
        ).validate()
    except ConfigError:
        raise
    except (AttributeError, TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}") from e

"""Hierarchical configuration loading from files and environment variables."""

from __future__ import annotations

import json
import os
import re
from collections.abc import Iterable, Mapping
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

import yaml

CONFIGURATION_DIR = "configuration"
CONFIG_DIR_ENV_VAR = "APP_CONFIG_DIR"
CONFIG_FILE_EXTENSIONS = ("yaml", "yml", "json")
ENV_PREFIX = "APP"
ENV_PREFIX_SEPARATOR = "_"
ENV_SEPARATOR = "__"
LIST_SEPARATOR = ","
APP_ENVIRONMENT_ENV_NAME = "APP_ENVIRONMENT"

_INTEGER = re.compile(r"[+-]?\d+")
_FLOAT = re.compile(
    r"[+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|inf|infinity|nan)",
    re.IGNORECASE,
)
_I64_MIN, _I64_MAX = -(2**63), 2**63 - 1

T = TypeVar("T")


class LoadConfigError(Exception):
    """Raised when configuration cannot be loaded."""


class MissingConfigurationDirectoryError(LoadConfigError):
    """The configuration directory does not exist."""

    def __init__(self, directory: Path) -> None:
        super().__init__(f"configuration directory `{directory}` does not exist")
        self.directory = directory


class ConfigurationFileMissingError(LoadConfigError):
    """A required configuration file could not be found."""

    def __init__(self, kind: str, directory: Path, attempted: str) -> None:
        super().__init__(
            f"could not locate {kind} configuration in `{directory}`; attempted: {attempted}"
        )
        self.kind = kind
        self.directory = directory
        self.attempted = attempted


class InvalidEnvironmentError(LoadConfigError):
    """The runtime environment name is not supported."""


class DeserializationError(LoadConfigError):
    """The merged settings could not be turned into the configuration type."""


class Environment(Enum):
    """Runtime environment for the application."""

    PROD = "prod"
    STAGING = "staging"
    DEV = "dev"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value: str) -> Environment:
        lowered = value.lower()
        for member in cls:
            if member.value == lowered:
                return member
        raise InvalidEnvironmentError(
            f"{lowered} is not a supported environment. Use either `prod`/`staging`/`dev`."
        )

    @classmethod
    def load(cls, environ: Mapping[str, str] | None = None) -> Environment:
        """Read the environment from APP_ENVIRONMENT, defaulting to prod."""
        env = os.environ if environ is None else environ
        return cls.parse(env.get(APP_ENVIRONMENT_ENV_NAME, "prod"))


def find_configuration_file(directory: Path | str, stem: str) -> Path | None:
    """Return the first existing `<stem>.<ext>` file in the directory, if any."""
    directory = Path(directory)
    for extension in CONFIG_FILE_EXTENSIONS:
        path = directory / f"{stem}.{extension}"
        if path.is_file():
            return path
    return None


def _configuration_directory(env: Mapping[str, str]) -> Path:
    configured = env.get(CONFIG_DIR_ENV_VAR)
    if configured is not None:
        directory = Path(configured)
        if configured and directory.is_dir():
            return directory
        raise MissingConfigurationDirectoryError(directory)
    try:
        directory = Path.cwd() / CONFIGURATION_DIR
    except OSError as err:
        raise LoadConfigError("failed to determine the current directory") from err
    if not directory.is_dir():
        raise MissingConfigurationDirectoryError(directory)
    return directory


def _read_file(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            if path.suffix == ".json":
                content = json.load(handle)
            else:
                content = yaml.safe_load(handle)
    except (OSError, ValueError, yaml.YAMLError) as err:
        raise LoadConfigError("failed to initialize configuration builder") from err
    if content is None:
        return {}
    if not isinstance(content, dict):
        raise LoadConfigError(
            f"failed to initialize configuration builder: `{path}` does not hold a map"
        )
    return content


def _merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            merged[key] = _merge(current, value)
        else:
            merged[key] = value
    return merged


def _set_path(settings: dict[str, Any], path: list[str], value: Any) -> None:
    *parents, last = path
    node = settings
    for segment in parents:
        child = node.get(segment)
        if not isinstance(child, dict):
            child = {}
            node[segment] = child
        node = child
    node[last] = value


def _parse_env_value(key: str, raw: str, list_keys: frozenset[str]) -> Any:
    lowered = raw.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if _INTEGER.fullmatch(raw):
        number = int(raw)
        if _I64_MIN <= number <= _I64_MAX:
            return number
    if _FLOAT.fullmatch(raw):
        return float(raw)
    if key in list_keys:
        return raw.split(LIST_SEPARATOR)
    return raw


def _apply_environment(
    settings: dict[str, Any], env: Mapping[str, str], list_keys: frozenset[str]
) -> dict[str, Any]:
    prefix = (ENV_PREFIX + ENV_PREFIX_SEPARATOR).lower()
    for name, raw in env.items():
        if not name.lower().startswith(prefix):
            continue
        key = name[len(prefix):].lower()
        if not key:
            continue
        path = key.split(ENV_SEPARATOR)
        if any(not segment for segment in path):
            raise LoadConfigError(
                f"failed to load configuration from environment variables: invalid key `{name}`"
            )
        _set_path(settings, path, _parse_env_value(".".join(path), raw, list_keys))
    return settings


def load_settings(
    list_parse_keys: Iterable[str] = (), environ: Mapping[str, str] | None = None
) -> dict[str, Any]:
    """Merge the base file, the environment file and APP_ overrides into one dict."""
    env = os.environ if environ is None else environ
    directory = _configuration_directory(env)
    environment = Environment.load(env)

    base_file = find_configuration_file(directory, "base")
    if base_file is None:
        attempted = ", ".join(
            f"`{directory / f'base.{extension}'}`" for extension in CONFIG_FILE_EXTENSIONS
        )
        raise ConfigurationFileMissingError("base", directory, attempted)

    settings = _read_file(base_file)
    environment_file = find_configuration_file(directory, str(environment))
    if environment_file is not None:
        settings = _merge(settings, _read_file(environment_file))

    list_keys = frozenset(key.lower() for key in list_parse_keys)
    return _apply_environment(settings, env, list_keys)


def load_config(config_type: type[T], environ: Mapping[str, str] | None = None) -> T:
    """Load settings and build `config_type` from them via its `from_dict`."""
    list_parse_keys = getattr(config_type, "LIST_PARSE_KEYS", ())
    settings = load_settings(list_parse_keys, environ)
    try:
        return config_type.from_dict(settings)  # type: ignore[attr-defined]
    except (KeyError, TypeError, ValueError) as err:
        raise DeserializationError("failed to deserialize configuration") from err
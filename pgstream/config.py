"""Configuration types for the stream daemon."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

SCHEMA_NAME = "pgstream"
"""The schema name for pgstream."""

EVENTS_TABLE = "events"
"""The events table name."""

_TRUE_WORDS = frozenset({"true", "on", "yes", "1"})
_FALSE_WORDS = frozenset({"false", "off", "no", "0"})
_INTEGER = re.compile(r"[+-]?\d+")


def _mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"invalid type for {what}: expected a map, got {type(data).__name__}")
    return data


def _field(data: Mapping[str, Any], key: str) -> Any:
    if key not in data or data[key] is None:
        raise ValueError(f"missing field `{key}`")
    return data[key]


def _as_str(value: Any, key: str) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    raise ValueError(f"invalid type for `{key}`: expected a string")


def _as_optional_str(value: Any, key: str) -> str | None:
    return None if value is None else _as_str(value, key)


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
    raise ValueError(f"invalid value for `{key}`: expected a boolean")


def _as_int(value: Any, key: str, maximum: int | None = None) -> int:
    if isinstance(value, bool):
        number = int(value)
    elif isinstance(value, int):
        number = value
    elif isinstance(value, float) and value.is_integer():
        number = int(value)
    elif isinstance(value, str) and _INTEGER.fullmatch(value.strip()):
        number = int(value.strip())
    else:
        raise ValueError(f"invalid value for `{key}`: expected an integer")
    if number < 0:
        raise ValueError(f"invalid value for `{key}`: {number} is negative")
    if maximum is not None and number > maximum:
        raise ValueError(f"invalid value for `{key}`: {number} exceeds {maximum}")
    return number


@dataclass(frozen=True)
class TlsConfig:
    """TLS settings for a Postgres connection."""

    enabled: bool
    trusted_root_certs: str

    @classmethod
    def from_dict(cls, data: Any) -> TlsConfig:
        data = _mapping(data, "tls")
        return cls(
            enabled=_as_bool(_field(data, "enabled"), "enabled"),
            trusted_root_certs=_as_str(
                _field(data, "trusted_root_certs"), "trusted_root_certs"
            ),
        )


@dataclass(frozen=True)
class PgConnectionConfigWithoutSecrets:
    """Postgres connection settings with the password left out."""

    host: str
    port: int
    name: str
    username: str
    tls: TlsConfig


@dataclass(frozen=True)
class PgConnectionConfig:
    """Postgres connection settings; the password never appears in the repr."""

    host: str
    port: int
    name: str
    username: str
    tls: TlsConfig
    password: str | None = field(default=None, repr=False)

    @classmethod
    def from_dict(cls, data: Any) -> PgConnectionConfig:
        data = _mapping(data, "pg_connection")
        return cls(
            host=_as_str(_field(data, "host"), "host"),
            port=_as_int(_field(data, "port"), "port", maximum=65535),
            name=_as_str(_field(data, "name"), "name"),
            username=_as_str(_field(data, "username"), "username"),
            password=_as_optional_str(data.get("password"), "password"),
            tls=TlsConfig.from_dict(_field(data, "tls")),
        )

    def without_secrets(self) -> PgConnectionConfigWithoutSecrets:
        return PgConnectionConfigWithoutSecrets(
            host=self.host,
            port=self.port,
            name=self.name,
            username=self.username,
            tls=self.tls,
        )


@dataclass(frozen=True)
class BatchConfig:
    """Batch size and fill-time limits."""

    max_size: int
    max_fill_ms: int

    @classmethod
    def from_dict(cls, data: Any) -> BatchConfig:
        data = _mapping(data, "batch")
        return cls(
            max_size=_as_int(_field(data, "max_size"), "max_size"),
            max_fill_ms=_as_int(_field(data, "max_fill_ms"), "max_fill_ms"),
        )


class SinkConfig(Enum):
    """Where replicated events are sent."""

    MEMORY = "memory"

    @classmethod
    def from_dict(cls, data: Any) -> SinkConfig:
        data = _mapping(data, "sink")
        kind = _field(data, "type")
        for member in cls:
            if kind == member.value:
                return member
        expected = ", ".join(f"`{member.value}`" for member in cls)
        raise ValueError(f"unknown variant `{kind}`, expected one of {expected}")


@dataclass(frozen=True)
class StreamConfigWithoutSecrets:
    """Stream settings that are safe to serialize."""

    id: int
    pg_connection: PgConnectionConfigWithoutSecrets
    batch: BatchConfig


@dataclass(frozen=True)
class StreamConfig:
    """Settings for one replication stream."""

    id: int
    pg_connection: PgConnectionConfig
    batch: BatchConfig

    @classmethod
    def from_dict(cls, data: Any) -> StreamConfig:
        data = _mapping(data, "stream")
        return cls(
            id=_as_int(_field(data, "id"), "id", maximum=2**64 - 1),
            pg_connection=PgConnectionConfig.from_dict(_field(data, "pg_connection")),
            batch=BatchConfig.from_dict(_field(data, "batch")),
        )

    def without_secrets(self) -> StreamConfigWithoutSecrets:
        return StreamConfigWithoutSecrets(
            id=self.id,
            pg_connection=self.pg_connection.without_secrets(),
            batch=self.batch,
        )


@dataclass(frozen=True)
class PipelineConfig:
    """Top-level configuration: the stream and its sink."""

    LIST_PARSE_KEYS: ClassVar[tuple[str, ...]] = ()

    stream: StreamConfig
    sink: SinkConfig

    @classmethod
    def from_dict(cls, data: Any) -> PipelineConfig:
        data = _mapping(data, "configuration")
        return cls(
            stream=StreamConfig.from_dict(_field(data, "stream")),
            sink=SinkConfig.from_dict(_field(data, "sink")),
        )
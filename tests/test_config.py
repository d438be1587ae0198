import dataclasses

import pytest

from pgstream.config import (
    BatchConfig,
    PgConnectionConfig,
    PgConnectionConfigWithoutSecrets,
    PipelineConfig,
    SinkConfig,
    StreamConfig,
    StreamConfigWithoutSecrets,
    TlsConfig,
)


def _pipeline_data():
    return {
        "stream": {
            "id": 1,
            "pg_connection": {
                "host": "localhost",
                "port": 5432,
                "name": "postgres",
                "username": "postgres",
                "password": None,
                "tls": {"enabled": False, "trusted_root_certs": ""},
            },
            "batch": {"max_size": 100, "max_fill_ms": 50},
        },
        "sink": {"type": "memory"},
    }


def test_pipeline_config_from_dict():
    config = PipelineConfig.from_dict(_pipeline_data())
    assert config.stream.id == 1
    assert config.stream.pg_connection.host == "localhost"
    assert config.stream.pg_connection.port == 5432
    assert config.stream.pg_connection.name == "postgres"
    assert config.stream.pg_connection.username == "postgres"
    assert config.stream.pg_connection.password is None
    assert config.stream.pg_connection.tls == TlsConfig(enabled=False, trusted_root_certs="")
    assert config.stream.batch == BatchConfig(max_size=100, max_fill_ms=50)
    assert config.sink is SinkConfig.MEMORY


def test_string_values_are_coerced():
    data = _pipeline_data()
    data["stream"]["id"] = "2"
    data["stream"]["pg_connection"]["port"] = "5433"
    data["stream"]["pg_connection"]["tls"]["enabled"] = "false"
    data["stream"]["batch"]["max_size"] = "200"
    config = PipelineConfig.from_dict(data)
    assert config.stream.id == 2
    assert config.stream.pg_connection.port == 5433
    assert config.stream.pg_connection.tls.enabled is False
    assert config.stream.batch.max_size == 200


def test_missing_password_defaults_to_none():
    data = _pipeline_data()["stream"]["pg_connection"]
    del data["password"]
    assert PgConnectionConfig.from_dict(data).password is None


def test_password_hidden_from_repr():
    data = _pipeline_data()["stream"]["pg_connection"]
    data["password"] = "secret"
    connection = PgConnectionConfig.from_dict(data)
    assert connection.password == "secret"
    assert "secret" not in repr(connection)


def test_without_secrets_drops_password():
    data = _pipeline_data()
    data["stream"]["pg_connection"]["password"] = "secret"
    stream = StreamConfig.from_dict(data["stream"])
    public = stream.without_secrets()
    assert isinstance(public, StreamConfigWithoutSecrets)
    assert isinstance(public.pg_connection, PgConnectionConfigWithoutSecrets)
    assert public.id == stream.id
    assert public.batch == stream.batch
    assert public.pg_connection.host == stream.pg_connection.host
    assert "secret" not in str(dataclasses.asdict(public))


@pytest.mark.parametrize("field_name", ["host", "port", "name", "username", "tls"])
def test_missing_connection_field_raises(field_name):
    data = _pipeline_data()["stream"]["pg_connection"]
    del data[field_name]
    with pytest.raises(ValueError, match=field_name):
        PgConnectionConfig.from_dict(data)


def test_port_out_of_range_raises():
    data = _pipeline_data()["stream"]["pg_connection"]
    data["port"] = 70000
    with pytest.raises(ValueError):
        PgConnectionConfig.from_dict(data)


def test_negative_batch_size_raises():
    with pytest.raises(ValueError):
        BatchConfig.from_dict({"max_size": -1, "max_fill_ms": 50})


def test_invalid_boolean_raises():
    with pytest.raises(ValueError):
        TlsConfig.from_dict({"enabled": "maybe", "trusted_root_certs": ""})


def test_unknown_sink_type_raises():
    with pytest.raises(ValueError, match="unknown variant"):
        SinkConfig.from_dict({"type": "kafka"})


def test_sink_type_is_case_sensitive():
    with pytest.raises(ValueError):
        SinkConfig.from_dict({"type": "Memory"})


def test_sink_without_type_raises():
    with pytest.raises(ValueError, match="type"):
        SinkConfig.from_dict({})


def test_non_mapping_stream_raises():
    with pytest.raises(ValueError):
        StreamConfig.from_dict(["not", "a", "map"])
# pgstream

Building blocks for a long-running Postgres event stream: layered
configuration loading, daily partition planning for the events table,
an in-process metrics registry with a Prometheus text endpoint, and async
stream adapters that batch items by size and time.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Configuration

`pgstream.config` holds frozen dataclasses for the settings:
`PipelineConfig` (a `StreamConfig` and a `SinkConfig`), `StreamConfig`
(`id`, `pg_connection`, `batch`), `PgConnectionConfig`, `TlsConfig` and
`BatchConfig`. Each has a `from_dict` class method that validates a plain
dict; missing fields, wrong types, negative numbers and ports above 65535
raise `ValueError`. `SinkConfig` is an enum with the single member
`MEMORY`, chosen with `type: memory`.

The password of a `PgConnectionConfig` is left out of its repr.
`StreamConfig.without_secrets()` returns a `StreamConfigWithoutSecrets`
whose connection settings carry no password at all.

`pgstream.loading.load_config(config_type, environ=None)` builds any type
with a `from_dict` class method from layered settings:

- The directory comes from the `APP_CONFIG_DIR` environment variable, or
  `./configuration` when it is not set. A missing directory raises
  `MissingConfigurationDirectoryError`.
- `base.yaml`, `base.yml` or `base.json` (tried in that order) is required;
  without it `ConfigurationFileMissingError` is raised.
- `{environment}.yaml|yml|json` is optional and merged over the base file.
  The environment comes from `APP_ENVIRONMENT` (`prod`, `staging` or `dev`,
  case-insensitive; default `prod`); any other value raises
  `InvalidEnvironmentError`.
- Environment variables prefixed with `APP_` override both files. Nested
  keys use a double underscore, e.g. `APP_STREAM__PG_CONNECTION__HOST`.
  Values of `true`/`false`, integers and floats are parsed as such; keys
  named in the type's `LIST_PARSE_KEYS` are split on commas.
- If `from_dict` rejects the merged settings, `DeserializationError` is
  raised.

All of these errors derive from `LoadConfigError`. `load_settings` returns
the merged dict without building a type, and `environ` may be passed in
place of `os.environ`.

```python
from pgstream.config import PipelineConfig
from pgstream.loading import load_config

config = load_config(PipelineConfig)
print(config.stream.id, config.stream.pg_connection.host)
```

A minimal `base.yml`:

```yaml
stream:
  id: 1
  pg_connection:
    host: "localhost"
    port: 5432
    name: "postgres"
    username: "postgres"
    password: null
    tls:
      enabled: false
      trusted_root_certs: ""
  batch:
    max_size: 100
    max_fill_ms: 50
sink:
  type: memory
```

## Partition maintenance

`pgstream.maintenance.PartitionInfo` describes a daily partition named
`<table>_YYYYMMDD`. `PartitionInfo.from_name` parses the date from the name
(raising `PartitionNameError` when it cannot), `PartitionInfo.for_date`
builds one for a date, and `range_bounds()` gives the `YYYY-MM-DD` start and
end of its range.

`RetentionPolicy(retention_days).plan_maintenance(partitions, table_name,
days_ahead, now)` returns the partitions older than the retention cutoff to
drop, and the partitions for today and the following days that do not yet
exist:

```python
from datetime import datetime, timezone
from pgstream.maintenance import PartitionInfo, RetentionPolicy

policy = RetentionPolicy(7)
partitions = [PartitionInfo.from_name("events_20240301")]
to_drop, to_create = policy.plan_maintenance(
    partitions, "events", 3, datetime(2024, 3, 15, 12, tzinfo=timezone.utc)
)
```

`run_maintenance(store, now=None, registry=None)` is a coroutine that
applies a 7-day retention and creates 3 days ahead on the `pgstream.events`
table. The store is any object with a `stream_id` attribute and the async
methods `load_partitions(schema, table)`, `delete_partition(schema, name)`
and `create_partition(schema, table, partition)`. It returns the run's
start time and records the run in the metrics registry, as a success or a
failure.

## Metrics

`pgstream.metrics.MetricsRegistry` is a thread-safe store of counters,
gauges and histograms keyed by name and labels. `value(name, labels)`
reads a series back (histograms give their observations), and `render()`
produces the Prometheus text format, with histograms written as summaries
(`_sum` and `_count`). `get_registry()` returns the process-wide registry
used by every function when no `registry` is passed.

The recording helpers are `record_failover_entered`,
`record_failover_recovered`, `record_maintenance_run`,
`record_processing_lag` and `record_events_processed`, each labelled with
`stream_id`.

`init_metrics(host="::", port=9000, registry=None)` starts an HTTP server
on a daemon thread that answers every GET request with the rendered
registry, registers the metric descriptions, and returns the server; call
`shutdown()` and `server_close()` on it to stop it.

## Batching

`pgstream.batching.TimeoutBatchStream(stream, batch_config)` wraps an async
iterable and yields lists of items: a batch is emitted when it reaches
`max_size` items, when `max_fill_ms` has passed since the batch began, or
as a final partial batch when the inner stream ends.

`TimeoutStream(stream, max_batch_fill_duration)` yields `Value(item)` for
each inner item and `Timeout()` when nothing arrives within the duration
(seconds or a `timedelta`). `mark_reset_timer()` restarts the countdown on
the next read. Both adapters have `aclose()` to cancel an outstanding read.

## What this package does not do

It does not connect to Postgres. There is no replication daemon, no
failover client, no schema migrations and no state store: the partition
store used by `run_maintenance` must be supplied by the caller. The only
sink configuration is `memory`, and no sink is implemented. The package
installs no command.
"""In-process metrics registry with a Prometheus text exposition endpoint."""

from __future__ import annotations

import math
import socket
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Union

STREAM_FAILOVER_ACTIVE = "stream_failover_active"
STREAM_FAILOVER_ENTERED_TOTAL = "stream_failover_entered_total"
STREAM_FAILOVER_RECOVERED_TOTAL = "stream_failover_recovered_total"
STREAM_FAILOVER_DURATION_SECONDS = "stream_failover_duration_seconds"

MAINTENANCE_RUNS_TOTAL = "maintenance_runs_total"
MAINTENANCE_DURATION_MILLISECONDS = "maintenance_duration_milliseconds"

STREAM_PROCESSING_LAG_MILLISECONDS = "stream_processing_lag_milliseconds"
STREAM_EVENTS_PROCESSED_TOTAL = "stream_events_processed_total"

STREAM_ID_LABEL = "stream_id"
RESULT_LABEL = "result"

DEFAULT_HOST = "::"
DEFAULT_PORT = 9000

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

_LabelKey = tuple[tuple[str, str], ...]
_Value = Union[float, list]


class MetricKind(Enum):
    """The kind of a metric series."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"

    @property
    def exposition_type(self) -> str:
        return "summary" if self is MetricKind.HISTOGRAM else self.value


@dataclass(frozen=True)
class _Description:
    kind: MetricKind
    unit: str
    text: str


def _label_key(labels: Mapping[str, object] | None) -> _LabelKey:
    if not labels:
        return ()
    return tuple(sorted((str(key), str(value)) for key, value in labels.items()))


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _format_labels(key: _LabelKey) -> str:
    if not key:
        return ""
    inner = ",".join(f'{name}="{_escape(value)}"' for name, value in key)
    return "{" + inner + "}"


def _format_number(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


class MetricsRegistry:
    """Thread-safe store of counters, gauges and histograms keyed by name and labels."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._descriptions: dict[str, _Description] = {}
        self._kinds: dict[str, MetricKind] = {}
        self._series: dict[str, dict[_LabelKey, _Value]] = {}

    def describe(self, name: str, kind: MetricKind | str, unit: str, description: str) -> None:
        """Attach a unit and help text to a metric name."""
        kind = MetricKind(kind)
        with self._lock:
            self._check_kind(name, kind)
            self._descriptions[name] = _Description(kind, unit, description)

    def _check_kind(self, name: str, kind: MetricKind) -> None:
        existing = self._kinds.setdefault(name, kind)
        if existing is not kind:
            raise ValueError(
                f"metric `{name}` is a {existing.value}, not a {kind.value}"
            )

    def _series_for(self, name: str, kind: MetricKind) -> dict[_LabelKey, _Value]:
        self._check_kind(name, kind)
        return self._series.setdefault(name, {})

    def increment_counter(
        self, name: str, labels: Mapping[str, object] | None = None, value: float = 1
    ) -> None:
        if value < 0:
            raise ValueError("counters can only be incremented by non-negative values")
        key = _label_key(labels)
        with self._lock:
            series = self._series_for(name, MetricKind.COUNTER)
            series[key] = series.get(key, 0.0) + value

    def set_gauge(
        self, name: str, labels: Mapping[str, object] | None = None, value: float = 0.0
    ) -> None:
        key = _label_key(labels)
        with self._lock:
            self._series_for(name, MetricKind.GAUGE)[key] = float(value)

    def record_histogram(
        self, name: str, labels: Mapping[str, object] | None = None, value: float = 0.0
    ) -> None:
        key = _label_key(labels)
        with self._lock:
            series = self._series_for(name, MetricKind.HISTOGRAM)
            series.setdefault(key, []).append(float(value))

    def value(self, name: str, labels: Mapping[str, object] | None = None) -> float | tuple[float, ...]:
        """Current value of a series; histograms give their observations.

        Raises KeyError when no such series has been recorded.
        """
        key = _label_key(labels)
        with self._lock:
            stored = self._series[name][key]
            if isinstance(stored, list):
                return tuple(stored)
            return stored

    def render(self) -> str:
        """Render every metric in the Prometheus text exposition format."""
        lines: list[str] = []
        with self._lock:
            for name in sorted(set(self._series) | set(self._descriptions)):
                series = self._series.get(name, {})
                if not series:
                    continue
                kind = self._kinds[name]
                description = self._descriptions.get(name)
                if description is not None:
                    lines.append(f"# HELP {name} {description.text}")
                lines.append(f"# TYPE {name} {kind.exposition_type}")
                for key in sorted(series):
                    stored = series[key]
                    labels = _format_labels(key)
                    if isinstance(stored, list):
                        lines.append(f"{name}_sum{labels} {_format_number(sum(stored))}")
                        lines.append(f"{name}_count{labels} {len(stored)}")
                    else:
                        lines.append(f"{name}{labels} {_format_number(stored)}")
        return "\n".join(lines) + ("\n" if lines else "")


_default_registry = MetricsRegistry()


def get_registry() -> MetricsRegistry:
    """The process-wide registry used when none is passed."""
    return _default_registry


def _resolve(registry: MetricsRegistry | None) -> MetricsRegistry:
    return _default_registry if registry is None else registry


def register_failover_metrics(registry: MetricsRegistry | None = None) -> None:
    registry = _resolve(registry)
    registry.describe(
        STREAM_FAILOVER_ACTIVE,
        MetricKind.GAUGE,
        "count",
        "Whether the stream is currently in failover mode (1 = failover, 0 = healthy)",
    )
    registry.describe(
        STREAM_FAILOVER_ENTERED_TOTAL,
        MetricKind.COUNTER,
        "count",
        "Total number of times the stream has entered failover mode",
    )
    registry.describe(
        STREAM_FAILOVER_RECOVERED_TOTAL,
        MetricKind.COUNTER,
        "count",
        "Total number of times the stream has successfully recovered from failover",
    )
    registry.describe(
        STREAM_FAILOVER_DURATION_SECONDS,
        MetricKind.HISTOGRAM,
        "seconds",
        "Time spent in failover mode before recovery",
    )


def register_maintenance_metrics(registry: MetricsRegistry | None = None) -> None:
    registry = _resolve(registry)
    registry.describe(
        MAINTENANCE_RUNS_TOTAL,
        MetricKind.COUNTER,
        "count",
        "Total number of maintenance runs executed",
    )
    registry.describe(
        MAINTENANCE_DURATION_MILLISECONDS,
        MetricKind.HISTOGRAM,
        "milliseconds",
        "Duration of maintenance operations",
    )


def register_stream_metrics(registry: MetricsRegistry | None = None) -> None:
    registry = _resolve(registry)
    registry.describe(
        STREAM_PROCESSING_LAG_MILLISECONDS,
        MetricKind.GAUGE,
        "milliseconds",
        "Processing lag (difference between now and last event timestamp)",
    )
    registry.describe(
        STREAM_EVENTS_PROCESSED_TOTAL,
        MetricKind.COUNTER,
        "count",
        "Total number of events processed by the stream",
    )


def record_failover_entered(stream_id: int, registry: MetricsRegistry | None = None) -> None:
    """Record that the stream has entered failover mode."""
    registry = _resolve(registry)
    labels = {STREAM_ID_LABEL: str(stream_id)}
    registry.increment_counter(STREAM_FAILOVER_ENTERED_TOTAL, labels, 1)
    registry.set_gauge(STREAM_FAILOVER_ACTIVE, labels, 1.0)


def record_failover_recovered(
    stream_id: int, duration_seconds: float, registry: MetricsRegistry | None = None
) -> None:
    """Record that the stream has recovered from failover mode."""
    registry = _resolve(registry)
    labels = {STREAM_ID_LABEL: str(stream_id)}
    registry.increment_counter(STREAM_FAILOVER_RECOVERED_TOTAL, labels, 1)
    registry.set_gauge(STREAM_FAILOVER_ACTIVE, labels, 0.0)
    registry.record_histogram(STREAM_FAILOVER_DURATION_SECONDS, labels, duration_seconds)


def record_maintenance_run(
    stream_id: int,
    duration_milliseconds: float,
    success: bool,
    registry: MetricsRegistry | None = None,
) -> None:
    """Count a maintenance run; successful runs also record their duration."""
    registry = _resolve(registry)
    result = "success" if success else "failure"
    registry.increment_counter(
        MAINTENANCE_RUNS_TOTAL, {STREAM_ID_LABEL: str(stream_id), RESULT_LABEL: result}, 1
    )
    if success:
        registry.record_histogram(
            MAINTENANCE_DURATION_MILLISECONDS,
            {STREAM_ID_LABEL: str(stream_id)},
            duration_milliseconds,
        )


def record_processing_lag(
    stream_id: int, lag_milliseconds: int, registry: MetricsRegistry | None = None
) -> None:
    _resolve(registry).set_gauge(
        STREAM_PROCESSING_LAG_MILLISECONDS,
        {STREAM_ID_LABEL: str(stream_id)},
        float(lag_milliseconds),
    )


def record_events_processed(
    stream_id: int, count: int, registry: MetricsRegistry | None = None
) -> None:
    _resolve(registry).increment_counter(
        STREAM_EVENTS_PROCESSED_TOTAL, {STREAM_ID_LABEL: str(stream_id)}, count
    )


class _MetricsServer(ThreadingHTTPServer):
    daemon_threads = True


class _MetricsServerV6(_MetricsServer):
    address_family = socket.AF_INET6


def _handler_for(registry: MetricsRegistry) -> type[BaseHTTPRequestHandler]:
    class _Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802
            body = registry.render().encode("utf-8")
            self.send_response(200)
            self.send_header("Content-Type", CONTENT_TYPE)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args: object) -> None:
            return

    return _Handler


def init_metrics(
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    registry: MetricsRegistry | None = None,
) -> ThreadingHTTPServer:
    """Start an HTTP endpoint serving the registry and register metric descriptions.

    The server runs on a daemon thread; call ``shutdown()`` and ``server_close()``
    on the returned server to stop it.
    """
    registry = _resolve(registry)
    server_class = _MetricsServerV6 if ":" in host else _MetricsServer
    server = server_class((host, port), _handler_for(registry))
    thread = threading.Thread(target=server.serve_forever, name="metrics-http", daemon=True)
    thread.start()

    register_failover_metrics(registry)
    register_maintenance_metrics(registry)
    register_stream_metrics(registry)
    return server
"""In-process metrics for the daemon and its resource pools, rendered in Prometheus text format."""

from __future__ import annotations

import logging
import math
import os
import threading
import time

_log = logging.getLogger(__name__)

ENV_DISABLE_METRICS = "CELLO_DISABLE_METRICS"

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _label_text(names: tuple[str, ...], values: tuple[str, ...]) -> str:
    if not names:
        return ""
    pairs = ",".join(f'{name}="{_escape(value)}"' for name, value in zip(names, values))
    return "{" + pairs + "}"


class _Metric:
    type_name = "untyped"

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def _lines(self, name: str, labels: str) -> list[str]:
        raise NotImplementedError


class Gauge(_Metric):
    """A value that can go up and down."""

    type_name = "gauge"

    def __init__(self) -> None:
        super().__init__()
        self._value = 0.0

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)

    def inc(self) -> None:
        with self._lock:
            self._value += 1

    def dec(self) -> None:
        with self._lock:
            self._value -= 1

    def _lines(self, name: str, labels: str) -> list[str]:
        return [f"{name}{labels} {_format_value(self.value)}"]


class Counter(_Metric):
    """A value that only increases."""

    type_name = "counter"

    def __init__(self) -> None:
        super().__init__()
        self._value = 0.0

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def inc(self) -> None:
        with self._lock:
            self._value += 1

    def _lines(self, name: str, labels: str) -> list[str]:
        return [f"{name}{labels} {_format_value(self.value)}"]


class Summary(_Metric):
    """Running count and sum of observations."""

    type_name = "summary"

    def __init__(self) -> None:
        super().__init__()
        self._count = 0
        self._sum = 0.0

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def sum(self) -> float:
        with self._lock:
            return self._sum

    def observe(self, value: float) -> None:
        with self._lock:
            self._count += 1
            self._sum += float(value)

    def _lines(self, name: str, labels: str) -> list[str]:
        with self._lock:
            total, count = self._sum, self._count
        return [
            f"{name}_sum{labels} {_format_value(total)}",
            f"{name}_count{labels} {count}",
        ]


class MetricVec:
    """A family of metrics of one kind, partitioned by label values."""

    def __init__(self, name: str, help_text: str, label_names, kind: type[_Metric]) -> None:
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(label_names)
        self.kind = kind
        self._children: dict[tuple[str, ...], _Metric] = {}
        self._lock = threading.Lock()

    @property
    def type_name(self) -> str:
        return self.kind.type_name

    def with_label_values(self, *args):
        """Return the child metric for these label values, creating it on first use."""
        if len(args) != len(self.label_names):
            raise ValueError(
                f"{self.name}: expected {len(self.label_names)} label values, got {len(args)}"
            )
        key = tuple(str(arg) for arg in args)
        with self._lock:
            child = self._children.get(key)
            if child is None:
                child = self.kind()
                self._children[key] = child
            return child

    def labels(self, **kwargs):
        """Return the child metric for labels given by name."""
        if set(kwargs) != set(self.label_names):
            raise ValueError(
                f"{self.name}: expected labels {sorted(self.label_names)}, got {sorted(kwargs)}"
            )
        return self.with_label_values(*(kwargs[name] for name in self.label_names))

    def samples(self) -> dict[tuple[str, ...], _Metric]:
        """Snapshot of label values to child metrics."""
        with self._lock:
            return dict(self._children)

    def render_lines(self) -> list[str]:
        lines = [f"# HELP {self.name} {self.help_text}", f"# TYPE {self.name} {self.type_name}"]
        for key, child in sorted(self.samples().items()):
            lines.extend(child._lines(self.name, _label_text(self.label_names, key)))
        return lines


class Registry:
    """A set of metric families that can be rendered together."""

    def __init__(self) -> None:
        self._metrics: dict[str, MetricVec] = {}
        self._lock = threading.Lock()

    def register(self, metric: MetricVec) -> None:
        with self._lock:
            if metric.name in self._metrics:
                raise ValueError(
                    f"duplicate metrics collector registration attempted: {metric.name}"
                )
            self._metrics[metric.name] = metric

    def __contains__(self, metric: object) -> bool:
        if not isinstance(metric, MetricVec):
            return False
        with self._lock:
            return self._metrics.get(metric.name) is metric

    def render(self) -> str:
        with self._lock:
            families = [self._metrics[name] for name in sorted(self._metrics)]
        lines: list[str] = []
        for family in families:
            lines.extend(family.render_lines())
        return "\n".join(lines) + "\n" if lines else ""


DEFAULT_REGISTRY = Registry()

RPC_LATENCY = MetricVec("rpc_latency_ms", "cello rpc call latency in ms", ("rpc_api", "error"), Summary)
RESOURCE_MANAGER_ERR = MetricVec(
    "resource_manager_error_count",
    "The number of errors encountered in eni manager",
    ("fn", "error"),
    Counter,
)
OPENAPI_LATENCY = MetricVec(
    "openapi_latency_ms",
    "cello openapi call latency in ms",
    ("api", "error", "code", "requestId"),
    Summary,
)
OPENAPI_ERR = MetricVec(
    "openapi_error_count",
    "The number of times openapi returns an error",
    ("api", "error", "code", "requestId"),
    Counter,
)
METADATA_LATENCY = MetricVec(
    "metadata_latency_ms",
    "cello metadata call latency in ms",
    ("metadata", "error", "status"),
    Summary,
)
METADATA_ERR = MetricVec(
    "metadata_error_count",
    "The number of times metadata returns an error",
    ("metadata", "error"),
    Counter,
)
RESOURCE_POOL_MAX_CAP = MetricVec(
    "resource_pool_max_cap", "The max capacity of resource pool", ("name", "type"), Gauge
)
RESOURCE_POOL_TARGET = MetricVec(
    "resource_pool_target", "The cache target of resource pool", ("name", "type"), Gauge
)
RESOURCE_POOL_TARGET_MIN = MetricVec(
    "resource_pool_target_min", "The min cache target of resource pool", ("name", "type"), Gauge
)
RESOURCE_POOL_TOTAL = MetricVec(
    "resource_pool_total", "The total number of resource in pool", ("name", "type"), Gauge
)
RESOURCE_POOL_AVAILABLE = MetricVec(
    "resource_pool_available", "The available number of resource in pool", ("name", "type"), Gauge
)

_REGISTERED_FAMILIES = (
    RPC_LATENCY,
    OPENAPI_LATENCY,
    OPENAPI_ERR,
    METADATA_LATENCY,
    METADATA_ERR,
    RESOURCE_POOL_MAX_CAP,
    RESOURCE_POOL_TARGET,
    RESOURCE_POOL_TARGET_MIN,
    RESOURCE_POOL_TOTAL,
    RESOURCE_POOL_AVAILABLE,
)


def resource_manager_err_inc(fn: str, err: BaseException) -> None:
    """Count one error raised by the resource manager function ``fn``."""
    RESOURCE_MANAGER_ERR.with_label_values(fn, str(err)).inc()


def get_env_bool_with_default(env_name: str, default: bool) -> bool:
    """Read a boolean from the environment, falling back to ``default``."""
    raw = os.environ.get(env_name, "")
    if raw:
        if raw in _TRUE_WORDS:
            return True
        if raw in _FALSE_WORDS:
            return False
        _log.error("Failed to parse %s, using default `%s`: invalid syntax %r", env_name, default, raw)
    return default


def disable_metrics() -> bool:
    """True when the metrics endpoint is switched off by the environment."""
    return get_env_bool_with_default(ENV_DISABLE_METRICS, False)


def prometheus_register(registry: Registry | None = None) -> None:
    """Register the daemon's metric families once per registry."""
    target = DEFAULT_REGISTRY if registry is None else registry
    if RPC_LATENCY in target:
        return
    for family in _REGISTERED_FAMILIES:
        target.register(family)


def ms_since(start: float) -> float:
    """Whole milliseconds elapsed since ``start``, a ``time.monotonic()`` reading."""
    return float(int((time.monotonic() - start) * 1000))
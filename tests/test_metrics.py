import time

import pytest

from cellonet import metrics
from cellonet.metrics import (
    Counter,
    Gauge,
    MetricVec,
    Registry,
    Summary,
    disable_metrics,
    get_env_bool_with_default,
    ms_since,
    prometheus_register,
    resource_manager_err_inc,
)


def test_gauge_set_inc_dec():
    gauge = Gauge()
    gauge.set(7)
    gauge.inc()
    gauge.dec()
    gauge.dec()
    assert gauge.value == 7 - 1


def test_counter_increments():
    counter = Counter()
    before = counter.value
    counter.inc()
    counter.inc()
    assert counter.value == before + 2


def test_summary_tracks_count_and_sum():
    summary = Summary()
    summary.observe(1.5)
    summary.observe(2.5)
    assert summary.count == 2
    assert summary.sum == 1.5 + 2.5


def test_with_label_values_returns_same_child():
    vec = MetricVec("resource_pool_total", "help", ("name", "type"), Gauge)
    first = vec.with_label_values("pool", "mock")
    second = vec.labels(type="mock", name="pool")
    assert first is second
    assert list(vec.samples()) == [("pool", "mock")]


def test_with_label_values_wrong_arity():
    vec = MetricVec("resource_pool_total", "help", ("name", "type"), Gauge)
    with pytest.raises(ValueError):
        vec.with_label_values("only-one")


def test_labels_wrong_names():
    vec = MetricVec("resource_pool_total", "help", ("name", "type"), Gauge)
    with pytest.raises(ValueError):
        vec.labels(name="pool", kind="mock")


def test_registry_rejects_duplicates():
    registry = Registry()
    vec = MetricVec("resource_pool_total", "help", ("name", "type"), Gauge)
    registry.register(vec)
    with pytest.raises(ValueError):
        registry.register(MetricVec("resource_pool_total", "other", ("name",), Gauge))
    assert vec in registry


def test_registry_render_gauge():
    registry = Registry()
    vec = MetricVec("resource_pool_total", "The total number of resource in pool", ("name", "type"), Gauge)
    registry.register(vec)
    vec.with_label_values("p", "mock").set(3)
    text = registry.render()
    assert "# TYPE resource_pool_total gauge" in text
    assert "# HELP resource_pool_total The total number of resource in pool" in text
    assert 'resource_pool_total{name="p",type="mock"} 3' in text.splitlines()


def test_registry_render_summary_and_escaping():
    registry = Registry()
    vec = MetricVec("rpc_latency_ms", "latency", ("rpc_api", "error"), Summary)
    registry.register(vec)
    vec.with_label_values('a"b', "false").observe(4)
    lines = registry.render().splitlines()
    assert 'rpc_latency_ms_count{rpc_api="a\\"b",error="false"} 1' in lines
    assert 'rpc_latency_ms_sum{rpc_api="a\\"b",error="false"} 4' in lines


def test_resource_manager_err_inc():
    child = metrics.RESOURCE_MANAGER_ERR.with_label_values("allocate", "boom")
    before = child.value
    resource_manager_err_inc("allocate", RuntimeError("boom"))
    assert child.value == before + 1


@pytest.mark.parametrize("raw, expected", [("true", True), ("1", True), ("F", False), ("False", False)])
def test_get_env_bool(monkeypatch, raw, expected):
    monkeypatch.setenv("CELLONET_TEST_FLAG", raw)
    assert get_env_bool_with_default("CELLONET_TEST_FLAG", not expected) is expected


def test_get_env_bool_invalid_uses_default(monkeypatch):
    monkeypatch.setenv("CELLONET_TEST_FLAG", "maybe")
    assert get_env_bool_with_default("CELLONET_TEST_FLAG", True) is True


def test_get_env_bool_unset_uses_default(monkeypatch):
    monkeypatch.delenv("CELLONET_TEST_FLAG", raising=False)
    assert get_env_bool_with_default("CELLONET_TEST_FLAG", True) is True


def test_disable_metrics(monkeypatch):
    monkeypatch.setenv("CELLO_DISABLE_METRICS", "true")
    assert disable_metrics() is True
    monkeypatch.delenv("CELLO_DISABLE_METRICS")
    assert disable_metrics() is False


def test_prometheus_register_is_idempotent():
    registry = Registry()
    prometheus_register(registry)
    prometheus_register(registry)
    text = registry.render()
    for name in (
        "rpc_latency_ms",
        "openapi_latency_ms",
        "openapi_error_count",
        "metadata_latency_ms",
        "metadata_error_count",
        "resource_pool_max_cap",
        "resource_pool_target",
        "resource_pool_target_min",
        "resource_pool_total",
        "resource_pool_available",
    ):
        assert f"# TYPE {name} " in text
    assert metrics.RPC_LATENCY in registry


def test_ms_since_whole_milliseconds():
    start = time.monotonic() - 0.25
    elapsed = ms_since(start)
    assert elapsed >= 250
    assert elapsed.is_integer()
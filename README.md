# cellonet

Building blocks for a node-level container networking agent. The package has
no runtime dependencies.

- **`cellonet.pool`**: `ResourcePool`, a self-replenishing pool of network
  resources. It keeps idle resources cached up to `target`, keeps at least
  `target_min` resources in total (used ones included), never grows past the
  maximum capacity, backs off after failed creation or destruction, and can
  reconcile itself with what its factory reports (`gc`).
- **`cellonet.queue`**: `PriorityQueue` of `PoolItem`s, the store of
  available resources, ordered by the time a resource may next be handed out
  and holding at most one item per resource id.
- **`cellonet.config`**: `PoolConfig`, the settings of a pool, and `Status`,
  its report.
- **`cellonet.interfaces`**: the resource model (`NetResource`, `ResStatus`,
  `NetResourceSnapshot`, `NetResourceAllocated`, `ResourcePoolSnapshot`),
  the `ObjectFactory` base class a pool drives, and the pool's errors, all
  derived from `PoolError`.
- **`cellonet.metrics`**: in-process `Gauge`, `Counter` and `Summary`
  metrics grouped by label values in a `MetricVec`, and a `Registry` that
  renders them in the Prometheus text format.
- **`cellonet.deviceplugin`**: `ENIDevicePlugin`, the logic of a device
  plugin that reports a number of healthy `Device`s and reports again when
  the count changes.

## Install

```
pip install .
pip install ".[test]"   # with pytest
```

## A factory

A pool creates and destroys resources through an `ObjectFactory`. Subclass
it and provide `name` (a property), `create(count)`, `release(resource)`,
`release_invalid(resource)`, `valid(resource)`, `list()`, `gc()` and
`get_resource_limit()`. `create` may return fewer resources than asked for
and raises when it creates none; `list` returns the known resources grouped
by `ResStatus.NORMAL`, `ResStatus.INVALID` and `ResStatus.LEGACY`, each a
dict from id to `NetResource`.

## A pool

```python
from cellonet.config import PoolConfig
from cellonet.pool import new_resource_pool

config = PoolConfig(
    name="eni-ip",
    factory=my_factory,        # an ObjectFactory implementation
    res_type="ip",
    target=3,
    target_min=5,
    max_cap=20,
    monitor_interval=120.0,    # seconds
)
pool = new_resource_pool(config)   # builds the pool and starts its worker

res = pool.allocate("", "default/my-pod", timeout=2.0)
print(pool.status())
pool.release(res.id)
pool.stop()
```

With `max_cap_probe=True` the capacity is taken from the factory's
`get_resource_limit()` instead of `max_cap`. `pre_start`, if given, is called
with the pool before it starts working, so it can seed it through
`add_inuse`, `add_available` and `add_invalid`. `ResourcePool(config)`
builds a pool without starting the worker; `start()` starts it.

`allocate(prefer, owner, timeout)` returns the resource `prefer` if it is
already in use by `owner`, else the preferred or earliest available
resource, else creates one. It raises:

- `NotFoundError` when a preferred resource is not among the available ones,
- `NoResourceAvailableError` when the pool has reached its capacity,
- `ContextDoneError` when `timeout` seconds pass first,
- `PoolError` when the factory fails to create a resource.

`release(res_id)` returns a resource to the available ones, or has the
factory replace or destroy it when it is no longer valid; it raises
`ResourceInvalidError` for a resource the pool does not hold as in use.

`get_snapshot()` returns a `ResourcePoolSnapshot` whose `pool` dict shows
every resource the pool holds and whose `meta` dict shows what the factory
lists, each keyed by id. `gc(get_allocated)` reconciles the pool with the
factory and with the `NetResourceAllocated` records that `get_allocated()`
returns. `reconfigure_cache(target, target_min)` changes the caching targets
at run time.

## Metrics

```python
from cellonet.metrics import Registry, prometheus_register

registry = Registry()
prometheus_register(registry)
print(registry.render())
```

Pools update the `resource_pool_*` gauges as they work. A summary renders
its `_sum` and `_count` lines. Setting `CELLO_DISABLE_METRICS=true` in the
environment makes `disable_metrics()` return `True`.

## Device plugin

```python
import threading
from cellonet.deviceplugin import ENI_IP_RESOURCE_NAME, ENIDevicePlugin

plugin = ENIDevicePlugin(ENI_IP_RESOURCE_NAME, 5)
stop = threading.Event()
watcher = threading.Thread(target=plugin.list_and_watch, args=(print, stop))
watcher.start()      # sends eni-ip-0 ... eni-ip-4
plugin.update(3)     # sends the list again with three devices
stop.set()
watcher.join()
```

`list_and_watch` also sends the list once every report period (three
minutes by default) and lets an error raised by `send` propagate.

## What the package does not do

There is no command to run and no network server. The device plugin does
not serve gRPC, does not register with the kubelet and does not watch the
kubelet socket; it supplies the device lists for a server you provide.
Metrics are rendered to a string by `Registry.render()`; serving them over
HTTP is left to the caller. The package does not talk to any cloud provider
or to a Kubernetes API: that is the job of your `ObjectFactory`.

## Running the tests

```
pytest
```
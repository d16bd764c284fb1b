"""A pool of network resources kept between a minimum, a cache target and a capacity."""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from cellonet import metrics
from cellonet.config import PoolConfig, Status
from cellonet.interfaces import (
    ContextDoneError,
    InvalidDeletionPrimaryIPError,
    NetResource,
    NetResourceAllocated,
    NetResourceSnapshot,
    NoResourceAvailableError,
    NoResourceAvailableInPoolError,
    NotFoundError,
    PoolError,
    ResourceInvalidError,
    ResourcePoolSnapshot,
    ResStatus,
)
from cellonet.queue import PoolItem, PriorityQueue

_log = logging.getLogger(__name__)

DEFAULT_BACKOFF = 5.0
MAX_BACKOFF = 60.0
_JITTER = 0.2
_MIN_INTERVAL = 0.01


class _ReadWriteLock:
    """Many readers or one writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            self._cond.wait_for(lambda: not self._writer)
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._cond.wait_for(lambda: not self._writer)
            self._writer = True
            self._cond.wait_for(lambda: self._readers == 0)
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class _Tickets:
    """A bounded count of permits to create resources."""

    def __init__(self, capacity: int) -> None:
        self._capacity = max(0, capacity)
        self._count = 0
        self._lock = threading.Lock()

    def produce(self) -> None:
        with self._lock:
            if self._count < self._capacity:
                self._count += 1

    def take(self) -> bool:
        with self._lock:
            if self._count > 0:
                self._count -= 1
                return True
            return False

    def clear(self) -> None:
        with self._lock:
            self._count = 0

    def __len__(self) -> int:
        with self._lock:
            return self._count


class ResourcePool:
    """Holds resources in use, available and invalid, and keeps the pool at its targets."""

    def __init__(self, config: PoolConfig) -> None:
        self.name = config.name
        self.res_type = config.res_type
        self.factory = config.factory
        self._in_use: dict[str, PoolItem] = {}
        self._available = PriorityQueue()
        self._invalid: dict[str, PoolItem] = {}
        self._lock = threading.RLock()
        self._pause_lock = _ReadWriteLock()
        self._config_lock = threading.Lock()
        self._scale = threading.Event()
        self._stop = threading.Event()
        self._worker: threading.Thread | None = None
        self._backoff = DEFAULT_BACKOFF

        self._target_min = config.target_min
        self._target = config.target
        self._max_cap = config.max_cap
        self._max_cap_probe = config.max_cap_probe
        self._monitor_interval = config.monitor_interval
        self._gc_protect_period = config.gc_protect_period

        labels = (config.name, config.res_type)
        self._metric_max_cap = metrics.RESOURCE_POOL_MAX_CAP.with_label_values(*labels)
        self._metric_target = metrics.RESOURCE_POOL_TARGET.with_label_values(*labels)
        self._metric_target_min = metrics.RESOURCE_POOL_TARGET_MIN.with_label_values(*labels)
        self._metric_available = metrics.RESOURCE_POOL_AVAILABLE.with_label_values(*labels)
        self._metric_total = metrics.RESOURCE_POOL_TOTAL.with_label_values(*labels)

        self._tickets = _Tickets(self._get_max_cap())
        self._metric_target.set(self._target)
        self._metric_target_min.set(self._target_min)

        if config.pre_start is not None:
            config.pre_start(self)
        with self._lock:
            self._reset_tickets_locked()

    # configuration

    def _get_max_cap(self) -> int:
        with self._config_lock:
            probe, fixed = self._max_cap_probe, self._max_cap
        max_cap = self.factory.get_resource_limit() if probe else fixed
        self._metric_max_cap.set(max_cap)
        return max_cap

    def _get_target(self) -> int:
        with self._config_lock:
            return self._target

    def _get_target_min(self) -> int:
        with self._config_lock:
            return self._target_min

    # population

    def add_inuse(self, res: NetResource, owner: str) -> None:
        """Record a resource already used by ``owner``."""
        with self._lock:
            self._in_use[res.id] = PoolItem(res=res, owner=owner, last_use=time.monotonic())
            self._metric_total.inc()

    def add_invalid(self, res: NetResource) -> None:
        """Record a resource that cannot be used and waits to be released."""
        with self._lock:
            self._invalid[res.id] = PoolItem(res=res)
            self._metric_total.inc()

    def add_available(self, res: NetResource) -> None:
        """Record a resource ready to be handed out."""
        with self._lock:
            self._available.push(PoolItem(res=res, reserve_before=time.monotonic()))
            self._metric_available.inc()
            self._metric_total.inc()

    def _cap_locked(self) -> int:
        return len(self._in_use) + len(self._available) + len(self._invalid)

    def _notify_scale(self) -> None:
        self._scale.set()

    # allocation

    def _allocate_from_pool(self, prefer: str, owner: str) -> NetResource:
        with self._lock:
            item = self._in_use.get(prefer)
            if item is not None and item.owner == owner:
                return item.res
            if len(self._available) > 0:
                popped = self._available.pop_prefer(prefer)
                if popped is None:
                    raise NotFoundError()
                res = popped.res
                self._in_use[res.id] = PoolItem(res=res, owner=owner, last_use=time.monotonic())
                self._metric_available.dec()
                _log.info("Allocate resource from pool success: %s", res.id)
                self._notify_scale()
                return res
            cur, max_cap = self._cap_locked(), self._get_max_cap()
            if cur >= max_cap:
                _log.warning("No resource available (current cap: %d, max cap: %d)", cur, max_cap)
                raise NoResourceAvailableError()
            raise NoResourceAvailableInPoolError()

    def allocate(self, prefer: str = "", owner: str = "", timeout: float | None = None) -> NetResource:
        """Hand out the preferred or any available resource, creating one when needed.

        Raises ContextDoneError when ``timeout`` seconds pass first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            try:
                return self._allocate_from_pool(prefer, owner)
            except NoResourceAvailableInPoolError:
                pass
            if deadline is not None and time.monotonic() >= deadline:
                raise ContextDoneError()
            if self._tickets.take():
                with self._pause_lock.read():
                    try:
                        created = self.factory.create(1)
                    except Exception as exc:
                        self._tickets.produce()
                        raise PoolError(f"factory create resource err: {exc}") from exc
                    if not created:
                        self._tickets.produce()
                        raise PoolError("factory create resource err: nothing created")
                    self.add_inuse(created[0], owner)
                    return created[0]
            wait = DEFAULT_BACKOFF
            if deadline is not None:
                wait = min(wait, max(0.0, deadline - time.monotonic()))
            time.sleep(wait)

    def release(self, res_id: str) -> None:
        """Return a resource in use to the pool."""
        with self._lock:
            item = self._in_use.pop(res_id, None)
            if item is None:
                _log.error("Resource %s does not exist in pool", res_id)
                raise ResourceInvalidError()
            if self.factory.valid(item.res):
                self._available.push(PoolItem(res=item.res, reserve_before=time.monotonic()))
                self._metric_available.inc()
                return
            try:
                replacement = self.factory.release_invalid(item.res)
            except Exception as exc:
                _log.warning("Destroy resource %s failed: %s", res_id, exc)
                self._invalid[res_id] = item
                return
            if replacement is None:
                self._tickets.produce()
                self._metric_total.dec()
                return
            self._available.push(PoolItem(res=replacement, reserve_before=time.monotonic()))
            self._metric_available.inc()

    # sizing

    def _short_and_total_locked(self) -> tuple[int, int]:
        cur = len(self._available)
        cnt = max(self._get_target() - cur, 0)
        cur += len(self._in_use)
        cnt = max(cnt, self._get_target_min() - cur)
        cur += len(self._invalid)
        cnt = min(cnt, self._get_max_cap() - cur)
        return max(0, cnt), cur

    def status(self) -> Status:
        with self._lock:
            short, total = self._short_and_total_locked()
            available = len(self._available)
            target, target_min = self._get_target(), self._get_target_min()
            over = max(available - target, 0)
            over = max(min(over, total - target_min), 0)
            with self._config_lock:
                probe, interval = self._max_cap_probe, self._monitor_interval
            return Status(
                target_min=target_min,
                target=target,
                max_cap=self._get_max_cap(),
                max_cap_probe=probe,
                monitor_interval=interval,
                total=total,
                available=available,
                short=short,
                over=over,
            )

    def get_resource_limit(self) -> int:
        return self.factory.get_resource_limit()

    def _reset_tickets_locked(self) -> None:
        self._tickets.clear()
        for _ in range(self._get_max_cap() - self._cap_locked()):
            self._tickets.produce()

    def _try_increase(self) -> None:
        with self._lock:
            to_increase, _ = self._short_and_total_locked()
        to_create = sum(1 for _ in range(to_increase) if self._tickets.take())
        if to_create <= 0:
            return
        failed = False
        try:
            created = self.factory.create(to_create)
        except Exception as exc:
            _log.error("Create resource failed: %s, backoff: %s", exc, self._backoff)
            created, failed = [], True
        if failed or len(created) != to_create:
            pass
        else:
            self._backoff = DEFAULT_BACKOFF
        missing = max(0, to_create - len(created))
        for _ in range(missing):
            self._tickets.produce()
        if missing:
            self._notify_scale()
        for res in created:
            self.add_available(res)
        if failed:
            if self._backoff < MAX_BACKOFF:
                self._backoff *= 2
            self._stop.wait(self._backoff)

    def _pop_overflow(self) -> PoolItem | None:
        with self._lock:
            size = len(self._available)
            overflow = (
                size > self._get_target() and size + len(self._in_use) > self._get_target_min()
            ) or self._cap_locked() > self._get_max_cap()
            item = self._available.peek() if overflow else None
            if item is not None and item.reserve_before < time.monotonic():
                return self._available.pop()
            return None

    def _try_reduce(self) -> None:
        keep: list[NetResource] = []
        while not self._stop.is_set():
            item = self._pop_overflow()
            if item is None:
                break
            self._metric_total.dec()
            self._metric_available.dec()
            try:
                self.factory.release(item.res)
            except InvalidDeletionPrimaryIPError:
                keep.append(item.res)
            except Exception as exc:
                _log.warning("Destroy resource %s failed: %s", item.res.id, exc)
                if self._backoff < MAX_BACKOFF:
                    self._backoff *= 2
                self.add_available(item.res)
                self._stop.wait(self._backoff)
            else:
                self._tickets.produce()
                self._backoff = DEFAULT_BACKOFF
        for res in keep:
            self.add_available(res)

    def _check_invalid(self) -> None:
        with self._lock:
            for res_id, item in list(self._invalid.items()):
                try:
                    replacement = self.factory.release_invalid(item.res)
                except Exception as exc:
                    _log.warning("Release invalid resource %s failed: %s", res_id, exc)
                    continue
                del self._invalid[res_id]
                if replacement is not None:
                    self._available.push(PoolItem(res=replacement, reserve_before=time.monotonic()))
                    self._metric_available.inc()
                else:
                    self._metric_total.dec()
                    self._tickets.produce()

    # snapshots and gc

    def get_snapshot(self) -> ResourcePoolSnapshot:
        """The pool's view and the factory's view of every resource."""
        with self._lock:
            pool: dict[str, NetResourceSnapshot] = {}
            for res_id, item in self._invalid.items():
                pool[res_id] = NetResourceSnapshot(item.res.vpc_resource, ResStatus.INVALID)
            for res_id, item in self._in_use.items():
                pool[res_id] = NetResourceSnapshot(item.res.vpc_resource, ResStatus.IN_USE, item.owner)
            for item in self._available:
                pool[item.res.id] = NetResourceSnapshot(item.res.vpc_resource, ResStatus.AVAILABLE)

            listed = self.factory.list()
            meta: dict[str, NetResourceSnapshot] = {}
            for res in listed.get(ResStatus.NORMAL, {}).values():
                known = pool.get(res.id)
                meta[res.id] = NetResourceSnapshot(
                    res.vpc_resource,
                    known.status if known else ResStatus.NOT_ADDED,
                    known.owner if known else "",
                )
            for status in (ResStatus.INVALID, ResStatus.LEGACY):
                for res in listed.get(status, {}).values():
                    known = pool.get(res.id)
                    meta[res.id] = NetResourceSnapshot(res.vpc_resource, status, known.owner if known else "")
            return ResourcePoolSnapshot(pool=pool, meta=meta)

    def gc(self, get_allocated: Callable[[], dict[str, NetResourceAllocated]]) -> None:
        """Synchronise the pool with the factory and with the resources really allocated."""
        with self._pause_lock.write(), self._lock:
            used = dict(get_allocated())
            try:
                self.factory.gc()
            except Exception as exc:
                raise PoolError(f"factory gc failed, {exc}") from exc
            try:
                listed = self.factory.list()
            except Exception as exc:
                raise PoolError(f"factory list failed, {exc}") from exc

            now = time.monotonic()
            for res_id, item in list(self._in_use.items()):
                local = used.get(res_id)
                if local is None:
                    if now - item.last_use > self._gc_protect_period:
                        _log.warning("Release %s which used by %s once", res_id, item.owner)
                        del self._in_use[res_id]
                elif local.owner == item.owner:
                    del used[res_id]
            for res_id, allocated in used.items():
                for group in listed.values():
                    if res_id in group:
                        self._in_use[res_id] = PoolItem(res=group[res_id], owner=allocated.owner)

            self._invalid = {}
            for status in (ResStatus.INVALID, ResStatus.LEGACY):
                for res_id, res in listed.get(status, {}).items():
                    if res_id not in self._in_use:
                        self._invalid[res_id] = PoolItem(res=res)

            old_available = self._available.dump()
            self._available = PriorityQueue()
            for res_id, res in listed.get(ResStatus.NORMAL, {}).items():
                if res_id in self._in_use:
                    continue
                old = old_available.get(res_id)
                self._available.push(PoolItem(res=res, reserve_before=old.reserve_before if old else 0.0))

            self._metric_available.set(len(self._available))
            self._metric_total.set(self._cap_locked())
            self._reset_tickets_locked()

    def reconfigure_cache(self, target: int, target_min: int) -> None:
        """Change the cache target and minimum, and rescale."""
        _log.info("Reconfigure pool target and target min to %d, %d", target, target_min)
        with self._config_lock:
            self._target = target
            self._target_min = target_min
        self._notify_scale()

    # worker

    def _run(self) -> None:
        while not self._stop.is_set():
            with self._pause_lock.read():
                self._check_invalid()
                self._try_increase()
                self._try_reduce()
            with self._config_lock:
                interval = max(self._monitor_interval, _MIN_INTERVAL)
            deadline = time.monotonic() + interval * (1 + random.random() * _JITTER)
            while not self._stop.is_set():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                if self._scale.wait(remaining):
                    self._scale.clear()
                    if self._stop.is_set():
                        break
                    with self._pause_lock.read():
                        self._try_increase()

    def start(self) -> None:
        """Start the background worker that keeps the pool at its targets."""
        if self._worker is not None and self._worker.is_alive():
            return
        self._stop.clear()
        self._worker = threading.Thread(target=self._run, name=f"pool-{self.name}", daemon=True)
        self._worker.start()

    def stop(self) -> None:
        """Stop the background worker."""
        self._stop.set()
        self._scale.set()
        if self._worker is not None:
            self._worker.join()
            self._worker = None


def new_resource_pool(config: PoolConfig) -> ResourcePool:
    """Create a pool from ``config`` and start its worker."""
    pool = ResourcePool(config)
    pool.start()
    _log.info("Resource pool %s start", config.name)
    return pool
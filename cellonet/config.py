"""Configuration and status records of a resource pool."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from cellonet.interfaces import ObjectFactory


@dataclass(frozen=True)
class Status:
    """Basic information about a pool at one moment."""

    target_min: int
    target: int
    max_cap: int
    max_cap_probe: bool
    monitor_interval: float
    total: int
    available: int
    short: int
    over: int


@dataclass
class PoolConfig:
    """Settings of a resource pool.

    ``target_min`` is the minimum number of all resources, used ones included;
    ``target`` the number of idle resources to keep cached; ``max_cap`` the
    capacity, replaced by the factory's limit when ``max_cap_probe`` is set.
    Intervals are in seconds. ``pre_start`` runs with the pool before it
    starts working and may raise to abort creation.
    """

    name: str
    factory: ObjectFactory
    res_type: str = ""
    target_min: int = 0
    target: int = 0
    max_cap: int = 0
    max_cap_probe: bool = False
    monitor_interval: float = 0.0
    gc_protect_period: float = 0.0
    pre_start: Callable[[Any], None] | None = None
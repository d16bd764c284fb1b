"""Resource, factory and error types shared by the resource pool."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field


class ResStatus(str, enum.Enum):
    """State of a network resource as seen by the pool or by its factory."""

    NORMAL = "Normal"
    INVALID = "Invalid"
    LEGACY = "Legacy"
    IN_USE = "InUse"
    AVAILABLE = "Available"
    NOT_ADDED = "NotAdded"


@dataclass(frozen=True)
class NetResource:
    """A network resource, identified by its id."""

    id: str

    @property
    def vpc_resource(self) -> NetResource:
        """The cloud-side description of this resource."""
        return self


@dataclass(frozen=True)
class NetResourceSnapshot:
    """A resource together with its status and owner at one moment."""

    resource: NetResource
    status: ResStatus
    owner: str = ""

    @property
    def id(self) -> str:
        return self.resource.id


@dataclass(frozen=True)
class NetResourceAllocated:
    """A resource recorded as handed to an owner."""

    owner: str
    resource: NetResource


@dataclass
class ResourcePoolSnapshot:
    """Snapshots of the pool's own view and of the factory's view, keyed by id."""

    pool: dict[str, NetResourceSnapshot] = field(default_factory=dict)
    meta: dict[str, NetResourceSnapshot] = field(default_factory=dict)


class ObjectFactory(ABC):
    """Creates, checks and destroys the resources a pool holds."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of the factory."""

    @abstractmethod
    def create(self, count: int) -> list[NetResource]:
        """Create up to ``count`` resources.

        The returned list may be shorter than ``count`` when creation
        stopped part way; raise when nothing could be created.
        """

    @abstractmethod
    def release(self, resource: NetResource) -> None:
        """Destroy a resource; raise on failure."""

    @abstractmethod
    def release_invalid(self, resource: NetResource) -> NetResource | None:
        """Destroy an invalid resource, possibly yielding a usable replacement."""

    @abstractmethod
    def valid(self, resource: NetResource) -> bool:
        """Whether the resource is still usable."""

    @abstractmethod
    def list(self) -> dict[ResStatus, dict[str, NetResource]]:
        """All resources the factory knows of, grouped by status."""

    @abstractmethod
    def gc(self) -> None:
        """Synchronise the factory with the remote provider."""

    @abstractmethod
    def get_resource_limit(self) -> int:
        """Maximum number of resources the factory may create."""


class PoolError(Exception):
    """Base error of the resource pool."""

    default_message = "resource pool error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message if message is not None else self.default_message)


class NotFoundError(PoolError, LookupError):
    default_message = "not found"


class InvalidDeletionPrimaryIPError(PoolError):
    default_message = "invalid deletion of primary ip"


class ContextDoneError(PoolError, TimeoutError):
    default_message = "context done"


class NoResourceAvailableInPoolError(PoolError):
    default_message = "no resource available in pool, applying"


class NoResourceAvailableError(PoolError):
    default_message = "no resource available, check quota"


class ResourceInvalidError(PoolError):
    default_message = "resource state invalid"
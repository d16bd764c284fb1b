"""Device plugin that reports VPC ENI resources to the kubelet as countable devices."""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

_log = logging.getLogger(__name__)

# Resource namespace and resource names.
VOLC_NAMESPACE = "vke.volcengine.com/"
ENI_RESOURCE_NAME = "eni"
ENI_IP_RESOURCE_NAME = "eni-ip"
BRANCH_ENI_RESOURCE_NAME = "branch-eni"

DEVICE_PLUGIN_PATH = "/var/lib/kubelet/device-plugins/"
KUBELET_SOCKET = DEVICE_PLUGIN_PATH + "kubelet.sock"

HEALTHY = "Healthy"
UNHEALTHY = "Unhealthy"

REPORT_PERIOD = 180.0
UPDATE_TIMEOUT = 5.0
_POLL_INTERVAL = 0.05


@dataclass(frozen=True)
class Device:
    """One device reported to the kubelet."""

    id: str
    health: str = HEALTHY


class ENIDevicePlugin:
    """Reports a number of identical ENI devices and accepts every allocation."""

    def __init__(
        self,
        resource_name: str,
        init_count: int,
        plugin_path: str = DEVICE_PLUGIN_PATH,
        report_period: float = REPORT_PERIOD,
    ) -> None:
        self._resource_name = resource_name
        self._endpoint = os.path.join(plugin_path, resource_name + ".sock")
        self._count = init_count
        self._report_period = report_period
        self._updates: queue.Queue[int] = queue.Queue(maxsize=1)
        self._update_lock = threading.Lock()

    @property
    def count(self) -> int:
        """Number of devices last reported or forced by an update."""
        return self._count

    def device_plugin_options(self) -> dict[str, bool]:
        """Options this plugin supports: none."""
        return {"pre_start_required": False, "get_preferred_allocation_available": False}

    def list_devices(self, count: int) -> list[Device]:
        """The device list reported for ``count`` devices."""
        return [Device(id=f"{self._resource_name}-{index}") for index in range(count)]

    def _report(self, send: Callable[[list[Device]], None], count: int) -> None:
        devices = self.list_devices(count)
        try:
            send(devices)
        except Exception as exc:
            _log.error("Send devices error: %s", exc)
            raise
        _log.info("Report resources: %s of %d", self._resource_name, count)

    def list_and_watch(
        self,
        send: Callable[[list[Device]], None],
        stop_event: threading.Event | None = None,
    ) -> None:
        """Send the device list now, on every count change and every report period.

        Returns when ``stop_event`` is set; an error raised by ``send`` propagates.
        """
        stop = stop_event if stop_event is not None else threading.Event()
        self._report(send, self._count)
        deadline = time.monotonic() + self._report_period
        while not stop.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._report(send, self._count)
                deadline += self._report_period
                continue
            try:
                new_count = self._updates.get(timeout=min(remaining, _POLL_INTERVAL))
            except queue.Empty:
                continue
            self._count = new_count
            self._report(send, new_count)

    def allocate(self, container_requests: Iterable[object]) -> list[dict]:
        """One empty container response per container request."""
        return [{} for _ in container_requests]

    def update(self, count: int) -> None:
        """Signal a new device count to the watcher, replacing any pending one."""
        if count == self._count:
            return
        with self._update_lock:
            try:
                self._updates.put_nowait(count)
                return
            except queue.Full:
                pass
            try:
                self._updates.get_nowait()
            except queue.Empty:
                pass
            try:
                self._updates.put(count, timeout=UPDATE_TIMEOUT)
            except queue.Full:
                pass
            self._count = count
            _log.error("Failed to update resource count: %d", count)

    def endpoint(self) -> str:
        """Path of the plugin's unix socket."""
        return self._endpoint

    def resource_name(self) -> str:
        return self._resource_name
import os
import queue
import threading

import pytest

from cellonet.deviceplugin import (
    DEVICE_PLUGIN_PATH,
    ENI_IP_RESOURCE_NAME,
    HEALTHY,
    KUBELET_SOCKET,
    Device,
    ENIDevicePlugin,
)


class _Collector:
    def __init__(self):
        self.sent = queue.Queue()

    def __call__(self, devices):
        self.sent.put(devices)

    def next_len(self, timeout=5.0):
        return len(self.sent.get(timeout=timeout))


def _watch(plugin, collector, stop):
    errors = []

    def run():
        try:
            plugin.list_and_watch(collector, stop)
        except Exception as exc:  # pragma: no cover - reported below
            errors.append(exc)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread, errors


def test_endpoint_and_name():
    plugin = ENIDevicePlugin(ENI_IP_RESOURCE_NAME, 5)
    assert plugin.resource_name() == ENI_IP_RESOURCE_NAME
    assert plugin.endpoint() == os.path.join(DEVICE_PLUGIN_PATH, ENI_IP_RESOURCE_NAME + ".sock")
    assert KUBELET_SOCKET.startswith(DEVICE_PLUGIN_PATH)


def test_endpoint_custom_path(tmp_path):
    plugin = ENIDevicePlugin("eni", 1, plugin_path=str(tmp_path))
    assert plugin.endpoint() == str(tmp_path / "eni.sock")


def test_list_devices_ids_and_health():
    plugin = ENIDevicePlugin(ENI_IP_RESOURCE_NAME, 5)
    devices = plugin.list_devices(5)
    assert len(devices) == 5
    assert devices[0] == Device(id="eni-ip-0", health=HEALTHY)
    assert len({d.id for d in devices}) == 5
    assert all(d.health == "Healthy" for d in devices)


def test_list_devices_zero():
    assert ENIDevicePlugin("eni", 3).list_devices(0) == []


def test_options_empty():
    options = ENIDevicePlugin("eni", 1).device_plugin_options()
    assert {key: bool(value) for key, value in options.items()} == dict.fromkeys(options, False)


def test_allocate_one_response_per_request():
    plugin = ENIDevicePlugin("eni", 2)
    responses = plugin.allocate([object(), object(), object()])
    assert responses == [{}, {}, {}]
    assert plugin.allocate([]) == []


def test_list_and_watch_initial_and_update():
    plugin = ENIDevicePlugin(ENI_IP_RESOURCE_NAME, 5)
    collector = _Collector()
    stop = threading.Event()
    thread, errors = _watch(plugin, collector, stop)
    assert collector.next_len() == 5
    plugin.update(3)
    assert collector.next_len() == 3
    stop.set()
    thread.join(timeout=5)
    assert not thread.is_alive()
    assert errors == []
    assert plugin.count == 3


def test_update_same_count_sends_nothing():
    plugin = ENIDevicePlugin("eni", 4)
    collector = _Collector()
    stop = threading.Event()
    thread, _ = _watch(plugin, collector, stop)
    assert collector.next_len() == 4
    plugin.update(4)
    with pytest.raises(queue.Empty):
        collector.sent.get(timeout=0.3)
    stop.set()
    thread.join(timeout=5)
    assert not thread.is_alive()


def test_pending_updates_coalesce_without_watcher():
    plugin = ENIDevicePlugin("eni", 3)
    plugin.update(4)
    assert plugin.count == 3
    plugin.update(6)
    assert plugin.count == 6
    collector = _Collector()
    stop = threading.Event()
    thread, _ = _watch(plugin, collector, stop)
    assert collector.next_len() == 6
    assert collector.next_len() == 6
    stop.set()
    thread.join(timeout=5)
    assert not thread.is_alive()


def test_periodic_report():
    plugin = ENIDevicePlugin("eni", 2, report_period=0.05)
    collector = _Collector()
    stop = threading.Event()
    thread, _ = _watch(plugin, collector, stop)
    batches = [collector.sent.get(timeout=5) for _ in range(3)]
    stop.set()
    thread.join(timeout=5)
    assert [len(batch) for batch in batches] == [2, 2, 2]
    assert batches[2][1] == Device(id="eni-1", health=HEALTHY)
    assert plugin.count == 2
    assert not thread.is_alive()


def test_stop_already_set_sends_once():
    plugin = ENIDevicePlugin("eni", 2)
    collector = _Collector()
    stop = threading.Event()
    stop.set()
    plugin.list_and_watch(collector, stop)
    assert collector.sent.qsize() == 1
    assert collector.next_len() == 2


def test_send_error_propagates():
    plugin = ENIDevicePlugin("eni", 2)

    def failing(_devices):
        raise RuntimeError("stream closed")

    with pytest.raises(RuntimeError, match="stream closed"):
        plugin.list_and_watch(failing, threading.Event())
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping

from .device import Device
from .errors import DuplicateDevice, ShellyDashError, UnknownDevice
from .machine import DeviceConfig, parse_kind
from .samples import MetricSample, OutboundPublish

log = logging.getLogger("shellydash.registry")


def in_namespace(topic: str, prefix: str) -> bool:
    return topic == prefix or topic.startswith(prefix + "/")


class DeviceRegistry:
    """Configured devices keyed by id, plus registry-level fan-out of their signals."""

    def __init__(self, device_factory: Callable[[DeviceConfig], Device] = Device) -> None:
        self._factory = device_factory
        self._devices: dict[str, Device] = {}

        self.on_device_added: list[Callable[[Device], None]] = []
        self.on_device_removed: list[Callable[[Device], None]] = []
        self.on_config_updated: list[Callable[[DeviceConfig, DeviceConfig], None]] = []
        self.on_state_changed: list[Callable[[Device], None]] = []
        self.on_metric: list[Callable[[MetricSample], None]] = []
        self.on_publish: list[Callable[[OutboundPublish], None]] = []

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, device_id: str) -> bool:
        return device_id in self._devices

    def add_device(self, config: DeviceConfig) -> Device:
        parse_kind(config.type)
        if config.id in self._devices:
            raise DuplicateDevice(config.id)
        device = self._build(config)
        self._devices[config.id] = device
        log.info("Added device %s (%s) on %s", config.id, config.type, config.topic_prefix)
        self._emit(self.on_device_added, device)
        return device

    def load_devices(self, configs: Iterable[DeviceConfig]) -> list[Device]:
        loaded = []
        for config in configs:
            try:
                loaded.append(self.add_device(config))
            except ShellyDashError as e:
                log.error("Skipping device %s: %s", config.id, e)
        return loaded

    def get_device(self, device_id: str) -> Device | None:
        return self._devices.get(device_id)

    def require_device(self, device_id: str) -> Device:
        device = self._devices.get(device_id)
        if device is None:
            raise UnknownDevice(device_id)
        return device

    def get_all_devices(self) -> list[Device]:
        return list(self._devices.values())

    def get_devices_by_type(self, device_type: str) -> list[Device]:
        return [d for d in self._devices.values() if d.type == device_type]

    def remove_device(self, device_id: str) -> Device:
        device = self.require_device(device_id)
        device.close()
        del self._devices[device_id]
        log.info("Removed device %s", device_id)
        self._emit(self.on_device_removed, device)
        return device

    def update_device_config(self, device_id: str, updates: Mapping[str, Any]) -> DeviceConfig:
        """Merge updates into the stored config.

        Subscribers of ``on_config_updated`` receive (old, new) and are
        responsible for resubscribing when the topic prefix moved.
        """
        device = self.require_device(device_id)
        old = device.config
        new = old.merged(updates)
        if new == old:
            return old

        if new.type != old.type:
            parse_kind(new.type)
            # a different kind needs a different machine, state starts over
            device.close()
            rebuilt = self._devices[device_id] = self._build(new)
            self._emit(self.on_state_changed, rebuilt)
        else:
            device.update_config(new)

        log.info("Updated device %s config", device_id)
        self._emit(self.on_config_updated, old, new)
        return new

    def route(self, topic: str, payload: bytes | str) -> int:
        """Deliver a bus message to every device it may concern; returns how many."""
        delivered = 0
        for device in list(self._devices.values()):
            # RPC replies are not namespaced per device, every machine checks the request id itself
            if topic == device.rpc_topic or in_namespace(topic, device.topic_prefix):
                device.handle_message(topic, payload)
                delivered += 1
        return delivered

    def publish_initial_messages(self) -> None:
        for device in list(self._devices.values()):
            device.publish_initial_messages()

    def subscription_topics(self) -> list[str]:
        topics: list[str] = []
        for device in self._devices.values():
            for topic in (device.rpc_topic, f"{device.topic_prefix}/status/#"):
                if topic not in topics:
                    topics.append(topic)
        return topics

    def _build(self, config: DeviceConfig) -> Device:
        device = self._factory(config)
        device.on_state_changed.append(lambda d: self._emit(self.on_state_changed, d))
        device.on_metric.append(lambda s: self._emit(self.on_metric, s))
        device.on_publish.append(lambda p: self._emit(self.on_publish, p))
        return device

    def _emit(self, listeners: list, *args: Any) -> None:
        for listener in list(listeners):
            try:
                listener(*args)
            except Exception:
                log.exception("registry listener %r failed", listener)

"""
Application wiring: registry signals go to the store, the fan-out hub and the
bridge, and the HTTP/websocket layer calls into the coroutines below.

Registry and device state belong to the event loop. Database calls are
synchronous SQLModel work and run in worker threads via ``asyncio.to_thread``.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Mapping

from sqlalchemy.engine import Engine

from .aggregation import DEFAULT_INTERVAL_MS, AggregationService
from .bridge import BusClient, PahoBusClient, TransportBridge
from .db import init_db
from .device import Device
from .errors import DuplicateDevice, StorageUnavailable
from .machine import DeviceConfig, parse_kind
from .registry import DeviceRegistry
from .samples import AggregatedBucket, MetricSample
from .schemas import MetricOut, device_out, event
from .settings import settings
from .store import DeviceRepository, MetricStore
from .ws_manager import METRIC, STATE, FanoutHub

log = logging.getLogger("shellydash.service")


class DashboardService:
    def __init__(
        self,
        *,
        engine: Engine | None = None,
        bus: BusClient | None = None,
        registry: DeviceRegistry | None = None,
        bridge_options: Mapping[str, Any] | None = None,
    ) -> None:
        self._engine = engine
        self.registry = registry or DeviceRegistry()
        self.store = MetricStore(engine)
        self.devices = DeviceRepository(engine)
        self.aggregation = AggregationService(self.store)
        self.hub = FanoutHub(settings.subscriber_queue_size)
        self.bridge = TransportBridge(self.registry, bus or PahoBusClient(), **dict(bridge_options or {}))
        self._writes: set[asyncio.Task] = set()

        self.registry.on_state_changed.append(self._on_state_changed)
        self.registry.on_metric.append(self._on_metric)
        self.bridge.on_failed.append(self._on_bridge_failed)

    # ---------- lifecycle ----------

    async def start(self) -> None:
        await asyncio.to_thread(init_db, self._engine)
        await self.load_devices()
        self.bridge.start()

    async def stop(self) -> None:
        await self.bridge.close()
        if self._writes:
            await asyncio.gather(*self._writes, return_exceptions=True)
        for device in self.registry.get_all_devices():
            device.close()
        self.hub.close()

    async def load_devices(self) -> list[Device]:
        configs = await asyncio.to_thread(self.devices.list)
        if not configs and settings.default_device_id and settings.default_device_prefix:
            default = DeviceConfig(
                id=settings.default_device_id,
                name="Shelly Plug S",
                type="shelly-plug-s",
                topic_prefix=settings.default_device_prefix,
            )
            await asyncio.to_thread(self.devices.save, default)
            configs = [default]
        loaded = self.registry.load_devices(configs)
        log.info("Loaded %d devices", len(loaded))
        return loaded

    # ---------- signal handlers ----------

    def _on_state_changed(self, device: Device) -> None:
        self.hub.publish(STATE, event("state", device_out(device)))

    def _on_metric(self, sample: MetricSample) -> None:
        task = asyncio.create_task(self._persist(sample))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _persist(self, sample: MetricSample) -> None:
        try:
            await asyncio.to_thread(self.store.append, sample)
        except StorageUnavailable as e:
            log.error("Dropping sample: %s", e)
        self.hub.publish(METRIC, event("metric", MetricOut.model_validate(sample, from_attributes=True)))

    def _on_bridge_failed(self, error: BaseException | None) -> None:
        log.critical("Device bus is down for good, telemetry ingestion stopped: %s", error)

    # ---------- subscriptions ----------

    def subscribe_to_device_state(self, callback: Callable[[dict], Any]) -> Callable[[], None]:
        return self.hub.subscribe(STATE, callback)

    def subscribe_to_metrics(self, callback: Callable[[dict], Any]) -> Callable[[], None]:
        return self.hub.subscribe(METRIC, callback)

    def snapshot(self) -> dict[str, Any]:
        return {
            "kind": "snapshot",
            "data": [device_out(d).model_dump(mode="json", by_alias=True) for d in self.registry.get_all_devices()],
        }

    # ---------- device operations ----------

    def get_device(self, device_id: str) -> Device:
        return self.registry.require_device(device_id)

    def fetch_all_devices(self) -> list[Device]:
        return self.registry.get_all_devices()

    async def create_device(self, config: DeviceConfig) -> Device:
        parse_kind(config.type)
        if config.id in self.registry:
            raise DuplicateDevice(config.id)
        await asyncio.to_thread(self.devices.save, config)
        return self.registry.add_device(config)

    async def update_device(self, device_id: str, updates: Mapping[str, Any]) -> Device:
        config = self.registry.require_device(device_id).config.merged(updates)
        parse_kind(config.type)
        await asyncio.to_thread(self.devices.save, config)
        self.registry.update_device_config(device_id, updates)
        return self.registry.require_device(device_id)

    async def remove_device(self, device_id: str, purge_metrics: bool = False) -> None:
        self.registry.require_device(device_id)
        await asyncio.to_thread(self.devices.delete, device_id)
        self.registry.remove_device(device_id)
        if purge_metrics:
            await asyncio.to_thread(self.store.delete_for_device, device_id)

    async def execute_command(self, device_id: str, command: str, params: Mapping[str, Any] | None) -> Any:
        device = self.registry.require_device(device_id)
        return await device.execute(command, dict(params or {}))

    # ---------- metrics ----------

    async def get_device_metrics(
        self,
        device_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
        interval_ms: int | None = None,
    ) -> list[MetricSample] | list[AggregatedBucket]:
        self.registry.require_device(device_id)
        if interval_ms:
            return await asyncio.to_thread(self.aggregation.query_aggregated, device_id, start, end, interval_ms)
        return await asyncio.to_thread(self.store.query_range, device_id, start, end, limit)

    async def get_aggregated_metrics(
        self,
        device_id: str,
        time_range: str | None,
        interval_ms: int | None = None,
    ) -> list[AggregatedBucket]:
        self.registry.require_device(device_id)
        return await asyncio.to_thread(
            self.aggregation.query_time_range, device_id, time_range, interval_ms or DEFAULT_INTERVAL_MS
        )

    async def get_latest_metric(self, device_id: str) -> MetricSample | None:
        self.registry.require_device(device_id)
        return await asyncio.to_thread(self.store.latest, device_id)

"""
Tests for DashboardService wiring when the database misbehaves: config
changes only reach the registry once they are persisted, and failed sample
writes never stop ingestion or the live metric feed.
"""

import asyncio

import pytest

from shellydash.errors import StorageUnavailable
from shellydash.registry import DeviceRegistry
from shellydash.service import DashboardService

from .conftest import PLUG, RPC_TOPIC, FakeBus, power_payload


@pytest.fixture()
def bus() -> FakeBus:
    return FakeBus()


@pytest.fixture()
def service(engine, bus, make_device) -> DashboardService:
    return DashboardService(
        engine=engine,
        bus=bus,
        registry=DeviceRegistry(device_factory=make_device),
        bridge_options={"rpc_topic": RPC_TOPIC, "max_attempts": 1, "min_delay": 0, "max_delay": 0},
    )


def unavailable(*args, **kwargs):
    raise StorageUnavailable("database is locked")


async def wait_for(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)


class TestPersistFirst:
    @pytest.mark.asyncio
    async def test_failed_update_leaves_registry_untouched(self, service: DashboardService, monkeypatch) -> None:
        await service.create_device(PLUG)
        monkeypatch.setattr(service.devices, "save", unavailable)

        with pytest.raises(StorageUnavailable):
            await service.update_device("plug-1", {"name": "Renamed", "type": "shelly-ht"})

        device = service.get_device("plug-1")
        assert device.config == PLUG
        assert device.type == "shelly-plug-s"

    @pytest.mark.asyncio
    async def test_update_is_persisted_then_applied(self, service: DashboardService) -> None:
        await service.create_device(PLUG)
        device = await service.update_device("plug-1", {"name": "Renamed"})
        assert device.config.name == "Renamed"
        assert service.devices.get("plug-1").name == "Renamed"

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_device(self, service: DashboardService, monkeypatch) -> None:
        await service.create_device(PLUG)
        monkeypatch.setattr(service.devices, "delete", unavailable)

        with pytest.raises(StorageUnavailable):
            await service.remove_device("plug-1")

        assert "plug-1" in service.registry
        assert service.devices.get("plug-1") == PLUG


class TestIngestion:
    @pytest.mark.asyncio
    async def test_storage_failure_does_not_halt_ingestion(
        self, service: DashboardService, bus: FakeBus, monkeypatch
    ) -> None:
        service.registry.add_device(PLUG)
        assert await service.bridge.run() is True
        monkeypatch.setattr(service.store, "append", unavailable)

        metrics = []
        service.subscribe_to_metrics(metrics.append)

        bus.deliver("shellies/plug-1/status/switch:0", power_payload(apower=10.0, total=1.0))
        bus.deliver("shellies/plug-1/status/switch:0", power_payload(apower=20.0, total=2.0))
        await wait_for(lambda: len(metrics) == 2)

        assert sorted(m["data"]["apower"] for m in metrics) == [10.0, 20.0]
        assert all(m["kind"] == "metric" for m in metrics)
        assert service.get_device("plug-1").state.power == 20.0
        await service.stop()

"""
Tests for the transport bridge driven by a fake bus client.

Covers the connection state machine, capped reconnect retries, ordered
buffering of publishes made while disconnected, subscription bookkeeping
and inbound routing.
"""

import json

import pytest

from shellydash.bridge import TransportBridge
from shellydash.machine import DeviceConfig
from shellydash.registry import DeviceRegistry
from shellydash.samples import OutboundPublish

from .conftest import HT, PLUG, RPC_TOPIC, FakeBus, power_payload


@pytest.fixture()
def registry(make_device) -> DeviceRegistry:
    return DeviceRegistry(device_factory=make_device)


def make_bridge(registry: DeviceRegistry, bus: FakeBus, **kwargs) -> TransportBridge:
    kwargs.setdefault("rpc_topic", RPC_TOPIC)
    kwargs.setdefault("max_attempts", 3)
    kwargs.setdefault("min_delay", 0)
    kwargs.setdefault("max_delay", 0)
    kwargs.setdefault("buffer_size", 100)
    return TransportBridge(registry, bus, **kwargs)


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_subscribes_and_pulls_config(self, registry: DeviceRegistry) -> None:
        registry.load_devices([PLUG, HT])
        bus = FakeBus()
        bridge = make_bridge(registry, bus)
        assert bridge.fsm_state == "disconnected"

        assert await bridge.run() is True
        assert bridge.fsm_state == "connected"
        assert bus.subscribed == [RPC_TOPIC, "shellies/plug-1/status/#", "shellies/ht-1/status/#"]
        assert bus.methods().count("Shelly.GetConfig") == 2

    @pytest.mark.asyncio
    async def test_retries_until_broker_accepts(self, registry: DeviceRegistry) -> None:
        bus = FakeBus(fail_connects=2)
        bridge = make_bridge(registry, bus)
        assert await bridge.run() is True
        assert bus.connect_calls == 3
        assert bridge.fsm_state == "connected"

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, registry: DeviceRegistry) -> None:
        bus = FakeBus(fail_connects=10)
        bridge = make_bridge(registry, bus)
        failures = []
        bridge.on_failed.append(failures.append)

        assert await bridge.run() is False
        assert bus.connect_calls == 3
        assert bridge.fsm_state == "failed"
        assert isinstance(failures[0], ConnectionRefusedError)
        assert bridge.status()["last_error"] == "broker refused connection"

    @pytest.mark.asyncio
    async def test_run_only_once(self, registry: DeviceRegistry) -> None:
        bridge = make_bridge(registry, FakeBus())
        await bridge.run()
        assert await bridge.run() is False


class TestPublishBuffer:
    @pytest.mark.asyncio
    async def test_publishes_while_disconnected_are_flushed_in_order(self, registry: DeviceRegistry) -> None:
        bus = FakeBus()
        bridge = make_bridge(registry, bus)
        for n in range(3):
            bridge.publish_request(OutboundPublish("shellies/plug-1/rpc", json.dumps({"n": n})))
        assert bridge.pending_count == 3
        assert bus.published == []

        await bridge.run()
        assert [json.loads(p)["n"] for _, p in bus.published[:3]] == [0, 1, 2]
        assert bridge.pending_count == 0

    @pytest.mark.asyncio
    async def test_buffer_drops_oldest_when_full(self, registry: DeviceRegistry) -> None:
        bus = FakeBus()
        bridge = make_bridge(registry, bus, buffer_size=2)
        for n in range(3):
            bridge.publish_request(OutboundPublish("t", str(n)))
        assert bridge.pending_count == 2
        await bridge.run()
        assert [p for _, p in bus.published] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_connected_publish_goes_straight_out(self, registry: DeviceRegistry) -> None:
        bus = FakeBus()
        bridge = make_bridge(registry, bus)
        await bridge.run()
        bridge.publish_request(OutboundPublish("t", "now"))
        assert bus.published[-1] == ("t", "now")
        assert bridge.pending_count == 0

    @pytest.mark.asyncio
    async def test_backlog_left_while_connected_drains_on_next_publish(self, registry: DeviceRegistry) -> None:
        """A publish that fails without a connection drop is retried ahead of the next one."""
        bus = FakeBus()
        bridge = make_bridge(registry, bus)
        await bridge.run()
        published_before = len(bus.published)

        bus.connected = False
        bridge.publish_request(OutboundPublish("t", "first"))
        assert bridge.fsm_state == "connected"
        assert bridge.pending_count == 1

        bus.connected = True
        bridge.publish_request(OutboundPublish("t", "second"))
        assert [p for _, p in bus.published[published_before:]] == ["first", "second"]
        assert bridge.pending_count == 0

    @pytest.mark.asyncio
    async def test_device_commands_route_through_bridge(self, registry: DeviceRegistry) -> None:
        device = registry.add_device(PLUG)
        bus = FakeBus()
        bridge = make_bridge(registry, bus)
        await bridge.run()
        await device.execute("togglePower", {"on": False})
        topic, payload = bus.published[-1]
        assert topic == "shellies/plug-1/rpc"
        assert json.loads(payload)["params"] == {"id": 0, "on": False}


class TestReconnect:
    @pytest.mark.asyncio
    async def test_lost_connection_queues_then_flushes(self, registry: DeviceRegistry) -> None:
        registry.add_device(PLUG)
        bus = FakeBus()
        bridge = make_bridge(registry, bus)
        await bridge.run()

        bus.drop()
        assert bridge.fsm_state == "reconnecting"
        bridge.publish_request(OutboundPublish("shellies/plug-1/rpc", "queued"))
        assert bridge.pending_count == 1

        await bridge._task
        assert bridge.fsm_state == "connected"
        assert ("shellies/plug-1/rpc", "queued") in bus.published
        assert bridge.pending_count == 0

    @pytest.mark.asyncio
    async def test_close_stops_everything(self, registry: DeviceRegistry) -> None:
        bus = FakeBus()
        bridge = make_bridge(registry, bus)
        await bridge.run()
        await bridge.close()
        assert bridge.fsm_state == "closed"
        assert bus.connected is False

        bridge.publish_request(OutboundPublish("t", "late"))
        assert bridge.pending_count == 0

        # a drop after close must not trigger a reconnect
        bridge._on_connection_lost("rc=7")
        assert bridge.fsm_state == "closed"


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_inbound_messages_reach_devices(self, registry: DeviceRegistry) -> None:
        device = registry.add_device(PLUG)
        bus = FakeBus()
        await make_bridge(registry, bus).run()
        bus.deliver("shellies/plug-1/status/switch:0", power_payload(apower=33.0))
        assert device.state.power == 33.0

    @pytest.mark.asyncio
    async def test_added_device_is_subscribed_and_pulled(self, registry: DeviceRegistry) -> None:
        bus = FakeBus()
        await make_bridge(registry, bus).run()
        registry.add_device(HT)
        assert "shellies/ht-1/status/#" in bus.subscribed
        assert "Temperature.GetStatus" in bus.methods()

    @pytest.mark.asyncio
    async def test_removed_device_is_unsubscribed(self, registry: DeviceRegistry) -> None:
        registry.add_device(PLUG)
        bus = FakeBus()
        await make_bridge(registry, bus).run()
        registry.remove_device("plug-1")
        assert bus.unsubscribed == ["shellies/plug-1/status/#"]

    @pytest.mark.asyncio
    async def test_shared_prefix_stays_subscribed(self, registry: DeviceRegistry) -> None:
        registry.add_device(PLUG)
        registry.add_device(DeviceConfig(id="plug-twin", name="Twin", type=PLUG.type, topic_prefix=PLUG.topic_prefix))
        bus = FakeBus()
        await make_bridge(registry, bus).run()
        registry.remove_device("plug-1")
        assert bus.unsubscribed == []

    @pytest.mark.asyncio
    async def test_prefix_change_moves_subscription(self, registry: DeviceRegistry) -> None:
        registry.add_device(PLUG)
        bus = FakeBus()
        await make_bridge(registry, bus).run()
        registry.update_device_config("plug-1", {"topic_prefix": "shellies/office"})
        assert bus.unsubscribed == ["shellies/plug-1/status/#"]
        assert "shellies/office/status/#" in bus.subscribed

"""
Pure device state machine for Shelly devices.

Every inbound message is folded into a ``MachineState`` by ``handle_message``,
which returns a ``Transition``: the new state plus the metric samples, outbound
publishes, RPC replies and completion-timer directive it produced. Nothing in
this module touches the bus, the database or the clock; ``device.py`` wires the
effects to the outside world.

Device kinds differ only through the tables at the bottom of the module
(status handlers, initial requests, commands), keyed by ``DeviceKind``.
"""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field, replace, asdict
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping

from pydantic import BaseModel, ConfigDict, Field, StrictBool, ValidationError

from .errors import CommandFailed, MalformedMessage, UnknownDeviceType, UnsupportedCommand
from .samples import MetricSample, OutboundPublish

log = logging.getLogger("shellydash.machine")

MAX_OUTSTANDING = 64


class DeviceKind(str, Enum):
    PLUG_S = "shelly-plug-s"
    HT = "shelly-ht"


def parse_kind(device_type: str) -> DeviceKind:
    try:
        return DeviceKind(device_type)
    except ValueError:
        raise UnknownDeviceType(device_type) from None


@dataclass(frozen=True)
class DeviceConfig:
    id: str
    name: str
    type: str
    topic_prefix: str
    capabilities: frozenset[str] = frozenset()

    @property
    def kind(self) -> DeviceKind:
        return parse_kind(self.type)

    def merged(self, updates: Mapping[str, Any]) -> "DeviceConfig":
        changes = {k: v for k, v in updates.items() if v is not None and k != "id"}
        if "capabilities" in changes:
            changes["capabilities"] = frozenset(changes["capabilities"])
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "topic_prefix": self.topic_prefix,
            "capabilities": sorted(self.capabilities),
        }


@dataclass(frozen=True)
class DeviceState:
    device_name: str | None = None
    power_on: bool | None = None
    brightness: float | None = None
    power: float | None = None
    voltage: float | None = None
    current: float | None = None
    total_energy: float | None = None
    temperature: float | None = None
    humidity: float | None = None
    battery_percent: float | None = None
    bluetooth_enabled: bool = False
    wifi_name: str | None = None
    mqtt_enabled: bool = False
    led_mode: int | None = None
    power_on_state: int | None = None
    auto_off_delay: float | None = None
    auto_on_delay: float | None = None
    power_limit: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EnvironmentBuffer:
    """Readings waiting for their partner inside the completion window."""
    temperature: float | None = None
    humidity: float | None = None

    @property
    def complete(self) -> bool:
        return self.temperature is not None and self.humidity is not None


@dataclass(frozen=True)
class PendingRequest:
    method: str
    params: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class MachineState:
    config: DeviceConfig
    device: DeviceState
    buffer: EnvironmentBuffer | None = None
    outstanding: Mapping[int, PendingRequest] = field(default_factory=lambda: MappingProxyType({}))


class TimerAction(Enum):
    START = "start"
    CANCEL = "cancel"


@dataclass(frozen=True)
class RpcReply:
    request_id: int
    method: str
    result: Any = None
    error: Any = None


@dataclass(frozen=True)
class Transition:
    state: MachineState
    samples: tuple[MetricSample, ...] = ()
    publishes: tuple[OutboundPublish, ...] = ()
    replies: tuple[RpcReply, ...] = ()
    timer: TimerAction | None = None
    changed: bool = False


def initial_state(config: DeviceConfig) -> MachineState:
    defaults = KIND_DEFAULTS[config.kind]
    return MachineState(config=config, device=DeviceState(device_name=config.name, **defaults))


def reconcile_total(previous: float | None, reported: float) -> float:
    """Keep the energy counter monotonic across device reboots.

    A counter lower than the last cumulative total is treated as a fresh
    delta and added on top of it.
    """
    if previous is None or reported >= previous:
        return reported
    return previous + reported


def decode_payload(topic: str, payload: bytes | str) -> dict[str, Any]:
    try:
        text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else payload
        data = json.loads(text)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedMessage(topic, str(e)) from e
    if not isinstance(data, dict):
        raise MalformedMessage(topic, f"expected JSON object, got {type(data).__name__}")
    return data


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def _update(state: MachineState, **fields: Any) -> Transition:
    device = replace(state.device, **fields)
    if device == state.device:
        return Transition(state)
    return Transition(replace(state, device=device), changed=True)


# ---------------- inbound ----------------

def handle_message(
    state: MachineState,
    topic: str,
    payload: bytes | str,
    now: datetime,
    rpc_topic: str,
) -> Transition:
    """Fold one bus message into the state. Irrelevant or malformed messages are no-ops."""
    if topic == rpc_topic:
        handler: Callable[[MachineState, dict, datetime], Transition] = _on_rpc_response
    else:
        prefix = state.config.topic_prefix + "/"
        if not topic.startswith(prefix):
            return Transition(state)
        handler = STATUS_HANDLERS[state.config.kind].get(topic[len(prefix):])
        if handler is None:
            log.debug("%s: no handler for %s", state.config.id, topic)
            return Transition(state)

    try:
        data = decode_payload(topic, payload)
    except MalformedMessage as e:
        log.warning("%s: dropping message: %s", state.config.id, e)
        return Transition(state)
    return handler(state, data, now)


def _on_power(state: MachineState, data: dict, now: datetime) -> Transition:
    apower = _number(data.get("apower"))
    voltage = _number(data.get("voltage"))
    current = _number(data.get("current"))
    aenergy = data.get("aenergy")
    reported = _number(aenergy.get("total")) if isinstance(aenergy, dict) else None
    # all four readings must co-occur, partial telemetry is ignored
    if apower is None or voltage is None or current is None or reported is None:
        return Transition(state)

    total = reconcile_total(state.device.total_energy, reported)
    fields: dict[str, Any] = {"power": apower, "voltage": voltage, "current": current, "total_energy": total}
    if isinstance(data.get("output"), bool):
        fields["power_on"] = data["output"]
    new_state = replace(state, device=replace(state.device, **fields))
    sample = MetricSample(
        device_id=state.config.id,
        timestamp=now,
        apower=apower,
        voltage=voltage,
        current=current,
        total=total,
    )
    return Transition(new_state, samples=(sample,), changed=new_state.device != state.device)


def _on_temperature(state: MachineState, data: dict, now: datetime) -> Transition:
    value = _number(data.get("tC"))
    if value is None:
        return Transition(state)
    return _buffer_environment(state, now, temperature=value)


def _on_humidity(state: MachineState, data: dict, now: datetime) -> Transition:
    value = _number(data.get("rh"))
    if value is None:
        return Transition(state)
    return _buffer_environment(state, now, humidity=value)


def _buffer_environment(state: MachineState, now: datetime, **reading: float) -> Transition:
    device = replace(state.device, **reading)
    changed = device != state.device

    if state.buffer is None:
        buffer = EnvironmentBuffer(**reading)
        return Transition(replace(state, device=device, buffer=buffer), timer=TimerAction.START, changed=changed)

    buffer = replace(state.buffer, **reading)
    if not buffer.complete:
        # same sensor reported twice, keep the newest and let the timer run
        return Transition(replace(state, device=device, buffer=buffer), changed=changed)

    sample = MetricSample(
        device_id=state.config.id,
        timestamp=now,
        temperature=buffer.temperature,
        humidity=buffer.humidity,
    )
    return Transition(
        replace(state, device=device, buffer=None),
        samples=(sample,),
        timer=TimerAction.CANCEL,
        changed=changed,
    )


def flush_environment(state: MachineState, now: datetime) -> Transition:
    """Completion window elapsed: emit what was buffered, filling the gap from state."""
    buffer = state.buffer
    if buffer is None:
        return Transition(state)

    temperature = buffer.temperature
    if temperature is None:
        temperature = state.device.temperature if state.device.temperature is not None else 0.0
    humidity = buffer.humidity
    if humidity is None:
        humidity = state.device.humidity if state.device.humidity is not None else 0.0

    sample = MetricSample(
        device_id=state.config.id,
        timestamp=now,
        temperature=temperature,
        humidity=humidity,
    )
    return Transition(replace(state, buffer=None), samples=(sample,))


def _on_battery(state: MachineState, data: dict, now: datetime) -> Transition:
    battery = data.get("battery")
    percent = _number(battery.get("percent")) if isinstance(battery, dict) else None
    if percent is None:
        return Transition(state)
    return _update(state, battery_percent=percent)


def _on_wifi_status(state: MachineState, data: dict, now: datetime) -> Transition:
    if "ssid" not in data:
        return Transition(state)
    ssid = data["ssid"]
    return _update(state, wifi_name=ssid if isinstance(ssid, str) else None)


def _on_ble_status(state: MachineState, data: dict, now: datetime) -> Transition:
    if not isinstance(data.get("enable"), bool):
        return Transition(state)
    return _update(state, bluetooth_enabled=data["enable"])


def _on_mqtt_status(state: MachineState, data: dict, now: datetime) -> Transition:
    if not isinstance(data.get("connected"), bool):
        return Transition(state)
    return _update(state, mqtt_enabled=data["connected"])


def _on_rpc_response(state: MachineState, data: dict, now: datetime) -> Transition:
    request_id = data.get("id")
    if isinstance(request_id, bool) or not isinstance(request_id, int):
        return Transition(state)
    request = state.outstanding.get(request_id)
    if request is None:
        # another device's request
        return Transition(state)

    remaining = {k: v for k, v in state.outstanding.items() if k != request_id}
    base = replace(state, outstanding=MappingProxyType(remaining))
    reply = RpcReply(request_id, request.method, data.get("result"), data.get("error"))

    if reply.error is not None:
        log.warning("%s: %s (id=%s) failed: %s", state.config.id, request.method, request_id, reply.error)
        return Transition(base, replies=(reply,))

    handler = RESULT_HANDLERS.get(request.method)
    if handler is None or not isinstance(reply.result, dict):
        return Transition(base, replies=(reply,))
    return replace(handler(base, reply.result, request, now), replies=(reply,))


def _on_get_config(state: MachineState, result: dict, request: PendingRequest, now: datetime) -> Transition:
    fields: dict[str, Any] = {}
    sys_device = (result.get("sys") or {}).get("device") or {}
    name = sys_device.get("name") or result.get("name")
    if isinstance(name, str) and name:
        fields["device_name"] = name
    mqtt = result.get("mqtt") or {}
    if isinstance(mqtt.get("enable"), bool):
        fields["mqtt_enabled"] = mqtt["enable"]
    ble = result.get("ble") or {}
    if isinstance(ble.get("enable"), bool):
        fields["bluetooth_enabled"] = ble["enable"]
    fields.update(_switch_settings(_switch_section(result)))
    return _update(state, **fields)


def _on_wifi_result(state: MachineState, result: dict, request: PendingRequest, now: datetime) -> Transition:
    ssid = result.get("ssid")
    if not ssid:
        ssid = (result.get("sta") or {}).get("ssid")
    if not ssid:
        ssid = ((result.get("wifi") or {}).get("sta") or {}).get("ssid")
    if not isinstance(ssid, str) or not ssid:
        return Transition(state)
    return _update(state, wifi_name=ssid)


def _on_wifi_set(state: MachineState, result: dict, request: PendingRequest, now: datetime) -> Transition:
    sta = ((request.params or {}).get("config") or {}).get("sta") or {}
    if not sta.get("ssid"):
        return Transition(state)
    return _update(state, wifi_name=sta["ssid"])


def _on_switch_set(state: MachineState, result: dict, request: PendingRequest, now: datetime) -> Transition:
    if not isinstance(result.get("output"), bool):
        return Transition(state)
    return _update(state, power_on=result["output"])


def _switch_section(result: dict) -> dict:
    section = result.get("switch:0")
    if section is None:
        # older firmware lists switch configs instead of keying them by id
        switches = result.get("switch")
        section = switches[0] if isinstance(switches, list) and switches else None
    return section if isinstance(section, dict) else {}


def _switch_settings(config: Mapping[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    if isinstance(config.get("led_mode"), int) and not isinstance(config["led_mode"], bool):
        fields["led_mode"] = config["led_mode"]
    if isinstance(config.get("initial_state"), int) and not isinstance(config["initial_state"], bool):
        fields["power_on_state"] = config["initial_state"]
    for flag, delay in (("auto_off", "auto_off_delay"), ("auto_on", "auto_on_delay")):
        if isinstance(config.get(flag), bool):
            value = _number(config.get(delay)) if config[flag] else 0.0
            fields[delay] = value if value is not None else 0.0
    limit = _number(config.get("power_limit"))
    if limit is not None:
        fields["power_limit"] = limit
    return fields


def _on_switch_config_set(state: MachineState, result: dict, request: PendingRequest, now: datetime) -> Transition:
    config = (request.params or {}).get("config") or {}
    return _update(state, **_switch_settings(config))


def _on_get_status(state: MachineState, result: dict, request: PendingRequest, now: datetime) -> Transition:
    switch = result.get("switch:0")
    if not isinstance(switch, dict):
        return Transition(state)
    return _on_power(state, switch, now)


def _status_result(handler: Callable[[MachineState, dict, datetime], Transition]):
    def on_result(state: MachineState, result: dict, request: PendingRequest, now: datetime) -> Transition:
        return handler(state, result, now)
    return on_result


# ---------------- outbound ----------------

def build_request(
    state: MachineState,
    method: str,
    params: Mapping[str, Any] | None,
    request_id: int,
    source: str,
) -> tuple[MachineState, OutboundPublish]:
    body: dict[str, Any] = {"id": request_id, "src": source, "method": method}
    if params is not None:
        body["params"] = dict(params)
    outstanding = dict(state.outstanding)
    outstanding[request_id] = PendingRequest(method, params)
    while len(outstanding) > MAX_OUTSTANDING:
        outstanding.pop(next(iter(outstanding)))
    publish = OutboundPublish(f"{state.config.topic_prefix}/rpc", json.dumps(body))
    return replace(state, outstanding=MappingProxyType(outstanding)), publish


def _issue(
    state: MachineState,
    calls: list[tuple[str, Mapping[str, Any] | None]],
    next_id: Callable[[], int],
    source: str,
) -> tuple[MachineState, list[OutboundPublish], list[int]]:
    publishes: list[OutboundPublish] = []
    ids: list[int] = []
    for method, params in calls:
        request_id = next_id()
        state, publish = build_request(state, method, params, request_id, source)
        publishes.append(publish)
        ids.append(request_id)
    return state, publishes, ids


def initial_requests(state: MachineState, next_id: Callable[[], int], source: str) -> Transition:
    """Read-only requests that pull the device's current configuration."""
    calls = INITIAL_REQUESTS[state.config.kind]
    new_state, publishes, _ = _issue(state, calls, next_id, source)
    return Transition(new_state, publishes=tuple(publishes))


class NoParams(BaseModel):
    pass


class PowerParams(BaseModel):
    on: StrictBool


class BrightnessParams(BaseModel):
    brightness: float = Field(ge=0, le=100)


class BluetoothParams(BaseModel):
    enable: StrictBool


class NameParams(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)
    name: str = Field(min_length=1)


class WifiConnectParams(BaseModel):
    ssid: str = Field(min_length=1)
    password: str | None = None


class LedModeParams(BaseModel):
    mode: int = Field(ge=0, le=3)


class PowerOnStateParams(BaseModel):
    """0 off, 1 on, 2 restore the last state."""
    state: int = Field(ge=0, le=2)


class TimerParams(BaseModel):
    seconds: float = Field(ge=0)


class PowerLimitParams(BaseModel):
    watts: float = Field(ge=0)


def _wifi_networks(result: Any) -> dict[str, Any]:
    networks = []
    for network in (result or {}).get("results") or []:
        networks.append({
            "ssid": network.get("ssid"),
            "rssi": network.get("rssi"),
            "secure": network.get("auth", network.get("auth_mode", 0)) != 0,
        })
    return {"networks": networks}


@dataclass(frozen=True)
class CommandSpec:
    capability: str
    params_model: type[BaseModel]
    calls: Callable[[Any], list[tuple[str, Mapping[str, Any] | None]]]
    optimistic: Callable[[Any], dict[str, Any]] | None = None
    awaits_reply: bool = False
    shape_result: Callable[[Any], Any] | None = None


@dataclass(frozen=True)
class CommandPlan:
    name: str
    spec: CommandSpec
    params: BaseModel


def supported_commands(config: DeviceConfig) -> dict[str, CommandSpec]:
    table = COMMANDS[config.kind]
    if not config.capabilities:
        return dict(table)
    return {name: spec for name, spec in table.items() if spec.capability in config.capabilities}


def plan_command(config: DeviceConfig, name: str, params: Mapping[str, Any] | None) -> CommandPlan:
    spec = supported_commands(config).get(name)
    if spec is None:
        raise UnsupportedCommand(config.id, name)
    try:
        model = spec.params_model.model_validate(dict(params or {}))
    except ValidationError as e:
        raise CommandFailed(f"invalid parameters for {name}: {e.errors(include_url=False)}") from e
    return CommandPlan(name, spec, model)


def apply_command(
    state: MachineState,
    plan: CommandPlan,
    next_id: Callable[[], int],
    source: str,
) -> tuple[Transition, list[int]]:
    new_state, publishes, ids = _issue(state, plan.spec.calls(plan.params), next_id, source)
    changed = False
    if plan.spec.optimistic is not None:
        device = replace(new_state.device, **plan.spec.optimistic(plan.params))
        changed = device != new_state.device
        new_state = replace(new_state, device=device)
    return Transition(new_state, publishes=tuple(publishes), changed=changed), ids


# ---------------- capability tables ----------------

KIND_DEFAULTS: dict[DeviceKind, dict[str, Any]] = {
    DeviceKind.PLUG_S: {"power_on": True, "power": 0.0, "voltage": 0.0, "current": 0.0},
    DeviceKind.HT: {},
}

_CONNECTIVITY_HANDLERS = {
    "status/wifi": _on_wifi_status,
    "status/ble": _on_ble_status,
    "status/mqtt": _on_mqtt_status,
}

STATUS_HANDLERS: dict[DeviceKind, dict[str, Callable[[MachineState, dict, datetime], Transition]]] = {
    DeviceKind.PLUG_S: {"status/switch:0": _on_power, **_CONNECTIVITY_HANDLERS},
    DeviceKind.HT: {
        "status/temperature:0": _on_temperature,
        "status/humidity:0": _on_humidity,
        "status/devicepower:0": _on_battery,
        **_CONNECTIVITY_HANDLERS,
    },
}

RESULT_HANDLERS: dict[str, Callable[[MachineState, dict, PendingRequest, datetime], Transition]] = {
    "Shelly.GetConfig": _on_get_config,
    "Wifi.GetStatus": _on_wifi_result,
    "Wifi.GetConfig": _on_wifi_result,
    "Wifi.SetConfig": _on_wifi_set,
    "Switch.Set": _on_switch_set,
    "Switch.SetConfig": _on_switch_config_set,
    "Shelly.GetStatus": _on_get_status,
    "Switch.GetStatus": _status_result(_on_power),
    "Temperature.GetStatus": _status_result(_on_temperature),
    "Humidity.GetStatus": _status_result(_on_humidity),
    "DevicePower.GetStatus": _status_result(_on_battery),
}

_CONFIG_REQUESTS: list[tuple[str, Mapping[str, Any] | None]] = [
    ("Shelly.GetConfig", None),
    ("Wifi.GetStatus", None),
    ("Wifi.GetConfig", None),
]

_SENSOR_REQUESTS: list[tuple[str, Mapping[str, Any] | None]] = [
    ("Temperature.GetStatus", {"id": 0}),
    ("Humidity.GetStatus", {"id": 0}),
    ("DevicePower.GetStatus", {"id": 0}),
]

INITIAL_REQUESTS: dict[DeviceKind, list[tuple[str, Mapping[str, Any] | None]]] = {
    DeviceKind.PLUG_S: [*_CONFIG_REQUESTS, ("Switch.GetStatus", {"id": 0})],
    DeviceKind.HT: [*_CONFIG_REQUESTS, *_SENSOR_REQUESTS],
}

_SHARED_COMMANDS: dict[str, CommandSpec] = {
    "toggleBluetooth": CommandSpec(
        capability="bluetooth",
        params_model=BluetoothParams,
        calls=lambda p: [("BLE.SetConfig", {"config": {"enable": p.enable}})],
        optimistic=lambda p: {"bluetooth_enabled": p.enable},
    ),
    "setDeviceName": CommandSpec(
        capability="config",
        params_model=NameParams,
        calls=lambda p: [("Sys.SetConfig", {"config": {"device": {"name": p.name}}})],
        optimistic=lambda p: {"device_name": p.name},
    ),
    "reboot": CommandSpec(
        capability="config",
        params_model=NoParams,
        calls=lambda p: [("Shelly.Reboot", None)],
    ),
    "scanWifi": CommandSpec(
        capability="wifi",
        params_model=NoParams,
        calls=lambda p: [("Wifi.Scan", None)],
        awaits_reply=True,
        shape_result=_wifi_networks,
    ),
    "connectWifi": CommandSpec(
        capability="wifi",
        params_model=WifiConnectParams,
        calls=lambda p: [(
            "Wifi.SetConfig",
            {"config": {"sta": {k: v for k, v in (("ssid", p.ssid), ("pass", p.password), ("enable", True)) if v is not None}}},
        )],
        awaits_reply=True,
    ),
    "getWifiStatus": CommandSpec(
        capability="wifi",
        params_model=NoParams,
        calls=lambda p: [("Wifi.GetStatus", None)],
        awaits_reply=True,
    ),
}


def _switch_config(**config: Any) -> list[tuple[str, Mapping[str, Any] | None]]:
    return [("Switch.SetConfig", {"id": 0, "config": config})]


_SWITCH_COMMANDS: dict[str, CommandSpec] = {
    "setLedMode": CommandSpec(
        capability="config",
        params_model=LedModeParams,
        calls=lambda p: _switch_config(led_mode=p.mode),
    ),
    "setPowerOnState": CommandSpec(
        capability="config",
        params_model=PowerOnStateParams,
        calls=lambda p: _switch_config(initial_state=p.state),
    ),
    "setAutoOffTimer": CommandSpec(
        capability="config",
        params_model=TimerParams,
        calls=lambda p: _switch_config(auto_off=p.seconds > 0, auto_off_delay=p.seconds),
    ),
    "setAutoOnTimer": CommandSpec(
        capability="config",
        params_model=TimerParams,
        calls=lambda p: _switch_config(auto_on=p.seconds > 0, auto_on_delay=p.seconds),
    ),
    "setPowerLimit": CommandSpec(
        capability="config",
        params_model=PowerLimitParams,
        calls=lambda p: _switch_config(power_limit=p.watts, power_limit_enabled=p.watts > 0),
    ),
    "factoryReset": CommandSpec(
        capability="config",
        params_model=NoParams,
        calls=lambda p: [("Shelly.FactoryReset", {})],
    ),
    "getDeviceConfig": CommandSpec(
        capability="config",
        params_model=NoParams,
        calls=lambda p: [("Shelly.GetConfig", None)],
        awaits_reply=True,
    ),
    "getDeviceStatus": CommandSpec(
        capability="config",
        params_model=NoParams,
        calls=lambda p: [("Shelly.GetStatus", None)],
        awaits_reply=True,
    ),
}

COMMANDS: dict[DeviceKind, dict[str, CommandSpec]] = {
    DeviceKind.PLUG_S: {
        "togglePower": CommandSpec(
            capability="power",
            params_model=PowerParams,
            calls=lambda p: [("Switch.Set", {"id": 0, "on": p.on})],
            optimistic=lambda p: {"power_on": p.on},
        ),
        "setBrightness": CommandSpec(
            capability="brightness",
            params_model=BrightnessParams,
            calls=lambda p: [("Light.Set", {"id": 0, "brightness": p.brightness})],
            optimistic=lambda p: {"brightness": p.brightness},
        ),
        **_SHARED_COMMANDS,
        **_SWITCH_COMMANDS,
    },
    DeviceKind.HT: {
        **_SHARED_COMMANDS,
        "refreshSensors": CommandSpec(
            capability="sensors",
            params_model=NoParams,
            calls=lambda p: list(_SENSOR_REQUESTS),
        ),
    },
}

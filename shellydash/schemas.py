from datetime import datetime
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Any

class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class DeviceStateOut(ApiModel):
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

class DeviceOut(ApiModel):
    id: str
    name: str
    type: str
    topic_prefix: str
    capabilities: list[str] = []
    state: DeviceStateOut
    commands: list[str] = []

class DeviceCreate(ApiModel):
    id: str
    name: str
    type: str
    topic_prefix: str
    capabilities: list[str] = []

class DeviceUpdate(ApiModel):
    name: str | None = None
    type: str | None = None
    topic_prefix: str | None = None
    capabilities: list[str] | None = None

class MetricOut(ApiModel):
    device_id: str
    timestamp: datetime
    apower: float | None = None
    voltage: float | None = None
    current: float | None = None
    total: float | None = None
    temperature: float | None = None
    humidity: float | None = None
    sample_count: int = 1

class CommandRequest(ApiModel):
    command: str
    params: dict[str, Any] = {}

class CommandResponse(ApiModel):
    success: bool
    command: str
    result: Any = None

class HealthOut(ApiModel):
    status: str
    bridge: dict[str, Any]
    devices: int
    subscribers: int

def device_out(device) -> DeviceOut:
    return DeviceOut(**device.to_dict(), commands=sorted(device.get_commands()))

def event(kind: str, body: ApiModel) -> dict[str, Any]:
    return {"kind": kind, "data": body.model_dump(mode="json", by_alias=True)}

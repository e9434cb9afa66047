from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any

METRIC_FIELDS = ("apower", "voltage", "current", "total", "temperature", "humidity")


@dataclass(frozen=True)
class MetricSample:
    device_id: str
    timestamp: datetime
    apower: float | None = None
    voltage: float | None = None
    current: float | None = None
    total: float | None = None
    temperature: float | None = None
    humidity: float | None = None
    sample_count: int = 1

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["timestamp"] = self.timestamp.isoformat()
        return out


@dataclass(frozen=True)
class AggregatedBucket:
    device_id: str
    timestamp: datetime  # bucket start
    sample_count: int
    apower: float = 0.0
    voltage: float = 0.0
    current: float = 0.0
    total: float = 0.0
    temperature: float = 0.0
    humidity: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["timestamp"] = self.timestamp.isoformat()
        return out


@dataclass(frozen=True)
class OutboundPublish:
    topic: str
    payload: str

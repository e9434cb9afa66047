"""
Down-sampling of stored metric samples into fixed-width buckets.

Buckets are anchored at the first sample in range, not at calendar
boundaries, and empty buckets are left out instead of being zero-filled.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Sequence

from dateutil.relativedelta import relativedelta

from .samples import METRIC_FIELDS, AggregatedBucket, MetricSample
from .store import MetricStore

log = logging.getLogger("shellydash.aggregation")

DEFAULT_INTERVAL_MS = 300_000

TIME_RANGES = {
    "day": relativedelta(days=1),
    "week": relativedelta(days=7),
    "month": relativedelta(months=1),
}


def time_window(time_range: str | None, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Server-side window for a named range; unknown names mean the last hour."""
    end = now or datetime.now(timezone.utc)
    delta = TIME_RANGES.get(time_range or "day", relativedelta(hours=1))
    return end - delta, end


def _valid(value: float | None) -> bool:
    return value is not None and not math.isnan(value)


def _summarise(device_id: str, start: datetime, samples: list[MetricSample]) -> AggregatedBucket:
    averages: dict[str, float] = {}
    for name in METRIC_FIELDS:
        values = [v for v in (getattr(s, name) for s in samples) if _valid(v)]
        averages[name] = sum(values) / len(values) if values else 0.0
    return AggregatedBucket(device_id=device_id, timestamp=start, sample_count=len(samples), **averages)


def aggregate(samples: Sequence[MetricSample], bucket_width: timedelta) -> list[AggregatedBucket]:
    """Average ascending samples per bucket; field averages only count valid numbers."""
    if bucket_width <= timedelta(0):
        raise ValueError("bucket width must be positive")
    if not samples:
        return []

    anchor = samples[0].timestamp
    device_id = samples[0].device_id
    buckets: list[AggregatedBucket] = []
    current: list[MetricSample] = []
    current_index = 0

    for sample in samples:
        index = (sample.timestamp - anchor) // bucket_width
        if current and index != current_index:
            buckets.append(_summarise(device_id, anchor + current_index * bucket_width, current))
            current = []
        current_index = index
        current.append(sample)

    if current:
        buckets.append(_summarise(device_id, anchor + current_index * bucket_width, current))
    return buckets


class AggregationService:
    def __init__(self, store: MetricStore) -> None:
        self._store = store

    def query_aggregated(
        self,
        device_id: str,
        start: datetime | None,
        end: datetime | None,
        bucket_width_ms: int = DEFAULT_INTERVAL_MS,
    ) -> list[AggregatedBucket]:
        samples = self._store.query_range(device_id, start, end)
        buckets = aggregate(samples, timedelta(milliseconds=bucket_width_ms))
        log.debug("%s: %d samples -> %d buckets", device_id, len(samples), len(buckets))
        return buckets

    def query_time_range(
        self,
        device_id: str,
        time_range: str | None,
        bucket_width_ms: int = DEFAULT_INTERVAL_MS,
        now: datetime | None = None,
    ) -> list[AggregatedBucket]:
        start, end = time_window(time_range, now)
        return self.query_aggregated(device_id, start, end, bucket_width_ms)

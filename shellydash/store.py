from __future__ import annotations

import logging
import math
from datetime import datetime, timezone

from sqlalchemy import delete
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from .db import get_session
from .errors import StorageUnavailable
from .machine import DeviceConfig
from .models import DeviceRecord, MetricRecord
from .samples import METRIC_FIELDS, MetricSample

log = logging.getLogger("shellydash.store")


def _as_utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts.astimezone(timezone.utc)


def _clean(value: float | None) -> float | None:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return None
    return value


def _to_record(sample: MetricSample) -> MetricRecord:
    values = {f: _clean(getattr(sample, f)) for f in METRIC_FIELDS}
    return MetricRecord(device_id=sample.device_id, timestamp=_as_utc(sample.timestamp), **values)


def _to_sample(row: MetricRecord) -> MetricSample:
    values = {f: getattr(row, f) for f in METRIC_FIELDS}
    return MetricSample(device_id=row.device_id, timestamp=_as_utc(row.timestamp), **values)


class MetricStore:
    """Append-only storage of metric samples."""

    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine

    def append(self, sample: MetricSample) -> None:
        try:
            with get_session(self._engine) as s:
                s.add(_to_record(sample))
                s.commit()
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"could not store sample for {sample.device_id}: {e}") from e

    def query_range(
        self,
        device_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
        descending: bool = False,
    ) -> list[MetricSample]:
        """Samples with ``start <= timestamp <= end``.

        ``descending`` picks the direction and therefore which end ``limit``
        keeps: ascending returns the oldest ``limit`` samples, descending the
        newest.
        """
        stmt = select(MetricRecord).where(MetricRecord.device_id == device_id)
        if start is not None:
            stmt = stmt.where(MetricRecord.timestamp >= _as_utc(start))
        if end is not None:
            stmt = stmt.where(MetricRecord.timestamp <= _as_utc(end))
        if descending:
            stmt = stmt.order_by(MetricRecord.timestamp.desc(), MetricRecord.id.desc())
        else:
            stmt = stmt.order_by(MetricRecord.timestamp.asc(), MetricRecord.id.asc())
        if limit is not None and limit > 0:
            stmt = stmt.limit(limit)
        try:
            with get_session(self._engine) as s:
                rows = s.exec(stmt).all()
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"could not query samples for {device_id}: {e}") from e
        return [_to_sample(r) for r in rows]

    def latest(self, device_id: str) -> MetricSample | None:
        rows = self.query_range(device_id, limit=1, descending=True)
        return rows[0] if rows else None

    def delete_for_device(self, device_id: str) -> int:
        try:
            with get_session(self._engine) as s:
                result = s.execute(delete(MetricRecord).where(MetricRecord.device_id == device_id))
                s.commit()
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"could not delete samples for {device_id}: {e}") from e
        log.info("Deleted %s samples of device %s", result.rowcount, device_id)
        return result.rowcount


class DeviceRepository:
    """Persisted device configurations."""

    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine

    def save(self, config: DeviceConfig) -> None:
        try:
            with get_session(self._engine) as s:
                row = s.get(DeviceRecord, config.id)
                if row is None:
                    row = DeviceRecord(id=config.id, name=config.name, type=config.type, topic_prefix=config.topic_prefix)
                row.name = config.name
                row.type = config.type
                row.topic_prefix = config.topic_prefix
                row.capabilities = sorted(config.capabilities)
                s.add(row)
                s.commit()
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"could not save device {config.id}: {e}") from e

    def get(self, device_id: str) -> DeviceConfig | None:
        try:
            with get_session(self._engine) as s:
                row = s.get(DeviceRecord, device_id)
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"could not read device {device_id}: {e}") from e
        return _to_config(row) if row else None

    def list(self) -> list[DeviceConfig]:
        try:
            with get_session(self._engine) as s:
                rows = s.exec(select(DeviceRecord).order_by(DeviceRecord.created_at)).all()
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"could not list devices: {e}") from e
        return [_to_config(r) for r in rows]

    def delete(self, device_id: str) -> bool:
        try:
            with get_session(self._engine) as s:
                row = s.get(DeviceRecord, device_id)
                if not row:
                    return False
                s.delete(row)
                s.commit()
        except SQLAlchemyError as e:
            raise StorageUnavailable(f"could not delete device {device_id}: {e}") from e
        return True


def _to_config(row: DeviceRecord) -> DeviceConfig:
    return DeviceConfig(
        id=row.id,
        name=row.name,
        type=row.type,
        topic_prefix=row.topic_prefix,
        capabilities=frozenset(row.capabilities or ()),
    )

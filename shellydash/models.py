from typing import Optional
from datetime import datetime, timezone
from sqlalchemy import DateTime, Index
from sqlmodel import SQLModel, Field, Column, JSON

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class DeviceRecord(SQLModel, table=True):
    __tablename__ = "devices"

    id: str = Field(primary_key=True, index=True)
    name: str
    type: str
    topic_prefix: str
    capabilities: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))

class MetricRecord(SQLModel, table=True):
    __tablename__ = "metric_samples"
    __table_args__ = (Index("ix_metric_samples_device_ts", "device_id", "timestamp"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    device_id: str = Field(index=True)
    # aware UTC on write; SQLite hands values back naive
    timestamp: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False, index=True))
    apower: Optional[float] = None
    voltage: Optional[float] = None
    current: Optional[float] = None
    total: Optional[float] = None
    temperature: Optional[float] = None
    humidity: Optional[float] = None

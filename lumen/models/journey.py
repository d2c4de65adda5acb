"""Journey models: linked devices sharing one identity."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class Journey(SQLModel, table=True):
    __tablename__ = "journeys"

    id: str = Field(primary_key=True)  # hash of the device that created it
    primary_device_id: str
    primary_device_hash: str = Field(index=True)
    device_ids: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    device_hashes: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    last_key_preview: Optional[str] = None
    version: int = Field(default=1)  # bumped on every compare-and-set write
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class JourneyDevice(SQLModel, table=True):
    __tablename__ = "journey_devices"

    device_hash: str = Field(primary_key=True)
    device_id: str
    journey_id: str = Field(foreign_key="journeys.id", index=True)
    attached_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_seen_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class JourneyKey(SQLModel, table=True):
    __tablename__ = "journey_keys"

    key_hash: str = Field(primary_key=True)  # plaintext key is never stored
    journey_id: str = Field(foreign_key="journeys.id", index=True)
    key_preview: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

# models/device.py
from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import Enum, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, TimestampMixin, UTCDateTime, UUIDPrimaryKey


class DeviceStatus(str, enum.Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    REVOKED = "revoked"


class Device(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "devices"

    device_uuid: Mapped[uuid.UUID] = mapped_column(Uuid, unique=True, nullable=False, index=True)
    device_id: Mapped[str] = mapped_column(String(255), nullable=False)
    mac_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    device_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[DeviceStatus] = mapped_column(
        Enum(DeviceStatus, native_enum=False, length=32, values_callable=lambda e: [m.value for m in e]),
        default=DeviceStatus.UNREGISTERED,
        nullable=False,
    )
    # set once on first registration, never rewritten
    registered_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

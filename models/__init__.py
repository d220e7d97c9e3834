# models/__init__.py
from models.base import Base
from models.device import Device, DeviceStatus
from models.token_issuance import TokenIssuance

__all__ = [
    "Base",
    "Device",
    "DeviceStatus",
    "TokenIssuance",
]

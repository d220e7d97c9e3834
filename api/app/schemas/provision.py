# api/app/schemas/provision.py
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator

MQTT_CONFIG_REQUEST = "mqtt_config"

# Bounds keep a success reply (JWT included) inside one UDP datagram.
MAX_DEVICE_ID_LENGTH = 64
MAX_DEVICE_TYPE_LENGTH = 64
MAX_MAC_ADDRESS_LENGTH = 32
MAX_REQUEST_TYPE_LENGTH = 32


class ProvisionRequest(BaseModel):
    """Every field is required and must be a non-blank, bounded string."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    device_id: StrictStr = Field(max_length=MAX_DEVICE_ID_LENGTH)
    device_type: StrictStr = Field(max_length=MAX_DEVICE_TYPE_LENGTH)
    mac_address: StrictStr = Field(max_length=MAX_MAC_ADDRESS_LENGTH)
    request_type: StrictStr = Field(max_length=MAX_REQUEST_TYPE_LENGTH)

    @field_validator("device_id", "device_type", "mac_address", "request_type")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v:
            raise ValueError("must not be blank")
        return v


class ProvisionResponse(BaseModel):
    status: str = "success"
    mqtt_broker: str
    mqtt_port: int
    mqtt_username: str
    mqtt_password: str


class ErrorResponse(BaseModel):
    status: str = "error"
    error: str
    code: str

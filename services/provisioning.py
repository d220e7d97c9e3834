# services/provisioning.py
"""
Transport-agnostic provisioning pipeline shared by the HTTP route and
the UDP listener:

    parse -> validate device -> issue token -> register -> audit -> result
"""
from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import pydantic

from api.app.schemas.provision import MQTT_CONFIG_REQUEST, ProvisionRequest
from services.device_registry import DeviceRegistry
from services.device_validator import DeviceValidator
from services.errors import (
    AuthorizationError,
    InternalError,
    MalformedInputError,
    ProvisioningError,
    UnsupportedRequestError,
    ValidationError,
)
from services.token_issuer import TokenIssuer

logger = logging.getLogger(__name__)

# Fixed namespace so the same MAC always maps to the same device_uuid.
DEVICE_NAMESPACE = uuid.UUID("6b1f8f0e-3c2a-5d7e-9a41-0c5d2f7e8b13")

_MAC_SEPARATORS = re.compile(r"[\s:.\-]")


def device_uuid_for(mac_address: str) -> uuid.UUID:
    normalized = _MAC_SEPARATORS.sub("", mac_address).lower()
    return uuid.uuid5(DEVICE_NAMESPACE, normalized)


def parse_provision_request(data: Any) -> ProvisionRequest:
    """
    Build a ProvisionRequest from decoded JSON.

    Missing or blank fields and a wrong request_type are reported as
    different errors; the request_type check only runs once every
    field is present.
    """
    if not isinstance(data, Mapping):
        raise MalformedInputError("Request body must be a JSON object")
    try:
        request = ProvisionRequest.model_validate(dict(data))
    except pydantic.ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        logger.debug("Rejected request with invalid fields: %s", fields)
        raise ValidationError() from exc

    if request.request_type != MQTT_CONFIG_REQUEST:
        raise UnsupportedRequestError()
    return request


@dataclass(frozen=True)
class ProvisionResult:
    device_id: str
    device_uuid: uuid.UUID
    token: str
    token_id: str
    issued_at: datetime
    expires_at: datetime
    broker_host: str
    broker_port: int
    broker_username: str


class ProvisioningService:
    def __init__(
        self,
        registry: DeviceRegistry,
        validator: DeviceValidator,
        issuer: TokenIssuer,
        broker_host: str,
        broker_port: int,
        broker_username: str = "cyd",
    ) -> None:
        self.registry = registry
        self.validator = validator
        self.issuer = issuer
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.broker_username = broker_username

    async def provision_payload(self, data: Mapping[str, Any]) -> ProvisionResult:
        return await self.provision(parse_provision_request(data))

    async def provision(self, request: ProvisionRequest) -> ProvisionResult:
        try:
            return await self._provision(request)
        except ProvisioningError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error provisioning device %s", request.device_id)
            raise InternalError() from exc

    async def _provision(self, request: ProvisionRequest) -> ProvisionResult:
        device_uuid = device_uuid_for(request.mac_address)
        logger.debug(
            "Provision request %s for device %s mac %s type %s",
            request.request_type,
            request.device_id,
            request.mac_address,
            request.device_type,
        )

        verdict = await self.validator.validate(request.device_id, request.device_type, device_uuid)
        if not verdict.allowed:
            logger.warning("Device %s failed validation: %s", request.device_id, verdict.reason)
            raise AuthorizationError()

        issued = self.issuer.generate(request.device_id, request.device_type)

        # A token only leaves this function once its audit row is written;
        # StorageError from either call propagates and the token is dropped.
        await self.registry.register_device(
            device_uuid,
            request.device_id,
            mac_address=request.mac_address,
            device_type=request.device_type,
        )
        await self.registry.log_token_issuance(
            request.device_id,
            issued.token_id,
            issued.expires_at,
            issued_at=issued.issued_at,
        )

        logger.info(
            "Issued token %s to device %s (expires %s)",
            issued.token_id,
            request.device_id,
            issued.expires_at.isoformat(),
        )
        return ProvisionResult(
            device_id=request.device_id,
            device_uuid=device_uuid,
            token=issued.token,
            token_id=issued.token_id,
            issued_at=issued.issued_at,
            expires_at=issued.expires_at,
            broker_host=self.broker_host,
            broker_port=self.broker_port,
            broker_username=self.broker_username,
        )

# services/device_validator.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from models.device import DeviceStatus
from services.device_registry import DeviceRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    allowed: bool
    reason: str = ""


ALLOWED = ValidationResult(allowed=True)


class DeviceValidator:
    """
    Decides whether a device may receive a token.

    Read-only against the registry. Policy beyond the structural
    checks is limited to an optional device-type allow-list and
    refusing revoked devices.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        allowed_device_types: frozenset[str] = frozenset(),
    ) -> None:
        self._registry = registry
        self._allowed_device_types = allowed_device_types

    async def validate(
        self,
        device_id: str,
        device_type: str,
        device_uuid: uuid.UUID | None = None,
    ) -> ValidationResult:
        if not (device_id or "").strip() or not (device_type or "").strip():
            return ValidationResult(False, "blank device identity")

        if self._allowed_device_types and device_type not in self._allowed_device_types:
            logger.info("Device %s denied: type %s not allowed", device_id, device_type)
            return ValidationResult(False, f"device type {device_type!r} not allowed")

        if device_uuid is not None:
            status = await self._registry.get_status(device_uuid)
            if status == DeviceStatus.REVOKED:
                logger.warning("Device %s denied: uuid %s is revoked", device_id, device_uuid)
                return ValidationResult(False, "device revoked")

        return ALLOWED

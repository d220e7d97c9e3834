# services/errors.py
"""
Provisioning error taxonomy.

Each error knows its HTTP status and the symbolic code used on the
UDP wire, plus a reason that is safe to show to the device.
"""
from __future__ import annotations


class ProvisioningError(Exception):
    status_code: int = 500
    code: str = "internal_error"
    default_reason: str = "Internal server error"

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason or self.default_reason
        super().__init__(self.reason)


class ValidationError(ProvisioningError):
    status_code = 400
    code = "missing_fields"
    default_reason = "Missing required fields: device_id, device_type, mac_address, and request_type"


class MalformedInputError(ProvisioningError):
    status_code = 400
    code = "malformed_request"
    default_reason = "Invalid JSON"


class UnsupportedRequestError(ProvisioningError):
    status_code = 406
    code = "unsupported_request_type"
    default_reason = "Unsupported request_type"


class AuthorizationError(ProvisioningError):
    status_code = 403
    code = "device_denied"
    default_reason = "Device validation failed"


class StorageError(ProvisioningError):
    status_code = 500
    code = "storage_error"
    # never leak storage details to devices
    default_reason = "Internal server error"


class InternalError(ProvisioningError):
    status_code = 500
    code = "internal_error"
    default_reason = "Internal server error"

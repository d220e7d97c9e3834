# services/udp_protocol.py
"""
Compact JSON envelope for single-datagram provisioning.

Request:  {"v": 1, "id": ..., "type": ..., "mac": ..., "req": "mqtt_config", "seq": <any>}
Success:  {"v": 1, "ok": true, "broker": ..., "port": ..., "user": ..., "token": ..., "exp": <epoch>}
Error:    {"v": 1, "ok": false, "code": 400, "error": "missing_fields", "reason": ...}

"seq" is optional and echoed back so a client that resends can match
replies to attempts.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from services.errors import InternalError, MalformedInputError, ProvisioningError
from services.provisioning import ProvisionResult

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = 1

# Fits a single IPv6 minimum-MTU packet after headers.
MAX_DATAGRAM_SIZE = 1232
MAX_SEQ_LENGTH = 64

# wire key -> ProvisionRequest field
_FIELD_MAP = {
    "id": "device_id",
    "type": "device_type",
    "mac": "mac_address",
    "req": "request_type",
}


def _safe_seq(seq: Any) -> Any:
    # only short scalars are echoed so replies stay inside one datagram
    if isinstance(seq, bool):
        return None
    if isinstance(seq, int) and abs(seq) < 2**63:
        return seq
    if isinstance(seq, str) and len(seq) <= MAX_SEQ_LENGTH:
        return seq
    return None


def decode_request(data: bytes) -> tuple[dict[str, Any], Any]:
    """
    Decode a request datagram into (provision fields, seq).

    Raises MalformedInputError for oversized, non-UTF-8, non-JSON or
    non-object payloads and for an unknown protocol version. Missing
    fields are left for the request schema to report.
    """
    if len(data) > MAX_DATAGRAM_SIZE:
        raise MalformedInputError(f"Datagram exceeds {MAX_DATAGRAM_SIZE} bytes")
    try:
        envelope = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedInputError("Invalid JSON") from exc
    if not isinstance(envelope, dict):
        raise MalformedInputError("Request envelope must be a JSON object")

    version = envelope.get("v", PROTOCOL_VERSION)
    if version != PROTOCOL_VERSION:
        raise MalformedInputError(f"Unsupported protocol version {version!r}")

    fields = {name: envelope[key] for key, name in _FIELD_MAP.items() if key in envelope}
    return fields, _safe_seq(envelope.get("seq"))


def peek_seq(data: bytes) -> Any:
    """Best-effort seq extraction for replies to undecodable requests."""
    try:
        envelope = json.loads(data[:MAX_DATAGRAM_SIZE].decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return _safe_seq(envelope.get("seq")) if isinstance(envelope, dict) else None


def _encode(body: dict[str, Any], seq: Any) -> bytes:
    if seq is not None:
        body["seq"] = seq
    return json.dumps(body, separators=(",", ":")).encode("utf-8")


def encode_success(result: ProvisionResult, seq: Any = None) -> bytes:
    reply = _encode(
        {
            "v": PROTOCOL_VERSION,
            "ok": True,
            "broker": result.broker_host,
            "port": result.broker_port,
            "user": result.broker_username,
            "token": result.token,
            "exp": int(result.expires_at.timestamp()),
        },
        seq,
    )
    if len(reply) > MAX_DATAGRAM_SIZE:
        logger.warning(
            "Reply for device %s is %d bytes, over the %d byte limit",
            result.device_id,
            len(reply),
            MAX_DATAGRAM_SIZE,
        )
        return encode_error(InternalError("Reply does not fit in one datagram"), seq)
    return reply


def encode_error(error: ProvisioningError, seq: Any = None) -> bytes:
    return _encode(
        {
            "v": PROTOCOL_VERSION,
            "ok": False,
            "code": error.status_code,
            "error": error.code,
            "reason": error.reason,
        },
        seq,
    )

# api/app/routes/provision.py
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request, Response
from starlette.requests import ClientDisconnect

from api.app.dependencies import get_provisioning_service
from api.app.schemas.provision import ErrorResponse, ProvisionResponse
from services.errors import MalformedInputError
from services.provisioning import ProvisioningService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["provision"])


@router.post(
    "/provision",
    response_model=ProvisionResponse,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        406: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def provision_device(
    request: Request,
    service: ProvisioningService = Depends(get_provisioning_service),
):
    """Validate a device and hand back MQTT broker credentials."""
    try:
        raw = await request.body()
    except ClientDisconnect:
        # nobody is left to read a reply
        logger.debug("Client disconnected before sending the provision body")
        return Response(status_code=204)

    try:
        payload = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Invalid JSON in /provision request: %s", exc)
        raise MalformedInputError() from exc

    result = await service.provision_payload(payload)

    logger.debug("Responding with broker %s:%d", result.broker_host, result.broker_port)
    return ProvisionResponse(
        mqtt_broker=result.broker_host,
        mqtt_port=result.broker_port,
        mqtt_username=result.broker_username,
        mqtt_password=result.token,
    )

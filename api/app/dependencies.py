# api/app/dependencies.py
from __future__ import annotations

from fastapi import HTTPException, Request, status

from services.provisioning import ProvisioningService


def get_provisioning_service(request: Request) -> ProvisioningService:
    """Service built once by the app lifespan and parked on app.state."""
    service = getattr(request.app.state, "provisioning", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Provisioning service not ready",
        )
    return service

# api/app/routes/health.py
from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    advertiser = getattr(request.app.state, "advertiser", None)
    return {
        "status": "ok",
        "service": "token-provisioning",
        "mdns": advertiser.state.value if advertiser is not None else "disabled",
    }

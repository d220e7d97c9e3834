# api/app/main.py
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.app.config import Settings, get_settings
from api.app.middleware.request_logging import RequestLoggingMiddleware
from api.app.routes import health, provision
from db.engine import build_engine, create_schema
from db.session import build_session_factory
from services.device_registry import DeviceRegistry
from services.device_validator import DeviceValidator
from services.errors import InternalError, ProvisioningError
from services.mdns_advertiser import MdnsAdvertiser
from services.provisioning import ProvisioningService
from services.token_issuer import TokenIssuer
from services.udp_listener import UdpListener

logger = logging.getLogger(__name__)


def build_provisioning_service(settings: Settings, registry: DeviceRegistry) -> ProvisioningService:
    issuer = TokenIssuer(
        secret=settings.jwt_secret_key,
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
        ttl=timedelta(minutes=settings.token_expiration_minutes),
    )
    validator = DeviceValidator(registry, settings.device_type_allow_list)
    return ProvisioningService(
        registry=registry,
        validator=validator,
        issuer=issuer,
        broker_host=settings.mqtt_host,
        broker_port=settings.broker_port,
        broker_username=settings.mqtt_username,
    )


def build_advertiser(settings: Settings) -> MdnsAdvertiser:
    return MdnsAdvertiser(
        service_port=settings.api_port,
        broker_port=settings.broker_port,
        service_name=settings.mdns_service_name,
        service_type=settings.mdns_service_type,
        broker_name=settings.mdns_broker_name,
        broker_service_type=settings.mdns_broker_service_type,
        broker_tls=settings.mqtt_use_tls,
        version=settings.protocol_version,
        address=settings.mdns_advertise_address,
        unregister_timeout=settings.mdns_unregister_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings if app.state.settings is not None else get_settings()
    logger.info("Token Provisioning Service starting...")

    engine = build_engine(settings.database_url)
    if settings.database_auto_create:
        await create_schema(engine)
    registry = DeviceRegistry(build_session_factory(engine))
    service = build_provisioning_service(settings, registry)
    app.state.provisioning = service

    listener: UdpListener | None = None
    advertiser: MdnsAdvertiser | None = None
    try:
        if settings.udp_enabled:
            listener = UdpListener(
                service,
                host=settings.udp_host,
                port=settings.udp_port,
                error_backoff=settings.udp_error_backoff_seconds,
                shutdown_grace=settings.udp_shutdown_grace_seconds,
            )
            await listener.start()
        if settings.mdns_enabled:
            advertiser = build_advertiser(settings)
            advertiser.start()
            app.state.advertiser = advertiser

        yield
    finally:
        if listener is not None:
            await listener.stop()
        if advertiser is not None:
            await advertiser.stop()
        app.state.provisioning = None
        await engine.dispose()
        logger.info("Token Provisioning Service stopped")


async def provisioning_error_handler(request: Request, exc: ProvisioningError) -> JSONResponse:
    logger.info("%s %s rejected: %s", request.method, request.url.path, exc.code)
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "error": exc.reason, "code": exc.code},
    )


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unexpected error handling %s", request.url.path)
    return await provisioning_error_handler(request, InternalError())


def create_app(settings: Settings | None = None) -> FastAPI:
    app = FastAPI(
        title="Token Provisioning API",
        description="Issues MQTT broker credentials to CYD devices",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.provisioning = None
    app.state.advertiser = None

    app.add_middleware(RequestLoggingMiddleware)
    app.add_exception_handler(ProvisioningError, provisioning_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)

    app.include_router(health.router)
    app.include_router(provision.router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_config=None)


if __name__ == "__main__":
    run()

# tests/conftest.py
from __future__ import annotations

from datetime import timedelta

import pytest
import pytest_asyncio

from api.app.config import Settings
from db.engine import build_engine, create_schema
from db.session import build_session_factory
from services.device_registry import DeviceRegistry
from services.device_validator import DeviceValidator
from services.provisioning import ProvisioningService
from services.token_issuer import TokenIssuer

SECRET = "unit-test-signing-secret-0123456789abcdef"
ISSUER = "TokenProvisioningService"
AUDIENCE = "CYD-MQTT-Devices"


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'registry.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def registry(session_factory) -> DeviceRegistry:
    return DeviceRegistry(session_factory)


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(SECRET, ISSUER, AUDIENCE, timedelta(minutes=60))


@pytest.fixture
def validator(registry) -> DeviceValidator:
    return DeviceValidator(registry)


@pytest.fixture
def service(registry, validator, issuer) -> ProvisioningService:
    return ProvisioningService(
        registry=registry,
        validator=validator,
        issuer=issuer,
        broker_host="broker.local",
        broker_port=1883,
    )


@pytest.fixture
def provision_body() -> dict:
    return {
        "device_id": "cyd-0001",
        "device_type": "cyd-esp32",
        "mac_address": "AA:BB:CC:DD:EE:01",
        "request_type": "mqtt_config",
    }


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        jwt_secret_key=SECRET,
        udp_enabled=False,
        mdns_enabled=False,
    )

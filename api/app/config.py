# api/app/config.py
from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized service configuration.

    Loads environment variables from `.env` and provides
    typed access for the HTTP app, the UDP listener and
    the mDNS advertiser.
    """

    # ─────────────────────────────────────────────
    # Pydantic Settings Config
    # ─────────────────────────────────────────────
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ─────────────────────────────────────────────
    # Token issuance
    # ─────────────────────────────────────────────
    jwt_secret_key: str
    jwt_issuer: str = "TokenProvisioningService"
    jwt_audience: str = "CYD-MQTT-Devices"
    token_expiration_minutes: int = Field(default=60, gt=0)

    # ─────────────────────────────────────────────
    # Device registry
    # ─────────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///devices.db"
    database_auto_create: bool = True

    # ─────────────────────────────────────────────
    # HTTP API
    # ─────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # ─────────────────────────────────────────────
    # UDP listener
    # ─────────────────────────────────────────────
    udp_enabled: bool = True
    udp_host: str = "0.0.0.0"
    udp_port: int = 12345
    udp_error_backoff_seconds: float = 1.0
    udp_shutdown_grace_seconds: float = 5.0

    # ─────────────────────────────────────────────
    # MQTT broker handed to devices
    # ─────────────────────────────────────────────
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_secure_port: int = 8883
    mqtt_use_tls: bool = False
    mqtt_username: str = "cyd"

    # ─────────────────────────────────────────────
    # Device validation
    # ─────────────────────────────────────────────
    # comma separated; empty accepts every device type
    allowed_device_types: str = ""

    # ─────────────────────────────────────────────
    # mDNS
    # ─────────────────────────────────────────────
    mdns_enabled: bool = True
    mdns_service_name: str = "CYD Provisioning"
    mdns_service_type: str = "_cyd-provision._tcp.local."
    mdns_broker_service_type: str = "_mqtt._tcp.local."
    mdns_broker_name: str = "CYD MQTT Broker"
    mdns_advertise_address: str | None = None
    mdns_unregister_timeout_seconds: float = 3.0
    protocol_version: str = "1.0"

    # ─────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────
    log_level: str = "INFO"

    @field_validator("jwt_secret_key")
    @classmethod
    def _secret_long_enough(cls, v: str) -> str:
        if len(v.encode("utf-8")) < 32:
            raise ValueError("jwt_secret_key must be at least 32 bytes for HS256")
        return v

    # ─────────────────────────────────────────────
    # Derived Properties
    # ─────────────────────────────────────────────
    @property
    def broker_port(self) -> int:
        """Port devices should connect to, honoring the TLS flag."""
        return self.mqtt_secure_port if self.mqtt_use_tls else self.mqtt_port

    @property
    def device_type_allow_list(self) -> frozenset[str]:
        return frozenset(
            t.strip() for t in self.allowed_device_types.split(",") if t.strip()
        )


# ─────────────────────────────────────────────
# Cached Settings Instance
# ─────────────────────────────────────────────
@lru_cache
def get_settings() -> Settings:
    """
    Returns a cached Settings instance so config
    is only loaded once per process.
    """
    return Settings()

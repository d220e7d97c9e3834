# services/device_registry.py
"""
Durable device registry and token issuance audit trail.

Registration is idempotent and keyed on device_uuid. The unique
constraint on that column is what makes concurrent registrations of
the same device collapse into a single record: the losing insert
hits an IntegrityError and falls through to the no-op path.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.session import session_scope
from models.base import utcnow
from models.device import Device, DeviceStatus
from models.token_issuance import TokenIssuance
from services.errors import StorageError

logger = logging.getLogger(__name__)


class DeviceRegistry:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_device(self, device_uuid: uuid.UUID) -> Device | None:
        try:
            async with session_scope(self._session_factory) as db:
                stmt = select(Device).where(Device.device_uuid == device_uuid)
                result = await db.execute(stmt)
                return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.error("Registry lookup failed for %s: %s", device_uuid, exc)
            raise StorageError() from exc

    async def get_status(self, device_uuid: uuid.UUID) -> DeviceStatus:
        device = await self.get_device(device_uuid)
        if device is None:
            return DeviceStatus.UNREGISTERED
        return device.status

    async def is_registered(self, device_uuid: uuid.UUID) -> bool:
        logger.debug("Checking if device %s is registered", device_uuid)
        return await self.get_status(device_uuid) == DeviceStatus.REGISTERED

    async def register_device(
        self,
        device_uuid: uuid.UUID,
        device_id: str,
        mac_address: str | None = None,
        device_type: str | None = None,
    ) -> bool:
        """
        Register a device. Returns True when this call performed the
        registration, False when the device already existed.
        """
        now = utcnow()
        try:
            async with session_scope(self._session_factory) as db:
                db.add(
                    Device(
                        device_uuid=device_uuid,
                        device_id=device_id,
                        mac_address=mac_address,
                        device_type=device_type,
                        status=DeviceStatus.REGISTERED,
                        registered_at=now,
                    )
                )
                await db.flush()
            logger.info("Registered device %s uuid=%s", device_id, device_uuid)
            return True
        except IntegrityError:
            logger.debug("Device %s already known, checking status", device_uuid)
        except SQLAlchemyError as exc:
            logger.error("Registering device %s failed: %s", device_uuid, exc)
            raise StorageError() from exc

        # Pre-enrolled records get promoted exactly once; registered and
        # revoked records are left untouched.
        try:
            async with session_scope(self._session_factory) as db:
                stmt = (
                    update(Device)
                    .where(
                        Device.device_uuid == device_uuid,
                        Device.status == DeviceStatus.UNREGISTERED,
                    )
                    .values(
                        status=DeviceStatus.REGISTERED,
                        registered_at=now,
                        device_id=device_id,
                    )
                )
                result = await db.execute(stmt)
                promoted = result.rowcount > 0
        except SQLAlchemyError as exc:
            logger.error("Promoting device %s failed: %s", device_uuid, exc)
            raise StorageError() from exc

        if promoted:
            logger.info("Registered pre-enrolled device %s uuid=%s", device_id, device_uuid)
        return promoted

    async def revoke_device(self, device_uuid: uuid.UUID) -> bool:
        try:
            async with session_scope(self._session_factory) as db:
                stmt = (
                    update(Device)
                    .where(
                        Device.device_uuid == device_uuid,
                        Device.status != DeviceStatus.REVOKED,
                    )
                    .values(status=DeviceStatus.REVOKED, revoked_at=utcnow())
                )
                result = await db.execute(stmt)
                revoked = result.rowcount > 0
        except SQLAlchemyError as exc:
            logger.error("Revoking device %s failed: %s", device_uuid, exc)
            raise StorageError() from exc

        if revoked:
            logger.warning("Device %s revoked", device_uuid)
        return revoked

    async def log_token_issuance(
        self,
        device_id: str,
        token_id: str,
        expires_at: datetime,
        issued_at: datetime | None = None,
    ) -> TokenIssuance:
        logger.debug(
            "Logging token issuance for device %s, token %s, expires %s",
            device_id,
            token_id,
            expires_at.isoformat(),
        )
        try:
            async with session_scope(self._session_factory) as db:
                record = TokenIssuance(
                    token_id=token_id,
                    device_id=device_id,
                    issued_at=issued_at or utcnow(),
                    expires_at=expires_at,
                )
                db.add(record)
                await db.flush()
            return record
        except SQLAlchemyError as exc:
            logger.error("Audit write for token %s failed: %s", token_id, exc)
            raise StorageError() from exc

    async def list_issuances(self, device_id: str) -> list[TokenIssuance]:
        try:
            async with session_scope(self._session_factory) as db:
                stmt = (
                    select(TokenIssuance)
                    .where(TokenIssuance.device_id == device_id)
                    .order_by(TokenIssuance.issued_at.desc())
                )
                result = await db.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            logger.error("Listing issuances for %s failed: %s", device_id, exc)
            raise StorageError() from exc

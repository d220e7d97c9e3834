# services/mdns_advertiser.py
"""
Advertises the provisioning endpoint and the co-located MQTT broker
over mDNS until cancelled.

Discovery is best-effort: every failure here is logged and swallowed
so the provisioning front ends keep serving.
"""
from __future__ import annotations

import asyncio
import enum
import inspect
import logging
import socket
import uuid
from collections.abc import Callable
from typing import Any

from zeroconf import ServiceInfo
from zeroconf.asyncio import AsyncZeroconf

logger = logging.getLogger(__name__)

MDNS_GROUP = ("224.0.0.251", 5353)


class AdvertiserState(str, enum.Enum):
    STARTING = "starting"
    ADVERTISING = "advertising"
    UNADVERTISING = "unadvertising"
    STOPPED = "stopped"


def detect_local_address() -> str:
    """IPv4 address of the interface that routes to the mDNS group."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(MDNS_GROUP)
            return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"


async def _settle(awaitable: Any) -> None:
    # AsyncZeroconf returns a task from register/unregister; wait for it too.
    result = await awaitable
    if inspect.isawaitable(result):
        await result


class MdnsAdvertiser:
    def __init__(
        self,
        service_port: int,
        broker_port: int,
        service_name: str = "CYD Provisioning",
        service_type: str = "_cyd-provision._tcp.local.",
        broker_name: str = "CYD MQTT Broker",
        broker_service_type: str = "_mqtt._tcp.local.",
        broker_tls: bool = False,
        version: str = "1.0",
        address: str | None = None,
        unregister_timeout: float = 3.0,
        zeroconf_factory: Callable[[], Any] = AsyncZeroconf,
    ) -> None:
        self.instance_id = str(uuid.uuid4())
        self._service_port = service_port
        self._broker_port = broker_port
        self._service_name = service_name
        self._service_type = service_type
        self._broker_name = broker_name
        self._broker_service_type = broker_service_type
        self._broker_tls = broker_tls
        self._version = version
        self._address = address
        self._unregister_timeout = unregister_timeout
        self._zeroconf_factory = zeroconf_factory
        self._state = AdvertiserState.STOPPED
        self._task: asyncio.Task | None = None
        self._advertising = asyncio.Event()

    @property
    def state(self) -> AdvertiserState:
        return self._state

    def build_service_infos(self) -> list[ServiceInfo]:
        address = self._address or detect_local_address()
        server = f"{socket.gethostname().split('.')[0]}.local."
        provisioning = ServiceInfo(
            self._service_type,
            f"{self._service_name}.{self._service_type}",
            port=self._service_port,
            properties={"version": self._version, "uuid": self.instance_id},
            server=server,
            parsed_addresses=[address],
        )
        broker = ServiceInfo(
            self._broker_service_type,
            f"{self._broker_name}.{self._broker_service_type}",
            port=self._broker_port,
            properties={
                "description": "MQTT broker for CYD devices",
                "tls": "true" if self._broker_tls else "false",
            },
            server=server,
            parsed_addresses=[address],
        )
        return [provisioning, broker]

    def start(self) -> asyncio.Task:
        if self._task is not None and not self._task.done():
            return self._task
        self._advertising.clear()
        self._task = asyncio.create_task(self.run(), name="mdns-advertiser")
        return self._task

    async def wait_advertising(self, timeout: float | None = None) -> bool:
        try:
            await asyncio.wait_for(self._advertising.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def run(self) -> None:
        self._state = AdvertiserState.STARTING
        zc = None
        registered: list[ServiceInfo] = []
        try:
            infos = self.build_service_infos()
            logger.info(
                "Registering mDNS service %r on port %d (instance %s)",
                self._service_name,
                self._service_port,
                self.instance_id,
            )
            zc = self._zeroconf_factory()
            for info in infos:
                await _settle(zc.async_register_service(info, allow_name_change=True))
                registered.append(info)

            self._state = AdvertiserState.ADVERTISING
            self._advertising.set()
            logger.info("mDNS services registered. Waiting for cancellation to unregister.")
            await asyncio.Event().wait()
        except Exception:
            logger.exception("Failed to advertise mDNS service")
        finally:
            self._state = AdvertiserState.UNADVERTISING
            await self._teardown(zc, registered)
            self._state = AdvertiserState.STOPPED

    async def _teardown(self, zc: Any, registered: list[ServiceInfo]) -> None:
        for info in registered:
            try:
                await asyncio.wait_for(
                    _settle(zc.async_unregister_service(info)),
                    self._unregister_timeout,
                )
                logger.info("mDNS service %s unadvertised.", info.name)
            except Exception:
                logger.warning("Error while unadvertising mDNS service %s", info.name, exc_info=True)

        if zc is None:
            return
        try:
            await asyncio.wait_for(zc.async_close(), self._unregister_timeout)
            logger.debug("mDNS multicast service stopped.")
        except Exception:
            logger.warning("Error while stopping mDNS transport", exc_info=True)

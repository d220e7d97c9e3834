# services/udp_listener.py
"""
UDP front end for provisioning.

One receive loop per process; every datagram is handled in its own
task so a slow registry write for one device never delays replies
to another. The service never retries: a client that gets no reply
resends.
"""
from __future__ import annotations

import asyncio
import logging
import socket
from typing import Any

from services.errors import InternalError, ProvisioningError
from services.provisioning import ProvisioningService
from services.udp_protocol import (
    MAX_DATAGRAM_SIZE,
    decode_request,
    encode_error,
    encode_success,
    peek_seq,
)

logger = logging.getLogger(__name__)


async def handle_datagram(service: ProvisioningService, data: bytes) -> bytes:
    """Turn one request datagram into one reply datagram. Never raises."""
    seq = None
    try:
        fields, seq = decode_request(data)
        result = await service.provision_payload(fields)
        return encode_success(result, seq)
    except ProvisioningError as exc:
        if seq is None:
            seq = peek_seq(data)
        logger.info("UDP request rejected: %s (%s)", exc.code, exc.reason)
        return encode_error(exc, seq)
    except Exception:
        logger.exception("Unexpected error handling UDP request")
        return encode_error(InternalError(), seq)


class UdpListener:
    def __init__(
        self,
        service: ProvisioningService,
        host: str = "0.0.0.0",
        port: int = 12345,
        error_backoff: float = 1.0,
        shutdown_grace: float = 5.0,
    ) -> None:
        self._service = service
        self._host = host
        self._port = port
        self._error_backoff = error_backoff
        self._shutdown_grace = shutdown_grace
        self._sock: socket.socket | None = None
        self._loop_task: asyncio.Task | None = None
        self._handlers: set[asyncio.Task] = set()

    @property
    def address(self) -> tuple[str, int]:
        if self._sock is None:
            raise RuntimeError("listener is not running")
        return self._sock.getsockname()[:2]

    @property
    def in_flight(self) -> int:
        return len(self._handlers)

    async def start(self) -> None:
        family = socket.AF_INET6 if ":" in self._host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_DGRAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setblocking(False)
        try:
            sock.bind((self._host, self._port))
        except OSError:
            sock.close()
            raise
        self._sock = sock
        logger.info("UDP listener starting on %s:%d", *self.address)
        self._loop_task = asyncio.create_task(self._receive_loop(sock), name="udp-receive-loop")

    async def stop(self) -> None:
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if self._handlers:
            pending = set(self._handlers)
            logger.info("Waiting up to %.1fs for %d in-flight UDP handlers", self._shutdown_grace, len(pending))
            _, still_running = await asyncio.wait(pending, timeout=self._shutdown_grace)
            for task in still_running:
                task.cancel()
            if still_running:
                logger.warning("Abandoned %d UDP handlers at shutdown", len(still_running))
                await asyncio.gather(*still_running, return_exceptions=True)

        if self._sock is not None:
            self._sock.close()
            self._sock = None
        logger.info("UDP listener stopped")

    async def _receive_loop(self, sock: socket.socket) -> None:
        loop = asyncio.get_running_loop()
        while True:
            try:
                # one extra byte so oversized datagrams are detectable
                data, addr = await loop.sock_recvfrom(sock, MAX_DATAGRAM_SIZE + 1)
            except Exception:
                logger.exception("Error receiving UDP message")
                await asyncio.sleep(self._error_backoff)
                continue

            logger.debug("Received %d bytes from %s", len(data), addr)
            task = asyncio.create_task(self._process(data, addr))
            self._handlers.add(task)
            task.add_done_callback(self._handlers.discard)

    async def _process(self, data: bytes, addr: Any) -> None:
        try:
            reply = await handle_datagram(self._service, data)
            await asyncio.get_running_loop().sock_sendto(self._sock, reply, addr)
            logger.debug("Sent %d byte response to %s", len(reply), addr)
        except Exception:
            logger.exception("Error processing UDP request from %s", addr)

"""
UDP protocol and listener tests. The listener tests use real loopback
sockets bound to an ephemeral port.
"""
from __future__ import annotations

import asyncio
import dataclasses
import json
import socket
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from services.provisioning import ProvisionResult
from services.udp_listener import UdpListener, handle_datagram
from services.udp_protocol import MAX_DATAGRAM_SIZE, encode_success


def _envelope(device_id: str = "cyd-0001", **overrides) -> bytes:
    body = {
        "v": 1,
        "id": device_id,
        "type": "cyd-esp32",
        "mac": "AA:BB:CC:DD:EE:01",
        "req": "mqtt_config",
    }
    body.update(overrides)
    return json.dumps(body).encode()


def _result(device_id: str) -> ProvisionResult:
    now = datetime.now(timezone.utc).replace(microsecond=0)
    return ProvisionResult(
        device_id=device_id,
        device_uuid=uuid.uuid4(),
        token=f"token-for-{device_id}",
        token_id=uuid.uuid4().hex,
        issued_at=now,
        expires_at=now + timedelta(hours=1),
        broker_host="broker.local",
        broker_port=1883,
        broker_username="cyd",
    )


# ─────────────────────────────────────────────
# handle_datagram
# ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_datagram_success(service):
    reply = json.loads(await handle_datagram(service, _envelope(seq=7)))
    assert reply["ok"] is True
    assert reply["broker"] == "broker.local"
    assert reply["port"] == 1883
    assert reply["user"] == "cyd"
    assert reply["seq"] == 7
    claims = service.issuer.verify(reply["token"])
    assert claims["exp"] == reply["exp"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload,code,error",
    [
        (b"not json", 400, "malformed_request"),
        (b"\xff\xfe", 400, "malformed_request"),
        (b"[1, 2]", 400, "malformed_request"),
        (b"x" * (MAX_DATAGRAM_SIZE + 1), 400, "malformed_request"),
        (_envelope(v=2), 400, "malformed_request"),
        (_envelope(id=""), 400, "missing_fields"),
        (_envelope(req="ping"), 406, "unsupported_request_type"),
    ],
)
async def test_datagram_rejections(service, payload, code, error):
    reply = json.loads(await handle_datagram(service, payload))
    assert reply["ok"] is False
    assert reply["code"] == code
    assert reply["error"] == error
    assert reply["reason"]
    assert await service.registry.list_issuances("cyd-0001") == []


@pytest.mark.asyncio
async def test_datagram_error_echoes_seq(service):
    reply = json.loads(await handle_datagram(service, _envelope(req="ping", seq="abc")))
    assert reply["seq"] == "abc"


@pytest.mark.asyncio
async def test_oversized_seq_is_not_echoed(service):
    reply = json.loads(await handle_datagram(service, _envelope(seq="s" * 500)))
    assert "seq" not in reply
    assert len(json.dumps(reply)) <= MAX_DATAGRAM_SIZE


@pytest.mark.asyncio
async def test_unexpected_error_becomes_internal_error_reply():
    service = MagicMock()
    service.provision_payload.side_effect = RuntimeError("db on fire")
    reply = json.loads(await handle_datagram(service, _envelope()))
    assert reply == {
        "v": 1,
        "ok": False,
        "code": 500,
        "error": "internal_error",
        "reason": "Internal server error",
    }


# ─────────────────────────────────────────────
# UdpListener over loopback
# ─────────────────────────────────────────────

@pytest_asyncio.fixture
async def udp_client():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.setblocking(False)
    yield sock
    sock.close()


async def _recv_json(sock: socket.socket, timeout: float = 5.0) -> dict:
    loop = asyncio.get_running_loop()
    data, _ = await asyncio.wait_for(loop.sock_recvfrom(sock, 4096), timeout)
    return json.loads(data)


@pytest.mark.asyncio
async def test_listener_replies_to_sender(service, udp_client):
    listener = UdpListener(service, host="127.0.0.1", port=0)
    await listener.start()
    try:
        loop = asyncio.get_running_loop()
        await loop.sock_sendto(udp_client, _envelope(seq=1), listener.address)
        reply = await _recv_json(udp_client)
        assert reply["ok"] is True
        assert reply["seq"] == 1
    finally:
        await listener.stop()


@pytest.mark.asyncio
async def test_slow_or_failing_handler_does_not_block_others(udp_client):
    release_slow = asyncio.Event()

    async def provision_payload(fields):
        if fields["device_id"] == "slow":
            await release_slow.wait()
        if fields["device_id"] == "broken":
            raise RuntimeError("handler blew up")
        return _result(fields["device_id"])

    service = MagicMock()
    service.provision_payload.side_effect = provision_payload

    listener = UdpListener(service, host="127.0.0.1", port=0)
    await listener.start()
    try:
        loop = asyncio.get_running_loop()
        for device_id in ("slow", "broken", "cyd-a", "cyd-b"):
            await loop.sock_sendto(udp_client, _envelope(device_id, seq=device_id), listener.address)

        replies = {}
        for _ in range(3):
            reply = await _recv_json(udp_client)
            replies[reply["seq"]] = reply
        assert set(replies) == {"broken", "cyd-a", "cyd-b"}
        assert replies["broken"]["code"] == 500
        assert replies["cyd-a"]["token"] == "token-for-cyd-a"

        release_slow.set()
        reply = await _recv_json(udp_client)
        assert reply["seq"] == "slow"
        assert reply["ok"] is True
    finally:
        release_slow.set()
        await listener.stop()


@pytest.mark.asyncio
async def test_receive_error_backs_off_and_continues(service, udp_client):
    loop = asyncio.get_running_loop()
    real_recvfrom = loop.sock_recvfrom
    failures = []

    async def flaky_recvfrom(sock, nbytes):
        if sock is not udp_client and not failures:
            failures.append(sock)
            raise OSError("transient receive failure")
        return await real_recvfrom(sock, nbytes)

    listener = UdpListener(service, host="127.0.0.1", port=0, error_backoff=0.01)
    loop.sock_recvfrom = flaky_recvfrom
    try:
        await listener.start()
        await loop.sock_sendto(udp_client, _envelope(seq=2), listener.address)
        reply = await _recv_json(udp_client)
        assert reply["seq"] == 2
        assert len(failures) == 1
    finally:
        del loop.sock_recvfrom
        await listener.stop()


@pytest.mark.asyncio
async def test_stop_abandons_stuck_handlers_after_grace(udp_client):
    never = asyncio.Event()

    async def provision_payload(fields):
        await never.wait()

    service = MagicMock()
    service.provision_payload.side_effect = provision_payload

    listener = UdpListener(service, host="127.0.0.1", port=0, shutdown_grace=0.05)
    await listener.start()
    loop = asyncio.get_running_loop()
    await loop.sock_sendto(udp_client, _envelope(), listener.address)
    for _ in range(100):
        if listener.in_flight:
            break
        await asyncio.sleep(0.01)
    assert listener.in_flight == 1

    await asyncio.wait_for(listener.stop(), 2.0)
    assert listener.in_flight == 0


# ─────────────────────────────────────────────
# Reply size bound
# ─────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload,ok",
    [
        (_envelope("d" * 64, type="t" * 64, mac="m" * 32, seq="s" * 64), True),
        (_envelope("d" * 1000), False),
        (_envelope(type="t" * 1000, seq="s" * 64), False),
        (_envelope(mac="m" * 500), False),
    ],
)
async def test_every_reply_fits_one_datagram(service, payload, ok):
    assert len(payload) <= MAX_DATAGRAM_SIZE
    reply = await handle_datagram(service, payload)
    assert len(reply) <= MAX_DATAGRAM_SIZE
    body = json.loads(reply)
    assert body["ok"] is ok
    if not ok:
        assert body["code"] == 400
        assert body["error"] == "missing_fields"


def test_oversized_success_reply_becomes_error():
    result = _result("cyd-0001")
    result = dataclasses.replace(result, token="x" * 2000)
    reply = encode_success(result, seq="abc")
    assert len(reply) <= MAX_DATAGRAM_SIZE
    body = json.loads(reply)
    assert body["ok"] is False
    assert body["code"] == 500
    assert body["seq"] == "abc"
    assert "x" * 100 not in reply.decode()

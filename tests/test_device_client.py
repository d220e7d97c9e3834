"""
Bench client tests: HTTP path with a mocked transport, UDP path against
a real listener on loopback.
"""
from __future__ import annotations

import asyncio
import json
import socket
import threading
from unittest.mock import MagicMock, patch

import pytest

from device import client
from services.udp_listener import UdpListener


def test_request_body_has_all_fields():
    body = client.build_request_body()
    assert set(body) == {"device_id", "device_type", "mac_address", "request_type"}
    assert body["request_type"] == "mqtt_config"


def test_provision_http_success():
    resp = MagicMock(status_code=200)
    resp.json.return_value = {
        "status": "success",
        "mqtt_broker": "broker.local",
        "mqtt_port": 1883,
        "mqtt_username": "cyd",
        "mqtt_password": "tok",
    }
    with patch("device.client.requests.post", return_value=resp) as post:
        creds = client.provision_http("10.0.0.2", 8000, {"device_id": "cyd-0001"})
    assert creds["mqtt_password"] == "tok"
    assert post.call_args.args[0] == "http://10.0.0.2:8000/provision"


def test_provision_http_error_raises():
    resp = MagicMock(status_code=406)
    resp.json.return_value = {"status": "error", "error": "Unsupported request_type"}
    with patch("device.client.requests.post", return_value=resp):
        with pytest.raises(RuntimeError, match="Unsupported request_type"):
            client.provision_http("10.0.0.2", 8000, {})


@pytest.mark.asyncio
async def test_provision_udp_against_listener(service, provision_body):
    listener = UdpListener(service, host="127.0.0.1", port=0)
    await listener.start()
    try:
        host, port = listener.address
        creds = await asyncio.to_thread(client.provision_udp, host, port, provision_body)
    finally:
        await listener.stop()

    assert creds["status"] == "success"
    assert creds["mqtt_broker"] == "broker.local"
    assert service.issuer.verify(creds["mqtt_password"])["sub"] == "cyd-0001"


def test_provision_udp_skips_undecodable_datagrams():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as server:
        server.bind(("127.0.0.1", 0))
        server.settimeout(5)

        def respond():
            data, addr = server.recvfrom(client.UDP_BUFFER)
            seq = json.loads(data)["seq"]
            server.sendto(b'{"ok":true,"bro', addr)
            server.sendto(b"\xff\xfe", addr)
            server.sendto(json.dumps({"ok": True, "seq": "other"}).encode(), addr)
            reply = {
                "ok": True,
                "broker": "broker.local",
                "port": 1883,
                "user": "cyd",
                "token": "tok",
                "seq": seq,
            }
            server.sendto(json.dumps(reply).encode(), addr)

        responder = threading.Thread(target=respond, daemon=True)
        responder.start()
        creds = client.provision_udp(
            *server.getsockname(),
            {
                "device_id": "cyd-0001",
                "device_type": "cyd-esp32",
                "mac_address": "AA:BB:CC:DD:EE:01",
                "request_type": "mqtt_config",
            },
        )
        responder.join(timeout=5)

    assert creds["mqtt_password"] == "tok"
    assert creds["mqtt_broker"] == "broker.local"

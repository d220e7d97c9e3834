"""
Bench client that behaves like a CYD device during onboarding:
find the provisioning service over mDNS, ask for MQTT credentials,
print what came back.

Run: python device/client.py [--udp]
"""
from __future__ import annotations

import argparse
import json
import os
import socket
import sys
import time
import uuid
from typing import Optional

import requests
from zeroconf import ServiceBrowser, ServiceListener, Zeroconf

# -----------------------------------------------------------------------------
# Config
# -----------------------------------------------------------------------------
SERVICE_TYPE = os.getenv("PROVISION_SERVICE_TYPE", "_cyd-provision._tcp.local.")
DISCOVERY_TIMEOUT = float(os.getenv("DISCOVERY_TIMEOUT", "5"))
HTTP_TIMEOUT = 10

# UDP port is not advertised, only the HTTP one
UDP_PORT = int(os.getenv("PROVISION_UDP_PORT", "12345"))
UDP_TIMEOUT = 2.0
UDP_ATTEMPTS = 3
UDP_BUFFER = 1232

DEVICE_ID = os.getenv("DEVICE_ID", f"cyd-{uuid.getnode():012x}")
DEVICE_TYPE = os.getenv("DEVICE_TYPE", "cyd-esp32")
MAC_ADDRESS = os.getenv("MAC_ADDRESS", ":".join(f"{uuid.getnode():012x}"[i:i + 2] for i in range(0, 12, 2)))


# -----------------------------------------------------------------------------
# Discovery
# -----------------------------------------------------------------------------
class _Collector(ServiceListener):
    def __init__(self) -> None:
        self.names: list[str] = []

    def add_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        self.names.append(name)

    def update_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        pass

    def remove_service(self, zc: Zeroconf, type_: str, name: str) -> None:
        pass


def discover_provisioning(timeout: float = DISCOVERY_TIMEOUT) -> Optional[tuple[str, int]]:
    """Return (host, port) of the first provisioning service found."""
    zc = Zeroconf()
    collector = _Collector()
    browser = ServiceBrowser(zc, SERVICE_TYPE, collector)
    try:
        deadline = time.monotonic() + timeout
        while not collector.names and time.monotonic() < deadline:
            time.sleep(0.1)
        for name in collector.names:
            info = zc.get_service_info(SERVICE_TYPE, name, timeout=int(timeout * 1000))
            if info and info.parsed_addresses():
                return info.parsed_addresses()[0], info.port
        return None
    finally:
        browser.cancel()
        zc.close()


# -----------------------------------------------------------------------------
# Provisioning
# -----------------------------------------------------------------------------
def build_request_body() -> dict:
    return {
        "device_id": DEVICE_ID,
        "device_type": DEVICE_TYPE,
        "mac_address": MAC_ADDRESS,
        "request_type": "mqtt_config",
    }


def provision_http(host: str, port: int, body: dict) -> dict:
    resp = requests.post(f"http://{host}:{port}/provision", json=body, timeout=HTTP_TIMEOUT)
    data = resp.json()
    if resp.status_code != 200 or data.get("status") != "success":
        raise RuntimeError(f"Provisioning failed ({resp.status_code}): {data.get('error', 'Unknown error')}")
    return data


def provision_udp(host: str, port: int, body: dict) -> dict:
    """Send the compact envelope, resending on silence. The server never retries."""
    seq = uuid.uuid4().hex[:8]
    envelope = {
        "v": 1,
        "id": body["device_id"],
        "type": body["device_type"],
        "mac": body["mac_address"],
        "req": body["request_type"],
        "seq": seq,
    }
    payload = json.dumps(envelope, separators=(",", ":")).encode()

    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.settimeout(UDP_TIMEOUT)
        for attempt in range(1, UDP_ATTEMPTS + 1):
            sock.sendto(payload, (host, port))
            try:
                while True:
                    data, _ = sock.recvfrom(UDP_BUFFER)
                    try:
                        reply = json.loads(data)
                    except ValueError:
                        # truncated or foreign datagram, keep waiting
                        continue
                    if isinstance(reply, dict) and reply.get("seq") == seq:
                        break
            except socket.timeout:
                print(f"No UDP reply (attempt {attempt}/{UDP_ATTEMPTS})")
                continue

            if not reply.get("ok"):
                raise RuntimeError(f"Provisioning failed ({reply.get('code')}): {reply.get('reason')}")
            return {
                "status": "success",
                "mqtt_broker": reply["broker"],
                "mqtt_port": reply["port"],
                "mqtt_username": reply["user"],
                "mqtt_password": reply["token"],
            }

    raise TimeoutError("Provisioning service did not answer")


# -----------------------------------------------------------------------------
# Main
# -----------------------------------------------------------------------------
def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--udp", action="store_true", help="use the datagram protocol")
    parser.add_argument("--host", help="skip mDNS and use this host")
    parser.add_argument("--port", type=int, default=8000, help="HTTP port when --host is given")
    args = parser.parse_args()

    if args.host:
        host, port = args.host, args.port
    else:
        print(f"Discovering {SERVICE_TYPE} ...")
        found = discover_provisioning()
        if found is None:
            print("No provisioning service found")
            sys.exit(1)
        host, port = found

    body = build_request_body()
    print(f"Sending provisioning request: {json.dumps(body)}")
    try:
        creds = provision_udp(host, UDP_PORT, body) if args.udp else provision_http(host, port, body)
    except (RuntimeError, TimeoutError, requests.RequestException) as exc:
        print(f"Provisioning failed: {exc}")
        sys.exit(1)

    print(f"Provisioned MQTT broker: {creds['mqtt_broker']}:{creds['mqtt_port']}")
    print(f"username={creds['mqtt_username']} password={creds['mqtt_password'][:16]}...")


if __name__ == "__main__":
    main()

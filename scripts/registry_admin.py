# scripts/registry_admin.py
"""
Inspect or revoke devices in the registry.
Run: python scripts/registry_admin.py show AA:BB:CC:DD:EE:FF
     python scripts/registry_admin.py revoke AA:BB:CC:DD:EE:FF
     python scripts/registry_admin.py issuances cyd-0001
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from api.app.config import get_settings
from db.engine import build_engine, create_schema
from db.session import build_session_factory
from services.device_registry import DeviceRegistry
from services.provisioning import device_uuid_for


async def show(registry: DeviceRegistry, mac: str) -> None:
    device_uuid = device_uuid_for(mac)
    device = await registry.get_device(device_uuid)
    if device is None:
        print(f"No device for {mac} (uuid {device_uuid})")
        return
    print(f"uuid:          {device.device_uuid}")
    print(f"device_id:     {device.device_id}")
    print(f"device_type:   {device.device_type}")
    print(f"status:        {device.status.value}")
    print(f"registered_at: {device.registered_at}")
    if device.revoked_at:
        print(f"revoked_at:    {device.revoked_at}")


async def revoke(registry: DeviceRegistry, mac: str) -> None:
    device_uuid = device_uuid_for(mac)
    if await registry.revoke_device(device_uuid):
        print(f"Revoked {mac} (uuid {device_uuid})")
    else:
        print(f"Nothing to revoke for {mac}")


async def issuances(registry: DeviceRegistry, device_id: str) -> None:
    rows = await registry.list_issuances(device_id)
    if not rows:
        print(f"No tokens issued to {device_id}")
    for row in rows:
        print(f"{row.issued_at.isoformat()}  {row.token_id}  expires {row.expires_at.isoformat()}")


COMMANDS = {"show": show, "revoke": revoke, "issuances": issuances}


async def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Device registry admin")
    parser.add_argument("command", choices=sorted(COMMANDS))
    parser.add_argument("target", help="MAC address, or device_id for 'issuances'")
    args = parser.parse_args(argv)

    settings = get_settings()
    engine = build_engine(settings.database_url)
    try:
        await create_schema(engine)
        registry = DeviceRegistry(build_session_factory(engine))
        await COMMANDS[args.command](registry, args.target)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())

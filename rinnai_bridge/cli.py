"""Command-line interface for rinnai-bridge."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .app import RinnaiBridgeApp
from .appliance import RinnaiTouch
from .config import BridgeConfig, load_config
from .discovery import ApplianceDiscovery
from .errors import RinnaiError
from .logging import configure_logging
from .schema import SERVICES, SYSTEM_SCHEMA, SYSTEM_SERVICE, service_schema

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rinnai-bridge", description="MQTT bridge for Rinnai Touch WiFi modules"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("start", help="Start the MQTT bridge service")

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    discover_parser = subparsers.add_parser(
        "discover", help="Listen for the module's UDP announcement"
    )
    discover_parser.add_argument(
        "--timeout", type=float, default=None, help="Seconds to wait (default: from config)"
    )

    status_parser = subparsers.add_parser(
        "status", help="Connect once and print the module status"
    )
    status_parser.add_argument(
        "--raw", action="store_true", help="Print the raw state tree instead of the config view"
    )

    command_parser = subparsers.add_parser(
        "command", help="Connect once, apply a setting and wait for confirmation"
    )
    command_parser.add_argument("service", help='Service name, e.g. "system" or "gasHeating"')
    command_parser.add_argument("field", help='Field name, e.g. "operatingState"')
    command_parser.add_argument("value", help='Requested value, e.g. "on"')

    subparsers.add_parser("schema", help="List every field and its accepted values")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)

    if args.command == "start":
        RinnaiBridgeApp.start(config)
        return 0

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                if key == "password" and value:
                    value = "********"
                print(f"{key} = {value}")
            print()
        return 0

    if args.command == "schema":
        print_schema()
        return 0

    configure_logging(
        config.logging.level,
        log_path=config.logging.path,
        log_network=config.logging.log_network,
    )

    try:
        if args.command == "discover":
            host, port = asyncio.run(_discover(config, args.timeout))
            print(f"{host}:{port}")
            return 0

        if args.command == "status":
            print(json.dumps(asyncio.run(_status(config, raw=args.raw)), indent=4))
            return 0

        if args.command == "command":
            confirmed = asyncio.run(_command(config, args.service, args.field, args.value))
            print("true" if confirmed else "false")
            return 0 if confirmed else 2
    except (RinnaiError, OSError) as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        return 1

    LOGGER.error("Unknown command: %s", args.command)
    return 1


def print_schema() -> None:
    tables = [(SYSTEM_SERVICE, SYSTEM_SCHEMA)]
    tables.extend((service.name, service_schema(service.code)) for service in SERVICES)
    for service, schema in tables:
        print(f"[{service}]")
        for name, definition in schema.items():
            if not definition.applies_to(service):
                continue
            access = "rw" if definition.writable else "ro"
            values = ""
            if definition.codes is not None:
                values = " (" + ", ".join(
                    json.dumps(value) for value in definition.codes.codes.values()
                ) + ")"
            print(f"  {name} [{access}] {definition.path}{values}")
        print()


async def _discover(config: BridgeConfig, timeout: Optional[float]) -> tuple[str, int]:
    discovery = ApplianceDiscovery(
        port=config.appliance.discovery_port,
        timeout=timeout if timeout is not None else config.appliance.discovery_timeout_seconds,
    )
    return await discovery.discover()


async def _status(config: BridgeConfig, *, raw: bool) -> dict:
    appliance = RinnaiTouch(config.appliance, config.commands)
    await appliance.connect(auto_reconnect=False)
    try:
        return appliance.status() if raw else appliance.config()
    finally:
        await appliance.disconnect()


async def _command(config: BridgeConfig, service: str, field: str, value: str) -> bool:
    appliance = RinnaiTouch(config.appliance, config.commands)
    await appliance.connect(auto_reconnect=False)
    try:
        return await appliance.command(service, field, value)
    finally:
        await appliance.disconnect()


if __name__ == "__main__":
    sys.exit(main())

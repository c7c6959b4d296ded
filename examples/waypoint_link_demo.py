#!/usr/bin/env python3
"""
Waypoint Link Demo

This script drives the waypoint transmission engine against a real
Bluetooth adapter. Use it to check that a LoRa receiver is visible and
accepts a route.

Usage:
    python waypoint_link_demo.py [scan|send|frames] [lat,lon ...]

Commands:
    scan   - Debug scan, list every device nearby
    send   - Send a route (defaults to a two-point demo route)
    frames - Show the radio writes for a route without using the radio
"""

import sys
import os
import asyncio

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

from waypoint_link import (
    LinkConfig,
    WaypointLink,
    WaypointLinkError,
    build_route,
    encode_payload,
    frame_payload,
    serialize,
)
from waypoint_link.log import set_loglevel

DEMO_ROUTE = [(37.78825, -122.4324), (37.789, -122.4325)]


def parse_points(args):
    if not args:
        return list(DEMO_ROUTE)
    points = []
    for arg in args:
        lat, lon = arg.split(",")
        points.append((float(lat), float(lon)))
    return points


def load_config():
    path = os.environ.get("WAYPOINT_LINK_CONFIG")
    if path:
        return LinkConfig.from_file(path)
    return LinkConfig()


def print_result(success, message):
    print(f"  {'✓' if success else '✗'} {message}")


def show_frames(points):
    """Show serialization and framing without BLE radio"""
    route = build_route(points, for_sending=True)
    print("=" * 60)
    print("Waypoint Framing")
    print("=" * 60)
    print(route.describe())
    print()
    print(f"Wire string: {serialize(route)}")
    payload = encode_payload(route)
    print(f"Payload:     {payload} ({len(payload)} chars)")
    print()
    for i, frame in enumerate(frame_payload(payload)):
        print(f"  Write {i}: {frame.decode('ascii')}")
    print("=" * 60)


async def scan(link):
    print("=" * 60)
    print("Waypoint Receiver Scanner")
    print("=" * 60)
    print(f"Scanning for {link.config.debug_scan_window:.0f} seconds...")
    print()

    devices = await link.scan_debug()
    if not devices:
        print("No BLE devices found.")
        return

    print(f"Found {len(devices)} device(s):\n")
    for i, device in enumerate(devices, 1):
        marker = " <- receiver" if link.matcher.is_acceptable(device) else ""
        print(f"{i}. {device.display_name or 'Unknown'}{marker}")
        print(f"   Address: {device.id}")
        print(f"   RSSI: {device.rssi if device.rssi is not None else 'N/A'} dBm")
        for uuid in sorted(device.advertised_service_ids)[:3]:  # Show first 3
            print(f"     - {uuid}")
        print()


async def send(link, points):
    route = build_route(points, for_sending=True)
    print("=" * 60)
    print("Sending Waypoints")
    print("=" * 60)
    print(route.describe())
    print()

    result = await link.send_route(route)
    print(f"  Device: {result.device.display_name or 'Unknown'} ({result.device.id})")
    print(f"  Path:   {result.path}")
    print(f"  Chunks: {result.chunks}")

    # Same route again: should reuse the cached receiver
    print("\nResending unchanged route...")
    result = await link.send_route(route)
    print(f"  Path:   {result.path}")


async def run(command, points):
    link = WaypointLink(configuration=load_config(), on_result=print_result)
    try:
        if command == "scan":
            await scan(link)
        else:
            await send(link, points)
    except WaypointLinkError as e:
        print(f"ERROR: {e.describe()}")
        return False
    finally:
        await link.cleanup()
    return True


def show_help():
    """Show usage information"""
    print("""
Waypoint Link Demo

Usage:
    python waypoint_link_demo.py [command] [lat,lon ...]

Commands:
    scan    - Scan for nearby BLE devices
    send    - Send a route to the receiver
    frames  - Show radio writes for a route (no BLE radio needed)
    help    - Show this help message

Environment:
    WAYPOINT_LINK_CONFIG   Path to a config file with a [waypoint_link] section
    WAYPOINT_LINK_DEBUG    Set to enable debug logging

Examples:
    python waypoint_link_demo.py frames 37.78825,-122.4324 37.789,-122.4325
    python waypoint_link_demo.py send
    """)


def main():
    """Main entry point"""
    if len(sys.argv) < 2:
        command = "frames"  # Default command
    else:
        command = sys.argv[1].lower()

    if os.environ.get("WAYPOINT_LINK_DEBUG"):
        set_loglevel("DEBUG")

    if command == "frames":
        show_frames(parse_points(sys.argv[2:]))
    elif command in ("scan", "send"):
        if not asyncio.run(run(command, parse_points(sys.argv[2:]))):
            sys.exit(1)
    elif command == "help":
        show_help()
    else:
        print(f"Unknown command: {command}")
        show_help()
        sys.exit(1)


if __name__ == "__main__":
    main()

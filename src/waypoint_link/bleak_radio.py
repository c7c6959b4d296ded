# MIT License
#
# Copyright (c) 2025 waypoint-link Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in
# all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
Bleak-backed radio driver

Implements RadioDriver on top of bleak (scanning, connecting, GATT client).
On Linux the adapter power state is read and written through BlueZ's
org.bluez.Adapter1 "Powered" property over D-Bus (dbus-fast, which bleak
already depends on there). Other platforms report PowerState.UNKNOWN and
rely on scan/connect errors instead.

Platform notes:
- BlueZ can only connect to addresses it has seen recently, so the BLEDevice
  objects from the last scan are kept and used for connect() when available.
- BlueZ reports a 23-byte MTU until the MTU is acquired; _negotiate_mtu()
  tries the backend's _acquire_mtu() first, then falls back to mtu_size.
- Duplicate advertisements are filtered here rather than via BlueZ's
  DuplicateData filter, which not every platform backend supports.
"""

import asyncio
import sys
from typing import Dict, Optional

from bleak import BleakClient, BleakScanner

from .log import log
from .radio_driver import CharacteristicRef, DeviceDescriptor, PowerState, RadioDriver, ServiceInfo

IS_LINUX = sys.platform.startswith("linux")

# D-Bus for the adapter power state (Linux/BlueZ only)
try:
    from dbus_fast import BusType, Variant
    from dbus_fast.aio import MessageBus
    HAS_DBUS = IS_LINUX
except ImportError:
    HAS_DBUS = False

BLUEZ_SERVICE = "org.bluez"
ADAPTER_INTERFACE = "org.bluez.Adapter1"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"

DEFAULT_MTU = 23  # BLE 4.0 minimum


class BleakConnection:
    """Connection handle returned by BleakRadioDriver.connect()."""

    def __init__(self, device_id, client, mtu=DEFAULT_MTU):
        self.device_id = device_id
        self.client = client
        self.mtu = mtu

    @property
    def is_connected(self):
        return bool(self.client and self.client.is_connected)

    def __repr__(self):
        return f"BleakConnection({self.device_id}, mtu={self.mtu}, connected={self.is_connected})"


class BleakRadioDriver(RadioDriver):
    """
    RadioDriver implementation using bleak.

    One instance corresponds to one "radio manager": destroy() disconnects
    every client it created, stops any scan and forgets every discovered
    device, after which the instance must not be reused.
    """

    def __init__(self, adapter_index: int = 0):
        self.adapter_index = adapter_index
        self.adapter = f"hci{adapter_index}"
        self.adapter_path = f"/org/bluez/{self.adapter}"

        self._scanner: Optional[BleakScanner] = None
        self._scan_callback = None
        self._allow_duplicates = False
        self._seen_ids = set()

        # address -> bleak BLEDevice from the most recent scans
        self._devices: Dict[str, object] = {}
        self._connections: Dict[str, BleakConnection] = {}
        self._destroyed = False

    # ------------------------------------------------------------------
    # Power state
    # ------------------------------------------------------------------

    async def power_state(self) -> PowerState:
        if not HAS_DBUS:
            return PowerState.UNKNOWN

        try:
            bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
        except Exception as e:
            log(self, f"Could not connect to system D-Bus: {e}", "DEBUG")
            return PowerState.UNKNOWN

        try:
            introspection = await bus.introspect(BLUEZ_SERVICE, self.adapter_path)
            adapter_obj = bus.get_proxy_object(BLUEZ_SERVICE, self.adapter_path, introspection)
            properties = adapter_obj.get_interface(PROPERTIES_INTERFACE)
            powered = await properties.call_get(ADAPTER_INTERFACE, "Powered")
            return PowerState.POWERED_ON if powered.value else PowerState.POWERED_OFF
        except Exception as e:
            error_str = str(e).lower()
            if "unknownobject" in error_str or "does not exist" in error_str:
                log(self, f"Adapter {self.adapter} not present", "WARNING")
                return PowerState.UNSUPPORTED
            if "notpermitted" in error_str or "accessdenied" in error_str:
                return PowerState.UNAUTHORIZED
            log(self, f"Could not read adapter power state: {e}", "DEBUG")
            return PowerState.UNKNOWN
        finally:
            bus.disconnect()

    async def set_power_state(self, powered: bool):
        if not HAS_DBUS:
            raise RuntimeError("Adapter power control is only available through BlueZ D-Bus on Linux")

        bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
        try:
            introspection = await bus.introspect(BLUEZ_SERVICE, self.adapter_path)
            adapter_obj = bus.get_proxy_object(BLUEZ_SERVICE, self.adapter_path, introspection)
            properties = adapter_obj.get_interface(PROPERTIES_INTERFACE)
            await properties.call_set(ADAPTER_INTERFACE, "Powered", Variant("b", bool(powered)))
            log(self, f"Adapter {self.adapter} powered {'on' if powered else 'off'}", "INFO")
        finally:
            bus.disconnect()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    @property
    def is_scanning(self):
        return self._scanner is not None

    async def start_scan(self, callback, allow_duplicates=False):
        if self._destroyed:
            raise RuntimeError("Radio driver has been destroyed")
        if self._scanner is not None:
            log(self, "Already scanning", "DEBUG")
            return

        self._scan_callback = callback
        self._allow_duplicates = allow_duplicates
        self._seen_ids = set()

        kwargs = {"detection_callback": self._detection_callback}
        if IS_LINUX:
            kwargs["adapter"] = self.adapter

        scanner = BleakScanner(**kwargs)
        await scanner.start()
        self._scanner = scanner
        log(self, "Scanner started", "DEBUG")

    def _detection_callback(self, device, advertisement_data):
        if self._scan_callback is None:
            return

        if not self._allow_duplicates and device.address in self._seen_ids:
            return
        self._seen_ids.add(device.address)
        self._devices[device.address] = device

        descriptor = DeviceDescriptor(
            id=device.address,
            display_name=advertisement_data.local_name or device.name or "",
            advertised_service_ids=frozenset(u.lower() for u in (advertisement_data.service_uuids or [])),
            rssi=advertisement_data.rssi,
        )

        try:
            self._scan_callback(descriptor, None)
        except Exception as e:
            log(self, f"Error in device discovered callback: {e}", "ERROR")

    async def stop_scan(self):
        scanner = self._scanner
        self._scanner = None
        self._scan_callback = None
        if scanner is None:
            return

        try:
            await scanner.stop()
            log(self, "Scanner stopped", "DEBUG")
        except Exception as e:
            log(self, f"Error stopping scanner: {e}", "WARNING")

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def connect(self, device_id, timeout, mtu=None):
        if self._destroyed:
            raise RuntimeError("Radio driver has been destroyed")

        target = self._devices.get(device_id, device_id)
        kwargs = {"timeout": timeout}
        if IS_LINUX:
            kwargs["adapter"] = self.adapter
        client = BleakClient(target, **kwargs)

        try:
            await asyncio.wait_for(client.connect(), timeout=timeout)
            if not client.is_connected:
                raise RuntimeError("Connection failed")
        except Exception:
            # Leave no half-open connection behind in the platform stack
            try:
                if client.is_connected:
                    await client.disconnect()
            except Exception as cleanup_e:
                log(self, f"Error during failed-connect cleanup for {device_id}: {cleanup_e}", "DEBUG")
            raise

        negotiated = await self._negotiate_mtu(client)
        if mtu and negotiated < mtu:
            log(self, f"Requested MTU {mtu}, peripheral negotiated {negotiated}", "DEBUG")

        connection = BleakConnection(device_id, client, negotiated)
        self._connections[device_id] = connection
        log(self, f"Connected to {device_id} (MTU: {negotiated})", "DEBUG")
        return connection

    async def _negotiate_mtu(self, client):
        backend = getattr(client, "_backend", None)
        if backend is not None and hasattr(backend, "_acquire_mtu"):
            try:
                await backend._acquire_mtu()
            except Exception as e:
                log(self, f"Failed to acquire MTU via _acquire_mtu(): {e}", "DEBUG")

        try:
            return client.mtu_size
        except Exception as e:
            log(self, f"Could not get MTU, using default {DEFAULT_MTU}: {e}", "DEBUG")
            return DEFAULT_MTU

    async def services(self, handle):
        collection = handle.client.services
        result = []
        for service in collection:
            characteristics = tuple(
                CharacteristicRef(
                    service_id=service.uuid.lower(),
                    id=char.uuid.lower(),
                    writable_with_response="write" in char.properties,
                    writable_without_response="write-without-response" in char.properties,
                )
                for char in service.characteristics
            )
            result.append(ServiceInfo(service.uuid.lower(), characteristics))
        return result

    async def write_without_response(self, handle, service_id, characteristic_id, data):
        client = handle.client
        target = characteristic_id
        service = client.services.get_service(service_id)
        if service is not None:
            char = service.get_characteristic(characteristic_id)
            if char is not None:
                target = char
        await client.write_gatt_char(target, data, response=False)

    async def cancel_connection(self, handle):
        self._connections.pop(handle.device_id, None)
        if handle.client.is_connected:
            await handle.client.disconnect()

    async def destroy(self):
        self._destroyed = True
        await self.stop_scan()

        for device_id, connection in list(self._connections.items()):
            try:
                if connection.is_connected:
                    await connection.client.disconnect()
            except Exception as e:
                log(self, f"Error disconnecting {device_id} during destroy: {e}", "WARNING")
        self._connections.clear()
        self._devices.clear()
        log(self, "Destroyed", "DEBUG")

    def __str__(self):
        return f"BleakRadioDriver[{self.adapter}]"

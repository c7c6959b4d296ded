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
Radio stack abstraction.

The engine never talks to a Bluetooth library directly. It talks to a
RadioDriver, which exposes exactly what the waypoint transmission needs:
power state, a discovery stream, connect-by-id, service enumeration,
write-without-response and connection cancel. Platform code (bleak) lives
in bleak_radio.py; tests use an in-memory driver.

RadioStackHandle owns the single live driver instance and the single live
connection, and implements the destroy-and-recreate reset used to clear
corrupted platform stack state between operations.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from .log import log


class PowerState(Enum):
    """Adapter power state as reported by the platform."""

    UNKNOWN = "Unknown"
    RESETTING = "Resetting"
    UNSUPPORTED = "Unsupported"
    UNAUTHORIZED = "Unauthorized"
    POWERED_OFF = "PoweredOff"
    POWERED_ON = "PoweredOn"


@dataclass(frozen=True)
class DeviceDescriptor:
    """A peripheral seen during discovery. Ephemeral, never persisted."""

    id: str  # link-layer address, stable per OS session
    display_name: str = ""
    advertised_service_ids: frozenset = field(default_factory=frozenset)
    rssi: Optional[int] = None


@dataclass(frozen=True)
class CharacteristicRef:
    """A GATT characteristic resolved on a connected peripheral."""

    service_id: str
    id: str
    writable_with_response: bool = False
    writable_without_response: bool = False

    @property
    def writable(self):
        return self.writable_with_response or self.writable_without_response


@dataclass(frozen=True)
class ServiceInfo:
    id: str
    characteristics: tuple = ()


class RadioDriver(ABC):
    """
    Interface every radio stack provider implements.

    All I/O methods are coroutines and run on the caller's event loop.
    Discovery results are delivered through the callback passed to
    start_scan(); errors in the discovery stream are delivered through the
    same callback as ``callback(None, error)``.
    """

    @abstractmethod
    async def power_state(self) -> PowerState:
        """Return the current adapter power state."""

    @abstractmethod
    async def set_power_state(self, powered: bool):
        """Power the adapter on or off, where the platform allows it."""

    @abstractmethod
    async def start_scan(self, callback: Callable[[Optional[DeviceDescriptor], Optional[Exception]], None],
                         allow_duplicates: bool = False):
        """Start the discovery stream."""

    @abstractmethod
    async def stop_scan(self):
        """Stop the discovery stream. Must be safe to call when not scanning."""

    @property
    @abstractmethod
    def is_scanning(self) -> bool:
        """True while a discovery stream is active."""

    @abstractmethod
    async def connect(self, device_id: str, timeout: float, mtu: Optional[int] = None):
        """
        Connect to ``device_id`` and return an opaque connection handle.

        Raises:
            asyncio.TimeoutError: No connection within ``timeout`` seconds
        """

    @abstractmethod
    async def services(self, handle) -> List[ServiceInfo]:
        """Discover and return all services and characteristics on ``handle``."""

    @abstractmethod
    async def write_without_response(self, handle, service_id: str, characteristic_id: str, data: bytes):
        """Write ``data`` to a characteristic without requesting acknowledgement."""

    @abstractmethod
    async def cancel_connection(self, handle):
        """Disconnect ``handle``."""

    @abstractmethod
    async def destroy(self):
        """Release every platform resource held by this instance."""


class RadioStackHandle:
    """
    Owns the live RadioDriver instance and the live connection.

    The driver is created through ``factory`` so it can be destroyed and
    recreated wholesale by reset_stack(). Only the session controller mutates
    a RadioStackHandle, and only while holding the operation guard.
    """

    def __init__(self, factory: Callable[[], RadioDriver], destroy_settle=1.0, create_settle=0.5, name="radio"):
        self.factory = factory
        self.destroy_settle = destroy_settle
        self.create_settle = create_settle
        self.name = name

        self.driver = factory()
        self.connection = None  # live ConnectionHandle, if any
        self.resets = 0

    async def reset_stack(self):
        """
        Destroy the driver and create a fresh one.

        Waits ``destroy_settle`` after destroying and ``create_settle`` after
        creating. If destroying fails a fresh driver is still created, so the
        handle always ends up holding a usable instance.
        """
        log(self, "Destroying radio stack...", "INFO")
        self.connection = None
        try:
            await self.driver.destroy()
            await asyncio.sleep(self.destroy_settle)
        except Exception as e:
            log(self, f"Radio stack destroy failed: {type(e).__name__}: {e}", "WARNING")

        log(self, "Creating fresh radio stack...", "INFO")
        self.driver = self.factory()
        await asyncio.sleep(self.create_settle)
        self.resets += 1
        log(self, "Radio stack reset complete", "INFO")

    def __str__(self):
        return f"RadioStackHandle[{self.name}]"

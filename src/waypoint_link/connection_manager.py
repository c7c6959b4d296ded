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
ConnectionManager - connect with bounded retry, characteristic resolution, disconnect

ERROR RECOVERY:
- Connect or service discovery failure: retried after a fixed delay, up to
  max_retries extra attempts, each with its own connection timeout
- Exhausted retries: ConnectionFailed carrying the last underlying error
- Disconnect failure: logged and swallowed, never fails the operation
"""

import asyncio
import time

from .errors import ConnectionFailed, NoWritableCharacteristic
from .log import log


class ConnectionHandle:
    """
    A live connection bound to exactly one DeviceDescriptor.

    Wraps the driver-level handle together with the discovered services.
    """

    def __init__(self, device, raw, services=()):
        self.device = device
        self.raw = raw
        self.services = list(services)
        self.connected_at = time.time()
        self.released = False

    def __repr__(self):
        return f"ConnectionHandle({self.device.id}, services={len(self.services)}, released={self.released})"


class ConnectionManager:
    """Connects to a peripheral and resolves the characteristic to write to."""

    def __init__(self, stack, config):
        """
        Args:
            stack: RadioStackHandle whose current driver is used for every call
            config: LinkConfig with retry, timeout and target identifiers
        """
        self.stack = stack
        self.max_retries = config.max_retries
        self.retry_delay = config.retry_delay
        self.connect_timeout = config.connect_timeout
        self.request_mtu = config.request_mtu
        self.disconnect_settle = config.disconnect_settle
        self.characteristic_id = config.characteristic_uuid.lower()

    async def connect(self, device):
        """
        Connect to ``device`` and discover all services and characteristics.

        Raises:
            ConnectionFailed: Every attempt failed
        """
        attempts = 0
        last_error = None

        while attempts <= self.max_retries:
            attempts += 1
            log(self, f"Connecting to {device.id} (attempt {attempts}/{self.max_retries + 1})", "INFO")
            raw = None
            try:
                driver = self.stack.driver
                raw = await driver.connect(device.id, timeout=self.connect_timeout, mtu=self.request_mtu)
                log(self, f"Connected to {device.id}, discovering services...", "DEBUG")
                services = await driver.services(raw)
                log(self, f"Discovered {len(services)} service(s) on {device.id}", "DEBUG")
                return ConnectionHandle(device, raw, services)

            except Exception as e:
                last_error = e
                log(self, f"Connect attempt {attempts} to {device.id} failed: {type(e).__name__}: {e}", "WARNING")

                # Discovery failed on an established link: drop it before retrying
                if raw is not None:
                    await self._cancel_quietly(raw, device.id)

                if attempts <= self.max_retries:
                    log(self, f"Retrying in {self.retry_delay:.1f}s...", "DEBUG")
                    await asyncio.sleep(self.retry_delay)

        raise ConnectionFailed(device.id, attempts, last_error) from last_error

    def find_writable_characteristic(self, handle):
        """
        Resolve the characteristic to write the route to.

        Returns the configured target characteristic when present, otherwise
        the first characteristic writable with or without response.

        Raises:
            NoWritableCharacteristic: Nothing on the peripheral is writable
        """
        fallback = None
        for service in handle.services:
            log(self, f"Checking service {service.id}", "EXTREME")
            for char in service.characteristics:
                if char.id.lower() == self.characteristic_id:
                    log(self, f"Found target characteristic {char.id}", "DEBUG")
                    return char
                if fallback is None and char.writable:
                    fallback = char

        if fallback is not None:
            log(self, f"Using fallback writable characteristic {fallback.id} (service {fallback.service_id})", "WARNING")
            return fallback

        raise NoWritableCharacteristic(handle.device.id)

    async def disconnect(self, handle):
        """
        Disconnect ``handle``. Idempotent; errors are logged, never raised.

        Always waits the settle interval afterwards so the radio stack can
        finish tearing the link down.
        """
        if handle is None:
            return

        if not handle.released:
            handle.released = True
            log(self, f"Disconnecting from {handle.device.id} after {time.time() - handle.connected_at:.1f}s...", "DEBUG")
            await self._cancel_quietly(handle.raw, handle.device.id)

        await asyncio.sleep(self.disconnect_settle)

    async def _cancel_quietly(self, raw, device_id):
        try:
            await self.stack.driver.cancel_connection(raw)
            log(self, f"Disconnected from {device_id}", "DEBUG")
        except Exception as e:
            log(self, f"Disconnect error for {device_id}: {type(e).__name__}: {e}", "WARNING")

    def __str__(self):
        return "ConnectionManager"

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
WaypointLink - session cache and reset controller

This is the engine the application talks to. It owns the radio stack handle,
the session cache and the single-flight guard, and runs one send operation
as a small state machine:

    IDLE -> PREPARING -> (FAST_PATH | SCANNING) -> CONNECTING -> DISCOVERING
         -> TRANSMITTING -> SUCCEEDED | FAILED

FAST PATH vs SCAN:
- Same route as the last successful send and a cached peripheral: reconnect
  to it directly after a lightweight cleanup. If that fails for any reason the
  cached peripheral is dropped and the operation falls back to a scan, once.
- Otherwise: full radio stack reset (destroy + recreate), then scan. The
  first acceptable device stops the scan; if the scan window elapses first,
  the first device seen of any kind is used.

CLEANUP GUARANTEES:
- The guard and the scan timer are released on every exit path, including
  unexpected exceptions and task cancellation
- A failed send always disconnects and forgets the cached peripheral
- Disconnect errors are logged and never change the outcome

THREADING MODEL:
- Single asyncio event loop; every radio call is awaited in sequence
- The only concurrent pieces are the discovery stream consumer and the scan
  timer, raced against each other; the loser is cancelled
"""

import asyncio
import base64
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .chunked_transport import ChunkedTransport
from .config import LinkConfig
from .connection_manager import ConnectionManager
from .device_matcher import DeviceMatcher, ScanCollector
from .errors import (
    NoDeviceFound,
    OperationInProgress,
    RadioPoweredOff,
    ScanError,
    WaypointLinkError,
)
from .log import log
from .radio_driver import PowerState, RadioStackHandle
from .route import Route, build_route, serialize


class LinkState(Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    FAST_PATH = "fast_path"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    DISCOVERING = "discovering"
    TRANSMITTING = "transmitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


PATH_CACHE = "cache"
PATH_SCAN = "scan"


class SessionCache:
    """
    Last successful payload and peripheral.

    Updated only after a fully successful transmission; the device is
    forgotten whenever the route changes, a send fails or a reset is requested.
    """

    def __init__(self):
        self.last_sent_payload = ""
        self.last_known_device = None

    def can_reuse(self, payload):
        return bool(payload) and payload == self.last_sent_payload and self.last_known_device is not None

    def remember(self, payload, device):
        self.last_sent_payload = payload
        self.last_known_device = device

    def forget_device(self):
        self.last_known_device = None

    def clear(self):
        self.last_sent_payload = ""
        self.last_known_device = None

    def __repr__(self):
        device = self.last_known_device.id if self.last_known_device else None
        return f"SessionCache(payload={self.last_sent_payload!r}, device={device})"


class OperationGuard:
    """Single-flight flag for scan and send operations."""

    def __init__(self):
        self.active = False
        self.operation = None

    def acquire(self, operation):
        if self.active:
            raise OperationInProgress()
        self.active = True
        self.operation = operation

    def release(self):
        self.active = False
        self.operation = None


@dataclass(frozen=True)
class SendResult:
    device: object
    path: str
    chunks: int
    payload: str


class WaypointLink:
    """
    Waypoint transmission engine.

    Operations:
        send_route(route)     Deliver a route to the receiver
        scan_debug(window)    Discovery only, returns every device seen
        reset_radio_stack()   Drop all radio state (call after editing waypoints)
        cleanup()             Lightweight cleanup for application shutdown
    """

    def __init__(self, radio_factory: Optional[Callable] = None, configuration=None,
                 on_result: Optional[Callable[[bool, str], None]] = None):
        """
        Args:
            radio_factory: Zero-argument callable returning a fresh RadioDriver.
                           Defaults to BleakRadioDriver.
            configuration: LinkConfig, or a dict/ConfigObj section for one
            on_result: Called once per finished send with (success, message)
        """
        if isinstance(configuration, LinkConfig):
            self.config = configuration
        else:
            self.config = LinkConfig(configuration)
        self.name = self.config.name

        if radio_factory is None:
            from .bleak_radio import BleakRadioDriver
            radio_factory = BleakRadioDriver

        self.stack = RadioStackHandle(
            radio_factory,
            destroy_settle=self.config.destroy_settle,
            create_settle=self.config.create_settle,
            name=self.name,
        )
        self.matcher = DeviceMatcher(self.config.device_name_patterns, self.config.service_uuid)
        self.connections = ConnectionManager(self.stack, self.config)
        self.transport = ChunkedTransport(self.stack, self.config.chunk_size, self.config.chunk_delay)

        self.cache = SessionCache()
        self.guard = OperationGuard()
        self.state = LinkState.IDLE
        self.on_result = on_result

        self._scan_timer = None

        log(self, f"initialized, service {self.config.service_uuid}, characteristic {self.config.characteristic_uuid}", "INFO")
        log(self, f"name patterns: {', '.join(self.config.device_name_patterns)}", "DEBUG")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def send_route(self, route):
        """
        Deliver ``route`` to the receiver.

        Args:
            route: Route, or any point sequence accepted by build_route()

        Returns:
            SendResult

        Raises:
            InvalidCoordinate, InsufficientWaypoints: Before any radio activity
            OperationInProgress: Another operation holds the guard
            WaypointLinkError: The send failed; cleanup has already run
        """
        try:
            route = self._snapshot(route)
        except WaypointLinkError as e:
            self._notify(False, e.describe())
            raise

        wire = serialize(route)
        payload = base64.b64encode(wire.encode("utf-8")).decode("ascii")

        try:
            self.guard.acquire("send")
        except OperationInProgress as e:
            log(self, "Operation already in progress, ignoring send request", "WARNING")
            self._notify(False, e.describe())
            raise

        try:
            self._transition(LinkState.PREPARING)
            use_cache = self.cache.can_reuse(wire)
            if use_cache:
                log(self, f"Same route and cached device {self.cache.last_known_device.id}, trying cache first", "INFO")
            else:
                if self.cache.last_sent_payload and wire != self.cache.last_sent_payload:
                    log(self, "Route changed since last send, performing fresh scan", "INFO")
                else:
                    log(self, "No cached device, performing scan", "INFO")
                self.cache.forget_device()

            log(self, f"Route: {wire}", "DEBUG")
            log(self, f"Payload: {len(payload)} chars base64", "DEBUG")

            result = await self._run_send(wire, payload, use_cache)

        except asyncio.CancelledError:
            log(self, "Send operation cancelled", "WARNING")
            await self._terminate(success=False)
            self._transition(LinkState.FAILED)
            raise

        except WaypointLinkError as e:
            log(self, f"Send failed at {e.stage}: {e}", "ERROR")
            await self._terminate(success=False)
            self._transition(LinkState.FAILED)
            self._notify(False, e.describe())
            raise

        except Exception as e:
            log(self, f"Send failed: {type(e).__name__}: {e}", "ERROR")
            await self._terminate(success=False)
            self._transition(LinkState.FAILED)
            self._notify(False, f"radio: {type(e).__name__}: {e}")
            raise

        finally:
            self._cancel_scan_timer()
            self.guard.release()

        self._notify(True, "Waypoints sent!")
        return result

    async def scan_debug(self, window=None):
        """
        Scan without sending, for diagnostics.

        Resets the radio stack (which also clears the session cache) and
        returns every unique device seen within ``window`` seconds.
        """
        window = self.config.debug_scan_window if window is None else window
        self.guard.acquire("scan")
        try:
            self._transition(LinkState.SCANNING)
            log(self, "Debug scan, resetting radio stack for a clean state...", "INFO")
            await self._full_reset(clear_cache=True)
            await self._check_power()

            collector = await self._discover(window, stop_on_match=False)
            log(self, f"Debug scan found {len(collector.seen)} device(s)", "INFO")
            for index, device in enumerate(collector.seen, start=1):
                services = ", ".join(sorted(device.advertised_service_ids)) or "None"
                log(self, f"  {index}. {device.display_name or 'Unnamed'} ({device.id}) services: {services}", "INFO")
            return list(collector.seen)

        except BaseException:
            await self._light_cleanup()
            raise

        finally:
            self._cancel_scan_timer()
            self.state = LinkState.IDLE
            self.guard.release()

    async def reset_radio_stack(self):
        """
        Drop all radio and cache state.

        Called whenever the waypoint list is edited. Skipped while another
        operation is in flight.

        Returns:
            bool: True if the reset ran
        """
        if self.guard.active:
            log(self, f"Radio operation '{self.guard.operation}' in progress, skipping reset", "WARNING")
            return False

        self.guard.acquire("reset")
        try:
            log(self, "Force resetting radio stack...", "INFO")
            await self._full_reset(clear_cache=True)
            log(self, "Radio stack completely reset and ready", "INFO")
            return True
        finally:
            self._cancel_scan_timer()
            self.state = LinkState.IDLE
            self.guard.release()

    async def cleanup(self):
        """
        Stop scanning and disconnect, e.g. at application shutdown.

        Skipped while another operation is in flight.

        Returns:
            bool: True if the cleanup ran
        """
        if self.guard.active:
            log(self, f"Radio operation '{self.guard.operation}' in progress, skipping cleanup", "WARNING")
            return False

        self.guard.acquire("cleanup")
        try:
            log(self, "Cleaning up radio state...", "DEBUG")
            await self._light_cleanup()
            self.cache.forget_device()
            return True
        finally:
            self.state = LinkState.IDLE
            self.guard.release()

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _run_send(self, wire, payload, use_cache):
        if use_cache:
            self._transition(LinkState.FAST_PATH)
            await self._light_cleanup()
            await self._check_power()

            device = self.cache.last_known_device
            try:
                chunks = await self._deliver(device, payload)
                return await self._succeed(wire, payload, device, PATH_CACHE, chunks)
            except WaypointLinkError as e:
                log(self, f"Cached device failed ({e.stage}: {e}), falling back to scan", "WARNING")
                await self._release_connection()
                self.cache.forget_device()

        self._transition(LinkState.SCANNING)
        await self._full_reset()
        await asyncio.sleep(self.config.scan_settle)
        await self._check_power()

        device = await self._scan_for_device()
        chunks = await self._deliver(device, payload)
        return await self._succeed(wire, payload, device, PATH_SCAN, chunks)

    async def _deliver(self, device, payload):
        self._transition(LinkState.CONNECTING)
        handle = await self.connections.connect(device)
        self.stack.connection = handle

        self._transition(LinkState.DISCOVERING)
        characteristic = self.connections.find_writable_characteristic(handle)

        self._transition(LinkState.TRANSMITTING)
        return await self.transport.transmit(handle, characteristic, payload)

    async def _succeed(self, wire, payload, device, path, chunks):
        self.cache.remember(wire, device)
        log(self, f"Waypoints sent to {device.id} via {path} ({chunks} chunk(s)), device cached", "INFO")
        await self._terminate(success=True)
        self._transition(LinkState.SUCCEEDED)
        return SendResult(device=device, path=path, chunks=chunks, payload=payload)

    async def _terminate(self, success):
        try:
            await self._light_cleanup()
        except Exception as e:
            log(self, f"Error during send termination: {type(e).__name__}: {e}", "WARNING")
            self.stack.connection = None

        if success:
            log(self, "Keeping cached device for potential reuse", "DEBUG")
        else:
            if self.cache.last_known_device is not None:
                log(self, "Clearing cached device due to failure", "DEBUG")
            self.cache.forget_device()

    def _transition(self, state):
        if state != self.state:
            log(self, f"{self.state.value} -> {state.value}", "DEBUG")
        self.state = state

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def _scan_for_device(self):
        window = self.config.scan_timeout
        collector = await self._discover(window, stop_on_match=True)

        if collector.match is not None:
            return collector.match

        if collector.fallback is not None:
            log(self, f"No matching device, {len(collector.seen)} seen; falling back to first seen {collector.fallback.id}", "WARNING")
            for index, device in enumerate(collector.seen):
                log(self, f"  Device {index}: {device.id} - {device.display_name or 'unnamed'}", "DEBUG")
            return collector.fallback

        raise NoDeviceFound(window)

    async def _discover(self, window, stop_on_match):
        """
        Run one discovery window.

        The discovery stream consumer and the scan timer are raced; whichever
        finishes first wins and the other is cancelled. The scan is always
        stopped before returning.
        """
        collector = ScanCollector(self.matcher)
        events = asyncio.Queue()

        def on_discovery(device, error=None):
            events.put_nowait((device, error))

        driver = self.stack.driver
        log(self, f"Starting scan ({window:.1f}s window)...", "INFO")
        try:
            await driver.start_scan(on_discovery, allow_duplicates=self.config.allow_duplicates)
        except Exception as e:
            raise ScanError(f"Could not start scan: {type(e).__name__}: {e}") from e

        consumer = asyncio.ensure_future(self._consume_discoveries(events, collector, stop_on_match))
        self._scan_timer = asyncio.ensure_future(asyncio.sleep(window))
        try:
            done, _ = await asyncio.wait({consumer, self._scan_timer}, return_when=asyncio.FIRST_COMPLETED)
            if consumer in done:
                consumer.result()
            else:
                log(self, "Scan window elapsed", "DEBUG")
        finally:
            consumer.cancel()
            self._cancel_scan_timer()
            await self._stop_scan()

        return collector

    async def _consume_discoveries(self, events, collector, stop_on_match):
        while True:
            device, error = await events.get()
            if error is not None:
                raise ScanError(f"Scan error: {error}")
            if collector.offer(device):
                log(self, f"Found matching device {device.id} '{device.display_name}'", "INFO")
                if stop_on_match:
                    return device

    # ------------------------------------------------------------------
    # Cleanup and reset
    # ------------------------------------------------------------------

    async def _check_power(self):
        try:
            state = await self.stack.driver.power_state()
        except Exception as e:
            log(self, f"Could not read radio power state: {e}", "WARNING")
            state = PowerState.UNKNOWN

        log(self, f"Radio state: {state.value}", "DEBUG")
        if state not in (PowerState.POWERED_ON, PowerState.UNKNOWN):
            raise RadioPoweredOff(state.value)

    def _cancel_scan_timer(self):
        if self._scan_timer is not None:
            self._scan_timer.cancel()
            self._scan_timer = None

    async def _stop_scan(self):
        driver = self.stack.driver
        if not driver.is_scanning:
            return
        try:
            await driver.stop_scan()
        except Exception as e:
            log(self, f"Error stopping scan: {type(e).__name__}: {e}", "WARNING")

    async def _release_connection(self):
        handle = self.stack.connection
        self.stack.connection = None
        if handle is not None:
            await self.connections.disconnect(handle)

    async def _light_cleanup(self):
        await self._stop_scan()
        self._cancel_scan_timer()
        await self._release_connection()

    async def _full_reset(self, clear_cache=False):
        await self._light_cleanup()
        if clear_cache:
            self.cache.clear()
        await self.stack.reset_stack()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _snapshot(route):
        # Route and GeoPoint can be constructed without validation
        points = route.points if isinstance(route, Route) else route
        return build_route(points, for_sending=True)

    def _notify(self, success, message):
        if self.on_result is None:
            return
        try:
            self.on_result(success, message)
        except Exception as e:
            log(self, f"Error in result callback: {type(e).__name__}: {e}", "ERROR")

    def __str__(self):
        return f"WaypointLink[{self.name}]"

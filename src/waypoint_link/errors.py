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
Error types raised by the waypoint transmission engine.

Every error carries a ``stage`` naming the part of the send operation that
failed, used to build the single user-facing notification for a failed send.
"""


class WaypointLinkError(Exception):
    """Base class for all waypoint-link errors."""

    stage = "operation"

    def describe(self):
        """Human-readable one-line description, prefixed with the failing stage."""
        return f"{self.stage}: {self}"


class InvalidCoordinate(WaypointLinkError, ValueError):
    stage = "validation"

    def __init__(self, index, field, value):
        self.index = index
        self.field = field
        self.value = value
        super().__init__(f"Invalid waypoint {index + 1} {field}: {value!r}")


class InsufficientWaypoints(WaypointLinkError, ValueError):
    stage = "validation"

    def __init__(self, count, minimum=2):
        self.count = count
        self.minimum = minimum
        super().__init__(f"Add at least {minimum} waypoints (source and destination), got {count}")


class OperationInProgress(WaypointLinkError):
    stage = "guard"

    def __init__(self):
        super().__init__("Another radio operation is in progress, wait for it to complete")


class RadioPoweredOff(WaypointLinkError):
    stage = "radio"

    def __init__(self, state):
        self.state = state
        super().__init__(f"Bluetooth is not powered on (state: {state})")


class ScanError(WaypointLinkError):
    stage = "scan"


class NoDeviceFound(WaypointLinkError):
    stage = "scan"

    def __init__(self, window):
        self.window = window
        super().__init__(f"No BLE devices found within {window:.1f}s, make sure the receiver is powered on and advertising")


class ConnectionFailed(WaypointLinkError):
    stage = "connect"

    def __init__(self, device_id, attempts, last_error):
        self.device_id = device_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Could not connect to {device_id} after {attempts} attempt(s): "
            f"{type(last_error).__name__}: {last_error}"
        )


class NoWritableCharacteristic(WaypointLinkError):
    stage = "discover"

    def __init__(self, device_id):
        self.device_id = device_id
        super().__init__(f"No writable characteristic found on {device_id}")


class ChunkWriteFailed(WaypointLinkError):
    stage = "transmit"

    def __init__(self, index, total, cause):
        self.index = index
        self.total = total
        self.cause = cause
        super().__init__(f"Failed to send chunk {index + 1}/{total}: {type(cause).__name__}: {cause}")

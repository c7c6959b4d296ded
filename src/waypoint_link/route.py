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
Route model and wire payload format.

A route is an ordered sequence of points: index 0 is the source, the last
point is the destination, everything in between is an intermediate waypoint.

Wire format (what the receiver firmware parses)::

    WP1:<lat>,<lon>;WP2:<lat>,<lon>;...;WPn:<lat>,<lon>

Coordinates are written using the ECMAScript Number-to-String rule (shortest
round-trip digits, no trailing ".0", exponent form below 1e-6). The paired
firmware was built against a client that formats numbers this way, so the
same text must be produced here. The wire string is base64-encoded once to
form the logical payload handed to the chunked transport.
"""

import base64
import math
from dataclasses import dataclass
from decimal import Decimal

from .errors import InvalidCoordinate, InsufficientWaypoints

# Same equatorial radius geolib uses for getDistance()
EARTH_RADIUS_M = 6378137

MIN_SEND_WAYPOINTS = 2


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees."""

    latitude: float
    longitude: float


@dataclass(frozen=True)
class Route:
    """Immutable, validated snapshot of the waypoint list."""

    points: tuple = ()

    def __len__(self):
        return len(self.points)

    def __iter__(self):
        return iter(self.points)

    def __getitem__(self, index):
        return self.points[index]

    def label(self, index):
        """Display label for the point at ``index``."""
        if index == 0:
            return "Source"
        if index == len(self.points) - 1:
            return "Destination"
        return f"Waypoint {index + 1}"

    def describe(self):
        """Multi-line route summary with 6-decimal coordinates and total distance."""
        lines = [f"{self.label(i)}: {p.latitude:.6f}, {p.longitude:.6f}" for i, p in enumerate(self.points)]
        lines.append("")
        lines.append(f"Total Distance: {total_distance(self):.2f} km")
        return "\n".join(lines)


def _coerce_point(point):
    if isinstance(point, GeoPoint):
        return point.latitude, point.longitude
    if isinstance(point, dict):
        return point.get("latitude"), point.get("longitude")
    try:
        lat, lon = point
    except (TypeError, ValueError):
        return None, None
    return lat, lon


def _validate_component(index, field, value, bound):
    # bool is an int subclass but never a coordinate
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidCoordinate(index, field, value)
    if math.isnan(value) or value < -bound or value > bound:
        raise InvalidCoordinate(index, field, value)
    return float(value)


def build_route(points, for_sending=False):
    """
    Validate ``points`` and build an immutable Route.

    Args:
        points: Iterable of GeoPoint, (lat, lon) pairs, or mappings with
                "latitude"/"longitude" keys
        for_sending: Enforce the two-point minimum required for transmission

    Raises:
        InvalidCoordinate: A point is non-numeric or outside its bounds
        InsufficientWaypoints: ``for_sending`` and fewer than two points
    """
    validated = []
    for index, point in enumerate(points):
        lat, lon = _coerce_point(point)
        lat = _validate_component(index, "latitude", lat, 90)
        lon = _validate_component(index, "longitude", lon, 180)
        validated.append(GeoPoint(lat, lon))

    if for_sending and len(validated) < MIN_SEND_WAYPOINTS:
        raise InsufficientWaypoints(len(validated), MIN_SEND_WAYPOINTS)

    return Route(tuple(validated))


def format_coordinate(value):
    """Format a number the way ECMAScript's Number.prototype.toString() does."""
    if value == 0:
        return "0"
    if math.isinf(value) or math.isnan(value):
        raise ValueError(f"Cannot format non-finite coordinate {value!r}")

    sign = "-" if value < 0 else ""
    # repr() yields the shortest round-trip digit string, same as ECMAScript
    dec = Decimal(repr(abs(float(value)))).normalize()
    _, digit_tuple, exponent = dec.as_tuple()
    digits = "".join(str(d) for d in digit_tuple)
    k = len(digits)
    n = k + exponent  # value == 0.d1d2...dk * 10**n

    if k <= n <= 21:
        text = digits + "0" * (n - k)
    elif 0 < n <= 21:
        text = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        text = "0." + "0" * (-n) + digits
    else:
        e = n - 1
        mantissa = digits[0] + ("." + digits[1:] if k > 1 else "")
        text = f"{mantissa}e{'+' if e > 0 else '-'}{abs(e)}"

    return sign + text


def serialize(route):
    """Canonical wire string for ``route``; also the cache equality key."""
    return ";".join(
        f"WP{index}:{format_coordinate(p.latitude)},{format_coordinate(p.longitude)}"
        for index, p in enumerate(route, start=1)
    )


def encode_payload(route):
    """Base64 payload (str) of the serialized route."""
    return base64.b64encode(serialize(route).encode("utf-8")).decode("ascii")


def parse_route_string(wire):
    """
    Parse a wire string back into a Route.

    Raises:
        ValueError: Malformed entry or waypoints out of order
    """
    points = []
    if not wire:
        return Route()

    for expected, entry in enumerate(wire.split(";"), start=1):
        tag, sep, coords = entry.partition(":")
        if not sep or tag != f"WP{expected}":
            raise ValueError(f"Malformed waypoint entry {entry!r} (expected WP{expected})")
        lat, sep, lon = coords.partition(",")
        if not sep:
            raise ValueError(f"Malformed coordinates in {entry!r}")
        points.append((float(lat), float(lon)))

    return build_route(points)


def total_distance(route):
    """Great-circle length of the route in kilometres, rounded for display."""
    if len(route) < 2:
        return 0.0

    total = 0.0
    for a, b in zip(route.points, route.points[1:]):
        lat1 = math.radians(a.latitude)
        lat2 = math.radians(b.latitude)
        dlat = lat2 - lat1
        dlon = math.radians(b.longitude - a.longitude)

        h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
        total += 2 * EARTH_RADIUS_M * math.asin(math.sqrt(h))

    return round(total / 1000, 2)

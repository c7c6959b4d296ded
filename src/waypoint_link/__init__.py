"""
waypoint-link: deliver GPS waypoint routes to a BLE receiver.

Typical use::

    from waypoint_link import WaypointLink

    link = WaypointLink(on_result=lambda ok, msg: print(ok, msg))
    await link.send_route([(37.78825, -122.4324), (37.789, -122.4325)])
"""

from .chunked_transport import ChunkedTransport, frame_payload, reassemble_frames
from .config import LinkConfig
from .connection_manager import ConnectionHandle, ConnectionManager
from .device_matcher import DeviceMatcher, ScanCollector
from .errors import (
    ChunkWriteFailed,
    ConnectionFailed,
    InsufficientWaypoints,
    InvalidCoordinate,
    NoDeviceFound,
    NoWritableCharacteristic,
    OperationInProgress,
    RadioPoweredOff,
    ScanError,
    WaypointLinkError,
)
from .radio_driver import (
    CharacteristicRef,
    DeviceDescriptor,
    PowerState,
    RadioDriver,
    RadioStackHandle,
    ServiceInfo,
)
from .route import (
    GeoPoint,
    Route,
    build_route,
    encode_payload,
    format_coordinate,
    parse_route_string,
    serialize,
    total_distance,
)
from .session import LinkState, OperationGuard, SendResult, SessionCache, WaypointLink
from .waypoints import WaypointList

__version__ = "0.1.0"

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
LinkConfig - configuration for the waypoint transmission engine

Configuration is a plain dictionary or a ConfigObj section, read with
``c.get(key, default)``. Values coming from a config file are strings, so
numbers and booleans are coerced here; anything that does not parse is
logged and replaced with the default.

Example config file::

    [waypoint_link]
      name = rover
      service_uuid = 12345678-1234-1234-1234-1234567890ab
      characteristic_uuid = abcd1234-abcd-1234-abcd-1234567890ab
      device_name_patterns = lorav32, lora-v32, lora_v32
      scan_timeout = 8.0
      max_retries = 3
"""

from RNS.vendor.configobj import ConfigObj

from .log import log


class LinkConfig:
    """Settings for device matching, retry policy, framing and settle timing."""

    # Target peripheral identifiers (paired receiver firmware)
    SERVICE_UUID = "12345678-1234-1234-1234-1234567890ab"
    CHARACTERISTIC_UUID = "abcd1234-abcd-1234-abcd-1234567890ab"
    DEVICE_NAME_PATTERNS = ("lorav32", "lora-v32", "lora_v32")

    # Discovery and connection settings (seconds)
    SCAN_TIMEOUT = 8.0
    DEBUG_SCAN_WINDOW = 5.0
    CONNECT_TIMEOUT = 10.0
    RETRY_DELAY = 2.0
    MAX_RETRIES = 3
    REQUEST_MTU = 128

    # Chunked transport
    CHUNK_SIZE = 20
    CHUNK_DELAY = 0.05

    # Settle intervals (seconds)
    DISCONNECT_SETTLE = 0.2
    DESTROY_SETTLE = 1.0
    CREATE_SETTLE = 0.5
    SCAN_SETTLE = 0.5

    SECTION = "waypoint_link"

    def __init__(self, configuration=None):
        c = configuration if configuration is not None else {}
        self.name = c.get("name", "default")

        self.service_uuid = str(c.get("service_uuid", LinkConfig.SERVICE_UUID)).lower()
        self.characteristic_uuid = str(c.get("characteristic_uuid", LinkConfig.CHARACTERISTIC_UUID)).lower()
        self.device_name_patterns = self._get_patterns(c.get("device_name_patterns", LinkConfig.DEVICE_NAME_PATTERNS))

        self.scan_timeout = self._get_float(c, "scan_timeout", LinkConfig.SCAN_TIMEOUT)
        self.debug_scan_window = self._get_float(c, "debug_scan_window", LinkConfig.DEBUG_SCAN_WINDOW)
        self.connect_timeout = self._get_float(c, "connect_timeout", LinkConfig.CONNECT_TIMEOUT)
        self.retry_delay = self._get_float(c, "retry_delay", LinkConfig.RETRY_DELAY)
        self.max_retries = self._get_int(c, "max_retries", LinkConfig.MAX_RETRIES)
        self.request_mtu = self._get_int(c, "request_mtu", LinkConfig.REQUEST_MTU)

        self.chunk_size = self._get_int(c, "chunk_size", LinkConfig.CHUNK_SIZE)
        if self.chunk_size < 1:
            log(self, f"Invalid chunk_size {self.chunk_size}, using {LinkConfig.CHUNK_SIZE}", "WARNING")
            self.chunk_size = LinkConfig.CHUNK_SIZE
        self.chunk_delay = self._get_float(c, "chunk_delay", LinkConfig.CHUNK_DELAY)

        self.disconnect_settle = self._get_float(c, "disconnect_settle", LinkConfig.DISCONNECT_SETTLE)
        self.destroy_settle = self._get_float(c, "destroy_settle", LinkConfig.DESTROY_SETTLE)
        self.create_settle = self._get_float(c, "create_settle", LinkConfig.CREATE_SETTLE)
        self.scan_settle = self._get_float(c, "scan_settle", LinkConfig.SCAN_SETTLE)

        # Duplicate advertisements are filtered by default
        self.allow_duplicates = self._get_bool(c, "allow_duplicates", False)

    @classmethod
    def from_file(cls, path):
        """
        Load configuration from a ConfigObj (INI-style) file.

        Settings are read from the ``[waypoint_link]`` section; a file without
        that section is read at the top level.
        """
        c = ConfigObj(path)
        if cls.SECTION in c:
            return cls(c[cls.SECTION])
        return cls(c)

    @staticmethod
    def _get_patterns(value):
        # ConfigObj turns "a, b, c" into a list already; plain strings are split here
        if isinstance(value, str):
            value = value.split(",")
        return tuple(p.strip().lower() for p in value if p and p.strip())

    def _get_float(self, c, key, default):
        value = c.get(key, default)
        try:
            value = float(value)
        except (TypeError, ValueError):
            log(self, f"Invalid {key} '{value}', using {default}", "WARNING")
            return default
        if value < 0:
            log(self, f"Negative {key} {value}, using {default}", "WARNING")
            return default
        return value

    def _get_int(self, c, key, default):
        value = c.get(key, default)
        try:
            value = int(value)
        except (TypeError, ValueError):
            log(self, f"Invalid {key} '{value}', using {default}", "WARNING")
            return default
        if value < 0:
            log(self, f"Negative {key} {value}, using {default}", "WARNING")
            return default
        return value

    @staticmethod
    def _get_bool(c, key, default):
        value = c.get(key, default)
        # Convert string "yes"/"no" to boolean
        if isinstance(value, str):
            return value.lower() in ["yes", "true", "1"]
        return bool(value)

    def __str__(self):
        return f"LinkConfig[{self.name}]"

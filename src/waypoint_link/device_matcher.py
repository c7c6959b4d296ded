"""
Device matching for discovery.

A discovered peripheral is an acceptable target when its advertised name
contains one of the configured name fragments, or when it advertises the
receiver's service UUID. Matching is first-match-wins: the scan stops on the
first acceptable device, it never waits around for a "better" one.
"""

from .log import log


class DeviceMatcher:
    """Classifies DeviceDescriptors as acceptable waypoint receivers."""

    def __init__(self, name_patterns, service_id):
        """
        Args:
            name_patterns: Name fragments, matched case-insensitively
            service_id: Target service UUID, matched case-insensitively
        """
        self.name_patterns = tuple(p.lower() for p in name_patterns)
        self.service_id = service_id.lower()

    def matches_name(self, device):
        name = (device.display_name or "").lower()
        return any(pattern in name for pattern in self.name_patterns)

    def matches_service(self, device):
        return any(sid.lower() == self.service_id for sid in device.advertised_service_ids)

    def is_acceptable(self, device):
        name_match = self.matches_name(device)
        service_match = self.matches_service(device)
        if name_match or service_match:
            log(self, f"Matched {device.id} '{device.display_name}' (name match: {name_match}, service match: {service_match})", "DEBUG")
            return True

        log(self, f"Skipped {device.id} '{device.display_name}' services={sorted(device.advertised_service_ids)}", "EXTREME")
        return False

    def __str__(self):
        return "DeviceMatcher"


class ScanCollector:
    """
    Tracks devices seen during one scan window.

    Remembers every unique device in arrival order (for the timeout fallback)
    and the first acceptable one.
    """

    def __init__(self, matcher):
        self.matcher = matcher
        self.seen = []
        self._seen_ids = set()
        self.match = None

    def offer(self, device):
        """
        Record ``device``; return True if it is the first acceptable match.

        Devices already seen in this window are ignored.
        """
        if device is None or device.id in self._seen_ids:
            return False
        self._seen_ids.add(device.id)
        self.seen.append(device)

        if self.match is None and self.matcher.is_acceptable(device):
            self.match = device
            return True
        return False

    @property
    def fallback(self):
        """First device seen of any kind, or None."""
        return self.seen[0] if self.seen else None

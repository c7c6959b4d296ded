"""
Editable waypoint list bound to a WaypointLink engine.

Every edit resets the engine's radio stack: the route the receiver holds no
longer matches the list, so the cached peripheral must not be reused.
"""

from .log import log
from .route import build_route, total_distance


class WaypointList:
    """Mutable list of waypoints; the first is the source, the last the destination."""

    def __init__(self, engine, points=()):
        self.engine = engine
        self.points = list(build_route(points).points)

    async def add(self, latitude, longitude):
        point = build_route([(latitude, longitude)]).points[0]
        self.points.append(point)
        log(self, f"Added waypoint {len(self.points)} at {latitude}, {longitude}", "DEBUG")
        await self._changed()
        return point

    async def remove_last(self):
        if not self.points:
            return None
        point = self.points.pop()
        log(self, f"Removed waypoint {len(self.points) + 1}", "DEBUG")
        await self._changed()
        return point

    async def clear(self):
        self.points = []
        log(self, "Cleared all waypoints", "DEBUG")
        await self._changed()

    def route(self, for_sending=False):
        return build_route(self.points, for_sending=for_sending)

    def total_distance(self):
        return total_distance(self.route())

    async def send(self):
        """Send the current list through the engine. See WaypointLink.send_route()."""
        return await self.engine.send_route(self.points)

    async def _changed(self):
        await self.engine.reset_radio_stack()

    def __len__(self):
        return len(self.points)

    def __iter__(self):
        return iter(self.points)

    def __str__(self):
        return f"WaypointList[{len(self.points)}]"


"""Route geometry: cumulative arc length over a polyline."""

import json
from bisect import bisect_right
from pathlib import Path
from typing import Iterable, Sequence

import gpxpy

from .errors import InvalidRoute
from .geo import point_bearing, point_distance
from .models import Progress, RoutePoint


class Route:
    """An ordered, immutable polyline with precomputed cumulative distances.

    cumulative[0] is 0 and cumulative[i] is the distance walked along the
    route from the first point to point i. A single point is a legal route
    with zero length.
    """

    def __init__(self, points: Iterable[RoutePoint]):
        self._points: tuple[RoutePoint, ...] = tuple(points)
        if not self._points:
            raise InvalidRoute("Route needs at least one point")

        cumulative = [0.0]
        for a, b in zip(self._points, self._points[1:]):
            cumulative.append(cumulative[-1] + point_distance(a, b))
        self._cumulative: tuple[float, ...] = tuple(cumulative)

    @classmethod
    def from_pairs(cls, pairs: Iterable[Sequence[float]]) -> "Route":
        return cls(RoutePoint.from_pair(p) for p in pairs)

    def to_pairs(self) -> list[list[float]]:
        return [p.to_pair() for p in self._points]

    @property
    def points(self) -> tuple[RoutePoint, ...]:
        return self._points

    @property
    def cumulative(self) -> tuple[float, ...]:
        return self._cumulative

    @property
    def total_distance(self) -> float:
        return self._cumulative[-1]

    @property
    def last_index(self) -> int:
        return len(self._points) - 1

    def __len__(self) -> int:
        return len(self._points)

    def __getitem__(self, index: int) -> RoutePoint:
        return self._points[index]

    def __iter__(self):
        return iter(self._points)

    def require_motion(self):
        """Raise InvalidRoute unless the route has at least one segment"""
        if len(self._points) < 2:
            raise InvalidRoute(
                f"Route needs at least 2 points to walk, got {len(self._points)}"
            )

    def segment_length(self, index: int) -> float:
        return self._cumulative[index + 1] - self._cumulative[index]

    def segment_bearing(self, index: int) -> float:
        if index + 1 >= len(self._points):
            return 0.0
        return point_bearing(self._points[index], self._points[index + 1])

    def initial_bearing(self) -> float:
        return self.segment_bearing(0)

    def distance_from_start(self, index: int) -> float:
        return self._cumulative[index]

    def distance_between(self, from_index: int, to_index: int) -> float:
        return self._cumulative[to_index] - self._cumulative[from_index]

    def locate(self, distance: float) -> Progress:
        """Cursor for a distance along the route, clamped to the route's ends"""
        if len(self._points) < 2 or distance <= 0:
            return Progress(0, 0.0, self.initial_bearing())
        if distance >= self.total_distance:
            last_segment = self.last_index - 1
            return Progress(self.last_index, 0.0, self.segment_bearing(last_segment))

        index = bisect_right(self._cumulative, distance) - 1
        index = min(index, self.last_index - 1)
        offset = distance - self._cumulative[index]
        return Progress(index, offset, self.segment_bearing(index))


def load_route(path: str) -> Route:
    """Load a route from a GPX (track or route points) or JSON file.

    JSON may be a bare list of [lat, lon] pairs or {"lat", "lon"} objects, or
    an object holding such a list under a "route" key.
    """
    file_path = Path(path)
    if file_path.suffix.lower() == ".gpx":
        with open(file_path) as f:
            gpx = gpxpy.parse(f)
        points = [
            RoutePoint(p.latitude, p.longitude)
            for track in gpx.tracks
            for segment in track.segments
            for p in segment.points
        ]
        if not points:
            points = [
                RoutePoint(p.latitude, p.longitude)
                for route in gpx.routes
                for p in route.points
            ]
    else:
        with open(file_path) as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = data.get("route", [])
        points = [
            RoutePoint.from_dict(p) if isinstance(p, dict) else RoutePoint.from_pair(p)
            for p in data
        ]

    if not points:
        raise InvalidRoute(f"No route points found in {path}")
    return Route(points)

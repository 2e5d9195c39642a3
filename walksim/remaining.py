"""Remaining distance and time for an arbitrary position near a route."""

from typing import Iterable, Optional

from .config import CONFIG
from .geo import point_distance
from .models import RoutePoint
from .route import Route


def _axis_fraction(value: float, start: float, end: float) -> Optional[float]:
    """Fraction of the way from start to end along one axis, None if the axis is degenerate"""
    delta = end - start
    if delta == 0:
        return None
    return (value - start) / delta


def project_onto_route(route: Route, point: RoutePoint,
                       tolerance: Optional[float] = None,
                       from_segment: int = 0) -> Optional[tuple[int, float]]:
    """Find the first segment, at or after from_segment, that the point lies on.

    The point matches a segment when its latitude and longitude fractions
    along the segment agree (within tolerance), or when one axis is
    degenerate and the other fraction governs, and the fraction is in [0, 1].

    Returns (segment_index, fraction) or None when the point is off-route.
    """
    if tolerance is None:
        tolerance = CONFIG["projection_tolerance"]

    points = route.points
    for i in range(max(0, from_segment), len(points) - 1):
        start, end = points[i], points[i + 1]
        f_lat = _axis_fraction(point.lat, start.lat, end.lat)
        f_lon = _axis_fraction(point.lon, start.lon, end.lon)

        if f_lat is None and f_lon is None:
            continue  # zero-length segment, the nearest-vertex fallback covers it
        if f_lat is None:
            fraction = f_lon
        elif f_lon is None:
            fraction = f_lat
        elif abs(f_lat - f_lon) > tolerance:
            continue
        else:
            fraction = f_lat

        if 0.0 <= fraction <= 1.0:
            return i, fraction
    return None


def nearest_vertex(route: Route, point: RoutePoint, from_index: int = 0) -> int:
    """Index of the route vertex closest to point, at or after from_index (first one wins on ties)"""
    from_index = min(max(0, from_index), route.last_index)
    best_index = from_index
    best_distance = float("inf")
    for i in range(from_index, len(route)):
        d = point_distance(route[i], point)
        if d < best_distance:
            best_distance = d
            best_index = i
    return best_index


def travelled_distance(route: Route, point: RoutePoint,
                       tolerance: Optional[float] = None,
                       from_segment: int = 0) -> float:
    """Distance along the route from its start to point, in meters.

    On-route points are projected onto their segment; off-route points
    (GPS noise, interpolation rounding) fall back to the nearest vertex.
    Segments before from_segment are already behind the walker and are
    not considered, so a route that passes the same place twice resolves
    to the right leg.
    """
    match = project_onto_route(route, point, tolerance, from_segment)
    if match is not None:
        index, fraction = match
        if fraction >= 1.0:
            return route.distance_from_start(index + 1)
        return route.distance_from_start(index) + fraction * route.segment_length(index)
    return route.distance_from_start(nearest_vertex(route, point, from_segment))


def remaining_distance(route: Route, point: RoutePoint,
                       tolerance: Optional[float] = None,
                       from_segment: int = 0) -> float:
    """Distance left to walk along the route from point to its end, in meters"""
    travelled = travelled_distance(route, point, tolerance, from_segment)
    return max(0.0, route.total_distance - travelled)


def follow_path(route: Route, path: Iterable[RoutePoint],
                tolerance: Optional[float] = None) -> float:
    """Distance along the route of the last point of a walked path.

    Each point is matched no earlier than the segment the previous one
    landed on. An empty path is at the start of the route.
    """
    segment = 0
    travelled = 0.0
    for point in path:
        travelled = travelled_distance(route, point, tolerance, segment)
        segment = route.locate(travelled).segment_index
    return travelled


def estimated_seconds(speed_kmh: float, distance_meters: float) -> Optional[int]:
    """Whole seconds to cover distance at speed, None when speed is not positive"""
    if distance_meters <= 0:
        return 0
    speed_ms = speed_kmh * 1000 / 3600
    if speed_ms <= 0:
        return None
    return int(distance_meters / speed_ms)


def format_estimated_time(speed_kmh: float, distance_meters: float) -> str:
    """Human readable time left, e.g. '12 sec', '4m 10s', '1h 5min', '2d 3h'"""
    if distance_meters <= 0:
        return "0 sec"
    seconds = estimated_seconds(speed_kmh, distance_meters)
    if seconds is None:
        return "∞"

    if seconds < 60:
        return f"{seconds} sec"
    elif seconds < 3600:
        minutes, secs = divmod(seconds, 60)
        return f"{minutes} min" if secs == 0 else f"{minutes}m {secs}s"
    elif seconds < 86400:
        return f"{seconds // 3600}h {(seconds % 3600) // 60}min"
    elif seconds < 2592000:
        return f"{seconds // 86400}d {(seconds % 86400) // 3600}h"
    elif seconds < 31536000:
        return f"{seconds // 2592000}mo {(seconds % 2592000) // 86400}d"
    else:
        return f"{seconds // 31536000}y {(seconds % 31536000) // 2592000}mo"

"""Interactive map of a walk: the route, what has been walked, and what is left."""

from typing import Optional, Sequence

import folium
from folium import plugins

from .models import RoutePoint
from .remaining import follow_path, format_estimated_time
from .route import Route


def create_walk_map(route: Route, path_history: Sequence[RoutePoint] = (),
                    speed_kmh: Optional[float] = None) -> folium.Map:
    """Create a map with the route, the walked path and start/end/current markers."""
    coords = route.to_pairs()
    lats = [c[0] for c in coords]
    lons = [c[1] for c in coords]
    center = [sum(lats) / len(lats), sum(lons) / len(lons)]

    m = folium.Map(location=center, zoom_start=16, tiles="CartoDB positron")
    folium.TileLayer("OpenStreetMap", name="OpenStreetMap").add_to(m)

    route_layer = folium.FeatureGroup(name="Route", show=True)
    walked_layer = folium.FeatureGroup(name="Walked path", show=True)

    folium.PolyLine(
        coords,
        weight=6,
        color="#3b82f6",
        opacity=0.6,
        popup=folium.Popup(f"Route: {route.total_distance:.0f}m, {len(route)} points", max_width=200)
    ).add_to(route_layer)

    if len(path_history) > 1:
        folium.PolyLine(
            [p.to_pair() for p in path_history],
            weight=4,
            color="#ef4444",
            opacity=0.9,
        ).add_to(walked_layer)

    folium.Marker(
        coords[0],
        popup="Start",
        icon=folium.Icon(color="green", icon="play")
    ).add_to(route_layer)
    folium.Marker(
        coords[-1],
        popup="End",
        icon=folium.Icon(color="red", icon="flag")
    ).add_to(route_layer)

    remaining = route.total_distance
    if path_history:
        current = path_history[-1]
        remaining = max(0.0, route.total_distance - follow_path(route, path_history))
        folium.CircleMarker(
            current.to_pair(),
            radius=8,
            color="white",
            fill=True,
            fill_color="#ef4444",
            fill_opacity=1.0,
            popup=f"Current position ({remaining:.0f}m left)",
        ).add_to(walked_layer)

    route_layer.add_to(m)
    walked_layer.add_to(m)
    folium.LayerControl().add_to(m)

    time_left = format_estimated_time(speed_kmh, remaining) if speed_kmh else "-"
    legend_html = f"""
    <div style="
        position: fixed;
        bottom: 50px;
        left: 50px;
        z-index: 1000;
        background-color: white;
        padding: 10px;
        border-radius: 5px;
        border: 2px solid grey;
        font-family: Arial;
        font-size: 12px;
    ">
        <b>WalkSim</b><br>
        <hr style="margin: 5px 0">
        <div style="display: flex; align-items: center; margin: 3px 0;">
            <div style="width: 30px; height: 4px; background: #3b82f6; margin-right: 5px;"></div>
            Route
        </div>
        <div style="display: flex; align-items: center; margin: 3px 0;">
            <div style="width: 30px; height: 4px; background: #ef4444; margin-right: 5px;"></div>
            Walked
        </div>
        <hr style="margin: 5px 0">
        Total: {route.total_distance / 1000:.2f} km<br>
        Remaining: {remaining / 1000:.2f} km<br>
        Time left: {time_left}
    </div>
    """
    m.get_root().html.add_child(folium.Element(legend_html))
    plugins.Fullscreen().add_to(m)

    if len(coords) > 1:
        m.fit_bounds([[min(lats), min(lons)], [max(lats), max(lons)]])

    return m

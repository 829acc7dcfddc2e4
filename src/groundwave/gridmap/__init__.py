"""Maidenhead grid maps for QSL cards."""

from groundwave.gridmap.maidenhead import (
    LatLng,
    distance_km,
    great_circle_points,
    maidenhead_to_latlng,
)
from groundwave.gridmap.render import (
    MapConfig,
    MapContext,
    Marker,
    Path,
    StaticMapContext,
    calculate_zoom_level,
    create_grid_map,
    create_grid_map_with_distance,
    save_image,
)

__all__ = [
    "LatLng",
    "MapConfig",
    "MapContext",
    "Marker",
    "Path",
    "StaticMapContext",
    "calculate_zoom_level",
    "create_grid_map",
    "create_grid_map_with_distance",
    "distance_km",
    "great_circle_points",
    "maidenhead_to_latlng",
    "save_image",
]

"""Grid-square QSL map rendering.

Draws both stations and the great-circle path between them on slippy-map
tiles, stamps an attribution line and writes a PNG. The canvas, the file
opener and the PNG encoder are injectable so rendering can be tested
without tile downloads.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import BinaryIO, Protocol

import structlog
from PIL import Image, ImageDraw, ImageFont
from staticmap import CircleMarker, Line, StaticMap

from groundwave import __version__
from groundwave.errors import GroundwaveError, MapError
from groundwave.gridmap.maidenhead import (
    LatLng,
    distance_km,
    great_circle_points,
    maidenhead_to_latlng,
)

log = structlog.get_logger()

MIN_ZOOM = 1
MAX_ZOOM = 18
TILE_SIZE = 256
OSM_TILE_URL = "https://tile.openstreetmap.org/{z}/{x}/{y}.png"
OSM_ATTRIBUTION = "Maps and Data (c) openstreetmap.org and contributors, ODbL"


@dataclass
class MapConfig:
    width: int = 800
    height: int = 600
    zoom: int = 4  # 0 selects a zoom that fits both stations
    output_path: str = "grid_map.png"


@dataclass
class Marker:
    position: LatLng
    color: str = "#d62728"
    size: int = 12


@dataclass
class Path:
    points: list[LatLng] = field(default_factory=list)
    color: str = "#1f77b4"
    width: int = 3


MapObject = Marker | Path


class MapContext(Protocol):
    """Canvas the renderer draws on."""

    def set_size(self, width: int, height: int) -> None: ...

    def set_zoom(self, zoom: int) -> None: ...

    def set_center(self, center: LatLng) -> None: ...

    def add_object(self, obj: MapObject) -> None: ...

    def attribution(self) -> str: ...

    def override_attribution(self, attribution: str) -> None: ...

    def render(self) -> Image.Image: ...


class StaticMapContext:
    """MapContext backed by OpenStreetMap tiles via ``staticmap``."""

    def __init__(self, tile_url: str = OSM_TILE_URL) -> None:
        self.tile_url = tile_url
        self.width = 800
        self.height = 600
        self.zoom: int | None = None
        self.center: LatLng | None = None
        self.objects: list[MapObject] = []
        self._attribution = OSM_ATTRIBUTION

    def set_size(self, width: int, height: int) -> None:
        self.width, self.height = width, height

    def set_zoom(self, zoom: int) -> None:
        self.zoom = zoom

    def set_center(self, center: LatLng) -> None:
        self.center = center

    def add_object(self, obj: MapObject) -> None:
        self.objects.append(obj)

    def attribution(self) -> str:
        return self._attribution

    def override_attribution(self, attribution: str) -> None:
        self._attribution = attribution

    def render(self) -> Image.Image:
        canvas = StaticMap(
            self.width,
            self.height,
            url_template=self.tile_url,
            tile_size=TILE_SIZE,
            headers={"User-Agent": f"Groundwave/{__version__}"},
        )
        for obj in self.objects:
            if isinstance(obj, Marker):
                coord = (obj.position.lng, obj.position.lat)
                canvas.add_marker(CircleMarker(coord, "white", obj.size + 4))
                canvas.add_marker(CircleMarker(coord, obj.color, obj.size))
            else:
                coords = [(p.lng, p.lat) for p in obj.points]
                canvas.add_line(Line(coords, obj.color, obj.width))

        center = [self.center.lng, self.center.lat] if self.center else None
        image = canvas.render(zoom=self.zoom, center=center)
        self._draw_attribution(image)
        return image

    def _draw_attribution(self, image: Image.Image) -> None:
        draw = ImageDraw.Draw(image)
        font = ImageFont.load_default()
        left, top, right, bottom = draw.multiline_textbbox((0, 0), self._attribution, font=font)
        pad = 4
        box_w = right - left + 2 * pad
        box_h = bottom - top + 2 * pad
        y = image.height - box_h
        draw.rectangle((0, y, box_w, image.height), fill="white")
        draw.multiline_text((pad, y + pad - top), self._attribution, fill="black", font=font)


def new_map_context() -> MapContext:
    return StaticMapContext()


def _open_for_write(path: str) -> BinaryIO:
    return open(path, "wb")  # noqa: SIM115


def _encode_png(stream: BinaryIO, image: Image.Image) -> None:
    image.save(stream, format="PNG")


def _lat_rad(lat: float) -> float:
    sin = math.sin(lat * math.pi / 180)
    rad_x2 = math.log((1 + sin) / (1 - sin)) / 2
    return max(min(rad_x2, math.pi), -math.pi) / 2


def _axis_zoom(map_px: int, fraction: float) -> int:
    if fraction <= 0:
        return MAX_ZOOM
    return math.floor(math.log2(map_px / TILE_SIZE / fraction))


def calculate_zoom_level(
    min_lat: float, max_lat: float, min_lng: float, max_lng: float, width: int, height: int
) -> int:
    """Largest slippy-map zoom that fits the box, minus one step of margin."""
    lat_fraction = (_lat_rad(max_lat) - _lat_rad(min_lat)) / math.pi
    lng_diff = max_lng - min_lng
    lng_fraction = (lng_diff + 360 if lng_diff < 0 else lng_diff) / 360

    zoom = min(_axis_zoom(height, lat_fraction), _axis_zoom(width, lng_fraction)) - 1
    return max(MIN_ZOOM, min(MAX_ZOOM, zoom))


def save_image(
    image: Image.Image,
    path: str,
    *,
    create_file: Callable[[str], BinaryIO] = _open_for_write,
    encode_png: Callable[[BinaryIO, Image.Image], None] = _encode_png,
) -> None:
    try:
        stream = create_file(path)
    except OSError as e:
        raise MapError(f"failed to create file: {e}") from e

    try:
        encode_png(stream, image)
    except (OSError, ValueError) as e:
        raise MapError(f"failed to encode PNG: {e}") from e
    finally:
        try:
            stream.close()
        except OSError as e:
            log.warning("Closing map file failed", path=path, error=str(e))


def _parse_locators(my_grid: str, their_grid: str) -> tuple[LatLng, LatLng]:
    try:
        mine = maidenhead_to_latlng(my_grid)
    except GroundwaveError as e:
        raise MapError(f"failed to parse my grid locator: {e.message}") from e
    try:
        theirs = maidenhead_to_latlng(their_grid)
    except GroundwaveError as e:
        raise MapError(f"failed to parse their grid locator: {e.message}") from e
    return mine, theirs


def create_grid_map(
    my_grid: str,
    their_grid: str,
    config: MapConfig,
    *,
    context_factory: Callable[[], MapContext] = new_map_context,
    create_file: Callable[[str], BinaryIO] = _open_for_write,
    encode_png: Callable[[BinaryIO, Image.Image], None] = _encode_png,
) -> None:
    """Render a two-station map to ``config.output_path``.

    Raises:
        MapError: on an invalid locator, a render failure or a write failure.
    """
    mine, theirs = _parse_locators(my_grid, their_grid)

    ctx = context_factory()
    ctx.set_size(config.width, config.height)

    min_lat, max_lat = sorted((mine.lat, theirs.lat))
    min_lng, max_lng = sorted((mine.lng, theirs.lng))
    zoom = config.zoom
    if zoom == 0:
        zoom = calculate_zoom_level(min_lat, max_lat, min_lng, max_lng, config.width, config.height)
    ctx.set_zoom(zoom)
    ctx.set_center(LatLng(lat=(min_lat + max_lat) / 2, lng=(min_lng + max_lng) / 2))

    ctx.add_object(Marker(mine, color="#2ca02c"))
    ctx.add_object(Marker(theirs, color="#d62728"))
    ctx.add_object(Path(great_circle_points(mine, theirs)))

    ctx.override_attribution(f"QSL Map: {my_grid} <-> {their_grid}\n{ctx.attribution()}")

    try:
        image = ctx.render()
    except Exception as e:
        raise MapError(f"failed to render map: {e}") from e

    save_image(image, config.output_path, create_file=create_file, encode_png=encode_png)
    log.debug("Grid map written", path=config.output_path, zoom=zoom)


def create_grid_map_with_distance(
    my_grid: str,
    their_grid: str,
    config: MapConfig,
    **kwargs: object,
) -> float:
    """Render the map and return the distance between the stations in km.

    The distance is computed first; when rendering fails the raised
    MapError carries it as ``details["distance_km"]``.
    """
    mine, theirs = _parse_locators(my_grid, their_grid)
    distance = distance_km(mine, theirs)
    try:
        create_grid_map(my_grid, their_grid, config, **kwargs)  # type: ignore[arg-type]
    except MapError as e:
        e.details["distance_km"] = distance
        raise
    return distance

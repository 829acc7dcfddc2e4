"""Tests for Maidenhead conversion and grid map rendering."""

import io

import pytest
from PIL import Image

from groundwave.errors import MapError, ValidationError
from groundwave.gridmap import (
    LatLng,
    MapConfig,
    Marker,
    Path,
    calculate_zoom_level,
    create_grid_map,
    create_grid_map_with_distance,
    distance_km,
    great_circle_points,
    maidenhead_to_latlng,
    save_image,
)


class FakeContext:
    """MapContext that records calls and renders a blank image."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.size: tuple[int, int] | None = None
        self.zoom: int | None = None
        self.center: LatLng | None = None
        self.objects: list = []
        self._attribution = "tiles"

    def set_size(self, width: int, height: int) -> None:
        self.size = (width, height)

    def set_zoom(self, zoom: int) -> None:
        self.zoom = zoom

    def set_center(self, center: LatLng) -> None:
        self.center = center

    def add_object(self, obj) -> None:
        self.objects.append(obj)

    def attribution(self) -> str:
        return self._attribution

    def override_attribution(self, attribution: str) -> None:
        self._attribution = attribution

    def render(self) -> Image.Image:
        if self.fail:
            raise RuntimeError("tile server down")
        return Image.new("RGB", self.size or (1, 1))


class KeptOpen(io.BytesIO):
    def close(self) -> None:
        pass


class TestMaidenhead:
    """Locator to coordinate conversion."""

    def test_field(self) -> None:
        assert maidenhead_to_latlng("JO") == LatLng(lat=55.0, lng=10.0)

    def test_square(self) -> None:
        assert maidenhead_to_latlng("FN31") == LatLng(lat=41.5, lng=-73.0)

    def test_subsquare_is_case_insensitive(self) -> None:
        upper = maidenhead_to_latlng("FN31PR")
        lower = maidenhead_to_latlng("fn31pr")
        assert upper == lower
        assert upper.lat == pytest.approx(41.729, abs=1e-3)
        assert upper.lng == pytest.approx(-72.708, abs=1e-3)

    def test_extended_square_refines_subsquare(self) -> None:
        sub = maidenhead_to_latlng("FN31pr")
        ext = maidenhead_to_latlng("FN31pr55")
        assert ext.lat == pytest.approx(sub.lat, abs=1 / 24)
        assert ext.lng == pytest.approx(sub.lng, abs=2 / 24)

    @pytest.mark.parametrize("locator", ["", "F", "FN3", "FN31p", "SA", "FNA1", "FN31yz", "FN31prab"])
    def test_invalid_locators(self, locator: str) -> None:
        with pytest.raises(ValidationError):
            maidenhead_to_latlng(locator)


class TestGeometry:
    """Distances and great-circle paths."""

    def test_distance_zero(self) -> None:
        p = LatLng(lat=10.0, lng=20.0)
        assert distance_km(p, p) == 0

    def test_quarter_meridian(self) -> None:
        assert distance_km(LatLng(0, 0), LatLng(90, 0)) == pytest.approx(10007.5, abs=0.1)

    def test_path_endpoints(self) -> None:
        a, b = LatLng(51.5, -0.1), LatLng(40.7, -74.0)
        points = great_circle_points(a, b, n=16)
        assert len(points) == 17
        assert points[0].lat == pytest.approx(a.lat)
        assert points[-1].lng == pytest.approx(b.lng)

    def test_path_for_identical_points(self) -> None:
        a = LatLng(1.0, 1.0)
        assert great_circle_points(a, a) == [a, a]


class TestZoom:
    """Auto zoom selection."""

    def test_whole_world_clamps_to_min(self) -> None:
        assert calculate_zoom_level(-80, 80, -170, 170, 256, 256) == 1

    def test_tiny_box_clamps_to_max(self) -> None:
        assert calculate_zoom_level(0, 0.0001, 0, 0.0001, 256, 256) == 18

    def test_mid_zoom(self) -> None:
        assert calculate_zoom_level(0, 10, 0, 10, 800, 600) == 5


class TestCreateGridMap:
    """Rendering through an injected context."""

    def test_draws_both_stations_and_path(self) -> None:
        ctx = FakeContext()
        out = KeptOpen()
        create_grid_map(
            "FN31",
            "JO22",
            MapConfig(zoom=7, output_path="unused.png"),
            context_factory=lambda: ctx,
            create_file=lambda _path: out,
        )

        assert ctx.size == (800, 600)
        assert ctx.zoom == 7
        markers = [o for o in ctx.objects if isinstance(o, Marker)]
        paths = [o for o in ctx.objects if isinstance(o, Path)]
        assert len(markers) == 2
        assert len(paths) == 1
        assert ctx.attribution() == "QSL Map: FN31 <-> JO22\ntiles"
        assert out.getvalue().startswith(b"\x89PNG")

    def test_zero_zoom_is_computed(self) -> None:
        ctx = FakeContext()
        create_grid_map(
            "FN31",
            "JO22",
            MapConfig(zoom=0),
            context_factory=lambda: ctx,
            create_file=lambda _path: KeptOpen(),
        )
        assert ctx.zoom is not None
        assert 1 <= ctx.zoom <= 18

    def test_bad_locator(self) -> None:
        with pytest.raises(MapError, match="their grid locator"):
            create_grid_map("FN31", "ZZ99", MapConfig(), context_factory=FakeContext)

    def test_render_failure(self) -> None:
        with pytest.raises(MapError, match="failed to render map"):
            create_grid_map(
                "FN31", "JO22", MapConfig(), context_factory=lambda: FakeContext(fail=True)
            )

    def test_distance_survives_render_failure(self) -> None:
        with pytest.raises(MapError) as exc_info:
            create_grid_map_with_distance(
                "FN31", "JO22", MapConfig(), context_factory=lambda: FakeContext(fail=True)
            )
        expected = distance_km(maidenhead_to_latlng("FN31"), maidenhead_to_latlng("JO22"))
        assert exc_info.value.details["distance_km"] == pytest.approx(expected)

    def test_returns_distance(self) -> None:
        distance = create_grid_map_with_distance(
            "FN31",
            "FN31",
            MapConfig(),
            context_factory=FakeContext,
            create_file=lambda _path: KeptOpen(),
        )
        assert distance == 0


class TestSaveImage:
    """PNG output errors."""

    def test_create_failure(self) -> None:
        def refuse(_path: str):
            raise PermissionError("read-only")

        with pytest.raises(MapError, match="failed to create file"):
            save_image(Image.new("RGB", (2, 2)), "x.png", create_file=refuse)

    def test_encode_failure_closes_stream(self) -> None:
        stream = io.BytesIO()

        def broken(_stream, _image) -> None:
            raise OSError("disk full")

        with pytest.raises(MapError, match="failed to encode PNG"):
            save_image(
                Image.new("RGB", (2, 2)),
                "x.png",
                create_file=lambda _path: stream,
                encode_png=broken,
            )
        assert stream.closed

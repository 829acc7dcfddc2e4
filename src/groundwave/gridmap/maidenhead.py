"""Maidenhead locator conversion and great-circle geometry."""

from __future__ import annotations

import math
from dataclasses import dataclass

from groundwave.errors import ValidationError

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float


def maidenhead_to_latlng(locator: str) -> LatLng:
    """Centre of a 2, 4, 6 or 8 character locator such as ``FN31pr``.

    Raises:
        ValidationError: for a wrong length or a character outside the
            range allowed at its position.
    """
    loc = locator.strip()
    if len(loc) not in (2, 4, 6, 8):
        raise ValidationError(f"invalid locator length: {locator!r}")

    loc = loc.upper()
    lng = -180.0
    lat = -90.0

    # Field: A-R, 20 x 10 degrees
    a, b = loc[0], loc[1]
    if not ("A" <= a <= "R" and "A" <= b <= "R"):
        raise ValidationError(f"invalid locator field: {locator!r}")
    lng += (ord(a) - ord("A")) * 20.0
    lat += (ord(b) - ord("A")) * 10.0
    lng_size, lat_size = 20.0, 10.0

    if len(loc) >= 4:
        c, d = loc[2], loc[3]
        if not (c.isdigit() and d.isdigit()):
            raise ValidationError(f"invalid locator square: {locator!r}")
        lng += int(c) * 2.0
        lat += int(d) * 1.0
        lng_size, lat_size = 2.0, 1.0

    if len(loc) >= 6:
        e, f = loc[4], loc[5]
        if not ("A" <= e <= "X" and "A" <= f <= "X"):
            raise ValidationError(f"invalid locator subsquare: {locator!r}")
        lng += (ord(e) - ord("A")) * (2.0 / 24)
        lat += (ord(f) - ord("A")) * (1.0 / 24)
        lng_size, lat_size = 2.0 / 24, 1.0 / 24

    if len(loc) == 8:
        g, h = loc[6], loc[7]
        if not (g.isdigit() and h.isdigit()):
            raise ValidationError(f"invalid locator extended square: {locator!r}")
        lng += int(g) * (lng_size / 10)
        lat += int(h) * (lat_size / 10)
        lng_size, lat_size = lng_size / 10, lat_size / 10

    return LatLng(lat=lat + lat_size / 2, lng=lng + lng_size / 2)


def distance_km(a: LatLng, b: LatLng) -> float:
    """Haversine distance on a spherical Earth."""
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlng = math.radians(b.lng - a.lng)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def great_circle_points(a: LatLng, b: LatLng, n: int = 64) -> list[LatLng]:
    """``n`` + 1 points along the great circle from ``a`` to ``b``."""
    lat1, lng1 = math.radians(a.lat), math.radians(a.lng)
    lat2, lng2 = math.radians(b.lat), math.radians(b.lng)

    d = 2 * math.asin(
        min(
            1.0,
            math.sqrt(
                math.sin((lat2 - lat1) / 2) ** 2
                + math.cos(lat1) * math.cos(lat2) * math.sin((lng2 - lng1) / 2) ** 2
            ),
        )
    )
    if d == 0 or n < 1:
        return [a, b]

    points = []
    for i in range(n + 1):
        f = i / n
        x_a = math.sin((1 - f) * d) / math.sin(d)
        x_b = math.sin(f * d) / math.sin(d)
        x = x_a * math.cos(lat1) * math.cos(lng1) + x_b * math.cos(lat2) * math.cos(lng2)
        y = x_a * math.cos(lat1) * math.sin(lng1) + x_b * math.cos(lat2) * math.sin(lng2)
        z = x_a * math.sin(lat1) + x_b * math.sin(lat2)
        lat = math.atan2(z, math.sqrt(x * x + y * y))
        lng = math.atan2(y, x)
        points.append(LatLng(lat=math.degrees(lat), lng=math.degrees(lng)))
    return points

from __future__ import annotations

import math
from typing import Tuple

from parcel_tiles.parcels.geometry import MAX_LAT, mercator_to_lonlat
from parcel_tiles.parcels.models import BBox


ORIGIN_SHIFT = 20037508.342789244
WORLD_SIZE = 2 * ORIGIN_SHIFT


def validate_tile(z: int, x: int, y: int, max_zoom: int = 22) -> None:
    if z < 0 or z > max_zoom:
        raise ValueError(f"Zoom level must be between 0 and {max_zoom}")
    n = 2 ** z
    if not (0 <= x < n and 0 <= y < n):
        raise ValueError(f"Tile x/y must be between 0 and {n - 1} at zoom {z}")


def tile_envelope(z: int, x: int, y: int) -> BBox:
    """Web Mercator bounds (minx, miny, maxx, maxy) of a slippy-map tile."""
    size = WORLD_SIZE / (2 ** z)
    minx = -ORIGIN_SHIFT + x * size
    maxy = ORIGIN_SHIFT - y * size
    return (minx, maxy - size, minx + size, maxy)


def buffered_envelope(z: int, x: int, y: int, buffer: int, extent: int) -> BBox:
    minx, miny, maxx, maxy = tile_envelope(z, x, y)
    pad = (maxx - minx) * float(buffer) / float(extent)
    return (minx - pad, miny - pad, maxx + pad, maxy + pad)


def envelope_to_lonlat(envelope: BBox) -> BBox:
    minx, miny, maxx, maxy = envelope
    minx = max(minx, -ORIGIN_SHIFT)
    maxx = min(maxx, ORIGIN_SHIFT)
    miny = max(miny, -ORIGIN_SHIFT)
    maxy = min(maxy, ORIGIN_SHIFT)
    min_lon, min_lat = mercator_to_lonlat(minx, miny)
    max_lon, max_lat = mercator_to_lonlat(maxx, maxy)
    return (min_lon, min_lat, max_lon, max_lat)


def lonlat_to_tile(lon: float, lat: float, z: int) -> Tuple[int, int]:
    lat = max(min(float(lat), MAX_LAT), -MAX_LAT)
    n = 2 ** z
    x = int((float(lon) + 180.0) / 360.0 * n)
    lat_rad = math.radians(lat)
    y = int((1.0 - math.asinh(math.tan(lat_rad)) / math.pi) / 2.0 * n)
    return min(max(x, 0), n - 1), min(max(y, 0), n - 1)

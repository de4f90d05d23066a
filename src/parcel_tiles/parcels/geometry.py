from __future__ import annotations

import json
import math
import threading
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np
import shapely
from pyproj import Transformer
from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon, Polygon, mapping, shape
from shapely.geometry.base import BaseGeometry
from shapely.validation import explain_validity

from parcel_tiles.errors import InvalidGeometry
from parcel_tiles.parcels.models import BBox, Parcel


_POLYGONAL = ("Polygon", "MultiPolygon")
MAX_LAT = 85.0511287798066
_local = threading.local()


def _walk_coords(obj: Any) -> Iterable[Tuple[float, float]]:
    if isinstance(obj, (list, tuple)) and len(obj) >= 2 and all(
        isinstance(x, (int, float)) for x in obj[:2]
    ):
        yield float(obj[0]), float(obj[1])
        return
    if isinstance(obj, (list, tuple)):
        for it in obj:
            yield from _walk_coords(it)


def geometry_bbox(geometry: Optional[Dict[str, Any]]) -> Optional[BBox]:
    coords = (geometry or {}).get("coordinates")
    if coords is None:
        return None
    xs: List[float] = []
    ys: List[float] = []
    for x, y in _walk_coords(coords):
        xs.append(x)
        ys.append(y)
    if not xs or not ys:
        return None
    return (min(xs), min(ys), max(xs), max(ys))


def parcel_shape(parcel: Parcel) -> BaseGeometry:
    """Return the parcel's shapely geometry or raise InvalidGeometry."""
    return geojson_shape(parcel.geometry, parcel.id)


def geojson_shape(geometry: Optional[Dict[str, Any]], ref: Any = None) -> BaseGeometry:
    if not geometry:
        raise InvalidGeometry(ref, "null geometry")
    try:
        geom = shape(geometry)
    except (GEOSException, ValueError, TypeError, KeyError, IndexError, AttributeError) as e:
        raise InvalidGeometry(ref, f"malformed geometry: {e}") from e
    if geom.is_empty:
        raise InvalidGeometry(ref, "empty geometry")
    if geom.geom_type not in _POLYGONAL:
        raise InvalidGeometry(ref, f"not polygonal: {geom.geom_type}")
    if not geom.is_valid:
        raise InvalidGeometry(ref, explain_validity(geom))
    minx, miny, maxx, maxy = geom.bounds
    if minx < -180.0 or maxx > 180.0 or miny < -MAX_LAT or maxy > MAX_LAT:
        raise InvalidGeometry(ref, f"coordinates outside Web Mercator range: {geom.bounds}")
    return geom


def polygonal(geom: BaseGeometry) -> Optional[MultiPolygon]:
    """Keep only polygon parts, as a MultiPolygon (None when nothing is left)."""
    if geom is None or geom.is_empty:
        return None
    if isinstance(geom, Polygon):
        return MultiPolygon([geom])
    if isinstance(geom, MultiPolygon):
        return geom
    parts: List[Polygon] = []
    for g in getattr(geom, "geoms", []):
        sub = polygonal(g)
        if sub is not None:
            parts.extend(sub.geoms)
    if not parts:
        return None
    return MultiPolygon(parts)


def dumps_geometry(geom: BaseGeometry) -> str:
    return json.dumps(mapping(geom), separators=(",", ":"))


def _transformer(direction: str) -> Transformer:
    # Transformer instances are not shared between threads.
    cache = getattr(_local, "transformers", None)
    if cache is None:
        cache = _local.transformers = {}
    t = cache.get(direction)
    if t is None:
        if direction == "forward":
            t = Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)
        else:
            t = Transformer.from_crs("EPSG:3857", "EPSG:4326", always_xy=True)
        cache[direction] = t
    return t


def to_mercator(geom: BaseGeometry) -> BaseGeometry:
    t = _transformer("forward")
    return shapely.transform(geom, lambda c: np.column_stack(t.transform(c[:, 0], c[:, 1])))


def mercator_to_lonlat(x: float, y: float) -> Tuple[float, float]:
    lon, lat = _transformer("inverse").transform(x, y)
    return float(lon), float(lat)


def mercator_scale(lat: float) -> float:
    """Web Mercator units per ground metre at the given latitude."""
    lat = max(min(float(lat), 85.0), -85.0)
    return 1.0 / math.cos(math.radians(lat))

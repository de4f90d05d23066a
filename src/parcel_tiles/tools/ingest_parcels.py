"""Load a GeoJSON FeatureCollection of parcels into the parcel store.

Stand-in for the upstream ingestion job. Property names follow the Iowa
statewide parcel layer (COUNTYNAME, PARCELNUMB, PARCELCLAS, DEEDHOLDER) with
lower-case fallbacks.
"""

import json
import logging
from typing import Any, Dict, Iterator, Optional

from pyproj import Geod
from shapely.errors import GEOSException
from shapely.geometry import shape

from parcel_tiles.config import canonical_county
from parcel_tiles.parcels.models import Parcel
from parcel_tiles.parcels.store import ParcelStore


logger = logging.getLogger("pt.ingest")

_GEOD = Geod(ellps="WGS84")


def _first(props: Dict[str, Any], *keys: str) -> Optional[Any]:
    for key in keys:
        value = props.get(key)
        if value not in (None, ""):
            return value
    return None


def geodesic_area_sqm(geometry: Optional[Dict[str, Any]]) -> float:
    if not geometry:
        return 0.0
    try:
        area, _perimeter = _GEOD.geometry_area_perimeter(shape(geometry))
    except (GEOSException, ValueError, TypeError, KeyError, AttributeError):
        return 0.0
    return abs(float(area))


def iter_parcels(fc: Dict[str, Any], county: Optional[str] = None, start_id: int = 1) -> Iterator[Parcel]:
    next_id = int(start_id)
    for feat in fc.get("features") or []:
        if not isinstance(feat, dict):
            continue
        props = feat.get("properties") if isinstance(feat.get("properties"), dict) else {}
        raw_id = feat.get("id")
        if raw_id is None:
            raw_id = _first(props, "id", "OBJECTID", "FID")
        try:
            parcel_id = int(raw_id)
        except (TypeError, ValueError):
            parcel_id = next_id
        next_id = max(next_id, parcel_id) + 1

        county_name = canonical_county(county or _first(props, "COUNTYNAME", "county_name", "county"))
        if not county_name:
            logger.warning("skipping feature %s: no county", parcel_id)
            continue

        geometry = feat.get("geometry") if isinstance(feat.get("geometry"), dict) else None
        area = _first(props, "area_sqm", "AREA_SQM")
        try:
            area_sqm = float(area) if area is not None else geodesic_area_sqm(geometry)
        except (TypeError, ValueError):
            area_sqm = geodesic_area_sqm(geometry)

        yield Parcel(
            id=parcel_id,
            county=county_name,
            parcel_number=str(_first(props, "PARCELNUMB", "parcel_number", "PARCEL_ID") or ""),
            parcel_class=str(_first(props, "PARCELCLAS", "parcel_class", "class") or ""),
            owner_raw=_first(props, "DEEDHOLDER", "deed_holder", "owner"),
            area_sqm=area_sqm,
            geometry=geometry,
        )


def ingest_geojson(store: ParcelStore, input_path: str, county: Optional[str] = None) -> int:
    """Upsert a FeatureCollection; features without an id get ids above the stored maximum."""
    with open(input_path, encoding="utf-8") as f:
        fc = json.load(f)
    count = store.upsert_parcels(iter_parcels(fc, county=county, start_id=store.max_id() + 1))
    logger.info("ingested %d parcels from %s", count, input_path)
    return count


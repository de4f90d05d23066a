from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import mapbox_vector_tile
from mapbox_vector_tile.encoder import on_invalid_geometry_ignore
from shapely.errors import GEOSException
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from parcel_tiles.aggregation.holdings import AggregatedHoldingsStore
from parcel_tiles.config import CountyExclusions, Settings
from parcel_tiles.errors import InvalidGeometry, QueryFailure
from parcel_tiles.parcels.geometry import geojson_shape, polygonal, to_mercator
from parcel_tiles.parcels.models import BBox
from parcel_tiles.parcels.store import ParcelStore
from parcel_tiles.tiles.mercator import (
    buffered_envelope,
    envelope_to_lonlat,
    tile_envelope,
    validate_tile,
)


logger = logging.getLogger("pt.tiles")

OWNERSHIP_LAYER = "ownership"
PARCELS_LAYER = "parcels"


class TileGenerator:
    """Build Mapbox Vector Tiles from parcels and aggregated holdings.

    Zoom-gated:
    - z < ownership_max_zoom: "ownership" layer (holdings plus any parcel no
      holding captured), attributes owner / parcel_count / acres.
    - z >= ownership_max_zoom: "parcels" layer with per-parcel attributes.

    Stateless and read-only, so one instance serves any number of threads.
    """

    def __init__(
        self,
        parcels: ParcelStore,
        holdings: AggregatedHoldingsStore,
        *,
        exclusions: Optional[CountyExclusions] = None,
        ownership_max_zoom: int = 14,
        max_zoom: int = 22,
        extent: int = 4096,
        buffer: int = 256,
    ) -> None:
        self.parcels = parcels
        self.holdings = holdings
        self.exclusions = exclusions or CountyExclusions()
        self.ownership_max_zoom = int(ownership_max_zoom)
        self.max_zoom = int(max_zoom)
        self.extent = int(extent)
        self.buffer = int(buffer)

    @classmethod
    def from_settings(
        cls, settings: Settings, parcels: ParcelStore, holdings: AggregatedHoldingsStore
    ) -> "TileGenerator":
        return cls(
            parcels,
            holdings,
            exclusions=settings.exclusions,
            ownership_max_zoom=settings.ownership_max_zoom,
            max_zoom=settings.max_zoom,
            extent=settings.tile_extent,
            buffer=settings.tile_buffer,
        )

    def generate(self, z: int, x: int, y: int) -> Optional[bytes]:
        """Return the tile payload, or None when nothing intersects the tile.

        Raises ValueError for coordinates outside the tile pyramid.
        """
        validate_tile(z, x, y, self.max_zoom)
        clip, lonlat = self._query_window(z, x, y)
        try:
            if z < self.ownership_max_zoom:
                layers = [self._ownership_layer(lonlat, clip, include_singles=True)]
            else:
                layers = [self._parcels_layer(lonlat, clip)]
        except QueryFailure as e:
            logger.error("tile %s/%s/%s: query failed: %s", z, x, y, e)
            return None
        return self._encode(layers, tile_envelope(z, x, y))

    def generate_hybrid(self, z: int, x: int, y: int) -> Optional[bytes]:
        """Both layers in one tile; ownership limited to multi-parcel holdings."""
        validate_tile(z, x, y, self.max_zoom)
        clip, lonlat = self._query_window(z, x, y)
        try:
            layers = [
                self._parcels_layer(lonlat, clip),
                self._ownership_layer(lonlat, clip, include_singles=False),
            ]
        except QueryFailure as e:
            logger.error("hybrid tile %s/%s/%s: query failed: %s", z, x, y, e)
            return None
        return self._encode(layers, tile_envelope(z, x, y))

    def _query_window(self, z: int, x: int, y: int):
        envelope = buffered_envelope(z, x, y, self.buffer, self.extent)
        return box(*envelope), envelope_to_lonlat(envelope)

    def _clip(self, geometry: Optional[Dict[str, Any]], ref: Any, clip: BaseGeometry) -> Optional[BaseGeometry]:
        try:
            geom = geojson_shape(geometry, ref)
        except InvalidGeometry as e:
            logger.warning("skipping feature %s in tile: %s", ref, e.reason)
            return None
        try:
            clipped = to_mercator(geom).intersection(clip)
        except GEOSException as e:
            logger.warning("skipping feature %s in tile: clip failed: %s", ref, e)
            return None
        return polygonal(clipped)

    def _ownership_layer(self, lonlat: BBox, clip: BaseGeometry, *, include_singles: bool) -> dict:
        features: List[dict] = []
        min_count = 1 if include_singles else 2
        for h in self.holdings.query_bbox(lonlat, min_parcel_count=min_count):
            if self.exclusions.is_excluded(h.county):
                continue
            geom = self._clip(h.combined_geometry, f"holding {h.id}", clip)
            if geom is None:
                continue
            features.append(
                {
                    "id": h.id,
                    "geometry": geom,
                    "properties": {
                        "owner": h.owner_normalized,
                        "parcel_count": h.parcel_count,
                        "acres": round(h.total_acres, 1),
                    },
                }
            )

        if include_singles:
            candidates = [
                p
                for p in self.parcels.query_bbox(lonlat)
                if p.owner_normalized and not self.exclusions.is_excluded(p.county)
            ]
            captured = self.holdings.captured_parcel_ids(p.id for p in candidates)
            for p in candidates:
                if p.id in captured:
                    continue
                geom = self._clip(p.geometry, p.id, clip)
                if geom is None:
                    continue
                features.append(
                    {
                        "id": p.id,
                        "geometry": geom,
                        "properties": {
                            "owner": p.owner_raw or p.owner_normalized,
                            "parcel_count": 1,
                            "acres": round(p.acres, 1),
                        },
                    }
                )

        features.sort(key=lambda f: f["id"])
        return {"name": OWNERSHIP_LAYER, "features": features}

    def _parcels_layer(self, lonlat: BBox, clip: BaseGeometry) -> dict:
        features: List[dict] = []
        for p in self.parcels.query_bbox(lonlat):
            if self.exclusions.is_excluded(p.county):
                continue
            geom = self._clip(p.geometry, p.id, clip)
            if geom is None:
                continue
            features.append(
                {
                    "id": p.id,
                    "geometry": geom,
                    "properties": {
                        "id": p.id,
                        "county": p.county,
                        "parcel_number": p.parcel_number,
                        "class": p.parcel_class,
                        "owner": p.owner_raw or "",
                        "owner_norm": p.owner_normalized or "",
                        "acres": round(p.acres, 2),
                    },
                }
            )
        return {"name": PARCELS_LAYER, "features": features}

    def _encode(self, layers: List[dict], envelope: BBox) -> Optional[bytes]:
        layers = [layer for layer in layers if layer["features"]]
        if not layers:
            return None
        return mapbox_vector_tile.encode(
            layers,
            default_options={
                "quantize_bounds": envelope,
                "extents": self.extent,
                "on_invalid_geometry": on_invalid_geometry_ignore,
            },
        )

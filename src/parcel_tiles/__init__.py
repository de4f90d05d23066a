"""Package initializer for `parcel_tiles`."""

from .aggregation.cluster import AdjacencyClusterer
from .aggregation.holdings import AggregatedHoldingsStore
from .aggregation.merge import GeometryMerger
from .parcels.store import ParcelStore
from .tiles.cache import TileCache
from .tiles.generator import TileGenerator
from .tiles.service import TileService, build_service

__all__ = [
    "AdjacencyClusterer",
    "AggregatedHoldingsStore",
    "GeometryMerger",
    "ParcelStore",
    "TileCache",
    "TileGenerator",
    "TileService",
    "build_service",
]

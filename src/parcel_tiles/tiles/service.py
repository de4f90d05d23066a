from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from parcel_tiles.aggregation.holdings import AggregatedHoldingsStore
from parcel_tiles.config import Settings
from parcel_tiles.parcels.models import RebuildResult
from parcel_tiles.parcels.store import ParcelStore
from parcel_tiles.tiles.cache import TileCache
from parcel_tiles.tiles.generator import TileGenerator


logger = logging.getLogger("pt.tiles")


class TileService:
    """Tile serving front: generator behind a read-through TileCache."""

    def __init__(
        self,
        generator: TileGenerator,
        cache: TileCache,
        holdings: Optional[AggregatedHoldingsStore] = None,
    ) -> None:
        self.generator = generator
        self.cache = cache
        self.holdings = holdings if holdings is not None else generator.holdings

    def tile(self, z: int, x: int, y: int) -> Optional[bytes]:
        return self.cache.get_or_create((z, x, y), lambda: self.generator.generate(z, x, y))

    def hybrid_tile(self, z: int, x: int, y: int) -> Optional[bytes]:
        return self.cache.get_or_create(
            ("hybrid", z, x, y), lambda: self.generator.generate_hybrid(z, x, y)
        )

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("tile cache cleared")

    def cache_stats(self) -> dict:
        return self.cache.stats()

    def rebuild(self, counties: Iterable[str]) -> List[RebuildResult]:
        results = self.holdings.rebuild_many(counties)
        if any(not r.skipped and not r.failed for r in results):
            self.clear_cache()
        return results


def build_service(settings: Settings) -> TileService:
    parcels = ParcelStore(settings.db_path)
    holdings = AggregatedHoldingsStore.from_settings(settings, parcels)
    generator = TileGenerator.from_settings(settings, parcels, holdings)
    cache = TileCache(
        ttl=settings.cache_ttl_seconds,
        max_entries=settings.cache_max_entries,
        enabled=settings.cache_enabled,
    )
    return TileService(generator, cache, holdings)

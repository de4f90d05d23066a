from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import FrozenSet, Iterable, Optional


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = str(raw).strip().lower()
    if v in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return int(str(raw).strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        return float(str(raw).strip())
    except ValueError:
        return default


def _env_list(name: str) -> list[str]:
    raw = os.getenv(name) or ""
    return [p.strip() for p in raw.split(",") if p.strip()]


def canonical_county(county: Optional[str]) -> str:
    return (county or "").strip().upper()


@dataclass(frozen=True)
class CountyExclusions:
    """Counties kept out of aggregation and tile output.

    Used for counties served by an externally maintained tileset.
    """

    counties: FrozenSet[str] = frozenset()

    @classmethod
    def of(cls, counties: Iterable[str]) -> "CountyExclusions":
        return cls(frozenset(canonical_county(c) for c in counties if canonical_county(c)))

    def is_excluded(self, county: Optional[str]) -> bool:
        return canonical_county(county) in self.counties

    def __bool__(self) -> bool:
        return bool(self.counties)


@dataclass(frozen=True)
class Settings:
    """Runtime configuration.

    Every knob reads from a PT_* env var; defaults match production.
    """

    db_path: str = "./data/parcels.sqlite"
    exclusions: CountyExclusions = field(default_factory=CountyExclusions)
    adjacency_buffer_m: float = 10.0
    min_cluster_size: int = 2
    ownership_max_zoom: int = 14
    max_zoom: int = 22
    tile_extent: int = 4096
    tile_buffer: int = 256
    cache_enabled: bool = True
    cache_ttl_seconds: int = 3600
    cache_max_entries: int = 10000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_path=os.getenv("PT_DB_PATH", "./data/parcels.sqlite"),
            exclusions=CountyExclusions.of(_env_list("PT_EXCLUDED_COUNTIES")),
            adjacency_buffer_m=_env_float("PT_ADJACENCY_BUFFER_M", 10.0),
            min_cluster_size=max(_env_int("PT_MIN_CLUSTER_SIZE", 2), 1),
            ownership_max_zoom=_env_int("PT_OWNERSHIP_MAX_ZOOM", 14),
            max_zoom=_env_int("PT_MAX_ZOOM", 22),
            tile_buffer=max(_env_int("PT_TILE_BUFFER", 256), 0),
            cache_enabled=_env_bool("PT_CACHE", True),
            cache_ttl_seconds=_env_int("PT_CACHE_TTL", 3600),
            cache_max_entries=max(_env_int("PT_CACHE_MAX_ENTRIES", 10000), 1),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def reset_settings_cache() -> None:
    """Test helper to force env re-read."""

    get_settings.cache_clear()

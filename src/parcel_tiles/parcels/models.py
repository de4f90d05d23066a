from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


SQM_PER_ACRE = 4046.86

BBox = Tuple[float, float, float, float]


def sqm_to_acres(area_sqm: float) -> float:
    return float(area_sqm or 0.0) / SQM_PER_ACRE


@dataclass(frozen=True)
class Parcel:
    """One cadastral unit as supplied by ingestion.

    `geometry` stays GeoJSON-like (a Polygon dict in WGS84) or None when the
    source carried no usable shape.
    """

    id: int
    county: str
    parcel_number: str = ""
    parcel_class: str = ""
    owner_raw: Optional[str] = None
    owner_normalized: Optional[str] = None
    area_sqm: float = 0.0
    geometry: Optional[Dict[str, Any]] = None

    @property
    def acres(self) -> float:
        return sqm_to_acres(self.area_sqm)


@dataclass(frozen=True)
class ParcelGroup:
    """Contiguous parcels of one owner in one county, ordered by id."""

    owner_normalized: str
    county: str
    parcels: Tuple[Parcel, ...]

    @property
    def parcel_ids(self) -> List[int]:
        return [p.id for p in self.parcels]

    @property
    def size(self) -> int:
        return len(self.parcels)


@dataclass(frozen=True)
class AggregatedHolding:
    id: int
    owner_normalized: str
    county: str
    parcel_ids: Tuple[int, ...]
    total_acres: float
    combined_geometry: Dict[str, Any]

    @property
    def parcel_count(self) -> int:
        return len(self.parcel_ids)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_normalized": self.owner_normalized,
            "county": self.county,
            "parcel_ids": list(self.parcel_ids),
            "parcel_count": self.parcel_count,
            "total_acres": self.total_acres,
        }


@dataclass
class RebuildResult:
    county: str
    clusters_created: int = 0
    parcels_processed: int = 0
    skipped: bool = False
    failed: bool = False
    invalid_geometries: int = 0
    union_failures: int = 0
    owner_failures: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "county": self.county,
            "clusters_created": self.clusters_created,
            "parcels_processed": self.parcels_processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "invalid_geometries": self.invalid_geometries,
            "union_failures": self.union_failures,
            "owner_failures": self.owner_failures,
            "errors": list(self.errors),
        }

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Tuple

import shapely
from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from parcel_tiles.errors import InvalidGeometry, UnionFailure
from parcel_tiles.parcels.geometry import parcel_shape, polygonal
from parcel_tiles.parcels.models import SQM_PER_ACRE, Parcel, ParcelGroup


logger = logging.getLogger("pt.merge")


@dataclass(frozen=True)
class MergeResult:
    geometry: MultiPolygon
    parcel_ids: Tuple[int, ...]
    total_acres: float
    failed_ids: Tuple[int, ...] = ()


def _union_pair(a: BaseGeometry, b: BaseGeometry) -> BaseGeometry:
    return a.union(b)


class GeometryMerger:
    """Union a cluster's parcels into one MultiPolygon.

    Acreage is the sum of the members' recorded areas, never the measured
    area of the union.
    """

    def merge(self, group: ParcelGroup) -> MergeResult:
        usable: List[Tuple[Parcel, BaseGeometry]] = []
        failed: List[int] = []
        for p in group.parcels:
            try:
                usable.append((p, parcel_shape(p)))
            except InvalidGeometry as e:
                logger.warning("skipping parcel %s in merge: %s", p.id, e.reason)
                failed.append(p.id)

        if not usable:
            raise UnionFailure(group.parcel_ids, "no member with usable geometry")

        merged: List[Parcel] = []
        combined = None
        try:
            combined = unary_union([g for _, g in usable])
            merged = [p for p, _ in usable]
        except GEOSException as e:
            logger.info(
                "bulk union failed for %s/%s (%s); merging members one by one",
                group.county,
                group.owner_normalized,
                e,
            )
            combined = None
            for p, g in usable:
                if combined is None:
                    combined = g
                    merged.append(p)
                    continue
                try:
                    combined = _union_pair(combined, g)
                except GEOSException as err:
                    failure = UnionFailure(p.id, str(err))
                    logger.warning("%s; parcel dropped from holding", failure)
                    failed.append(p.id)
                    continue
                merged.append(p)

        multi = polygonal(combined)
        if multi is None:
            raise UnionFailure(group.parcel_ids, "union produced no polygonal area")

        total_sqm = sum(float(p.area_sqm or 0.0) for p in merged)
        return MergeResult(
            geometry=shapely.normalize(multi),
            parcel_ids=tuple(p.id for p in merged),
            total_acres=total_sqm / SQM_PER_ACRE,
            failed_ids=tuple(sorted(failed)),
        )

from __future__ import annotations

import logging
import math
from typing import Dict, List, Sequence, Tuple

from shapely.errors import GEOSException
from shapely.strtree import STRtree

from parcel_tiles.config import canonical_county
from parcel_tiles.errors import InvalidGeometry
from parcel_tiles.parcels.geometry import mercator_scale, parcel_shape, to_mercator
from parcel_tiles.parcels.models import Parcel, ParcelGroup


logger = logging.getLogger("pt.cluster")


class _DisjointSet:
    def __init__(self, n: int) -> None:
        self.parent = list(range(n))

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, a: int, b: int) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return
        if ra < rb:
            self.parent[rb] = ra
        else:
            self.parent[ra] = rb


class AdjacencyClusterer:
    """Group one owner's parcels in one county into contiguous clusters.

    Two parcels are adjacent when one, grown by `buffer_m` metres, intersects
    the other. Clusters are the connected components of that relation, so a
    chain A-B-C lands in one group even when A and C never touch.

    Candidates come from an STRtree over the owner's parcels instead of an
    all-pairs scan; the exact test is still buffered.intersects(other).
    """

    def __init__(self, buffer_m: float = 10.0) -> None:
        self.buffer_m = float(buffer_m)

    def cluster(self, parcels: Sequence[Parcel]) -> List[ParcelGroup]:
        groups, _dropped = self.cluster_with_report(parcels)
        return groups

    def cluster_with_report(
        self, parcels: Sequence[Parcel]
    ) -> Tuple[List[ParcelGroup], List[InvalidGeometry]]:
        if not parcels:
            return [], []

        keys = {(p.owner_normalized, canonical_county(p.county)) for p in parcels}
        if len(keys) != 1:
            raise ValueError("cluster() expects parcels of exactly one (owner, county) pair")
        owner, county = next(iter(keys))

        by_id: Dict[int, Parcel] = {}
        for p in parcels:
            by_id[int(p.id)] = p
        ordered = [by_id[i] for i in sorted(by_id)]

        members: List[Parcel] = []
        shapes = []
        dropped: List[InvalidGeometry] = []
        for p in ordered:
            try:
                geom = parcel_shape(p)
            except InvalidGeometry as e:
                logger.warning("dropping parcel %s (%s/%s) from clustering: %s", p.id, county, owner, e.reason)
                dropped.append(e)
                continue
            members.append(p)
            shapes.append(geom)

        if not members:
            return [], dropped

        mean_lat = sum(g.centroid.y for g in shapes) / len(shapes)
        distance = self.buffer_m * mercator_scale(mean_lat)

        kept: List[Parcel] = []
        projected = []
        grown = []
        for p, geom in zip(members, shapes):
            try:
                merc = to_mercator(geom)
                buffered = merc.buffer(distance)
                if buffered.is_empty or not all(math.isfinite(v) for v in merc.bounds):
                    raise ValueError("not representable in Web Mercator")
            except (GEOSException, ValueError) as e:
                err = InvalidGeometry(p.id, f"projection failed: {e}")
                logger.warning("dropping parcel %s (%s/%s) from clustering: %s", p.id, county, owner, err.reason)
                dropped.append(err)
                continue
            kept.append(p)
            projected.append(merc)
            grown.append(buffered)
        members = kept

        if not members:
            return [], dropped

        dsu = _DisjointSet(len(projected))
        if len(projected) > 1:
            tree = STRtree(projected)
            for i in range(len(projected)):
                for j in tree.query(grown[i], predicate="intersects"):
                    j = int(j)
                    if j != i:
                        dsu.union(i, j)

        components: Dict[int, List[Parcel]] = {}
        for i, p in enumerate(members):
            components.setdefault(dsu.find(i), []).append(p)

        groups = [
            ParcelGroup(owner_normalized=owner, county=county, parcels=tuple(sorted(c, key=lambda p: p.id)))
            for c in components.values()
        ]
        groups.sort(key=lambda g: g.parcels[0].id)
        return groups, dropped

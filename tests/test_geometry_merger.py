import pytest
from shapely.errors import GEOSException
from shapely.geometry import shape

from parcel_fixtures import BOWTIE, parcel, smith_chain
from parcel_tiles.aggregation import merge as merge_mod
from parcel_tiles.aggregation.merge import GeometryMerger
from parcel_tiles.errors import UnionFailure
from parcel_tiles.parcels.models import ParcelGroup


def _group(parcels):
    return ParcelGroup(owner_normalized="SMITH JOHN", county="POLK", parcels=tuple(parcels))


def test_acres_are_summed_from_recorded_areas():
    result = GeometryMerger().merge(_group(smith_chain()))
    assert result.parcel_ids == (1, 2, 3)
    assert result.total_acres == pytest.approx(4.5)
    assert result.failed_ids == ()


def test_combined_geometry_is_multipolygon_covering_members():
    chain = smith_chain()
    result = GeometryMerger().merge(_group(chain))
    assert result.geometry.geom_type == "MultiPolygon"
    # A and B touch, C stands 5 m off.
    assert len(result.geometry.geoms) == 2
    for p in chain:
        assert result.geometry.buffer(1e-9).covers(shape(p.geometry))


def test_merge_is_deterministic():
    chain = smith_chain()
    a = GeometryMerger().merge(_group(chain))
    b = GeometryMerger().merge(_group(list(reversed(chain))))
    assert a.geometry.wkb == b.geometry.wkb


def test_invalid_member_is_skipped():
    members = [parcel(1, 0, 0), parcel(2, 60, 0, geometry=BOWTIE)]
    result = GeometryMerger().merge(_group(members))
    assert result.parcel_ids == (1,)
    assert result.failed_ids == (2,)
    assert result.total_acres == pytest.approx(1.0)


def test_union_failure_drops_only_the_failing_member(monkeypatch):
    chain = smith_chain()
    bad = shape(chain[2].geometry)

    def broken_bulk(_geoms):
        raise GEOSException("TopologyException: side location conflict")

    def flaky_pair(a, b):
        if b.equals(bad):
            raise GEOSException("TopologyException: found non-noded intersection")
        return a.union(b)

    monkeypatch.setattr(merge_mod, "unary_union", broken_bulk)
    monkeypatch.setattr(merge_mod, "_union_pair", flaky_pair)

    result = GeometryMerger().merge(_group(chain))
    assert result.parcel_ids == (1, 2)
    assert result.failed_ids == (3,)
    assert result.total_acres == pytest.approx(2.5)


def test_no_usable_member_raises():
    with pytest.raises(UnionFailure):
        GeometryMerger().merge(_group([parcel(1, geometry=None), parcel(2, geometry=BOWTIE)]))

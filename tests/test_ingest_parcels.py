import json

import pytest

from parcel_fixtures import square
from parcel_tiles.parcels.store import ParcelStore
from parcel_tiles.tools.ingest_parcels import geodesic_area_sqm, ingest_geojson, iter_parcels


def test_iter_parcels_reads_iowa_property_names():
    fc = {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "id": 42,
                "geometry": square(0, 0, 60),
                "properties": {
                    "COUNTYNAME": "Polk",
                    "PARCELNUMB": "0912345678",
                    "PARCELCLAS": "AG",
                    "DEEDHOLDER": "Smith, John Trust",
                },
            }
        ],
    }
    (p,) = list(iter_parcels(fc))
    assert p.id == 42
    assert p.county == "POLK"
    assert p.parcel_number == "0912345678"
    assert p.parcel_class == "AG"
    assert p.owner_raw == "Smith, John Trust"
    assert p.area_sqm == pytest.approx(3600, rel=0.02)


def test_missing_ids_are_assigned_and_countyless_features_skipped():
    fc = {
        "features": [
            {"properties": {"county": "story", "owner": "A"}, "geometry": square(0, 0)},
            {"properties": {"owner": "B"}, "geometry": square(100, 0)},
            {"properties": {"OBJECTID": 7, "county": "story"}, "geometry": None},
            "not a feature",
        ]
    }
    parcels = list(iter_parcels(fc, start_id=1))
    assert [(p.id, p.county) for p in parcels] == [(1, "STORY"), (7, "STORY")]
    assert parcels[1].geometry is None
    assert parcels[1].area_sqm == 0.0


def test_county_argument_overrides_properties():
    fc = {"features": [{"id": 1, "properties": {"COUNTYNAME": "Polk"}, "geometry": square(0, 0)}]}
    (p,) = list(iter_parcels(fc, county="harrison"))
    assert p.county == "HARRISON"


def test_geodesic_area_of_bad_geometry_is_zero():
    assert geodesic_area_sqm(None) == 0.0
    assert geodesic_area_sqm({"type": "Polygon"}) == 0.0


def _write_idless(path, county, offsets):
    fc = {
        "type": "FeatureCollection",
        "features": [
            {"type": "Feature", "properties": {"COUNTYNAME": county, "DEEDHOLDER": "SMITH JOHN"}, "geometry": square(x, 0)}
            for x in offsets
        ],
    }
    path.write_text(json.dumps(fc), encoding="utf-8")
    return str(path)


def test_idless_files_do_not_overwrite_each_other(db_path, tmp_path):
    store = ParcelStore(db_path)
    assert ingest_geojson(store, _write_idless(tmp_path / "polk.geojson", "Polk", [0, 60, 120])) == 3
    assert ingest_geojson(store, _write_idless(tmp_path / "story.geojson", "Story", [0])) == 1

    assert store.count("POLK") == 3
    assert store.count("STORY") == 1
    assert [p.id for p in store.parcels_for_county("STORY")] == [4]
    assert store.max_id() == 4

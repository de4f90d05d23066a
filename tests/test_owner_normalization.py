import pytest

from parcel_tiles.owners import normalize_owner_name


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Smith, John Trust", "JOHN SMITH"),
        ("JOHN SMITH", "JOHN SMITH"),
        ("  john   smith  ", "JOHN SMITH"),
        ("SMITH JOHN", "SMITH JOHN"),
        ("Green Acres Farms LLC", "GREEN ACRES"),
        ("Miller Family Revocable Trust", "MILLER"),
        ("Acme Corp.", "ACME"),
        ("O'Brien, Pat", "PAT OBRIEN"),
    ],
)
def test_normalize_owner_name(raw, expected):
    assert normalize_owner_name(raw) == expected


def test_blank_owner_is_none():
    assert normalize_owner_name(None) is None
    assert normalize_owner_name("") is None
    assert normalize_owner_name("   ") is None


def test_suffix_only_name_is_kept():
    # Stripping never empties the name.
    assert normalize_owner_name("Trust") == "TRUST"


def test_upsert_derives_normalized_owner(stores):
    from parcel_fixtures import parcel

    parcels, _holdings = stores
    p = parcel(1, owner="Smith, John Trust")
    parcels.upsert_parcels([p])
    stored = parcels.get(1)
    assert stored.owner_raw == "Smith, John Trust"
    assert stored.owner_normalized == "JOHN SMITH"
    assert parcels.owners("polk") == ["JOHN SMITH"]

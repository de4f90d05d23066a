"""Synthetic parcels laid out in metres around the centre of one z14 tile."""

import math

from parcel_tiles.parcels.models import SQM_PER_ACRE, Parcel


TILE_Z = 14
TILE_X = 3836
TILE_Y = 6127
M_PER_DEG_LAT = 111320.0


def _tile_center(z, x, y):
    n = 2 ** z
    lon = (x + 0.5) / n * 360.0 - 180.0
    lat = math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * (y + 0.5) / n))))
    return lon, lat


# Western Iowa, near Council Bluffs.
LON0, LAT0 = _tile_center(TILE_Z, TILE_X, TILE_Y)


def lonlat(x_m, y_m):
    k_lon = M_PER_DEG_LAT * math.cos(math.radians(LAT0))
    return LON0 + x_m / k_lon, LAT0 + y_m / M_PER_DEG_LAT


def square(x_m, y_m, w_m=60.0, h_m=None):
    """GeoJSON Polygon whose SW corner sits x_m east / y_m north of the origin."""
    h_m = w_m if h_m is None else h_m

    def pt(dx, dy):
        return list(lonlat(dx, dy))

    ring = [
        pt(x_m, y_m),
        pt(x_m + w_m, y_m),
        pt(x_m + w_m, y_m + h_m),
        pt(x_m, y_m + h_m),
        pt(x_m, y_m),
    ]
    return {"type": "Polygon", "coordinates": [ring]}


def parcel(pid, x_m=0.0, y_m=0.0, *, owner="SMITH JOHN", county="POLK", acres=1.0, w_m=60.0, geometry="square"):
    from parcel_tiles.owners import normalize_owner_name

    geom = square(x_m, y_m, w_m) if geometry == "square" else geometry
    return Parcel(
        id=pid,
        county=county,
        parcel_number=f"P-{pid:05d}",
        parcel_class="AG",
        owner_raw=owner,
        owner_normalized=normalize_owner_name(owner),
        area_sqm=acres * SQM_PER_ACRE,
        geometry=geom,
    )


def smith_chain():
    """A touches B, B sits 5 m from C, A and C are 65 m apart."""
    return [
        parcel(1, 0, 0, acres=1.0),
        parcel(2, 60, 0, acres=1.5),
        parcel(3, 125, 0, acres=2.0),
    ]


BOWTIE = {
    "type": "Polygon",
    "coordinates": [
        [
            [LON0, LAT0],
            [LON0 + 0.001, LAT0 + 0.001],
            [LON0 + 0.001, LAT0],
            [LON0, LAT0 + 0.001],
            [LON0, LAT0],
        ]
    ],
}

# Valid to shapely, but north of anything Web Mercator can represent.
OFF_GLOBE = {
    "type": "Polygon",
    "coordinates": [[[-95.0, 95.0], [-94.9, 95.0], [-94.9, 95.1], [-95.0, 95.1], [-95.0, 95.0]]],
}

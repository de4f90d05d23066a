from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from shapely.geometry import Point

from parcel_tiles.config import canonical_county
from parcel_tiles.errors import InvalidGeometry, QueryFailure
from parcel_tiles.owners import normalize_owner_name
from parcel_tiles.parcels.geometry import geometry_bbox, parcel_shape
from parcel_tiles.parcels.models import BBox, Parcel, sqm_to_acres


SCHEMA = [
    """CREATE TABLE IF NOT EXISTS parcels (
        id INTEGER PRIMARY KEY,
        county TEXT NOT NULL,
        parcel_number TEXT NOT NULL DEFAULT '',
        parcel_class TEXT NOT NULL DEFAULT '',
        owner_raw TEXT,
        owner_normalized TEXT,
        area_sqm REAL NOT NULL DEFAULT 0,
        geom_geojson TEXT,
        minx REAL,
        miny REAL,
        maxx REAL,
        maxy REAL
    )""",
    "CREATE INDEX IF NOT EXISTS idx_parcels_county_owner ON parcels(county, owner_normalized)",
    """CREATE VIRTUAL TABLE IF NOT EXISTS parcels_rtree USING rtree(
        id, minx, maxx, miny, maxy
    )""",
]


@contextmanager
def connect(path: Path) -> Iterator[sqlite3.Connection]:
    """Short-lived autocommit connection; callers BEGIN explicitly for writes."""
    conn = sqlite3.connect(str(path), timeout=30, isolation_level=None)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def init_schema(path: Path, statements: Iterable[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with connect(path) as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        for stmt in statements:
            conn.execute(stmt)


def _row_to_parcel(row: sqlite3.Row) -> Parcel:
    raw_geom = row["geom_geojson"]
    geometry = None
    if raw_geom:
        try:
            geometry = json.loads(raw_geom)
        except ValueError:
            geometry = None
    return Parcel(
        id=int(row["id"]),
        county=row["county"],
        parcel_number=row["parcel_number"] or "",
        parcel_class=row["parcel_class"] or "",
        owner_raw=row["owner_raw"],
        owner_normalized=row["owner_normalized"],
        area_sqm=float(row["area_sqm"] or 0.0),
        geometry=geometry,
    )


class ParcelStore:
    """SQLite persistence for raw parcels with an R*Tree bbox index.

    Rows are written by ingestion; this core only reads them, apart from the
    derived owner_normalized column.
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        init_schema(self.path, SCHEMA)

    def _fetch(self, sql: str, params: tuple = ()) -> List[Parcel]:
        try:
            with connect(self.path) as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise QueryFailure(f"parcel query failed: {e}") from e
        return [_row_to_parcel(r) for r in rows]

    def upsert_parcels(self, parcels: Iterable[Parcel]) -> int:
        count = 0
        try:
            with connect(self.path) as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    for p in parcels:
                        geom = p.geometry or None
                        bb = geometry_bbox(geom) if geom else None
                        conn.execute(
                            """
                            INSERT OR REPLACE INTO parcels (
                                id, county, parcel_number, parcel_class, owner_raw,
                                owner_normalized, area_sqm, geom_geojson,
                                minx, miny, maxx, maxy
                            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                            """,
                            (
                                int(p.id),
                                canonical_county(p.county),
                                p.parcel_number or "",
                                p.parcel_class or "",
                                p.owner_raw,
                                normalize_owner_name(p.owner_raw),
                                float(p.area_sqm or 0.0),
                                json.dumps(geom, separators=(",", ":")) if geom else None,
                                bb[0] if bb else None,
                                bb[1] if bb else None,
                                bb[2] if bb else None,
                                bb[3] if bb else None,
                            ),
                        )
                        conn.execute("DELETE FROM parcels_rtree WHERE id = ?", (int(p.id),))
                        if bb is not None:
                            conn.execute(
                                "INSERT INTO parcels_rtree (id, minx, maxx, miny, maxy) VALUES (?, ?, ?, ?, ?)",
                                (int(p.id), bb[0], bb[2], bb[1], bb[3]),
                            )
                        count += 1
                    conn.execute("COMMIT")
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
        except sqlite3.Error as e:
            raise QueryFailure(f"parcel upsert failed: {e}") from e
        return count

    def renormalize_owners(self) -> int:
        """Recompute owner_normalized from owner_raw; returns rows changed."""
        changed = 0
        try:
            with connect(self.path) as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    rows = conn.execute(
                        "SELECT id, owner_raw, owner_normalized FROM parcels"
                    ).fetchall()
                    for row in rows:
                        norm = normalize_owner_name(row["owner_raw"])
                        if norm == row["owner_normalized"]:
                            continue
                        conn.execute(
                            "UPDATE parcels SET owner_normalized = ? WHERE id = ?",
                            (norm, row["id"]),
                        )
                        changed += 1
                    conn.execute("COMMIT")
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
        except sqlite3.Error as e:
            raise QueryFailure(f"owner renormalization failed: {e}") from e
        return changed

    def get(self, parcel_id: int) -> Optional[Parcel]:
        rows = self._fetch("SELECT * FROM parcels WHERE id = ?", (int(parcel_id),))
        return rows[0] if rows else None

    def count(self, county: Optional[str] = None) -> int:
        sql = "SELECT COUNT(*) FROM parcels"
        params: tuple = ()
        if county is not None:
            sql += " WHERE county = ?"
            params = (canonical_county(county),)
        try:
            with connect(self.path) as conn:
                return int(conn.execute(sql, params).fetchone()[0])
        except sqlite3.Error as e:
            raise QueryFailure(f"parcel count failed: {e}") from e

    def max_id(self) -> int:
        """Largest stored parcel id, 0 for an empty store."""
        try:
            with connect(self.path) as conn:
                return int(conn.execute("SELECT COALESCE(MAX(id), 0) FROM parcels").fetchone()[0])
        except sqlite3.Error as e:
            raise QueryFailure(f"parcel id lookup failed: {e}") from e

    def counties(self) -> List[str]:
        try:
            with connect(self.path) as conn:
                rows = conn.execute(
                    "SELECT DISTINCT county FROM parcels WHERE county != '' ORDER BY county"
                ).fetchall()
        except sqlite3.Error as e:
            raise QueryFailure(f"county listing failed: {e}") from e
        return [r[0] for r in rows]

    def owners(self, county: str) -> List[str]:
        try:
            with connect(self.path) as conn:
                rows = conn.execute(
                    """
                    SELECT DISTINCT owner_normalized FROM parcels
                    WHERE county = ? AND owner_normalized IS NOT NULL
                    ORDER BY owner_normalized
                    """,
                    (canonical_county(county),),
                ).fetchall()
        except sqlite3.Error as e:
            raise QueryFailure(f"owner listing failed: {e}") from e
        return [r[0] for r in rows]

    def parcels_for_owner(self, owner_normalized: str, county: str) -> List[Parcel]:
        return self._fetch(
            "SELECT * FROM parcels WHERE owner_normalized = ? AND county = ? ORDER BY id",
            (owner_normalized, canonical_county(county)),
        )

    def parcels_for_county(self, county: str) -> List[Parcel]:
        return self._fetch(
            "SELECT * FROM parcels WHERE county = ? ORDER BY id",
            (canonical_county(county),),
        )

    def query_bbox(self, bbox: BBox) -> List[Parcel]:
        """Parcels whose bbox intersects `bbox` (minLon, minLat, maxLon, maxLat)."""
        min_lon, min_lat, max_lon, max_lat = bbox
        return self._fetch(
            """
            SELECT p.* FROM parcels p
            JOIN parcels_rtree r ON r.id = p.id
            WHERE r.maxx >= ? AND r.minx <= ? AND r.maxy >= ? AND r.miny <= ?
            ORDER BY p.id
            """,
            (min_lon, max_lon, min_lat, max_lat),
        )

    # -- ownership queries ---------------------------------------------

    def owner_stats(self, owner_normalized: str) -> Optional[dict]:
        """Parcel count, acreage and counties of one normalized owner, across counties."""
        try:
            with connect(self.path) as conn:
                rows = conn.execute(
                    "SELECT id, county, area_sqm FROM parcels WHERE owner_normalized = ? ORDER BY id",
                    (owner_normalized,),
                ).fetchall()
        except sqlite3.Error as e:
            raise QueryFailure(f"owner stats query failed: {e}") from e
        if not rows:
            return None
        total_sqm = sum(float(r["area_sqm"] or 0.0) for r in rows)
        return {
            "owner": owner_normalized,
            "parcel_count": len(rows),
            "total_acres": round(sqm_to_acres(total_sqm), 1),
            "counties": sorted({r["county"] for r in rows if r["county"]}),
            "parcel_ids": [int(r["id"]) for r in rows],
        }

    def top_landowners(self, limit: int = 100) -> List[dict]:
        try:
            with connect(self.path) as conn:
                rows = conn.execute(
                    """
                    SELECT owner_normalized, COUNT(*) AS parcel_count,
                           SUM(area_sqm) AS total_sqm, GROUP_CONCAT(DISTINCT county) AS counties
                    FROM parcels
                    WHERE owner_normalized IS NOT NULL
                    GROUP BY owner_normalized
                    ORDER BY total_sqm DESC, owner_normalized
                    LIMIT ?
                    """,
                    (max(int(limit), 0),),
                ).fetchall()
        except sqlite3.Error as e:
            raise QueryFailure(f"top landowners query failed: {e}") from e
        return [
            {
                "owner": r["owner_normalized"],
                "parcel_count": int(r["parcel_count"]),
                "total_acres": round(sqm_to_acres(r["total_sqm"]), 1),
                "counties": sorted(c for c in (r["counties"] or "").split(",") if c),
            }
            for r in rows
        ]

    def search_owners(self, query: Optional[str], limit: int = 50) -> List[dict]:
        """Owners whose normalized name contains the normalized `query`."""
        term = normalize_owner_name(query)
        if not term:
            return []
        pattern = "%" + term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        try:
            with connect(self.path) as conn:
                rows = conn.execute(
                    """
                    SELECT owner_normalized, owner_raw, COUNT(*) AS parcel_count
                    FROM parcels
                    WHERE owner_normalized LIKE ? ESCAPE '\\'
                    GROUP BY owner_normalized, owner_raw
                    ORDER BY parcel_count DESC, owner_normalized, owner_raw
                    LIMIT ?
                    """,
                    (pattern, max(int(limit), 0)),
                ).fetchall()
        except sqlite3.Error as e:
            raise QueryFailure(f"owner search failed: {e}") from e
        return [
            {
                "owner": r["owner_normalized"],
                "original_name": r["owner_raw"],
                "parcel_count": int(r["parcel_count"]),
            }
            for r in rows
        ]

    def parcels_at_point(self, lon: float, lat: float, limit: int = 10) -> List[Parcel]:
        """Parcels whose geometry contains or touches the point, ordered by id."""
        pt = Point(float(lon), float(lat))
        hits: List[Parcel] = []
        for p in self.query_bbox((pt.x, pt.y, pt.x, pt.y)):
            try:
                geom = parcel_shape(p)
            except InvalidGeometry:
                continue
            if geom.intersects(pt):
                hits.append(p)
                if len(hits) >= limit:
                    break
        return hits

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set

from parcel_tiles.aggregation.cluster import AdjacencyClusterer
from parcel_tiles.aggregation.merge import GeometryMerger
from parcel_tiles.config import CountyExclusions, Settings, canonical_county
from parcel_tiles.errors import QueryFailure
from parcel_tiles.parcels.geometry import dumps_geometry
from parcel_tiles.parcels.models import AggregatedHolding, BBox, RebuildResult
from parcel_tiles.parcels.store import ParcelStore, connect, init_schema


logger = logging.getLogger("pt.rebuild")

SCHEMA = [
    """CREATE TABLE IF NOT EXISTS parcel_aggregated (
        id INTEGER PRIMARY KEY,
        normalized_owner TEXT NOT NULL,
        county TEXT NOT NULL,
        parcel_ids TEXT NOT NULL,
        parcel_count INTEGER NOT NULL,
        total_acres REAL NOT NULL,
        geom_geojson TEXT NOT NULL,
        minx REAL NOT NULL,
        miny REAL NOT NULL,
        maxx REAL NOT NULL,
        maxy REAL NOT NULL
    )""",
    "CREATE INDEX IF NOT EXISTS idx_parcel_aggregated_county ON parcel_aggregated(county)",
    """CREATE VIRTUAL TABLE IF NOT EXISTS parcel_aggregated_rtree USING rtree(
        id, minx, maxx, miny, maxy
    )""",
    """CREATE TABLE IF NOT EXISTS parcel_aggregated_members (
        parcel_id INTEGER PRIMARY KEY,
        holding_id INTEGER NOT NULL,
        county TEXT NOT NULL
    )""",
    "CREATE INDEX IF NOT EXISTS idx_parcel_aggregated_members_county ON parcel_aggregated_members(county)",
]

# SQLite's default bound-parameter ceiling is 999 on older builds.
_IN_CHUNK = 500


def _row_to_holding(row: sqlite3.Row) -> AggregatedHolding:
    return AggregatedHolding(
        id=int(row["id"]),
        owner_normalized=row["normalized_owner"],
        county=row["county"],
        parcel_ids=tuple(int(i) for i in json.loads(row["parcel_ids"])),
        total_acres=float(row["total_acres"]),
        combined_geometry=json.loads(row["geom_geojson"]),
    )


class AggregatedHoldingsStore:
    """One row per contiguous ownership cluster per county.

    A county's rows are only ever replaced wholesale by `rebuild`, inside a
    single transaction, so readers see either the old set or the new one.
    """

    def __init__(
        self,
        path: str,
        parcels: ParcelStore,
        *,
        clusterer: Optional[AdjacencyClusterer] = None,
        merger: Optional[GeometryMerger] = None,
        exclusions: Optional[CountyExclusions] = None,
        min_cluster_size: int = 2,
    ) -> None:
        self.path = Path(path)
        self.parcels = parcels
        self.clusterer = clusterer or AdjacencyClusterer()
        self.merger = merger or GeometryMerger()
        self.exclusions = exclusions or CountyExclusions()
        self.min_cluster_size = max(int(min_cluster_size), 1)
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        init_schema(self.path, SCHEMA)

    @classmethod
    def from_settings(cls, settings: Settings, parcels: Optional[ParcelStore] = None) -> "AggregatedHoldingsStore":
        return cls(
            settings.db_path,
            parcels or ParcelStore(settings.db_path),
            clusterer=AdjacencyClusterer(buffer_m=settings.adjacency_buffer_m),
            exclusions=settings.exclusions,
            min_cluster_size=settings.min_cluster_size,
        )

    def _county_lock(self, county: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(county, threading.Lock())

    # -- rebuild -------------------------------------------------------

    def rebuild(self, county: str) -> RebuildResult:
        """Recompute and replace every holding of one county.

        Raises QueryFailure when the county cannot be read or written; the
        previous holdings of that county are then left untouched.
        """
        county_key = canonical_county(county)
        result = RebuildResult(county=county_key)
        if self.exclusions.is_excluded(county_key):
            logger.info("skipping %s: county is served by an external tileset", county_key)
            result.skipped = True
            return result

        with self._county_lock(county_key):
            started = time.perf_counter()
            rows = self._compute(county_key, result)
            self._replace_county(county_key, rows)
            result.clusters_created = len(rows)

        logger.info(
            "rebuilt %s: %d holdings from %d parcels in %.2fs "
            "(invalid=%d union_failures=%d owner_failures=%d)",
            county_key,
            result.clusters_created,
            result.parcels_processed,
            time.perf_counter() - started,
            result.invalid_geometries,
            result.union_failures,
            result.owner_failures,
        )
        return result

    def _compute(self, county: str, result: RebuildResult) -> List[dict]:
        rows: List[dict] = []
        for owner in self.parcels.owners(county):
            try:
                owner_parcels = self.parcels.parcels_for_owner(owner, county)
                groups, dropped = self.clusterer.cluster_with_report(owner_parcels)
                result.invalid_geometries += len(dropped)
                result.parcels_processed += sum(g.size for g in groups)
                for group in groups:
                    if group.size < self.min_cluster_size:
                        continue
                    merged = self.merger.merge(group)
                    result.union_failures += len(merged.failed_ids)
                    rows.append(
                        {
                            "id": merged.parcel_ids[0],
                            "owner": owner,
                            "parcel_ids": list(merged.parcel_ids),
                            "total_acres": merged.total_acres,
                            "geometry": merged.geometry,
                        }
                    )
            except QueryFailure:
                raise
            except Exception as e:
                result.owner_failures += 1
                result.errors.append(f"{owner}: {e}")
                logger.warning("aggregation failed for owner %r in %s: %s", owner, county, e)
                continue
        rows.sort(key=lambda r: r["id"])
        return rows

    def _replace_county(self, county: str, rows: Sequence[dict]) -> None:
        try:
            with connect(self.path) as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    conn.execute(
                        """
                        DELETE FROM parcel_aggregated_rtree
                        WHERE id IN (SELECT id FROM parcel_aggregated WHERE county = ?)
                        """,
                        (county,),
                    )
                    conn.execute("DELETE FROM parcel_aggregated_members WHERE county = ?", (county,))
                    conn.execute("DELETE FROM parcel_aggregated WHERE county = ?", (county,))
                    evicted = self._evict_stale(conn, rows)
                    if evicted:
                        logger.warning(
                            "removed %d stale holdings from other counties that claimed %s parcels",
                            evicted,
                            county,
                        )
                    for row in rows:
                        geom = row["geometry"]
                        minx, miny, maxx, maxy = geom.bounds
                        conn.execute(
                            """
                            INSERT INTO parcel_aggregated (
                                id, normalized_owner, county, parcel_ids, parcel_count,
                                total_acres, geom_geojson, minx, miny, maxx, maxy
                            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                            """,
                            (
                                row["id"],
                                row["owner"],
                                county,
                                json.dumps(row["parcel_ids"]),
                                len(row["parcel_ids"]),
                                row["total_acres"],
                                dumps_geometry(geom),
                                minx,
                                miny,
                                maxx,
                                maxy,
                            ),
                        )
                        conn.execute(
                            "INSERT INTO parcel_aggregated_rtree (id, minx, maxx, miny, maxy) VALUES (?, ?, ?, ?, ?)",
                            (row["id"], minx, maxx, miny, maxy),
                        )
                        conn.executemany(
                            "INSERT INTO parcel_aggregated_members (parcel_id, holding_id, county) VALUES (?, ?, ?)",
                            [(pid, row["id"], county) for pid in row["parcel_ids"]],
                        )
                    conn.execute("COMMIT")
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
        except sqlite3.Error as e:
            raise QueryFailure(f"writing holdings for {county} failed: {e}") from e

    @staticmethod
    def _evict_stale(conn: sqlite3.Connection, rows: Sequence[dict]) -> int:
        """Drop holdings of any county that share an id or a member parcel with `rows`.

        A parcel re-ingested under another county leaves its old holding
        behind until that county is rebuilt; the new holding wins.
        """
        stale: Set[int] = {int(r["id"]) for r in rows}
        parcel_ids = sorted({int(pid) for r in rows for pid in r["parcel_ids"]})
        for start in range(0, len(parcel_ids), _IN_CHUNK):
            chunk = parcel_ids[start:start + _IN_CHUNK]
            marks = ",".join("?" for _ in chunk)
            found = conn.execute(
                f"SELECT holding_id FROM parcel_aggregated_members WHERE parcel_id IN ({marks})",
                tuple(chunk),
            ).fetchall()
            stale.update(int(r[0]) for r in found)

        evicted = 0
        ids = sorted(stale)
        for start in range(0, len(ids), _IN_CHUNK):
            chunk = tuple(ids[start:start + _IN_CHUNK])
            marks = ",".join("?" for _ in chunk)
            conn.execute(f"DELETE FROM parcel_aggregated_rtree WHERE id IN ({marks})", chunk)
            conn.execute(f"DELETE FROM parcel_aggregated_members WHERE holding_id IN ({marks})", chunk)
            evicted += conn.execute(f"DELETE FROM parcel_aggregated WHERE id IN ({marks})", chunk).rowcount
        return evicted

    def rebuild_many(self, counties: Iterable[str]) -> List[RebuildResult]:
        """Rebuild each county in turn; one county failing does not stop the rest."""
        results: List[RebuildResult] = []
        for county in counties:
            try:
                results.append(self.rebuild(county))
            except QueryFailure as e:
                logger.error("rebuild of %s failed: %s", canonical_county(county), e)
                results.append(
                    RebuildResult(county=canonical_county(county), failed=True, errors=[str(e)])
                )
        return results

    def rebuild_all(self) -> List[RebuildResult]:
        return self.rebuild_many(self.parcels.counties())

    # -- reads ---------------------------------------------------------

    def _fetch(self, sql: str, params: tuple = ()) -> List[AggregatedHolding]:
        try:
            with connect(self.path) as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise QueryFailure(f"holdings query failed: {e}") from e
        return [_row_to_holding(r) for r in rows]

    def get(self, holding_id: int) -> Optional[AggregatedHolding]:
        rows = self._fetch("SELECT * FROM parcel_aggregated WHERE id = ?", (int(holding_id),))
        return rows[0] if rows else None

    def holdings_for_county(self, county: str) -> List[AggregatedHolding]:
        return self._fetch(
            "SELECT * FROM parcel_aggregated WHERE county = ? ORDER BY id",
            (canonical_county(county),),
        )

    def query_bbox(self, bbox: BBox, *, min_parcel_count: int = 1) -> List[AggregatedHolding]:
        min_lon, min_lat, max_lon, max_lat = bbox
        return self._fetch(
            """
            SELECT a.* FROM parcel_aggregated a
            JOIN parcel_aggregated_rtree r ON r.id = a.id
            WHERE r.maxx >= ? AND r.minx <= ? AND r.maxy >= ? AND r.miny <= ?
              AND a.parcel_count >= ?
            ORDER BY a.id
            """,
            (min_lon, max_lon, min_lat, max_lat, int(min_parcel_count)),
        )

    def captured_parcel_ids(self, parcel_ids: Iterable[int]) -> Set[int]:
        """Subset of `parcel_ids` that belong to some holding."""
        ids = sorted({int(i) for i in parcel_ids})
        captured: Set[int] = set()
        try:
            with connect(self.path) as conn:
                for start in range(0, len(ids), _IN_CHUNK):
                    chunk = ids[start:start + _IN_CHUNK]
                    marks = ",".join("?" for _ in chunk)
                    rows = conn.execute(
                        f"SELECT parcel_id FROM parcel_aggregated_members WHERE parcel_id IN ({marks})",
                        tuple(chunk),
                    ).fetchall()
                    captured.update(int(r[0]) for r in rows)
        except sqlite3.Error as e:
            raise QueryFailure(f"membership query failed: {e}") from e
        return captured

    def summary(self, county: str) -> dict:
        county_key = canonical_county(county)
        try:
            with connect(self.path) as conn:
                row = conn.execute(
                    """
                    SELECT COUNT(*) AS holdings,
                           COALESCE(SUM(parcel_count), 0) AS parcels,
                           COALESCE(SUM(total_acres), 0) AS acres,
                           COALESCE(MAX(parcel_count), 0) AS largest
                    FROM parcel_aggregated WHERE county = ?
                    """,
                    (county_key,),
                ).fetchone()
        except sqlite3.Error as e:
            raise QueryFailure(f"holdings summary failed: {e}") from e
        return {
            "county": county_key,
            "excluded": self.exclusions.is_excluded(county_key),
            "holdings": int(row["holdings"]),
            "parcels": int(row["parcels"]),
            "total_acres": round(float(row["acres"]), 2),
            "largest_parcel_count": int(row["largest"]),
        }

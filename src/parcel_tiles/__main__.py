from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from typing import List, Optional

from parcel_tiles.config import canonical_county, get_settings
from parcel_tiles.tiles.service import build_service
from parcel_tiles.tools.ingest_parcels import ingest_geojson


def _dumps(obj) -> str:
    return json.dumps(obj, sort_keys=True) + "\n"


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="parcel_tiles")
    parser.add_argument("--db", default=None, help="SQLite DB path (default: PT_DB_PATH)")
    parser.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, etc.)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_rebuild = sub.add_parser("rebuild", help="Rebuild aggregated holdings per county")
    target = p_rebuild.add_mutually_exclusive_group(required=True)
    target.add_argument("--county", default=None)
    target.add_argument("--counties", default=None, help="Comma-separated counties")
    target.add_argument("--all", action="store_true", help="Every county in the parcel store")
    p_rebuild.add_argument("--log-json", action="store_true", help="Emit one JSON log line per county")

    p_tile = sub.add_parser("tile", help="Render one tile")
    p_tile.add_argument("z", type=int)
    p_tile.add_argument("x", type=int)
    p_tile.add_argument("y", type=int)
    p_tile.add_argument("--hybrid", action="store_true")
    p_tile.add_argument("--out", default=None, help="Write the tile bytes to this file")

    p_ingest = sub.add_parser("ingest", help="Load parcels from a GeoJSON FeatureCollection")
    p_ingest.add_argument("geojson")
    p_ingest.add_argument("--county", default=None)

    sub.add_parser("counties", help="List counties with holdings summaries")

    args = parser.parse_args(argv)

    if args.log_level:
        logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO))

    settings = get_settings()
    if args.db:
        settings = replace(settings, db_path=args.db)
    service = build_service(settings)
    parcels = service.holdings.parcels

    if args.cmd == "rebuild":
        if args.all:
            counties = parcels.counties()
        elif args.county:
            counties = [canonical_county(args.county)]
        else:
            counties = [canonical_county(c) for c in str(args.counties).split(",") if c.strip()]
        results = service.holdings.rebuild_many(counties)
        if args.log_json:
            for r in results:
                sys.stdout.write(json.dumps(r.to_dict()) + "\n")
        ok = not any(r.failed for r in results)
        summary = {
            "ok": ok,
            "counties": len(results),
            "clusters_created": sum(r.clusters_created for r in results),
            "parcels_processed": sum(r.parcels_processed for r in results),
            "failed": [r.county for r in results if r.failed],
            "skipped": [r.county for r in results if r.skipped],
        }
        sys.stdout.write(_dumps(summary))
        return 0 if ok else 2

    if args.cmd == "tile":
        try:
            if args.hybrid:
                tile = service.generator.generate_hybrid(args.z, args.x, args.y)
            else:
                tile = service.generator.generate(args.z, args.x, args.y)
        except ValueError as e:
            parser.error(str(e))
        if tile and args.out:
            with open(args.out, "wb") as f:
                f.write(tile)
        sys.stdout.write(_dumps({"tile": [args.z, args.x, args.y], "bytes": len(tile or b""), "out": args.out}))
        return 0

    if args.cmd == "ingest":
        count = ingest_geojson(parcels, args.geojson, county=args.county)
        sys.stdout.write(_dumps({"ingested": count}))
        return 0

    if args.cmd == "counties":
        out = [service.holdings.summary(c) for c in parcels.counties()]
        sys.stdout.write(_dumps({"counties": out}))
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main())

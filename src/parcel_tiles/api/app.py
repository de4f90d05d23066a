import logging
from typing import Optional

from fastapi import Body, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from parcel_tiles.config import Settings, canonical_county, get_settings
from parcel_tiles.errors import QueryFailure
from parcel_tiles.owners import normalize_owner_name
from parcel_tiles.tiles.service import TileService, build_service


logger = logging.getLogger("pt.api")


class RebuildRequest(BaseModel):
    counties: list[str] = []
    all: bool = False


def _parse_tile_coords(z: str, x: str, y: str) -> tuple[int, int, int]:
    try:
        return int(z), int(x), int(y)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid tile coordinates")


def _tile_response(tile: Optional[bytes], ttl: int) -> Response:
    headers = {"Access-Control-Allow-Origin": "*"}
    if not tile:
        return Response(status_code=204, headers=headers)
    headers["Cache-Control"] = f"public, max-age={int(ttl)}"
    return Response(content=tile, media_type="application/x-protobuf", headers=headers)


def create_app(settings: Optional[Settings] = None, service: Optional[TileService] = None) -> FastAPI:
    """Build the tile API.

    The TileService (and the TileCache inside it) is created here or passed
    in, and lives on app.state; nothing is shared through module globals.
    """

    app = FastAPI(title="parcel_tiles")
    app.state.settings = settings
    app.state.service = service

    def _settings() -> Settings:
        if app.state.settings is None:
            app.state.settings = get_settings()
        return app.state.settings

    def _service() -> TileService:
        if app.state.service is None:
            app.state.service = build_service(_settings())
        return app.state.service

    @app.on_event("startup")
    def _build_service():
        _service()

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/api/parcels/tiles/stats")
    def tile_stats():
        return {"success": True, "stats": _service().cache_stats()}

    @app.post("/api/parcels/tiles/clear-cache")
    def clear_cache():
        _service().clear_cache()
        return {"success": True, "message": "Tile cache cleared"}

    @app.get("/api/parcels/tiles/hybrid/{z}/{x}/{y}.mvt")
    def hybrid_tile(z: str, x: str, y: str):
        zi, xi, yi = _parse_tile_coords(z, x, y)
        try:
            tile = _service().hybrid_tile(zi, xi, yi)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return _tile_response(tile, _settings().cache_ttl_seconds)

    @app.get("/api/parcels/tiles/{z}/{x}/{y}.mvt")
    def parcel_tile(z: str, x: str, y: str):
        """Ownership layer below the parcel zoom, parcels layer at/above it.

        204 when no feature intersects the tile.
        """
        zi, xi, yi = _parse_tile_coords(z, x, y)
        try:
            tile = _service().tile(zi, xi, yi)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return _tile_response(tile, _settings().cache_ttl_seconds)

    @app.post("/api/parcels/aggregation/rebuild")
    def rebuild(payload: RebuildRequest = Body(...)):
        service = _service()
        if payload.all:
            try:
                counties = service.holdings.parcels.counties()
            except QueryFailure as e:
                logger.error("county listing for rebuild failed: %s", e)
                raise HTTPException(status_code=500, detail="Failed to list counties")
        else:
            counties = [canonical_county(c) for c in payload.counties if canonical_county(c)]
        if not counties:
            raise HTTPException(status_code=400, detail="counties is required")
        results = service.rebuild(counties)
        ok = not any(r.failed for r in results)
        return JSONResponse(
            {"success": ok, "results": [r.to_dict() for r in results]},
            status_code=200 if ok else 500,
        )

    @app.get("/api/parcels/aggregation/{county}")
    def aggregation_summary(county: str):
        try:
            return {"success": True, "summary": _service().holdings.summary(county)}
        except QueryFailure as e:
            logger.error("summary for %s failed: %s", county, e)
            raise HTTPException(status_code=500, detail="Failed to read holdings")

    @app.get("/api/parcels/owners/top")
    def top_landowners(limit: int = Query(100, ge=1, le=1000)):
        try:
            owners = _service().holdings.parcels.top_landowners(limit)
        except QueryFailure as e:
            logger.error("top landowners failed: %s", e)
            raise HTTPException(status_code=500, detail="Failed to read owners")
        return {"success": True, "owners": owners}

    @app.get("/api/parcels/owners/search")
    def search_owners(q: str = "", limit: int = Query(50, ge=1, le=500)):
        try:
            owners = _service().holdings.parcels.search_owners(q, limit)
        except QueryFailure as e:
            logger.error("owner search for %r failed: %s", q, e)
            raise HTTPException(status_code=500, detail="Failed to search owners")
        return {"success": True, "owners": owners}

    @app.get("/api/parcels/owners/{owner}")
    def owner_stats(owner: str):
        key = normalize_owner_name(owner)
        if not key:
            raise HTTPException(status_code=400, detail="owner is required")
        try:
            stats = _service().holdings.parcels.owner_stats(key)
        except QueryFailure as e:
            logger.error("owner stats for %s failed: %s", key, e)
            raise HTTPException(status_code=500, detail="Failed to read owner")
        if stats is None:
            raise HTTPException(status_code=404, detail="Owner not found")
        return {"success": True, "stats": stats}

    @app.get("/api/parcels/at-point")
    def parcels_at_point(lon: float = Query(..., ge=-180, le=180), lat: float = Query(..., ge=-90, le=90)):
        try:
            hits = _service().holdings.parcels.parcels_at_point(lon, lat)
        except QueryFailure as e:
            logger.error("point lookup at %s,%s failed: %s", lon, lat, e)
            raise HTTPException(status_code=500, detail="Failed to query parcels")
        return {
            "success": True,
            "parcels": [
                {
                    "id": p.id,
                    "county": p.county,
                    "parcel_number": p.parcel_number,
                    "parcel_class": p.parcel_class,
                    "deed_holder": p.owner_raw,
                    "acres": round(p.acres, 2),
                    "geometry": p.geometry,
                }
                for p in hits
            ],
        }

    return app


app = create_app()

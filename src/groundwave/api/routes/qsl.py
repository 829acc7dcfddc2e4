"""Ham-radio logbook: listing, ADIF import/export and grid maps."""

from __future__ import annotations

import asyncio
from pathlib import Path
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from groundwave.adif import ADIFExporter, ADIFParser, LogbookManager, record_to_qso
from groundwave.auth.dependencies import require_admin, require_user
from groundwave.config import settings
from groundwave.db.connection import get_session_dependency
from groundwave.db.models import User
from groundwave.errors import MapError
from groundwave.gridmap import (
    MapConfig,
    create_grid_map_with_distance,
    distance_km,
    maidenhead_to_latlng,
)

router = APIRouter(prefix="/qsl", tags=["qsl"])
log = structlog.get_logger()


def map_path(qso_id: UUID) -> Path:
    return Path(settings.maps_dir) / f"qso-{qso_id}.png"


@router.get("")
async def list_qsos(
    _user: User = Depends(require_user),
    db: AsyncSession = Depends(get_session_dependency),
) -> dict:
    rows = []
    for record in await LogbookManager(db).list_records():
        q = record_to_qso(record)
        rows.append(
            {
                "id": str(record.id),
                "call": q.call,
                "time": q.format_qso_time(),
                "band": q.band,
                "mode": q.mode,
                "country": q.country,
                "flag": q.flag_code(),
                "gridsquare": q.gridsquare,
            }
        )
    return {"qsos": rows}


@router.post("/import")
async def import_adif(
    request: Request,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session_dependency),
) -> dict:
    """Import an ADIF log posted as the raw request body."""
    parser = ADIFParser()
    parser.parse(await request.body())
    result = await LogbookManager(db).import_qsos(parser.qsos)
    return {
        "records": parser.stats.records,
        "skipped": parser.stats.skipped,
        "imported": result.imported,
        "duplicates": result.duplicates,
    }


@router.get("/export")
async def export_adif(
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_session_dependency),
) -> Response:
    qsos = await LogbookManager(db).list_qsos()
    return Response(
        content=ADIFExporter().export(qsos),
        media_type="text/plain; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="groundwave.adi"'},
    )


@router.get("/{qso_id}/map", response_model=None)
async def qso_map(
    qso_id: UUID,
    _user: User = Depends(require_user),
    db: AsyncSession = Depends(get_session_dependency),
) -> Response:
    record = await LogbookManager(db).get_record(qso_id)
    if not record.my_gridsquare or not record.gridsquare:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "QSO has no grid squares"},
        )

    path = map_path(qso_id)
    try:
        if path.exists():
            distance = distance_km(
                maidenhead_to_latlng(record.my_gridsquare),
                maidenhead_to_latlng(record.gridsquare),
            )
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Tile downloads and drawing block.
            distance = await asyncio.to_thread(
                create_grid_map_with_distance,
                record.my_gridsquare,
                record.gridsquare,
                MapConfig(output_path=str(path)),
            )
    except MapError as e:
        log.warning("Grid map failed", qso_id=str(qso_id), error=e.message)
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"error": e.message, "distance_km": e.details.get("distance_km")},
        )

    return JSONResponse({"map_url": f"/maps/{path.name}", "distance_km": round(distance, 1)})

"""Configuration routes for the Dan, Rate and Season point tables.

Each table supports list / create / update / delete / restore. Writes go to the
database first and then refresh the in-memory `config_cache`, so scoring picks
up the change immediately. Updates and deletes accept the `version` the client
last read and answer 409 if the row has changed since. A write that loses a
race with another writer is rolled back and retried on fresh data.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from league_common.db import retry_on_conflict

from ..config_cache import config_cache
from ..dan_ranks import dan_rank_config, dan_rank_progress, next_dan_rank
from ..db import get_db
from ..ranking_cache import ranking_cache
from ..schemas import DanConfigIn, RateConfigIn, SeasonConfigIn
from ..services import configs as config_service
from ..settings import get_settings
from ..versioning import StaleVersionError

router = APIRouter()


def _list(name: str, db: Session, sanma: bool | None, include_deleted: bool) -> dict:
    table = config_service.get_table(name)
    rows = config_service.list_rows(db, table, sanma, include_deleted)
    return {"ok": True, "configs": [config_service.row_to_dict(r) for r in rows]}


def _payload(row) -> dict:
    return {"ok": True, "config": config_service.row_to_dict(row)}


def _write(db: Session, operation):
    def on_retry(exc):
        db.rollback()
        # the client sent an old version; reading again cannot fix that
        if isinstance(exc, StaleVersionError):
            raise exc

    return retry_on_conflict(operation, retries=get_settings().conflict_retries, on_retry=on_retry)


@router.get("/config/status")
def cache_status():
    """Config cache state (entry counts, initialized flag, active readers)."""
    return {"ok": True, "cache": config_cache.status(), "ranking_cache_size": ranking_cache.size()}


@router.post("/config/cache/refresh")
def refresh_cache():
    """Reload every point table from the database and drop cached rankings."""
    config_cache.refresh_all()
    dropped = ranking_cache.invalidate()
    return {"ok": True, "cache": config_cache.status(), "rankings_dropped": dropped}


@router.get("/config/cache")
def cache_snapshot():
    return {"ok": True, **config_cache.snapshot()}


@router.get("/config/dan/rank")
def dan_rank_lookup(
    points: float = Query(..., ge=0),
    sanma: bool = Query(default=False),
):
    """Rank for a Dan point total, with the next rank and progress.

    Returns:
        dict: `{ "ok": true, "rank": str|null, "config": {...}|null, "next": {...}, "progress": {...} }`.
    """
    config = dan_rank_config(points, sanma)
    return {
        "ok": True,
        "rank": config.rank if config else None,
        "config": config_service.entry_to_dict(config) if config else None,
        "next": next_dan_rank(points, sanma),
        "progress": dan_rank_progress(points, sanma),
    }


# dan


@router.get("/config/dan")
def list_dan(
    sanma: bool | None = Query(default=None),
    include_deleted: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    return _list("dan", db, sanma, include_deleted)


@router.post("/config/dan", status_code=201)
def create_dan(body: DanConfigIn, db: Session = Depends(get_db)):
    row = _write(db, lambda: config_service.create_row(db, config_service.get_table("dan"), body.model_dump()))
    return _payload(row)


@router.put("/config/dan/{config_id}")
def update_dan(config_id: int, body: DanConfigIn, db: Session = Depends(get_db)):
    values = body.model_dump(exclude_unset=True)
    table = config_service.get_table("dan")
    row = _write(db, lambda: config_service.update_row(db, table, config_id, values))
    return _payload(row)


# rate


@router.get("/config/rate")
def list_rate(
    sanma: bool | None = Query(default=None),
    include_deleted: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    return _list("rate", db, sanma, include_deleted)


@router.post("/config/rate", status_code=201)
def create_rate(body: RateConfigIn, db: Session = Depends(get_db)):
    row = _write(db, lambda: config_service.create_row(db, config_service.get_table("rate"), body.model_dump()))
    return _payload(row)


@router.put("/config/rate/{config_id}")
def update_rate(config_id: int, body: RateConfigIn, db: Session = Depends(get_db)):
    values = body.model_dump(exclude_unset=True)
    table = config_service.get_table("rate")
    row = _write(db, lambda: config_service.update_row(db, table, config_id, values))
    return _payload(row)


# season


@router.get("/config/season")
def list_season(
    sanma: bool | None = Query(default=None),
    include_deleted: bool = Query(default=False),
    db: Session = Depends(get_db),
):
    return _list("season", db, sanma, include_deleted)


@router.post("/config/season", status_code=201)
def create_season_config(body: SeasonConfigIn, db: Session = Depends(get_db)):
    row = _write(db, lambda: config_service.create_row(db, config_service.get_table("season"), body.model_dump()))
    return _payload(row)


@router.put("/config/season/{config_id}")
def update_season_config(config_id: int, body: SeasonConfigIn, db: Session = Depends(get_db)):
    values = body.model_dump(exclude_unset=True)
    table = config_service.get_table("season")
    row = _write(db, lambda: config_service.update_row(db, table, config_id, values))
    return _payload(row)


# shared delete / restore


@router.delete("/config/{table}/{config_id}")
def delete_config(
    table: str,
    config_id: int,
    version: int | None = Query(default=None, description="Version last read by the client."),
    db: Session = Depends(get_db),
):
    """Soft-delete a row of the `dan`, `rate` or `season` table."""
    if table not in config_service.TABLES:
        raise HTTPException(status_code=404, detail=f"Unknown config table: {table}")
    row = _write(db, lambda: config_service.delete_row(db, config_service.get_table(table), config_id, version))
    return _payload(row)


@router.post("/config/{table}/{config_id}/restore")
def restore_config(table: str, config_id: int, db: Session = Depends(get_db)):
    if table not in config_service.TABLES:
        raise HTTPException(status_code=404, detail=f"Unknown config table: {table}")
    row = _write(db, lambda: config_service.restore_row(db, config_service.get_table(table), config_id))
    return _payload(row)

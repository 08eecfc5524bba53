"""Season and tournament routes.

Responsibilities:
- season listing, creation and activation (only one season is active)
- season close: snapshot season aggregates, reset season counters
- tournament listing, creation and finalize (standings from SEASON points)

Closing a season and finalizing a tournament are irreversible and require a
confirmation word in the request body.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas import SeasonClose, SeasonCreate, TournamentCreate, TournamentFinalize
from ..services import seasons as season_service

router = APIRouter()


@router.get("/seasons")
def list_seasons(db: Session = Depends(get_db)):
    return {"ok": True, "seasons": [season_service.season_to_dict(s) for s in season_service.list_seasons(db)]}


@router.post("/seasons", status_code=201)
def create_season(body: SeasonCreate, db: Session = Depends(get_db)):
    season = season_service.create_season(db, body.name, body.start_date, body.end_date, body.is_active)
    return {"ok": True, "season": season_service.season_to_dict(season)}


@router.get("/seasons/{season_id}")
def get_season(season_id: int, db: Session = Depends(get_db)):
    return {"ok": True, "season": season_service.season_to_dict(season_service.get_season(db, season_id))}


@router.post("/seasons/{season_id}/activate")
def activate_season(season_id: int, db: Session = Depends(get_db)):
    """Make this the active season; any other active season is deactivated."""
    season = season_service.activate_season(db, season_id)
    return {"ok": True, "season": season_service.season_to_dict(season)}


@router.get("/seasons/{season_id}/close")
def close_season_preview(season_id: int, db: Session = Depends(get_db)):
    """Show what closing the season would snapshot."""
    return {"ok": True, **season_service.season_close_preview(db, season_id)}


@router.post("/seasons/{season_id}/close")
def close_season(season_id: int, body: SeasonClose, db: Session = Depends(get_db)):
    """Close a season.

    Args:
        season_id: Season to close.
        body: `confirmation` must be "CONFIRMAR"; optional `end_date` and
            `next_season_id` (activated after closing).
        db: SQLAlchemy session (injected).

    Returns:
        dict: `{ "ok": true, "season": {...}, "snapshots": int, "next_season": {...} | null }`.
    """
    result = season_service.close_season(db, season_id, body.confirmation, body.end_date, body.next_season_id)
    return {"ok": True, **result}


@router.get("/tournaments")
def list_tournaments(season_id: int | None = Query(default=None), db: Session = Depends(get_db)):
    tournaments = season_service.list_tournaments(db, season_id)
    return {"ok": True, "tournaments": [season_service.tournament_to_dict(t) for t in tournaments]}


@router.post("/tournaments", status_code=201)
def create_tournament(body: TournamentCreate, db: Session = Depends(get_db)):
    tournament = season_service.create_tournament(
        db, body.name, body.start_date, body.end_date, body.season_id, body.tournament_type
    )
    return {"ok": True, "tournament": season_service.tournament_to_dict(tournament)}


@router.post("/tournaments/{tournament_id}/finalize")
def finalize_tournament(tournament_id: int, body: TournamentFinalize, db: Session = Depends(get_db)):
    """Finalize a tournament once it has ended.

    `confirmation` must be "FINALIZAR". Standings are the players' SEASON
    points earned in the tournament's games.
    """
    tournament = season_service.finalize_tournament(db, tournament_id, body.confirmation)
    return {"ok": True, "tournament": tournament}

"""Game routes.

Responsibilities:
- preview a table's outcome without saving (`POST /games/calculate`)
- record a game and update every ranking it touches (`POST /games`)
- list, fetch and delete games

Recording retries on concurrency conflicts (two tables submitted at the same
moment for the same player). Deleting a game rebuilds all rankings.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from league_common.db import retry_on_conflict

from ..db import get_db
from ..schemas import GameSubmission
from ..services import games as game_service
from ..settings import get_settings

router = APIRouter()


@router.post("/games/calculate")
def calculate_game(body: GameSubmission, db: Session = Depends(get_db)):
    """Compute positions, final scores and new Dan/Rate/Season values.

    Nothing is written.

    Returns:
        dict: `{ "ok": true, "sanma": bool, "game_type": "H"|"T",
        "season_eligible": bool, "results": [...] }`.
    """
    return {"ok": True, **game_service.preview_game(db, body)}


@router.post("/games", status_code=201)
def create_game(body: GameSubmission, db: Session = Depends(get_db)):
    """Record a game.

    Args:
        body: Table submission (ruleset, date, type, season/tournament, players).
        db: SQLAlchemy session (injected).

    Returns:
        dict: `{ "ok": true, "game": {...} }` with each player's deltas.

    Raises:
        ValidationError: Wrong player count, repeated player or bad score sum (400).
        NotFoundError: Unknown player number (404).
    """
    game = retry_on_conflict(
        lambda: game_service.record_game(db, body),
        retries=get_settings().conflict_retries,
        on_retry=lambda exc: db.rollback(),
    )
    return {"ok": True, "game": game}


@router.get("/games/next-game-number")
def next_game_number(game_date: date | None = Query(default=None), db: Session = Depends(get_db)):
    game_date = game_date or date.today()
    return {"ok": True, "game_date": game_date.isoformat(), "game_number": game_service.next_game_number(db, game_date)}


@router.get("/games")
def list_games(
    db: Session = Depends(get_db),
    player_number: int | None = Query(default=None),
    season_id: int | None = Query(default=None),
    sanma: bool | None = Query(default=None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Most recent games first."""
    games = game_service.list_games(db, player_number, season_id, sanma, limit, offset)
    return {"ok": True, "games": [game_service.game_to_dict(g) for g in games]}


@router.get("/games/{game_id}")
def get_game(game_id: int, db: Session = Depends(get_db)):
    return {"ok": True, "game": game_service.game_to_dict(game_service.get_game(db, game_id))}


@router.delete("/games/{game_id}")
def delete_game(game_id: int, db: Session = Depends(get_db)):
    """Soft-delete a game and replay every remaining game.

    Returns:
        dict: `{ "ok": true, "game_id": int, "recalculated": {...} }`.
    """
    return {"ok": True, **game_service.delete_game(db, game_id)}

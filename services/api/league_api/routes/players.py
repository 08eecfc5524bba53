"""Player directory routes.

Responsibilities:
- player listing, search and lookup by league number (`/players`, `/players/{number}`)
- registration helpers (next free number, nickname availability)
- profile (both rankings with Dan progress) and point history for charts
- update, soft delete and restore

Players are addressed by `player_number`, the public league number; the
internal `id` never appears in URLs.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..calculations import validate_nickname
from ..db import get_db
from ..schemas import PlayerCreate, PlayerUpdate
from ..services import players as player_service
from ..services.rankings import player_history, player_profile

router = APIRouter()


@router.get("/players")
def list_players(
    db: Session = Depends(get_db),
    search: str | None = Query(
        default=None,
        description="Case-insensitive match on nickname or full name; exact match on a numeric player number.",
    ),
    include_deleted: bool = Query(default=False, description="Also list soft-deleted players."),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """List players ordered by player number, with optional search and pagination.

    Args:
        db: SQLAlchemy session (injected).
        search: Optional filter.
        include_deleted: Include soft-deleted players.
        limit: Maximum number of players to return.
        offset: Row offset for pagination.

    Returns:
        dict: `{ "ok": true, "players": [...], "total": <int> }`.
    """
    players, total = player_service.list_players(db, search, limit, offset, include_deleted)
    return {
        "ok": True,
        "players": [player_service.player_to_dict(p) for p in players],
        "total": total,
    }


@router.get("/players/search")
def search_players(
    q: str = Query(..., min_length=1),
    limit: int = Query(10, ge=1, le=50),
    db: Session = Depends(get_db),
):
    """Autocomplete lookup used by the game entry form."""
    players, _ = player_service.list_players(db, q, limit, 0)
    return {
        "ok": True,
        "players": [
            {"player_number": p.player_number, "nickname": p.nickname, "fullname": p.fullname}
            for p in players
        ],
    }


@router.get("/players/check-nickname")
def check_nickname(
    nickname: str = Query(..., min_length=1),
    exclude: int | None = Query(default=None, description="Player number being edited."),
    db: Session = Depends(get_db),
):
    """Report whether a nickname is well-formed and not already taken.

    Returns:
        dict: `{ "ok": true, "available": bool, "errors": [...] }`.
    """
    errors = validate_nickname(nickname)
    exclude_id = None
    if exclude is not None:
        exclude_id = player_service.get_player(db, exclude).id
    available = not errors and player_service.nickname_available(db, nickname, exclude_player_id=exclude_id)
    return {"ok": True, "available": available, "errors": errors}


@router.get("/players/next-number")
def next_number(db: Session = Depends(get_db)):
    return {"ok": True, "player_number": player_service.next_player_number(db)}


@router.post("/players", status_code=201)
def create_player(body: PlayerCreate, db: Session = Depends(get_db)):
    """Register a player with empty 4-player and 3-player rankings.

    Returns:
        dict: `{ "ok": true, "player": {...} }`.

    Raises:
        ValidationError: Malformed nickname (400).
        ConflictError: Nickname or number already taken (409).
    """
    player = player_service.create_player(
        db,
        nickname=body.nickname,
        fullname=body.fullname,
        player_number=body.player_number,
        country_iso=body.country_iso,
        birthday=body.birthday,
    )
    return {"ok": True, "player": player_service.player_to_dict(player)}


@router.get("/players/{player_number}")
def get_player(player_number: int, db: Session = Depends(get_db)):
    """Fetch a single player by league number.

    Raises:
        HTTPException: 404 if the player does not exist.
    """
    player = player_service.get_player(db, player_number)
    return {"ok": True, "player": player_service.player_to_dict(player)}


@router.get("/players/{player_number}/profile")
def get_profile(player_number: int, db: Session = Depends(get_db)):
    """Player data plus both rankings (`yonma`, `sanma`) with rank progress."""
    player = player_service.get_player(db, player_number)
    return {
        "ok": True,
        "player": player_service.player_to_dict(player),
        "rankings": player_profile(db, player),
    }


@router.get("/players/{player_number}/history")
def get_history(
    player_number: int,
    sanma: bool | None = Query(default=None, description="Restrict to 3-player (true) or 4-player (false) games."),
    db: Session = Depends(get_db),
):
    """Dan/Rate progression per game and Season events with a running total.

    Returns:
        dict: `{ "ok": true, "player": {...}, "games": [...], "season_events": [...],
        "cumulative_season": [...], "stats": {...} }`.
    """
    player = player_service.get_player(db, player_number)
    history = player_history(db, player, sanma)
    return {"ok": True, "player": player_service.player_to_dict(player), **history}


@router.put("/players/{player_number}")
def update_player(player_number: int, body: PlayerUpdate, db: Session = Depends(get_db)):
    changes = body.model_dump(exclude_unset=True, exclude={"version"})
    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update")
    player = player_service.update_player(db, player_number, changes, body.version)
    return {"ok": True, "player": player_service.player_to_dict(player)}


@router.delete("/players/{player_number}")
def delete_player(
    player_number: int,
    version: int | None = Query(default=None, description="Version last read by the client."),
    db: Session = Depends(get_db),
):
    """Soft-delete a player. Their games and points stay untouched."""
    player = player_service.delete_player(db, player_number, version)
    return {"ok": True, "player": player_service.player_to_dict(player)}


@router.post("/players/{player_number}/restore")
def restore_player(player_number: int, db: Session = Depends(get_db)):
    player = player_service.restore_player(db, player_number)
    return {"ok": True, "player": player_service.player_to_dict(player)}

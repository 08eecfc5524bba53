"""Ranking table routes."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..ranking_cache import GENERAL, ranking_cache
from ..services.rankings import build_ranking_table

router = APIRouter()


@router.get("/rankings")
def get_rankings(
    db: Session = Depends(get_db),
    ranking_type: str = Query(default=GENERAL, alias="type", description="GENERAL or SEASON."),
    sanma: bool = Query(default=False, description="3-player table."),
    include_inactive: bool = Query(default=False, description="Keep players outside the activity window."),
    season_id: int | None = Query(default=None, description="Season used for activity and trends (active season by default)."),
):
    """Ranking table for one mode.

    GENERAL tables are ordered by Dan, then Rate, then average position.
    SEASON tables put players with season games first, then order by season
    points, season average position and win rate.

    Args:
        db: SQLAlchemy session (injected).
        ranking_type: "GENERAL" or "SEASON".
        sanma: 3-player table when true.
        include_inactive: Include players that fail the activity filter.
        season_id: Optional season override.

    Returns:
        dict: `{ "ok": true, "type": str, "sanma": bool, "rankings": [...] }`.
    """
    rows = build_ranking_table(db, ranking_type, sanma, include_inactive, season_id)
    return {"ok": True, "type": ranking_type.upper(), "sanma": sanma, "rankings": rows}


@router.get("/rankings/cache")
def ranking_cache_status():
    return {"ok": True, "size": ranking_cache.size(), "keys": ranking_cache.keys()}

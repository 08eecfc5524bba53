"""Seasons and tournaments: activation, season close and tournament finalize."""

from collections import defaultdict
from datetime import date
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from .. import models
from ..errors import ConflictError, NotFoundError, ValidationError
from ..ranking_cache import ranking_cache
from .games import active_season

logger = logging.getLogger(__name__)

CLOSE_CONFIRMATION = "CONFIRMAR"
FINALIZE_CONFIRMATION = "FINALIZAR"

_SEASON_COUNTERS = [
    f"{place}_place_{suffix}"
    for place in ("first", "second", "third", "fourth")
    for suffix in ("h", "t")
]


def season_to_dict(season: models.Season) -> dict:
    return {
        "id": season.id,
        "name": season.name,
        "start_date": season.start_date.isoformat(),
        "end_date": season.end_date.isoformat() if season.end_date else None,
        "is_active": season.is_active,
        "is_closed": season.is_closed,
        "version": season.version,
    }


def tournament_to_dict(tournament: models.Tournament) -> dict:
    return {
        "id": tournament.id,
        "name": tournament.name,
        "season_id": tournament.season_id,
        "tournament_type": tournament.tournament_type,
        "start_date": tournament.start_date.isoformat(),
        "end_date": tournament.end_date.isoformat() if tournament.end_date else None,
        "is_completed": tournament.is_completed,
        "version": tournament.version,
        "results": [
            {
                "position": r.position,
                "player_number": r.player.player_number,
                "nickname": r.player.nickname,
                "points_won": r.points_won,
                "prize_won": r.prize_won,
            }
            for r in tournament.results
            if not r.deleted
        ],
    }


def list_seasons(db: Session) -> list[models.Season]:
    return list(db.scalars(select(models.Season).order_by(models.Season.start_date.desc())).all())


def get_season(db: Session, season_id: int) -> models.Season:
    season = db.scalars(select(models.Season).where(models.Season.id == season_id)).first()
    if season is None:
        raise NotFoundError("Season not found")
    return season


def _activate(db: Session, season: models.Season) -> None:
    for other in db.scalars(select(models.Season).where(models.Season.is_active.is_(True))).all():
        if other.id != season.id:
            other.is_active = False
    season.is_active = True


def create_season(db: Session, name: str, start_date: date, end_date: date | None = None, is_active: bool = False) -> models.Season:
    exists = db.execute(
        select(models.Season.id).where(models.Season.name == name).execution_options(include_deleted=True)
    ).first()
    if exists:
        raise ConflictError(f"Season '{name}' already exists")
    if end_date is not None and end_date < start_date:
        raise ValidationError("end_date must not be before start_date")

    season = models.Season(name=name, start_date=start_date, end_date=end_date, is_active=False, is_closed=False)
    db.add(season)
    if is_active:
        _activate(db, season)
    db.commit()
    ranking_cache.invalidate()
    logger.info("season created: %s (active=%s)", name, is_active)
    return season


def activate_season(db: Session, season_id: int) -> models.Season:
    """Make `season_id` the only active season."""
    season = get_season(db, season_id)
    if season.is_closed:
        raise ValidationError("A closed season cannot be activated")
    _activate(db, season)
    db.commit()
    ranking_cache.invalidate()
    logger.info("season %s activated", season.name)
    return season


def season_close_preview(db: Session, season_id: int) -> dict:
    """What closing the season would snapshot, without changing anything."""
    season = get_season(db, season_id)
    rankings = []
    if season.is_active:
        rankings = db.scalars(
            select(models.PlayerRanking).where(models.PlayerRanking.season_total_games > 0)
        ).all()
    by_mode = defaultdict(list)
    for r in rankings:
        by_mode["sanma" if r.is_sanma else "yonma"].append({
            "player_number": r.player.player_number,
            "nickname": r.player.nickname,
            "season_points": round(r.season_points or 0.0, 1),
            "season_total_games": r.season_total_games,
        })
    for rows in by_mode.values():
        rows.sort(key=lambda row: -row["season_points"])

    tournaments = db.scalars(
        select(models.Tournament).where(models.Tournament.season_id == season.id)
    ).all()
    return {
        "season": season_to_dict(season),
        "players": dict(by_mode),
        "open_tournaments": [t.name for t in tournaments if not t.is_completed],
        "confirmation": CLOSE_CONFIRMATION,
    }


def close_season(
    db: Session,
    season_id: int,
    confirmation: str,
    end_date: date | None = None,
    next_season_id: int | None = None,
) -> dict:
    """Close a season.

    Closing the active season snapshots the season counters of every ranking
    into SeasonResult and resets them. An inactive season is only marked
    closed; the counters of the active season are left alone.

    Raises:
        ValidationError: Wrong confirmation word or season already closed.
        NotFoundError: Unknown season.
    """
    if confirmation != CLOSE_CONFIRMATION:
        raise ValidationError(f"Type {CLOSE_CONFIRMATION} to close the season")
    season = get_season(db, season_id)
    if season.is_closed:
        raise ValidationError("Season is already closed")
    next_season = get_season(db, next_season_id) if next_season_id is not None else None

    snapshots = 0
    # season_* counters on PlayerRanking belong to the active season only
    rankings = db.scalars(select(models.PlayerRanking)).all() if season.is_active else []
    for ranking in rankings:
        if ranking.season_total_games:
            existing = db.scalars(
                select(models.SeasonResult).where(
                    models.SeasonResult.season_id == season.id,
                    models.SeasonResult.player_id == ranking.player_id,
                    models.SeasonResult.is_sanma.is_(ranking.is_sanma),
                )
            ).first()
            result = existing or models.SeasonResult(
                season_id=season.id, player_id=ranking.player_id, is_sanma=ranking.is_sanma
            )
            result.season_points = ranking.season_points or 0.0
            result.season_total_games = ranking.season_total_games
            result.season_average_position = ranking.season_average_position or 0.0
            for name in _SEASON_COUNTERS:
                setattr(result, name, getattr(ranking, f"season_{name}") or 0)
            if existing is None:
                db.add(result)
            snapshots += 1

        ranking.season_points = 0.0
        ranking.season_total_games = 0
        ranking.season_average_position = 0.0
        for name in _SEASON_COUNTERS:
            setattr(ranking, f"season_{name}", 0)

    season.is_active = False
    season.is_closed = True
    season.end_date = end_date or season.end_date or date.today()
    if next_season is not None:
        if next_season.is_closed:
            raise ValidationError("The next season is already closed")
        _activate(db, next_season)

    db.commit()
    ranking_cache.invalidate()
    logger.info("season %s closed: %d snapshots", season.name, snapshots)
    return {
        "season": season_to_dict(season),
        "snapshots": snapshots,
        "next_season": season_to_dict(next_season) if next_season else None,
    }


def list_tournaments(db: Session, season_id: int | None = None) -> list[models.Tournament]:
    stmt = select(models.Tournament).order_by(models.Tournament.start_date.desc())
    if season_id is not None:
        stmt = stmt.where(models.Tournament.season_id == season_id)
    return list(db.scalars(stmt).all())


def get_tournament(db: Session, tournament_id: int) -> models.Tournament:
    tournament = db.scalars(select(models.Tournament).where(models.Tournament.id == tournament_id)).first()
    if tournament is None:
        raise NotFoundError("Tournament not found")
    return tournament


def create_tournament(
    db: Session,
    name: str,
    start_date: date,
    end_date: date | None = None,
    season_id: int | None = None,
    tournament_type: str = "INDIVIDUAL",
) -> models.Tournament:
    if season_id is None:
        season = active_season(db)
        season_id = season.id if season else None
    else:
        season = get_season(db, season_id)
        if season.is_closed:
            raise ValidationError(f"Season '{season.name}' is closed")
    if end_date is not None and end_date < start_date:
        raise ValidationError("end_date must not be before start_date")

    tournament = models.Tournament(
        name=name,
        season_id=season_id,
        tournament_type=tournament_type.upper(),
        start_date=start_date,
        end_date=end_date,
        is_completed=False,
    )
    db.add(tournament)
    db.commit()
    logger.info("tournament created: %s (season %s)", name, season_id)
    return tournament


def finalize_tournament(db: Session, tournament_id: int, confirmation: str, today: date | None = None) -> dict:
    """Total each player's SEASON points for the tournament and store standings.

    Ties on points share a position. Previous results of the tournament are
    replaced.

    Raises:
        ValidationError: Wrong confirmation word, already completed, or the
            tournament has not ended yet.
    """
    if confirmation != FINALIZE_CONFIRMATION:
        raise ValidationError(f"Type {FINALIZE_CONFIRMATION} to finalize the tournament")
    tournament = get_tournament(db, tournament_id)
    if tournament.is_completed:
        raise ValidationError("Tournament is already finalized")
    today = today or date.today()
    if tournament.end_date is not None and tournament.end_date > today:
        raise ValidationError("Tournament has not ended yet")

    totals: dict[int, float] = defaultdict(float)
    for pts in db.scalars(
        select(models.Points).where(
            models.Points.tournament_id == tournament.id,
            models.Points.points_type == models.POINTS_SEASON,
        )
    ):
        totals[pts.player_id] += pts.points_value

    for old in db.scalars(
        select(models.TournamentResult).where(models.TournamentResult.tournament_id == tournament.id)
    ).all():
        db.delete(old)

    ordered = sorted(totals.items(), key=lambda item: -item[1])
    position = 0
    previous = None
    for i, (player_id, points) in enumerate(ordered, start=1):
        points = round(points, 1)
        if points != previous:
            position = i
            previous = points
        db.add(models.TournamentResult(
            tournament_id=tournament.id,
            player_id=player_id,
            position=position,
            points_won=points,
        ))

    tournament.is_completed = True
    if tournament.end_date is None:
        tournament.end_date = today
    db.commit()
    db.refresh(tournament)
    ranking_cache.invalidate()
    logger.info("tournament %s finalized with %d players", tournament.name, len(ordered))
    return tournament_to_dict(tournament)

"""Game submission and removal.

Recording a game is one transaction:

1. validate the table (player count for the ruleset, no duplicates, score sum);
2. rank the raw scores, apply uma/oka/chonbo to get final scores (k);
3. compute new Dan, Rate and (for tournament games in a season) Season points
   from the players' current rankings and the cached point tables;
4. write the Game, one GameResult per player, the Points ledger rows
   (DAN and RATE totals, SEASON earned) and update each PlayerRanking.

`preview_game` runs steps 1-3 without writing anything.

Because Dan and Rate depend on the order games were played, deleting a game
rebuilds every ranking from scratch (`rankings.recalculate_all`).
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .. import calculations, models
from ..errors import NotFoundError, ValidationError
from ..ranking_cache import ranking_cache
from ..settings import get_settings
from ..schemas import GameSubmission

logger = logging.getLogger(__name__)

_PLACE_NAMES = ("first", "second", "third", "fourth")


@dataclass
class PlannedResult:
    player: models.Player
    game_score: int
    chonbo: int
    uma: float
    oka: float
    final_score: float
    final_position: int
    calc: calculations.GameCalculationResult
    wind: str | None = None


@dataclass
class GamePlan:
    ruleset: models.Ruleset
    game_type: str
    game_date: datetime
    season: models.Season | None
    tournament: models.Tournament | None
    location_id: int | None
    table_average_rate: float
    rankings: dict[int, models.PlayerRanking] = field(default_factory=dict)
    results: list[PlannedResult] = field(default_factory=list)

    @property
    def sanma(self) -> bool:
        return self.ruleset.sanma

    @property
    def season_eligible(self) -> bool:
        return self.season is not None and self.tournament is not None


def active_season(db: Session) -> models.Season | None:
    return db.scalars(
        select(models.Season)
        .where(models.Season.is_active.is_(True))
        .order_by(models.Season.start_date.desc())
    ).first()


def next_game_number(db: Session, game_day: date) -> int:
    start = datetime.combine(game_day, time.min)
    end = datetime.combine(game_day, time.max)
    current = db.scalar(
        select(func.max(models.Game.game_number))
        .where(models.Game.game_date >= start, models.Game.game_date <= end)
        .execution_options(include_deleted=True)
    )
    return (current or 0) + 1


def get_ranking(db: Session, player: models.Player, sanma: bool, create: bool = True) -> models.PlayerRanking | None:
    ranking = db.scalars(
        select(models.PlayerRanking).where(
            models.PlayerRanking.player_id == player.id,
            models.PlayerRanking.is_sanma.is_(sanma),
        )
    ).first()
    if ranking is None and create:
        settings = get_settings()
        ranking = models.PlayerRanking(
            player=player,
            is_sanma=sanma,
            dan_points=settings.initial_dan,
            rate_points=settings.initial_rate,
            max_rate=settings.initial_rate,
        )
        db.add(ranking)
    return ranking


def standing_of(ranking: models.PlayerRanking | None) -> calculations.CurrentStanding:
    settings = get_settings()
    if ranking is None:
        return calculations.CurrentStanding(
            dan_points=settings.initial_dan, rate_points=settings.initial_rate
        )
    return calculations.CurrentStanding(
        dan_points=ranking.dan_points if ranking.dan_points is not None else settings.initial_dan,
        rate_points=ranking.rate_points if ranking.rate_points is not None else settings.initial_rate,
        total_games=ranking.total_games or 0,
        season_points=ranking.season_points or 0.0,
    )


def _load_players(db: Session, numbers: list[int]) -> dict[int, models.Player]:
    players = db.scalars(
        select(models.Player).where(models.Player.player_number.in_(numbers))
    ).all()
    by_number = {p.player_number: p for p in players}
    missing = [n for n in numbers if n not in by_number]
    if missing:
        raise NotFoundError(f"Players not found: {', '.join(str(n) for n in missing)}")
    return by_number


def _resolve_context(db: Session, submission: GameSubmission):
    ruleset = db.get(models.Ruleset, submission.ruleset_id)
    if ruleset is None or ruleset.deleted:
        raise ValidationError("Ruleset not found")

    tournament = None
    if submission.tournament_id is not None:
        tournament = db.get(models.Tournament, submission.tournament_id)
        if tournament is None or tournament.deleted:
            raise ValidationError("Tournament not found")
        if tournament.is_completed:
            raise ValidationError("Tournament is already finalized")

    season = None
    if submission.season_id is not None:
        season = db.get(models.Season, submission.season_id)
        if season is None or season.deleted:
            raise ValidationError("Season not found")
    elif tournament is not None and tournament.season_id is not None:
        season = db.get(models.Season, tournament.season_id)
    else:
        season = active_season(db)

    if season is not None and season.is_closed:
        raise ValidationError(f"Season '{season.name}' is closed")
    return ruleset, season, tournament


def validate_submission(ruleset: models.Ruleset, submission: GameSubmission) -> None:
    errors = []
    expected_players = 3 if ruleset.sanma else 4
    if len(submission.players) != expected_players:
        errors.append(f"Exactly {expected_players} players are required for this ruleset")

    numbers = [p.player_number for p in submission.players]
    if not calculations.validate_unique_player_ids(numbers):
        errors.append("A player cannot appear twice in the same game")

    check = calculations.validate_game_scores(
        [p.game_score for p in submission.players],
        len(submission.players),
        ruleset.in_points,
        get_settings().score_tolerance,
    )
    if not check["is_valid"]:
        errors.append(f"Scores must add up to {check['expected_total']} (got {check['actual_total']})")

    if errors:
        raise ValidationError("Invalid game", errors=errors)


def plan_game(db: Session, submission: GameSubmission) -> GamePlan:
    """Validate a submission and compute every player's outcome."""
    ruleset, season, tournament = _resolve_context(db, submission)
    validate_submission(ruleset, submission)

    players = _load_players(db, [p.player_number for p in submission.players])
    sanma = ruleset.sanma

    # raw scores decide the placement used for uma and oka
    raw_positions = calculations.calculate_final_positions([
        calculations.PlayerScore(p.player_number, p.game_score) for p in submission.players
    ])
    position_by_number = {pp.player_id: pp.final_position for pp in raw_positions}
    ordered_positions = [position_by_number[p.player_number] for p in submission.players]

    uma_values = ruleset.uma.values(sanma) if ruleset.uma else [0.0] * len(submission.players)
    umas = calculations.uma_for_all(ordered_positions, uma_values)
    okas = calculations.oka_distribution(ordered_positions, ruleset.oka or 0)

    finals = [
        calculations.final_score(p.game_score, ruleset.out_points, umas[i], okas[i], p.chonbo, ruleset.chonbo or 0)
        for i, p in enumerate(submission.players)
    ]

    rankings = {}
    standings = {}
    for p in submission.players:
        player = players[p.player_number]
        ranking = get_ranking(db, player, sanma, create=False)
        rankings[player.id] = ranking
        standings[player.id] = standing_of(ranking)

    table_average = sum(s.rate_points for s in standings.values()) / len(standings)
    season_eligible = season is not None and tournament is not None

    calc_results = calculations.calculate_game_results(
        [calculations.PlayerScore(players[p.player_number].id, finals[i]) for i, p in enumerate(submission.players)],
        submission.game_type,
        standings,
        table_average,
        sanma,
        season_eligible,
        season.id if season else None,
    )
    calc_by_player = {r.player_id: r for r in calc_results}

    plan = GamePlan(
        ruleset=ruleset,
        game_type=submission.game_type,
        game_date=datetime.combine(submission.game_date, time(12, 0)),
        season=season,
        tournament=tournament,
        location_id=submission.location_id,
        table_average_rate=table_average,
        rankings=rankings,
    )
    for i, p in enumerate(submission.players):
        player = players[p.player_number]
        calc = calc_by_player[player.id]
        plan.results.append(PlannedResult(
            player=player,
            game_score=p.game_score,
            chonbo=p.chonbo,
            uma=umas[i],
            oka=okas[i],
            final_score=finals[i],
            final_position=calc.final_position,
            calc=calc,
            wind=p.wind,
        ))
    plan.results.sort(key=lambda r: (r.final_position, -r.final_score))
    return plan


def _planned_to_dict(r: PlannedResult) -> dict:
    return {
        "player_number": r.player.player_number,
        "nickname": r.player.nickname,
        "game_score": r.game_score,
        "uma": r.uma,
        "oka": round(r.oka, 2),
        "chonbo": r.chonbo,
        "final_score": r.final_score,
        "final_position": r.final_position,
        "new_dan_points": round(r.calc.new_dan_points, 2),
        "dan_change": round(r.calc.dan_change, 2),
        "new_rate_points": round(r.calc.new_rate_points, 2),
        "rate_change": round(r.calc.rate_change, 2),
        "season_change": round(r.calc.season_change, 2) if r.calc.season_change is not None else None,
    }


def preview_game(db: Session, submission: GameSubmission) -> dict:
    plan = plan_game(db, submission)
    return {
        "sanma": plan.sanma,
        "game_type": plan.game_type,
        "season_eligible": plan.season_eligible,
        "table_average_rate": round(plan.table_average_rate, 2),
        "results": [_planned_to_dict(r) for r in plan.results],
    }


def apply_result_to_ranking(
    ranking: models.PlayerRanking,
    final_position: int,
    game_type: str,
    new_dan: float,
    new_rate: float,
    season_change: float | None,
    game_date: datetime,
    count_for_season: bool,
) -> None:
    """Fold one game into a player's materialised ranking row."""
    suffix = "h" if game_type == models.HANCHAN else "t"
    place = _PLACE_NAMES[min(final_position, 4) - 1]

    counter = f"{place}_place_{suffix}"
    setattr(ranking, counter, (getattr(ranking, counter) or 0) + 1)
    ranking.total_games = (ranking.total_games or 0) + 1
    ranking.average_position = _average_position(ranking, prefix="")
    ranking.dan_points = new_dan
    ranking.rate_points = new_rate
    ranking.max_rate = max(ranking.max_rate or new_rate, new_rate)
    if ranking.last_game_date is None or game_date > ranking.last_game_date:
        ranking.last_game_date = game_date

    if count_for_season and season_change is not None:
        season_counter = f"season_{place}_place_{suffix}"
        setattr(ranking, season_counter, (getattr(ranking, season_counter) or 0) + 1)
        ranking.season_total_games = (ranking.season_total_games or 0) + 1
        ranking.season_points = (ranking.season_points or 0.0) + season_change
        ranking.season_average_position = _average_position(ranking, prefix="season_")


def _average_position(ranking: models.PlayerRanking, prefix: str) -> float:
    total = 0
    weighted = 0
    for i, place in enumerate(_PLACE_NAMES, start=1):
        for suffix in ("h", "t"):
            count = getattr(ranking, f"{prefix}{place}_place_{suffix}") or 0
            total += count
            weighted += i * count
    return weighted / total if total else 0.0


def write_game(db: Session, plan: GamePlan, game_number: int | None = None) -> models.Game:
    """Persist a planned game (no commit)."""
    active = active_season(db)
    counts_for_season = (
        plan.season_eligible and active is not None and plan.season is not None and plan.season.id == active.id
    )

    game = models.Game(
        game_date=plan.game_date,
        game_number=game_number or next_game_number(db, plan.game_date.date()),
        game_type=plan.game_type,
        ruleset=plan.ruleset,
        season=plan.season,
        tournament=plan.tournament,
        location_id=plan.location_id,
        extra_data={"table_average_rate": plan.table_average_rate},
    )
    db.add(game)

    for r in plan.results:
        calc = r.calc
        db.add(models.GameResult(
            game=game,
            player=r.player,
            game_score=r.game_score,
            final_score=r.final_score,
            final_position=r.final_position,
            chonbo=r.chonbo,
            dan_points_earned=calc.dan_change,
            rate_change=calc.rate_change,
            season_points_earned=calc.season_change,
            extra_data={"uma": r.uma, "oka": r.oka, "wind": r.wind, "out_points": plan.ruleset.out_points},
        ))

        ledger = [(models.POINTS_DAN, calc.new_dan_points), (models.POINTS_RATE, calc.new_rate_points)]
        if plan.season_eligible and calc.season_change is not None:
            ledger.append((models.POINTS_SEASON, calc.season_change))
        for points_type, value in ledger:
            db.add(models.Points(
                player_id=r.player.id,
                game=game,
                tournament_id=plan.tournament.id if plan.tournament else None,
                season_id=plan.season.id if plan.season else None,
                points_type=points_type,
                points_value=value,
                is_sanma=plan.sanma,
                event_date=plan.game_date,
            ))

        ranking = plan.rankings.get(r.player.id) or get_ranking(db, r.player, plan.sanma)
        apply_result_to_ranking(
            ranking,
            r.final_position,
            plan.game_type,
            calc.new_dan_points,
            calc.new_rate_points,
            calc.season_change,
            plan.game_date,
            counts_for_season,
        )
    return game


def record_game(db: Session, submission: GameSubmission) -> dict:
    """Validate, compute and store a game in one transaction.

    Raises:
        ValidationError: Invalid table or scores.
        NotFoundError: Unknown player number.
    """
    plan = plan_game(db, submission)
    try:
        game = write_game(db, plan)
        db.commit()
    except Exception:
        db.rollback()
        raise

    ranking_cache.invalidate(sanma=plan.sanma)
    logger.info(
        "game %s recorded (%s, %s, %d players, season_eligible=%s)",
        game.id, plan.game_date.date(), plan.game_type, len(plan.results), plan.season_eligible,
    )
    return {
        "game_id": game.id,
        "game_number": game.game_number,
        "game_date": game.game_date.date().isoformat(),
        "season_eligible": plan.season_eligible,
        "results": [_planned_to_dict(r) for r in plan.results],
    }


def game_to_dict(game: models.Game) -> dict:
    return {
        "id": game.id,
        "game_date": game.game_date.date().isoformat(),
        "game_number": game.game_number,
        "game_type": game.game_type,
        "sanma": game.ruleset.sanma if game.ruleset else None,
        "ruleset": game.ruleset.name if game.ruleset else None,
        "season_id": game.season_id,
        "tournament_id": game.tournament_id,
        "location_id": game.location_id,
        "version": game.version,
        "results": [
            {
                "player_number": res.player.player_number,
                "nickname": res.player.nickname,
                "game_score": res.game_score,
                "final_score": res.final_score,
                "final_position": res.final_position,
                "chonbo": res.chonbo,
                "dan_points_earned": round(res.dan_points_earned, 2),
                "rate_change": round(res.rate_change, 2),
                "season_points_earned": res.season_points_earned,
            }
            for res in game.results
        ],
    }


def get_game(db: Session, game_id: int) -> models.Game:
    game = db.scalars(select(models.Game).where(models.Game.id == game_id)).first()
    if game is None:
        raise NotFoundError("Game not found")
    return game


def list_games(
    db: Session,
    player_number: int | None = None,
    season_id: int | None = None,
    sanma: bool | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[models.Game]:
    stmt = select(models.Game).join(models.Game.ruleset)
    if player_number is not None:
        stmt = stmt.where(
            models.Game.id.in_(
                select(models.GameResult.game_id)
                .join(models.GameResult.player)
                .where(models.Player.player_number == player_number)
            )
        )
    if season_id is not None:
        stmt = stmt.where(models.Game.season_id == season_id)
    if sanma is not None:
        stmt = stmt.where(models.Ruleset.sanma.is_(sanma))
    stmt = stmt.order_by(models.Game.game_date.desc(), models.Game.game_number.desc()).limit(limit).offset(offset)
    return list(db.scalars(stmt).all())


def delete_game(db: Session, game_id: int) -> dict:
    """Soft-delete a game with its results and ledger rows, then rebuild rankings."""
    from .rankings import recalculate_all

    game = get_game(db, game_id)
    for result in list(game.results):
        db.delete(result)
    for points in db.scalars(select(models.Points).where(models.Points.game_id == game.id)).all():
        db.delete(points)
    db.delete(game)
    db.commit()
    logger.info("game %s soft-deleted; rebuilding rankings", game_id)

    summary = recalculate_all(db)
    return {"game_id": game_id, "recalculated": summary}

"""Ranking tables, player profiles, point history and full recalculation.

Ranking tables are built from the materialised `PlayerRanking` rows, decorated
with Dan rank information from the config cache and short-term trends from the
points ledger, then memoised in `ranking_cache`.

Ordering:
- GENERAL: Dan points desc, Rate desc, average position asc.
- SEASON: players with season games first, then season points desc, season
  average position asc, win rate desc.

Activity filter (when inactive players are hidden):
- GENERAL: played in the active season, or within the activity window
  (`ACTIVITY_WINDOW_DAYS`, one year by default).
- SEASON: played a tournament game in the active season.
"""

from collections import defaultdict
from datetime import datetime, timedelta
import logging

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .. import calculations, dan_ranks, models
from ..errors import NotFoundError, ValidationError
from ..ranking_cache import GENERAL, RANKING_TYPES, SEASON, RankingKey, ranking_cache
from ..settings import get_settings
from ..versioning import utcnow
from .games import active_season, apply_result_to_ranking, standing_of

logger = logging.getLogger(__name__)

_COUNTERS = [
    f"{place}_place_{suffix}"
    for place in ("first", "second", "third", "fourth")
    for suffix in ("h", "t")
]


def _round(value, digits=2):
    return round(value or 0.0, digits)


def _active_player_ids(db: Session, ranking_type: str, sanma: bool, season: models.Season | None) -> set[int]:
    settings = get_settings()
    ids: set[int] = set()

    if season is not None:
        stmt = (
            select(models.GameResult.player_id)
            .join(models.GameResult.game)
            .join(models.Game.ruleset)
            .where(models.Game.season_id == season.id, models.Ruleset.sanma.is_(sanma))
        )
        if ranking_type == SEASON:
            stmt = stmt.where(models.Game.tournament_id.isnot(None))
        ids.update(db.scalars(stmt.distinct()).all())

    if ranking_type == GENERAL:
        cutoff = utcnow() - timedelta(days=settings.activity_window_days)
        ids.update(db.scalars(
            select(models.PlayerRanking.player_id).where(
                models.PlayerRanking.is_sanma.is_(sanma),
                models.PlayerRanking.last_game_date >= cutoff,
            )
        ).all())
    return ids


def _ledger_trends(db: Session, player_ids: list[int], sanma: bool, season: models.Season | None) -> tuple[dict, dict]:
    """Change over each player's last N ledger entries (DAN total, SEASON earned)."""
    window = get_settings().trend_window
    if not player_ids:
        return {}, {}

    dan_hist = defaultdict(list)
    for pts in db.scalars(
        select(models.Points)
        .where(
            models.Points.player_id.in_(player_ids),
            models.Points.points_type == models.POINTS_DAN,
            models.Points.is_sanma.is_(sanma),
        )
        .order_by(models.Points.player_id, models.Points.id.desc())
    ):
        if len(dan_hist[pts.player_id]) < window:
            dan_hist[pts.player_id].append(pts.points_value)

    season_hist = defaultdict(list)
    if season is not None:
        for pts in db.scalars(
            select(models.Points)
            .where(
                models.Points.player_id.in_(player_ids),
                models.Points.points_type == models.POINTS_SEASON,
                models.Points.is_sanma.is_(sanma),
                models.Points.season_id == season.id,
            )
            .order_by(models.Points.player_id, models.Points.id.desc())
        ):
            if len(season_hist[pts.player_id]) < window:
                season_hist[pts.player_id].append(pts.points_value)

    dan_trend = {pid: (vals[0] - vals[-1]) if len(vals) >= 2 else 0.0 for pid, vals in dan_hist.items()}
    season_trend = {pid: sum(vals) for pid, vals in season_hist.items()}
    return dan_trend, season_trend


def _ranking_row(ranking: models.PlayerRanking, ranking_type: str, dan_trend: float, season_trend: float) -> dict:
    seasonal = ranking_type == SEASON
    prefix = "season_" if seasonal else ""
    counters = {name: getattr(ranking, f"{prefix}{name}") or 0 for name in _COUNTERS}
    total_games = (ranking.season_total_games if seasonal else ranking.total_games) or 0
    average_position = ranking.season_average_position if seasonal else ranking.average_position
    win_rate = calculations.calculate_win_rate(counters["first_place_h"], counters["first_place_t"], total_games)

    config = dan_ranks.dan_rank_config(ranking.dan_points or 0.0, ranking.is_sanma)
    nxt = dan_ranks.next_dan_rank(ranking.dan_points or 0.0, ranking.is_sanma)
    player = ranking.player

    return {
        "player_number": player.player_number,
        "nickname": player.nickname,
        "fullname": player.fullname,
        "country_iso": player.country.iso_code if player.country else None,
        "sanma": ranking.is_sanma,
        "total_games": total_games,
        "average_position": _round(average_position),
        "dan_points": round(ranking.dan_points or 0.0),
        "rate_points": round(ranking.rate_points or 0.0),
        "max_rate": round(ranking.max_rate or 0.0),
        "season_points": _round(ranking.season_points, 1),
        "season_average_position": _round(ranking.season_average_position),
        "win_rate": _round(win_rate),
        "rank": config.rank if config else dan_ranks.NO_RANK,
        "rank_color": config.color if config else None,
        "rank_min_points": config.min_points if config else None,
        "rank_max_points": config.max_points if config else None,
        "next_rank": nxt["next_rank"],
        "points_to_next_rank": _round(nxt["missing"], 1),
        **counters,
        "trend_dan_delta": _round(dan_trend),
        "trend_season_delta": _round(season_trend),
    }


def _season_sort_key(row: dict):
    return (
        0 if row["total_games"] > 0 else 1,
        -row["season_points"],
        row["season_average_position"] if row["total_games"] else 0,
        -row["win_rate"],
    )


def build_ranking_table(
    db: Session,
    ranking_type: str = GENERAL,
    sanma: bool = False,
    include_inactive: bool = False,
    season_id: int | None = None,
    use_cache: bool = True,
) -> list[dict]:
    """Ranking table for one mode (3p or 4p).

    Args:
        ranking_type: "GENERAL" or "SEASON".
        sanma: 3-player table when true.
        include_inactive: Keep players that fail the activity filter.
        season_id: Season used for activity and trends; the active season by default.
            SEASON tables accept only the active season.
        use_cache: Read from / write to `ranking_cache`.

    Returns:
        list[dict]: rows with a 1-based `position`.
    """
    ranking_type = ranking_type.upper()
    if ranking_type == "TEMPORADA":
        ranking_type = SEASON
    if ranking_type not in RANKING_TYPES:
        raise ValidationError(f"Unknown ranking type: {ranking_type}")

    if season_id is None:
        season = active_season(db)
    else:
        season = db.get(models.Season, season_id)
        if season is None:
            raise NotFoundError("Season not found")
        # season_* counters only cover the active season; past seasons live in SeasonResult
        if ranking_type == SEASON and not season.is_active:
            raise ValidationError(f"SEASON table is only available for the active season, not {season.name}")
    key = RankingKey(season.id if season else None, ranking_type, include_inactive, sanma)
    if use_cache:
        cached = ranking_cache.get(key)
        if cached is not None:
            return cached

    rankings = db.scalars(
        select(models.PlayerRanking)
        .join(models.PlayerRanking.player)
        .where(models.PlayerRanking.is_sanma.is_(sanma), models.Player.deleted.is_(False))
    ).all()

    if not include_inactive:
        active_ids = _active_player_ids(db, ranking_type, sanma, season)
        rankings = [r for r in rankings if r.player_id in active_ids]

    dan_trend, season_trend = _ledger_trends(db, [r.player_id for r in rankings], sanma, season)
    rows = [
        _ranking_row(r, ranking_type, dan_trend.get(r.player_id, 0.0), season_trend.get(r.player_id, 0.0))
        for r in rankings
    ]

    if ranking_type == SEASON:
        rows.sort(key=_season_sort_key)
    else:
        rows.sort(key=lambda row: (-row["dan_points"], -row["rate_points"], row["average_position"] or 99))

    for i, row in enumerate(rows, start=1):
        row["position"] = i

    if use_cache:
        ranking_cache.set(key, rows)
    return rows


def player_profile(db: Session, player: models.Player) -> dict:
    """Both rankings of a player with Dan progress information."""
    modes = {}
    for ranking in player.rankings:
        mode = "sanma" if ranking.is_sanma else "yonma"
        counters = {name: getattr(ranking, name) or 0 for name in _COUNTERS}
        modes[mode] = {
            "dan_points": _round(ranking.dan_points, 1),
            "rate_points": _round(ranking.rate_points, 1),
            "max_rate": _round(ranking.max_rate, 1),
            "total_games": ranking.total_games or 0,
            "average_position": _round(ranking.average_position),
            "win_rate": _round(calculations.calculate_win_rate(
                counters["first_place_h"], counters["first_place_t"], ranking.total_games or 0
            )),
            "season_points": _round(ranking.season_points, 1),
            "season_total_games": ranking.season_total_games or 0,
            "season_average_position": _round(ranking.season_average_position),
            "last_game_date": ranking.last_game_date.isoformat() if ranking.last_game_date else None,
            "rank": dan_ranks.dan_rank(ranking.dan_points or 0.0, ranking.is_sanma),
            "next_rank": dan_ranks.next_dan_rank(ranking.dan_points or 0.0, ranking.is_sanma),
            "progress": dan_ranks.dan_rank_progress(ranking.dan_points or 0.0, ranking.is_sanma),
            "rank_lines": dan_ranks.dan_rank_lines(ranking.is_sanma),
            **counters,
        }
    return modes


def player_history(db: Session, player: models.Player, sanma: bool | None = None) -> dict:
    """Per-game Dan/Rate values and the Season event series for charts.

    Returns:
        dict with `games` (one entry per game with the Dan and Rate totals
        after it), `season_events`, `cumulative_season` and `stats`.
    """
    stmt = (
        select(models.Points)
        .where(models.Points.player_id == player.id)
        .order_by(models.Points.id)
    )
    if sanma is not None:
        stmt = stmt.where(models.Points.is_sanma.is_(sanma))

    results_by_game = {
        res.game_id: res
        for res in db.scalars(select(models.GameResult).where(models.GameResult.player_id == player.id))
    }
    tournaments = {}

    games: dict[int, dict] = {}
    season_events = []
    for pts in db.scalars(stmt):
        if pts.game_id is not None and pts.game is not None:
            game = pts.game
            res = results_by_game.get(pts.game_id)
            entry = games.setdefault(pts.game_id, {
                "game_id": pts.game_id,
                "game_date": game.game_date.date().isoformat(),
                "game_type": game.game_type,
                "sanma": pts.is_sanma,
                "position": res.final_position if res else None,
                "final_score": res.final_score if res else None,
            })
            if pts.points_type == models.POINTS_DAN:
                entry["dan_points"] = round(pts.points_value, 2)
            elif pts.points_type == models.POINTS_RATE:
                entry["rate_points"] = round(pts.points_value, 2)
            elif pts.points_type == models.POINTS_SEASON:
                season_events.append({
                    "source": "GAME",
                    "id": pts.game_id,
                    "ledger_id": pts.id,
                    "date": game.game_date.date().isoformat(),
                    "label": f"Game {pts.game_id}",
                    "points": round(pts.points_value, 2),
                })
        elif pts.tournament_id is not None and pts.points_type == models.POINTS_SEASON:
            if pts.tournament_id not in tournaments:
                tournaments[pts.tournament_id] = db.get(models.Tournament, pts.tournament_id)
            tournament = tournaments[pts.tournament_id]
            when = tournament.start_date if tournament else pts.event_date.date()
            season_events.append({
                "source": "TOURNAMENT",
                "id": pts.tournament_id,
                "ledger_id": pts.id,
                "date": when.isoformat(),
                "label": tournament.name if tournament else f"Tournament {pts.tournament_id}",
                "points": round(pts.points_value, 2),
            })

    game_rows = sorted(
        (g for g in games.values() if "dan_points" in g and "rate_points" in g),
        key=lambda g: (g["game_date"], g["game_id"]),
    )
    season_events.sort(key=lambda ev: (ev["date"], ev["ledger_id"]))

    running = 0.0
    cumulative = []
    for ev in season_events:
        running += ev["points"]
        cumulative.append({**ev, "cumulative": round(running, 2)})

    positions = [g["position"] for g in game_rows if g["position"]]
    stats = {
        "total_games": len(game_rows),
        "total_tournaments": sum(1 for ev in season_events if ev["source"] == "TOURNAMENT"),
        "first_places": sum(1 for p in positions if p == 1),
        "average_position": _round(sum(positions) / len(positions)) if positions else 0.0,
        "current_dan": game_rows[-1]["dan_points"] if game_rows else get_settings().initial_dan,
        "current_rate": game_rows[-1]["rate_points"] if game_rows else get_settings().initial_rate,
        "current_season": cumulative[-1]["cumulative"] if cumulative else 0.0,
        "date_range": (
            {
                "from": game_rows[0]["game_date"] if game_rows else season_events[0]["date"],
                "to": game_rows[-1]["game_date"] if game_rows else season_events[-1]["date"],
            }
            if game_rows or season_events
            else None
        ),
    }
    return {"games": game_rows, "season_events": season_events, "cumulative_season": cumulative, "stats": stats}


def _reset_ranking(ranking: models.PlayerRanking) -> None:
    settings = get_settings()
    ranking.dan_points = settings.initial_dan
    ranking.rate_points = settings.initial_rate
    ranking.max_rate = settings.initial_rate
    ranking.total_games = 0
    ranking.average_position = 0.0
    ranking.season_points = 0.0
    ranking.season_total_games = 0
    ranking.season_average_position = 0.0
    ranking.last_game_date = None
    for name in _COUNTERS:
        setattr(ranking, name, 0)
        setattr(ranking, f"season_{name}", 0)


def recalculate_all(db: Session) -> dict:
    """Rebuild every PlayerRanking and the game ledger by replaying all games.

    Games are replayed in (date, game number, id) order. Stored game scores and
    final positions are reused; Dan/Rate/Season values are recomputed with
    the current point tables. Tournament-level ledger rows are kept.

    Returns:
        dict: counts of games replayed, rankings touched and ledger rows written.
    """
    started = datetime.now()
    active = active_season(db)

    db.execute(delete(models.Points).where(models.Points.game_id.isnot(None)))

    rankings: dict[tuple[int, bool], models.PlayerRanking] = {}
    for ranking in db.scalars(select(models.PlayerRanking)):
        _reset_ranking(ranking)
        rankings[(ranking.player_id, ranking.is_sanma)] = ranking

    games = db.scalars(
        select(models.Game).order_by(models.Game.game_date, models.Game.game_number, models.Game.id)
    ).all()

    ledger_rows = 0
    for game in games:
        sanma = game.ruleset.sanma
        results = [res for res in game.results if not res.deleted]
        if not results:
            continue

        standings = {}
        for res in results:
            key = (res.player_id, sanma)
            if key not in rankings:
                settings = get_settings()
                ranking = models.PlayerRanking(
                    player_id=res.player_id,
                    is_sanma=sanma,
                    dan_points=settings.initial_dan,
                    rate_points=settings.initial_rate,
                    max_rate=settings.initial_rate,
                )
                _reset_ranking(ranking)
                db.add(ranking)
                rankings[key] = ranking
            standings[res.player_id] = standing_of(rankings[key])

        table_average = sum(s.rate_points for s in standings.values()) / len(standings)
        calc = calculations.calculate_game_results(
            [calculations.PlayerScore(res.player_id, res.final_score) for res in results],
            game.game_type,
            standings,
            table_average,
            sanma,
            game.season_eligible,
            game.season_id,
        )
        calc_by_player = {c.player_id: c for c in calc}
        counts_for_season = game.season_eligible and active is not None and game.season_id == active.id

        for res in results:
            c = calc_by_player[res.player_id]
            res.final_position = c.final_position
            res.dan_points_earned = c.dan_change
            res.rate_change = c.rate_change
            res.season_points_earned = c.season_change

            ledger = [(models.POINTS_DAN, c.new_dan_points), (models.POINTS_RATE, c.new_rate_points)]
            if game.season_eligible and c.season_change is not None:
                ledger.append((models.POINTS_SEASON, c.season_change))
            for points_type, value in ledger:
                db.add(models.Points(
                    player_id=res.player_id,
                    game_id=game.id,
                    tournament_id=game.tournament_id,
                    season_id=game.season_id,
                    points_type=points_type,
                    points_value=value,
                    is_sanma=sanma,
                    event_date=game.game_date,
                ))
                ledger_rows += 1

            apply_result_to_ranking(
                rankings[(res.player_id, sanma)],
                c.final_position,
                game.game_type,
                c.new_dan_points,
                c.new_rate_points,
                c.season_change,
                game.game_date,
                counts_for_season,
            )

    db.commit()
    ranking_cache.invalidate()

    summary = {
        "games": len(games),
        "rankings": len(rankings),
        "ledger_rows": ledger_rows,
        "seconds": round((datetime.now() - started).total_seconds(), 3),
    }
    logger.info("rankings recalculated: %s", summary)
    return summary

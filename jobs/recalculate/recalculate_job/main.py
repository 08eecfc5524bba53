"""Ranking recalculation job entrypoint.

Replays every non-deleted game in chronological order and rebuilds the
`player_rankings` table and the game rows of the `points` ledger. Run it after
changing the Dan/Rate/Season point tables or after correcting historical games.

Key steps:
- load the game history and a snapshot of the current rankings (pandas)
- run `league_api.services.rankings.recalculate_all`
- compare the rankings before and after and log what moved
- optionally write the comparison to a CSV report

The job uses the API service settings, so `DATABASE_URL` and the logging
variables apply unchanged.
"""

import argparse
import logging

import pandas as pd
from sqlalchemy import text

from league_api.config_cache import config_cache
from league_api.db import SessionLocal
from league_api.services.rankings import recalculate_all
from league_api.settings import get_settings
from league_common.logging import configure_logging

logger = logging.getLogger(__name__)

_RANKING_COLUMNS = ["dan_points", "rate_points", "total_games", "season_points"]


def load_games(conn) -> pd.DataFrame:
    """Non-deleted games in replay order with their mode and player count.

    Args:
        conn: SQLAlchemy connection.

    Returns:
        pandas.DataFrame: one row per game (`id`, `game_date`, `game_number`,
        `game_type`, `season_id`, `tournament_id`, `sanma`, `players`).
    """
    return pd.read_sql(
        text("""
            SELECT g.id, g.game_date, g.game_number, g.game_type, g.season_id, g.tournament_id,
                   r.sanma, COUNT(gr.id) AS players
            FROM games g
            JOIN rulesets r ON r.id = g.ruleset_id
            LEFT JOIN game_results gr ON gr.game_id = g.id AND gr.deleted = :not_deleted
            WHERE g.deleted = :not_deleted
            GROUP BY g.id, g.game_date, g.game_number, g.game_type, g.season_id, g.tournament_id, r.sanma
            ORDER BY g.game_date, g.game_number, g.id
        """),
        conn,
        params={"not_deleted": False},
    )


def summarize_games(games: pd.DataFrame) -> dict:
    """Counts used in the job's log line."""
    if games.empty:
        return {"games": 0, "yonma": 0, "sanma": 0, "tournament_games": 0, "first": None, "last": None}
    sanma = games["sanma"].astype(bool)
    return {
        "games": int(len(games)),
        "yonma": int((~sanma).sum()),
        "sanma": int(sanma.sum()),
        "tournament_games": int(games["tournament_id"].notna().sum()),
        "first": str(pd.to_datetime(games["game_date"]).min().date()),
        "last": str(pd.to_datetime(games["game_date"]).max().date()),
    }


def ranking_snapshot(conn) -> pd.DataFrame:
    """Current ranking values per (player_number, sanma)."""
    return pd.read_sql(
        text("""
            SELECT p.player_number, pr.is_sanma AS sanma,
                   pr.dan_points, pr.rate_points, pr.total_games, pr.season_points
            FROM player_rankings pr
            JOIN players p ON p.id = pr.player_id
            WHERE pr.deleted = :not_deleted
        """),
        conn,
        params={"not_deleted": False},
    )


def compare_rankings(before: pd.DataFrame, after: pd.DataFrame, tolerance: float = 0.01) -> pd.DataFrame:
    """Rows whose ranking values moved by more than `tolerance`.

    Returns:
        pandas.DataFrame: `player_number`, `sanma`, and `<column>_before` /
        `<column>_after` / `<column>_delta` for every ranking column. Players
        present on only one side count as changed.
    """
    keys = ["player_number", "sanma"]
    merged = before.merge(after, on=keys, how="outer", suffixes=("_before", "_after"))
    changed = pd.Series(False, index=merged.index)
    for col in _RANKING_COLUMNS:
        merged[f"{col}_delta"] = merged[f"{col}_after"].fillna(0) - merged[f"{col}_before"].fillna(0)
        changed |= merged[f"{col}_delta"].abs() > tolerance
        changed |= merged[f"{col}_before"].isna() != merged[f"{col}_after"].isna()
    return merged[changed].sort_values(keys).reset_index(drop=True)


def run(session_factory=SessionLocal, report_path: str | None = None) -> dict:
    """Recalculate all rankings and report what changed.

    Args:
        session_factory: Callable returning a new ORM session.
        report_path: Optional CSV path for the before/after comparison.

    Returns:
        dict: recalculation summary plus game counts and `changed_rankings`.
    """
    config_cache.bind(session_factory)
    config_cache.refresh_all()

    with session_factory() as db:
        conn = db.connection()
        games = load_games(conn)
        before = ranking_snapshot(conn)
        db.rollback()

        logger.info("replaying history: %s", summarize_games(games))
        summary = recalculate_all(db)

        after = ranking_snapshot(db.connection())

    changes = compare_rankings(before, after)
    for row in changes.head(20).itertuples(index=False):
        logger.info(
            "player #%s (%s): dan %+.1f, rate %+.1f",
            row.player_number, "3p" if row.sanma else "4p", row.dan_points_delta, row.rate_points_delta,
        )
    if report_path:
        changes.to_csv(report_path, index=False)
        logger.info("comparison written to %s", report_path)

    return {**summary, **summarize_games(games), "changed_rankings": int(len(changes))}


def main(argv=None) -> int:
    """Entrypoint for the recalculation job container.

    Returns:
        int: process exit code (0 = success).
    """
    parser = argparse.ArgumentParser(description="Rebuild player rankings from the game history.")
    parser.add_argument("--report", help="Write the before/after ranking comparison to this CSV file.")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging("recalculate", settings.log_level, settings.log_json)

    result = run(report_path=args.report)
    logger.info("recalculation finished: %s", result)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

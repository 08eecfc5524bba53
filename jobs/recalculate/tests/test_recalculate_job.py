"""Tests for the ranking recalculation job."""

import pandas as pd
import pytest
from sqlalchemy import select

from league_api import models
from league_api.db import SessionLocal
from recalculate_job.main import compare_rankings, load_games, main, ranking_snapshot, run, summarize_games


def test_load_games_in_replay_order(db, history):
    games = load_games(db.connection())
    assert list(games["players"]) == [4, 4, 3]
    assert list(games["sanma"].astype(bool)) == [False, False, True]
    assert list(games["game_number"]) == [1, 1, 2]


def test_summarize_games(db, history):
    summary = summarize_games(load_games(db.connection()))
    assert summary == {
        "games": 3, "yonma": 2, "sanma": 1, "tournament_games": 0, "first": "2026-02-01", "last": "2026-02-08",
    }


def test_summarize_empty_history(db):
    assert summarize_games(load_games(db.connection()))["games"] == 0


def test_compare_rankings_flags_moves_and_new_rows():
    before = pd.DataFrame({
        "player_number": [1, 2], "sanma": [False, False],
        "dan_points": [60.0, 30.0], "rate_points": [1530.0, 1510.0],
        "total_games": [1, 1], "season_points": [0.0, 0.0],
    })
    after = pd.DataFrame({
        "player_number": [1, 2, 3], "sanma": [False, False, False],
        "dan_points": [60.0, 30.004, 0.0], "rate_points": [1530.0, 1520.0, 1500.0],
        "total_games": [1, 2, 0], "season_points": [0.0, 0.0, 0.0],
    })
    changes = compare_rankings(before, after)
    assert list(changes["player_number"]) == [2, 3]
    assert changes.loc[0, "rate_points_delta"] == pytest.approx(10.0)
    assert changes.loc[0, "total_games_delta"] == 1


def test_compare_identical_snapshots(db, history):
    snap = ranking_snapshot(db.connection())
    assert compare_rankings(snap, snap.copy()).empty


def test_run_repairs_tampered_rankings(db, history, tmp_path):
    ranking = db.scalars(
        select(models.PlayerRanking)
        .join(models.PlayerRanking.player)
        .where(models.Player.player_number == 1, models.PlayerRanking.is_sanma.is_(False))
    ).one()
    expected = ranking.dan_points
    ranking.dan_points = 9999
    db.commit()

    report = tmp_path / "changes.csv"
    result = run(SessionLocal, report_path=str(report))

    assert result["games"] == 3
    assert result["changed_rankings"] == 1
    db.expire_all()
    assert ranking.dan_points == expected

    written = pd.read_csv(report)
    assert list(written["player_number"]) == [1]
    assert written.loc[0, "dan_points_before"] == 9999


def test_run_on_consistent_data_changes_nothing(history):
    assert run(SessionLocal)["changed_rankings"] == 0


def test_main_returns_zero(history, tmp_path):
    assert main(["--report", str(tmp_path / "report.csv")]) == 0
    assert (tmp_path / "report.csv").exists()

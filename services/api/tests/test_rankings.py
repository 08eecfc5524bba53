"""Ranking tables, player history and full recalculation."""

from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import select

from league_api import models
from league_api.errors import NotFoundError, ValidationError
from league_api.ranking_cache import GENERAL, SEASON, ranking_cache
from league_api.services import games as game_service
from league_api.services.players import create_player
from league_api.services.rankings import build_ranking_table, player_history, player_profile, recalculate_all

SCORES = [45000, 30000, 20000, 5000]


@pytest.fixture
def today():
    return date.today()


def _numbers(rows):
    return [row["player_number"] for row in rows]


def test_general_table_orders_by_dan_then_rate(db, rulesets, players, make_submission, today):
    game_service.record_game(db, make_submission(rulesets["yonma"], SCORES, game_date=today))
    rows = build_ranking_table(db, GENERAL, sanma=False)

    assert _numbers(rows) == [1, 2, 3, 4]
    assert [row["position"] for row in rows] == [1, 2, 3, 4]
    # 3rd and 4th both hold 0 Dan; Rate breaks the tie
    assert rows[2]["rate_points"] > rows[3]["rate_points"]
    top = rows[0]
    assert top["rank"] == "9級"
    assert top["next_rank"] == "8級"
    assert top["points_to_next_rank"] == 40
    assert top["win_rate"] == 100.0
    assert top["first_place_h"] == 1


def test_inactive_players_are_hidden_unless_requested(db, rulesets, players, make_submission, today):
    create_player(db, nickname="Newcomer")
    game_service.record_game(db, make_submission(rulesets["yonma"], SCORES, game_date=today))

    assert 5 not in _numbers(build_ranking_table(db, GENERAL, sanma=False))
    assert 5 in _numbers(build_ranking_table(db, GENERAL, sanma=False, include_inactive=True))


def test_activity_window_uses_last_game_date(db, rulesets, players, make_submission, today):
    old_day = today - timedelta(days=800)
    game_service.record_game(db, make_submission(rulesets["yonma"], SCORES, game_date=old_day))
    assert build_ranking_table(db, GENERAL, sanma=False) == []


def test_deleted_players_never_appear(db, rulesets, players, make_submission, today):
    game_service.record_game(db, make_submission(rulesets["yonma"], SCORES, game_date=today))
    db.delete(players[1])
    db.commit()
    assert 2 not in _numbers(build_ranking_table(db, GENERAL, sanma=False, include_inactive=True, use_cache=False))


def test_season_table_counts_tournament_games(db, rulesets, players, tournament, make_submission):
    game_service.record_game(db, make_submission(rulesets["yonma"], list(reversed(SCORES)), tournament_id=tournament.id))
    game_service.record_game(db, make_submission(rulesets["yonma"], SCORES, tournament_id=tournament.id))
    game_service.record_game(db, make_submission(rulesets["yonma"], SCORES, tournament_id=tournament.id))

    rows = build_ranking_table(db, SEASON, sanma=False)
    assert _numbers(rows) == [1, 2, 3, 4]
    assert rows[0]["season_points"] == 15
    assert rows[0]["total_games"] == 3
    assert rows[0]["trend_season_delta"] == 15
    assert rows[3]["season_points"] == 15 - 30


def test_season_table_for_a_past_season_is_refused(db, rulesets, players, tournament, make_submission):
    game_service.record_game(db, make_submission(rulesets["yonma"], SCORES, tournament_id=tournament.id))
    past = models.Season(name="2025", start_date=date(2025, 1, 1))
    db.add(past)
    db.commit()

    with pytest.raises(ValidationError):
        build_ranking_table(db, SEASON, sanma=False, season_id=past.id)
    with pytest.raises(NotFoundError):
        build_ranking_table(db, GENERAL, sanma=False, season_id=999)
    assert build_ranking_table(db, SEASON, sanma=False, season_id=tournament.season_id)[0]["season_points"] == 15
    # GENERAL tables may still be scoped to an old season for activity and trends
    assert build_ranking_table(db, GENERAL, sanma=False, season_id=past.id, include_inactive=True) != []


def test_dan_trend_is_change_over_recent_games(db, rulesets, players, make_submission, today):
    for _ in range(3):
        game_service.record_game(db, make_submission(rulesets["yonma"], SCORES, game_date=today))
    rows = build_ranking_table(db, GENERAL, sanma=False)
    assert rows[0]["dan_points"] == 180
    assert rows[0]["trend_dan_delta"] == 120


def test_tables_are_cached_until_invalidated(db, rulesets, players, make_submission, today):
    game_service.record_game(db, make_submission(rulesets["yonma"], SCORES, game_date=today))
    first = build_ranking_table(db, GENERAL, sanma=False)
    assert build_ranking_table(db, GENERAL, sanma=False) is first
    assert ranking_cache.size() == 1

    game_service.record_game(db, make_submission(rulesets["yonma"], SCORES, game_date=today))
    assert ranking_cache.size() == 0
    assert build_ranking_table(db, GENERAL, sanma=False)[0]["dan_points"] == 120


def test_unknown_ranking_type(db):
    with pytest.raises(ValidationError):
        build_ranking_table(db, "WEEKLY")


def test_profile_reports_both_modes(db, rulesets, players, make_submission):
    game_service.record_game(db, make_submission(rulesets["yonma"], SCORES))
    db.expire_all()
    profile = player_profile(db, players[0])
    assert set(profile) == {"yonma", "sanma"}
    assert profile["yonma"]["rank"] == "9級"
    assert profile["yonma"]["progress"]["rank"] == "9級"
    assert profile["sanma"]["total_games"] == 0


def test_history_series(db, rulesets, players, tournament, make_submission):
    game_service.record_game(db, make_submission(rulesets["yonma"], SCORES, tournament_id=tournament.id))
    game_service.record_game(
        db, make_submission(rulesets["yonma"], SCORES, game_date=date(2026, 3, 2), tournament_id=tournament.id)
    )
    history = player_history(db, players[0])

    assert [g["dan_points"] for g in history["games"]] == [60, 120]
    assert [g["rate_points"] for g in history["games"]] == [1530, pytest.approx(1559.19)]
    assert [g["position"] for g in history["games"]] == [1, 1]
    assert [ev["cumulative"] for ev in history["cumulative_season"]] == [15, 30]
    stats = history["stats"]
    assert stats["total_games"] == 2
    assert stats["first_places"] == 2
    assert stats["current_dan"] == 120
    assert stats["current_season"] == 30
    assert stats["date_range"] == {"from": "2026-03-01", "to": "2026-03-02"}


def test_history_of_player_without_games(db, players):
    history = player_history(db, players[0])
    assert history["games"] == []
    assert history["stats"]["date_range"] is None
    assert history["stats"]["current_rate"] == 1500


def test_recalculation_reproduces_rankings(db, rulesets, players, tournament, make_submission):
    game_service.record_game(db, make_submission(rulesets["yonma"], SCORES, tournament_id=tournament.id))
    game_service.record_game(db, make_submission(rulesets["yonma"], [10000, 40000, 30000, 20000]))
    game_service.record_game(db, make_submission(rulesets["sanma"], [50000, 35000, 20000]))

    def snapshot():
        db.expire_all()
        return {
            (r.player_id, r.is_sanma): (
                round(r.dan_points, 6), round(r.rate_points, 6), r.total_games, round(r.season_points, 6),
                r.first_place_h, r.fourth_place_h, r.last_game_date,
            )
            for r in db.scalars(select(models.PlayerRanking))
        }

    before = snapshot()
    ledger_before = len(db.scalars(select(models.Points)).all())

    ranking = db.scalars(select(models.PlayerRanking)).first()
    ranking.dan_points = 9999
    db.commit()

    summary = recalculate_all(db)
    assert summary["games"] == 3
    assert snapshot() == before
    assert len(db.scalars(select(models.Points)).all()) == ledger_before


def test_recalculation_keeps_tournament_ledger_rows(db, players, tournament):
    db.add(models.Points(
        player_id=players[0].id, tournament_id=tournament.id, season_id=tournament.season_id,
        points_type=models.POINTS_SEASON, points_value=50, event_date=datetime(2026, 3, 2),
    ))
    db.commit()
    recalculate_all(db)
    rows = db.scalars(select(models.Points)).all()
    assert len(rows) == 1
    assert rows[0].points_value == 50

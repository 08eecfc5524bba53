"""Unit tests for the scoring functions in `league_api.calculations`."""

import pytest

from league_api import calculations as calc
from league_api.calculations import CurrentStanding, PlayerScore
from league_api.config_cache import DanConfigEntry, RateConfigEntry, SeasonConfigEntry


def _dan(rank, lo, hi, values, protected=False, sanma=False):
    first, second, third, fourth = values
    return DanConfigEntry(
        id=0, rank=rank, sanma=sanma, min_points=lo, max_points=hi,
        first_place=first, second_place=second, third_place=third, fourth_place=fourth,
        is_protected=protected, color=None, css_class=None, is_last_rank=hi is None,
    )


RATE = RateConfigEntry(
    id=0, name="std", sanma=False, first_place=30, second_place=10, third_place=-10, fourth_place=-30,
    adjustment_rate=0.002, adjustment_limit=400, min_adjustment=0.2,
)


def test_final_positions_use_competition_ranking():
    positions = calc.calculate_final_positions([
        PlayerScore(1, 10.0), PlayerScore(2, 30.0), PlayerScore(3, 10.0), PlayerScore(4, -50.0)
    ])
    by_player = {p.player_id: p.final_position for p in positions}
    assert by_player == {2: 1, 1: 2, 3: 2, 4: 4}
    assert [p.final_position for p in positions] == [1, 2, 2, 4]


def test_calculate_positions_average_ties():
    calc_pos, display = calc.calculate_positions([100, 50, 50, 0])
    assert calc_pos == [1.0, 2.5, 2.5, 4.0]
    assert display == [1, 2, 2, 4]


def test_calculate_positions_requires_three_or_four_scores():
    with pytest.raises(ValueError):
        calc.calculate_positions([1, 2])


def test_split_tied_averages_covered_places():
    values = [30, 10, -10, -30]
    assert calc.split_tied([1, 2, 2, 4], 2, values) == 0
    assert calc.split_tied([1, 1, 3, 4], 1, values) == 20
    assert calc.split_tied([1, 2, 3, 4], 4, values) == -30


def test_oka_goes_to_first_place_and_is_split_evenly():
    assert calc.oka_distribution([1, 2, 3, 4], 20) == [20, 0, 0, 0]
    shares = calc.oka_distribution([1, 1, 1, 4], 10)
    assert sum(shares) == pytest.approx(10)
    assert shares[3] == 0
    assert shares[0] == shares[1] == shares[2] == pytest.approx(10 / 3)


def test_oka_distribution_rejects_wrong_table_size():
    assert calc.oka_distribution([1, 2], 20) == []


def test_final_score_applies_uma_oka_and_chonbo():
    assert calc.final_score(45000, 30000, 30, 20) == 65.0
    assert calc.final_score(5000, 30000, -30) == -55.0
    assert calc.final_score(30000, 30000, 10, chonbo=1, chonbo_penalty=-20) == -10.0


def test_validate_game_scores_tolerance():
    ok = calc.validate_game_scores([45000, 30000, 20000, 5050], 4, 25000, tolerance=100)
    assert ok["is_valid"] and ok["difference"] == 50
    bad = calc.validate_game_scores([45000, 30000, 20000, 6000], 4, 25000, tolerance=100)
    assert not bad["is_valid"]
    assert bad["expected_total"] == 100000


def test_nickname_validation_and_normalisation():
    assert calc.validate_nickname("") == ["Nickname cannot be empty"]
    assert calc.validate_nickname("a,b")
    assert calc.validate_nickname("Akagi") == []
    assert calc.normalize_nickname("  Aka   gi ") == "Aka gi"


def test_win_rate_and_average_position():
    assert calc.calculate_win_rate(1, 1, 4) == 50.0
    assert calc.calculate_win_rate(0, 0, 0) == 0.0
    assert calc.calculate_average_position(1, 1, 1, 1) == 2.5


def test_protected_rank_never_drops_below_its_floor():
    configs = [
        _dan("A", 0, 100, (60, 30, 0, -30), protected=True),
        _dan("B", 100, None, (60, 30, -15, -45)),
    ]
    new = calc.dan_points_with_config(4, "H", 110, configs[1], [1, 2, 3, 4], configs)
    assert new == 65
    protected = calc.dan_points_with_config(4, "H", 10, configs[0], [1, 2, 3, 4], configs)
    assert protected == 0.0


def test_dan_points_are_never_negative():
    configs = [_dan("A", 0, None, (60, 30, -15, -100))]
    assert calc.dan_points_with_config(4, "H", 20, configs[0], [1, 2, 3, 4], configs) == 0.0


def test_tonpuusen_scales_dan_gain():
    configs = [_dan("A", 0, None, (60, 30, 0, 0))]
    assert calc.dan_points_with_config(1, "T", 0, configs[0], [1, 2, 3, 4], configs) == pytest.approx(40)


def test_experience_factor_bottoms_out():
    assert calc.experience_factor(0, RATE) == 1
    assert calc.experience_factor(100, RATE) == pytest.approx(0.8)
    assert calc.experience_factor(399, RATE) == pytest.approx(0.202)
    assert calc.experience_factor(400, RATE) == 0.2
    assert calc.experience_factor(5000, RATE) == 0.2


def test_rate_uses_table_average():
    new = calc.rate_points_with_config(1, 1500, 0, 1540, "H", RATE, [1, 2, 3, 4])
    assert new == pytest.approx(1500 + 30 + 1)


def test_season_points_with_ties_and_tonpuusen():
    config = SeasonConfigEntry(
        id=0, name="d", sanma=False, first_place=15, second_place=5, third_place=-5, fourth_place=-15,
        season_id=None, is_default=True,
    )
    assert calc.season_points_with_config(1, "H", 10, config, [1, 1, 3, 4]) == 20
    assert calc.season_points_with_config(4, "T", 0, config, [1, 2, 3, 4]) == pytest.approx(-10)


def test_game_results_from_default_tables():
    results = calc.calculate_game_results(
        [PlayerScore(1, 65.0), PlayerScore(2, 10.0), PlayerScore(3, -20.0), PlayerScore(4, -55.0)],
        "H",
        {pid: CurrentStanding() for pid in (1, 2, 3, 4)},
        1500.0,
        sanma=False,
        season_eligible=True,
    )
    assert [r.player_id for r in results] == [1, 2, 3, 4]
    assert [r.new_dan_points for r in results] == [60, 30, 0, 0]
    assert [round(r.new_rate_points, 3) for r in results] == [1530, 1510, 1490, 1470]
    assert [r.season_change for r in results] == [15, 5, -5, -15]


def test_game_results_skip_season_when_not_eligible():
    results = calc.calculate_game_results(
        [PlayerScore(1, 20.0), PlayerScore(2, 0.0), PlayerScore(3, -20.0)],
        "H",
        {},
        1500.0,
        sanma=True,
        season_eligible=False,
    )
    assert all(r.season_change is None for r in results)
    assert results[0].new_dan_points == 90

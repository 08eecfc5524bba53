"""Point calculations for a single game.

Everything in this module is a pure function over scores, positions and point
tables, except `calculate_dan_points`, `calculate_rate_points`,
`calculate_season_points` and `calculate_game_results`, which look the point
tables up in `config_cache`.

Conventions:
- positions are 1-based and use competition ranking: tied players share the
  best place of their block, and the next place skips ahead (1, 1, 3, 4).
- whenever a per-place value (uma, Dan delta, Rate delta, Season points) is
  needed for a tied player, the values of every place covered by the tie are
  averaged. Two players tied for 2nd in a 4-player game both get the mean of
  the 2nd and 3rd place values.
- tonpuusen (east-only, "T") games are worth 2/3 of a hanchan ("H").
- `final_score` values are in thousands of points ("k").
"""

from dataclasses import dataclass
import logging

from .config_cache import DanConfigEntry, RateConfigEntry, SeasonConfigEntry, config_cache
from .models import HANCHAN, TONPUUSEN

logger = logging.getLogger(__name__)

TONPUUSEN_FACTOR = 2 / 3
RATE_DIFF_DIVISOR = 40


@dataclass(frozen=True)
class PlayerScore:
    player_id: int
    final_score: float


@dataclass(frozen=True)
class PlayerPosition:
    player_id: int
    final_position: int
    final_score: float


@dataclass
class CurrentStanding:
    """A player's values before the game being calculated."""

    dan_points: float = 0.0
    rate_points: float = 1500.0
    total_games: int = 0
    season_points: float = 0.0


@dataclass
class GameCalculationResult:
    player_id: int
    final_position: int
    final_score: float
    new_dan_points: float
    new_rate_points: float
    dan_change: float
    rate_change: float
    new_season_points: float | None = None
    season_change: float | None = None


def game_multiplier(game_type: str) -> float:
    return 1.0 if game_type == HANCHAN else TONPUUSEN_FACTOR


def parse_game_type(value: str) -> str:
    """Accept "H"/"T" as well as "HANCHAN"/"TONPUUSEN" (any case)."""
    return HANCHAN if value.strip().upper() in ("H", "HANCHAN") else TONPUUSEN


def is_valid_position(position) -> bool:
    return isinstance(position, int) and 1 <= position <= 4


# positions

def calculate_final_positions(players: list[PlayerScore]) -> list[PlayerPosition]:
    """Assign competition-ranked positions from final scores.

    Scores are compared after rounding to one decimal; equal scores keep their
    input order. The returned list is sorted by position and carries the
    original (unrounded) score.
    """
    indexed = [
        (round(p.final_score * 10) / 10, i, p)
        for i, p in enumerate(players)
    ]
    indexed.sort(key=lambda t: (-t[0], t[1]))

    positions = []
    current = 1
    for i, (norm, _, player) in enumerate(indexed):
        if i > 0 and norm != indexed[i - 1][0]:
            current = i + 1
        positions.append(PlayerPosition(player.player_id, current, player.final_score))
    return positions


def calculate_positions(scores: list[float]) -> tuple[list[float], list[int]]:
    """Positions aligned with `scores`, in two flavours.

    Returns:
        (calc_positions, display_positions): `calc_positions` averages the
        places covered by a tie (two players tied for 2nd get 2.5 each);
        `display_positions` gives each the best place of the block (2, 2).

    Raises:
        ValueError: If there are not 3 or 4 scores.
    """
    n = len(scores)
    if n not in (3, 4):
        raise ValueError("3 or 4 scores are required")

    order = sorted(range(n), key=lambda i: -scores[i])
    calc = [0.0] * n
    display = [0] * n

    i = 0
    current = 1
    while i < n:
        tie = 1
        while i + tie < n and scores[order[i + tie]] == scores[order[i]]:
            tie += 1
        averaged = (tie * (2 * current + tie - 1) / 2) / tie
        for k in range(tie):
            calc[order[i + k]] = averaged
            display[order[i + k]] = current
        current += tie
        i += tie
    return calc, display


def split_tied(final_positions: list[int], position: int, values: list[float]) -> float:
    """Per-place value for `position`, averaged over the places a tie covers.

    Args:
        final_positions: Positions of every player at the table.
        position: Position of the player being scored.
        values: One value per place (3 for sanma, 4 for yonma).

    Returns:
        The averaged value. An out-of-range position yields `values[0]`.
    """
    n = min(len(values), len(final_positions))
    if position < 1 or position > n:
        return values[0]

    tie_count = sum(1 for p in final_positions if p == position)
    if tie_count <= 1:
        return values[position - 1]

    end = min(n, position + tie_count - 1)
    covered = values[position - 1:end]
    return sum(covered) / len(covered)


def uma_for_position(position: int, final_positions: list[int], uma_values: list[float]) -> float:
    """Uma (in k) for one player, with ties splitting the covered places."""
    tie_count = max(1, sum(1 for p in final_positions if p == position))
    end = min(len(uma_values), position + tie_count - 1)
    covered = [uma_values[pos - 1] if pos - 1 < len(uma_values) else 0 for pos in range(position, end + 1)]
    return sum(covered) / len(covered) if covered else 0.0


def uma_for_all(final_positions: list[int], uma_values: list[float]) -> list[float]:
    return [uma_for_position(pos, final_positions, uma_values) for pos in final_positions]


def oka_distribution(final_positions: list[int], oka: float) -> list[float]:
    """Split the oka evenly among the players in first place.

    Shares are not rounded; `final_score` rounds the total, so tied winners
    keep identical final scores.

    Returns:
        One share per player, aligned with `final_positions`. Empty for tables
        that are not 3 or 4 players.
    """
    n = len(final_positions)
    if n not in (3, 4):
        return []

    out = [0.0] * n
    winners = [i for i, pos in enumerate(final_positions) if pos == 1]
    if not oka or not winners:
        return out

    share = oka / len(winners)
    for idx in winners:
        out[idx] = share
    return out


def final_score(
    game_score: int,
    out_points: int,
    uma: float,
    oka_share: float = 0.0,
    chonbo: int = 0,
    chonbo_penalty: float = 0.0,
) -> float:
    """Final score in k: `(game_score - out_points)/1000 + uma + oka - chonbo`.

    `chonbo_penalty` is the ruleset's penalty (in k) charged once per chonbo;
    its sign is ignored.
    """
    return round((game_score - out_points) / 1000 + uma + oka_share - chonbo * abs(chonbo_penalty), 1)


# validation

def validate_game_scores(scores: list[int], player_count: int, in_points: int = 25000, tolerance: int = 100) -> dict:
    expected = player_count * in_points
    actual = sum(scores)
    difference = abs(actual - expected)
    return {
        "is_valid": difference <= tolerance,
        "expected_total": expected,
        "actual_total": actual,
        "difference": difference,
    }


def validate_unique_player_ids(player_ids: list[int]) -> bool:
    return len(set(player_ids)) == len(player_ids)


def validate_nickname(nickname: str | None) -> list[str]:
    """Return a list of problems with `nickname` (empty when valid)."""
    errors = []
    if not nickname or not nickname.strip():
        errors.append("Nickname cannot be empty")
        return errors
    if len(nickname) > 50:
        errors.append("Nickname cannot be longer than 50 characters")
    if any(ch in nickname for ch in ",;\n"):
        errors.append("Nickname cannot contain commas, semicolons or line breaks")
    return errors


def normalize_nickname(nickname: str) -> str:
    cleaned = nickname.replace(",", "").replace(";", "").replace("\n", "")
    return " ".join(cleaned.split())


def calculate_win_rate(first_place_h: int, first_place_t: int, total_games: int) -> float:
    if total_games == 0:
        return 0.0
    return (first_place_h + first_place_t) / total_games * 100


def calculate_average_position(first: int, second: int, third: int, fourth: int = 0) -> float:
    total = first + second + third + fourth
    if total == 0:
        return 0.0
    return (first + 2 * second + 3 * third + 4 * fourth) / total


# dan

def dan_floor(points: float, configs: list[DanConfigEntry]) -> float:
    """Lowest value a player at `points` can drop to.

    Protected ranks cannot be lost: the floor is the rank's `min_points`.
    Unprotected ranks have no floor beyond zero.
    """
    current = next((c for c in configs if c.contains(points)), None)
    if current is not None and current.is_protected:
        return current.min_points
    return 0.0


def dan_points_with_config(
    position: int,
    game_type: str,
    current_points: float,
    config: DanConfigEntry,
    final_positions: list[int],
    configs: list[DanConfigEntry],
    sanma: bool = False,
) -> float:
    """New Dan total after one game, using the rank row the player is in."""
    mult = game_multiplier(game_type)
    values = [config.first_place * mult, config.second_place * mult, config.third_place * mult]
    if not sanma:
        values.append((config.fourth_place or 0.0) * mult)

    gained = split_tied(final_positions or [position], position, values)
    new_points = current_points + gained
    floor = dan_floor(current_points, configs)
    return max(0.0, max(new_points, floor))


def calculate_dan_points(
    position: int,
    game_type: str,
    current_points: float,
    final_positions: list[int],
    sanma: bool = False,
    cache=config_cache,
) -> float:
    configs = cache.get_all_dan_configs(sanma)
    config = next((c for c in configs if c.contains(current_points)), None)
    if config is None:
        logger.warning("no dan config for %s points (sanma=%s)", current_points, sanma)
        return current_points
    return dan_points_with_config(position, game_type, current_points, config, final_positions, configs, sanma)


# rate

def experience_factor(total_games: int, config: RateConfigEntry) -> float:
    if total_games < config.adjustment_limit:
        return 1 - config.adjustment_rate * total_games
    return config.min_adjustment


def rate_points_with_config(
    position: int,
    current_rate: float,
    total_games: int,
    table_average: float,
    game_type: str,
    config: RateConfigEntry,
    final_positions: list[int],
) -> float:
    """New Rate after one game.

    `new = rate + a * (place_value + (table_avg - rate)/40) * multiplier`,
    where `a` shrinks with experience (see `experience_factor`).
    """
    a = experience_factor(total_games, config)
    difference = (table_average - current_rate) / RATE_DIFF_DIVISOR
    place_value = split_tied(final_positions or [position], position, config.place_values())
    return current_rate + a * (place_value + difference) * game_multiplier(game_type)


def calculate_rate_points(
    position: int,
    current_rate: float,
    total_games: int,
    table_average: float,
    game_type: str,
    sanma: bool,
    final_positions: list[int],
    cache=config_cache,
) -> float:
    config = cache.get_default_rate_config(sanma)
    if config is None:
        logger.warning("no rate config (sanma=%s)", sanma)
        return current_rate
    return rate_points_with_config(
        position, current_rate, total_games, table_average, game_type, config, final_positions
    )


# season

def season_points_with_config(
    position: int,
    game_type: str,
    current_points: float,
    config: SeasonConfigEntry,
    final_positions: list[int],
) -> float:
    gained = split_tied(final_positions or [position], position, config.place_values())
    return current_points + gained * game_multiplier(game_type)


def calculate_season_points(
    position: int,
    game_type: str,
    current_points: float,
    sanma: bool,
    final_positions: list[int],
    season_id: int | None = None,
    cache=config_cache,
) -> float:
    config = cache.get_season_config_for_season(sanma, season_id)
    if config is None:
        logger.warning("no season config (sanma=%s, season_id=%s)", sanma, season_id)
        return current_points
    return season_points_with_config(position, game_type, current_points, config, final_positions)


def calculate_game_results(
    players: list[PlayerScore],
    game_type: str,
    standings: dict[int, CurrentStanding],
    table_average_rate: float,
    sanma: bool,
    season_eligible: bool,
    season_id: int | None = None,
    cache=config_cache,
) -> list[GameCalculationResult]:
    """Dan, Rate and (when eligible) Season results for every player of a game.

    Args:
        players: Final scores (k) of everyone at the table.
        game_type: "H" or "T".
        standings: Values before the game, by player id. Players missing from
            the map start from `CurrentStanding()` defaults.
        table_average_rate: Mean Rate of the table before the game.
        sanma: 3-player game.
        season_eligible: Whether the game awards Season points.
        season_id: Season used to pick the Season points table.

    Returns:
        One result per player, ordered by final position.
    """
    positions = calculate_final_positions(players)
    final_positions = [p.final_position for p in positions]

    results = []
    for pp in positions:
        standing = standings.get(pp.player_id) or CurrentStanding()

        new_dan = calculate_dan_points(
            pp.final_position, game_type, standing.dan_points, final_positions, sanma, cache
        )
        new_rate = calculate_rate_points(
            pp.final_position,
            standing.rate_points,
            standing.total_games,
            table_average_rate,
            game_type,
            sanma,
            final_positions,
            cache,
        )

        result = GameCalculationResult(
            player_id=pp.player_id,
            final_position=pp.final_position,
            final_score=pp.final_score,
            new_dan_points=new_dan,
            new_rate_points=new_rate,
            dan_change=new_dan - standing.dan_points,
            rate_change=new_rate - standing.rate_points,
        )
        if season_eligible:
            new_season = calculate_season_points(
                pp.final_position, game_type, standing.season_points, sanma, final_positions, season_id, cache
            )
            result.new_season_points = new_season
            result.season_change = new_season - standing.season_points
        results.append(result)
    return results

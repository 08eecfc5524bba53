"""Dan rank lookups used by ranking tables and player profiles."""

from .config_cache import config_cache

NO_RANK = "N/A"


def dan_rank_config(points: float, sanma: bool = False, cache=config_cache):
    """Rank row for `points`; below the lowest threshold means the lowest rank."""
    lowest = cache.get_lowest_dan_config(sanma)
    if lowest is not None and points < lowest.min_points:
        return lowest
    return cache.get_dan_config_by_points(points, sanma) or lowest


def dan_rank(points: float, sanma: bool = False, cache=config_cache) -> str:
    config = dan_rank_config(points, sanma, cache)
    return config.rank if config else NO_RANK


def _current_index(points: float, configs) -> int:
    for i, config in enumerate(configs):
        if config.contains(points):
            return i
    return -1


def next_dan_rank(points: float, sanma: bool = False, cache=config_cache) -> dict:
    """Next rank and the points still missing to reach it.

    At the top rank the next rank is the top rank itself and nothing is missing.
    """
    configs = cache.get_all_dan_configs(sanma)
    if not configs:
        return {"next_rank": NO_RANK, "missing": 0.0}

    lowest = configs[0]
    if points < lowest.min_points:
        return {"next_rank": lowest.rank, "missing": max(0.0, lowest.min_points - points)}

    idx = _current_index(points, configs)
    if idx == -1 or idx >= len(configs) - 1:
        return {"next_rank": configs[-1].rank, "missing": 0.0}

    nxt = configs[idx + 1]
    return {"next_rank": nxt.rank, "missing": max(0.0, nxt.min_points - points)}


def dan_rank_progress(points: float, sanma: bool = False, cache=config_cache) -> dict:
    """Progress through the current rank, as used by the profile progress bar.

    Returns:
        dict with `current` (points into the rank), `max` (rank width),
        `progress` (percent, one decimal), `rank` and `next_rank`. The open-ended
        top rank reports 100%.
    """
    configs = cache.get_all_dan_configs(sanma)
    if not configs:
        return {"current": 0, "max": 0, "progress": 0.0, "rank": NO_RANK, "next_rank": NO_RANK}

    lowest = configs[0]
    if points < lowest.min_points:
        return {
            "current": points,
            "max": lowest.min_points,
            "progress": 0.0,
            "rank": lowest.rank,
            "next_rank": lowest.rank,
        }

    idx = _current_index(points, configs)
    current = configs[idx] if idx != -1 else configs[-1]
    if idx == -1 or current.max_points is None:
        return {"current": 0, "max": 0, "progress": 100.0, "rank": current.rank, "next_rank": current.rank}

    nxt = configs[idx + 1] if idx + 1 < len(configs) else current
    into = points - current.min_points
    width = current.max_points - current.min_points
    progress = into / width * 100 if width > 0 else 100.0
    return {
        "current": round(into),
        "max": round(width),
        "progress": round(progress, 1),
        "rank": current.rank,
        "next_rank": nxt.rank,
    }


def dan_rank_lines(sanma: bool = False, cache=config_cache) -> list[dict]:
    """Threshold lines (value, label, color) for charting Dan history."""
    return [
        {"value": c.min_points, "label": c.rank, "color": c.color}
        for c in cache.get_all_dan_configs(sanma)
    ]

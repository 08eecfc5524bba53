"""Memoised ranking tables.

Building a ranking table touches every player ranking and the recent points
ledger, so results are kept until something that affects them changes.
Entries are keyed by `RankingKey`; `invalidate` drops every entry matching the
fields given (a 3p/4p invalidation also drops the combined "both" tables).
"""

from dataclasses import dataclass
import threading

GENERAL = "GENERAL"
SEASON = "SEASON"
RANKING_TYPES = (GENERAL, SEASON)

_UNSET = object()


@dataclass(frozen=True)
class RankingKey:
    season_id: int | None
    ranking_type: str
    include_inactive: bool
    sanma: bool | None = None

    def label(self) -> str:
        mode = "both" if self.sanma is None else ("3p" if self.sanma else "4p")
        activity = "all" if self.include_inactive else "active"
        season = "none" if self.season_id is None else str(self.season_id)
        return f"{season}|{self.ranking_type}|{activity}|{mode}"


class RankingCache:
    def __init__(self):
        self._store: dict[RankingKey, list] = {}
        self._lock = threading.Lock()

    def get(self, key: RankingKey):
        with self._lock:
            return self._store.get(key)

    def set(self, key: RankingKey, value) -> None:
        with self._lock:
            self._store[key] = value

    def invalidate(self, season_id=_UNSET, ranking_type=None, include_inactive=None, sanma=None) -> int:
        """Drop matching entries; with no arguments, drop everything.

        Returns:
            int: number of entries removed.
        """
        with self._lock:
            if season_id is _UNSET and ranking_type is None and include_inactive is None and sanma is None:
                removed = len(self._store)
                self._store.clear()
                return removed

            doomed = []
            for key in self._store:
                if season_id is not _UNSET and key.season_id != season_id:
                    continue
                if ranking_type is not None and key.ranking_type != ranking_type:
                    continue
                if include_inactive is not None and key.include_inactive != include_inactive:
                    continue
                if sanma is not None and key.sanma is not None and key.sanma != sanma:
                    continue
                doomed.append(key)
            for key in doomed:
                del self._store[key]
            return len(doomed)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(k.label() for k in self._store)

    def size(self) -> int:
        with self._lock:
            return len(self._store)


ranking_cache = RankingCache()

"""In-memory cache of the Dan / Rate / Season point tables.

Every game submission, ranking page and player profile needs the point tables,
and they change only when an admin edits them. They are loaded once into
process memory and refreshed table-by-table after each admin write.

Concurrency model:
    FastAPI serves sync handlers from a thread pool, so the cache is shared by
    many threads. Access goes through `ReadWriteLock`:
    - any number of readers may hold the lock together;
    - a writer waits for active readers to drain and then runs alone;
    - once a writer is waiting, new readers queue behind it, so a steady
      stream of reads cannot starve a refresh.

    Refreshes query the database *before* taking the write lock and only swap
    the prepared dicts while holding it, so readers are blocked for the
    duration of a dict assignment, never for a query. A reader therefore sees
    either the old table or the new one, never a mix.

    Refreshes themselves are serialized by a separate mutex held across load
    and swap. Without it two overlapping refreshes could finish out of order
    and leave the older load in place.

Keys:
    dan:    (rank, sanma)
    rate:   (name, sanma)
    season: (name, sanma, season_id or "default")
"""

from contextlib import contextmanager
from dataclasses import asdict, dataclass
import logging
import threading

from sqlalchemy import select

from . import models

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Writer-preferring reader/writer lock built on `threading.Condition`."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()

    @property
    def readers(self) -> int:
        with self._cond:
            return self._readers


@dataclass(frozen=True)
class DanConfigEntry:
    id: int
    rank: str
    sanma: bool
    min_points: float
    max_points: float | None
    first_place: float
    second_place: float
    third_place: float
    fourth_place: float | None
    is_protected: bool
    color: str | None
    css_class: str | None
    is_last_rank: bool

    def contains(self, points: float) -> bool:
        """Half-open range check: `min_points <= points < max_points`."""
        if points < self.min_points:
            return False
        return self.max_points is None or points < self.max_points

    def place_values(self) -> list[float]:
        vals = [self.first_place, self.second_place, self.third_place]
        if not self.sanma:
            vals.append(self.fourth_place or 0.0)
        return vals


@dataclass(frozen=True)
class RateConfigEntry:
    id: int
    name: str
    sanma: bool
    first_place: float
    second_place: float
    third_place: float
    fourth_place: float | None
    adjustment_rate: float
    adjustment_limit: int
    min_adjustment: float

    def place_values(self) -> list[float]:
        vals = [self.first_place, self.second_place, self.third_place]
        if not self.sanma:
            vals.append(self.fourth_place or 0.0)
        return vals


@dataclass(frozen=True)
class SeasonConfigEntry:
    id: int
    name: str
    sanma: bool
    first_place: float
    second_place: float
    third_place: float
    fourth_place: float | None
    season_id: int | None
    is_default: bool

    def place_values(self) -> list[float]:
        vals = [self.first_place, self.second_place, self.third_place]
        if not self.sanma:
            vals.append(self.fourth_place or 0.0)
        return vals


def _dan_entry(row: models.DanConfig) -> DanConfigEntry:
    return DanConfigEntry(
        id=row.id,
        rank=row.rank,
        sanma=row.sanma,
        min_points=row.min_points,
        max_points=row.max_points,
        first_place=row.first_place,
        second_place=row.second_place,
        third_place=row.third_place,
        fourth_place=row.fourth_place,
        is_protected=row.is_protected,
        color=row.color,
        css_class=row.css_class,
        is_last_rank=row.is_last_rank,
    )


def _rate_entry(row: models.RateConfig) -> RateConfigEntry:
    return RateConfigEntry(
        id=row.id,
        name=row.name,
        sanma=row.sanma,
        first_place=row.first_place,
        second_place=row.second_place,
        third_place=row.third_place,
        fourth_place=row.fourth_place,
        adjustment_rate=row.adjustment_rate,
        adjustment_limit=row.adjustment_limit,
        min_adjustment=row.min_adjustment,
    )


def _season_entry(row: models.SeasonConfig) -> SeasonConfigEntry:
    return SeasonConfigEntry(
        id=row.id,
        name=row.name,
        sanma=row.sanma,
        first_place=row.first_place,
        second_place=row.second_place,
        third_place=row.third_place,
        fourth_place=row.fourth_place,
        season_id=row.season_id,
        is_default=row.is_default,
    )


def dan_key(rank: str, sanma: bool):
    return (rank, sanma)


def rate_key(name: str, sanma: bool):
    return (name, sanma)


def season_key(name: str, sanma: bool, season_id: int | None):
    return (name, sanma, season_id if season_id is not None else "default")


class ConfigCache:
    def __init__(self, session_factory=None):
        self._session_factory = session_factory
        self._lock = ReadWriteLock()
        self._init_lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._dan: dict = {}
        self._rate: dict = {}
        self._season: dict = {}
        self._initialized = False

    def _session(self):
        if self._session_factory is None:
            from .db import SessionLocal

            self._session_factory = SessionLocal
        return self._session_factory()

    def bind(self, session_factory) -> None:
        """Point the cache at another session factory (tests, jobs)."""
        self._session_factory = session_factory

    # loading

    def _load_dan(self) -> dict:
        with self._session() as db:
            rows = db.scalars(select(models.DanConfig).order_by(models.DanConfig.min_points)).all()
            return {dan_key(r.rank, r.sanma): _dan_entry(r) for r in rows}

    def _load_rate(self) -> dict:
        with self._session() as db:
            rows = db.scalars(select(models.RateConfig).order_by(models.RateConfig.id)).all()
            return {rate_key(r.name, r.sanma): _rate_entry(r) for r in rows}

    def _load_season(self) -> dict:
        with self._session() as db:
            rows = db.scalars(select(models.SeasonConfig).order_by(models.SeasonConfig.id)).all()
            return {season_key(r.name, r.sanma, r.season_id): _season_entry(r) for r in rows}

    def initialize(self) -> None:
        """Load all three tables once. Later calls are no-ops."""
        if self._initialized:
            return
        with self._init_lock:
            if self._initialized:
                return
            logger.info("initializing configuration cache")
            with self._refresh_lock:
                dan, rate, season = self._load_dan(), self._load_rate(), self._load_season()
                with self._lock.write():
                    self._dan, self._rate, self._season = dan, rate, season
                    self._initialized = True
            logger.info(
                "configuration cache ready: %d dan, %d rate, %d season configs",
                len(dan), len(rate), len(season),
            )

    # a refresh that loads later also swaps later

    def refresh_dan_configs(self) -> None:
        with self._refresh_lock:
            dan = self._load_dan()
            with self._lock.write():
                self._dan = dan
        logger.info("dan configs refreshed (%d)", len(dan))

    def refresh_rate_configs(self) -> None:
        with self._refresh_lock:
            rate = self._load_rate()
            with self._lock.write():
                self._rate = rate
        logger.info("rate configs refreshed (%d)", len(rate))

    def refresh_season_configs(self) -> None:
        with self._refresh_lock:
            season = self._load_season()
            with self._lock.write():
                self._season = season
        logger.info("season configs refreshed (%d)", len(season))

    def refresh_all(self) -> None:
        with self._refresh_lock:
            dan, rate, season = self._load_dan(), self._load_rate(), self._load_season()
            with self._lock.write():
                self._dan, self._rate, self._season = dan, rate, season
                self._initialized = True
        logger.info("configuration cache fully refreshed")

    def _ready(self) -> None:
        # must run before taking the read lock: initialize() takes the write lock
        if not self._initialized:
            self.initialize()

    # dan

    def get_dan_config(self, rank: str, sanma: bool) -> DanConfigEntry | None:
        self._ready()
        with self._lock.read():
            return self._dan.get(dan_key(rank, sanma))

    def get_dan_config_by_points(self, points: float, sanma: bool) -> DanConfigEntry | None:
        self._ready()
        with self._lock.read():
            for entry in self._dan.values():
                if entry.sanma == sanma and entry.contains(points):
                    return entry
            return None

    def get_all_dan_configs(self, sanma: bool | None = None) -> list[DanConfigEntry]:
        self._ready()
        with self._lock.read():
            entries = [e for e in self._dan.values() if sanma is None or e.sanma == sanma]
        return sorted(entries, key=lambda e: (e.sanma, e.min_points))

    def get_lowest_dan_config(self, sanma: bool) -> DanConfigEntry | None:
        entries = self.get_all_dan_configs(sanma)
        return entries[0] if entries else None

    # rate

    def get_rate_config(self, name: str, sanma: bool) -> RateConfigEntry | None:
        self._ready()
        with self._lock.read():
            return self._rate.get(rate_key(name, sanma))

    def get_default_rate_config(self, sanma: bool) -> RateConfigEntry | None:
        self._ready()
        with self._lock.read():
            return next((e for e in self._rate.values() if e.sanma == sanma), None)

    def get_all_rate_configs(self) -> list[RateConfigEntry]:
        self._ready()
        with self._lock.read():
            return list(self._rate.values())

    # season

    def get_season_config(self, name: str, sanma: bool, season_id: int | None = None) -> SeasonConfigEntry | None:
        self._ready()
        with self._lock.read():
            return self._season.get(season_key(name, sanma, season_id))

    def get_default_season_config(self, sanma: bool) -> SeasonConfigEntry | None:
        self._ready()
        with self._lock.read():
            return next((e for e in self._season.values() if e.sanma == sanma and e.is_default), None)

    def get_season_config_for_season(self, sanma: bool, season_id: int | None) -> SeasonConfigEntry | None:
        """Season-specific config if one exists, otherwise the default for the mode."""
        self._ready()
        with self._lock.read():
            if season_id is not None:
                for entry in self._season.values():
                    if entry.sanma == sanma and entry.season_id == season_id:
                        return entry
            return next((e for e in self._season.values() if e.sanma == sanma and e.is_default), None)

    def get_all_season_configs(self) -> list[SeasonConfigEntry]:
        self._ready()
        with self._lock.read():
            return list(self._season.values())

    # admin

    def clear(self) -> None:
        with self._lock.write():
            self._dan, self._rate, self._season = {}, {}, {}
            self._initialized = False
        logger.info("configuration cache cleared")

    def status(self) -> dict:
        # counted before this call registers as a reader
        active_readers = self._lock.readers
        with self._lock.read():
            return {
                "initialized": self._initialized,
                "dan_configs": len(self._dan),
                "rate_configs": len(self._rate),
                "season_configs": len(self._season),
                "active_readers": active_readers,
            }

    def snapshot(self) -> dict:
        """Plain-dict dump of every cached entry (for the admin endpoint)."""
        return {
            "dan": [asdict(e) for e in self.get_all_dan_configs()],
            "rate": [asdict(e) for e in self.get_all_rate_configs()],
            "season": [asdict(e) for e in self.get_all_season_configs()],
        }


config_cache = ConfigCache()

"""SQLAlchemy ORM models for the league database.

Every table carries the audit/versioning columns from `versioning.VersionedMixin`
and is therefore soft-deleted and version-stamped by the session listeners.

Naming conventions:
- `is_sanma` / `sanma`: True for 3-player tables, False for 4-player.
- `game_type`: "H" (hanchan) or "T" (tonpuusen).
- `player_number`: the public league number shown to players (legajo); `id`
  stays internal.
- Per-position counters use the suffix `_h` / `_t` for hanchan / tonpuusen.
"""

from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base
from .versioning import VersionedMixin

HANCHAN = "H"
TONPUUSEN = "T"
GAME_TYPES = (HANCHAN, TONPUUSEN)

POINTS_DAN = "DAN"
POINTS_RATE = "RATE"
POINTS_SEASON = "SEASON"
POINTS_TYPES = (POINTS_DAN, POINTS_RATE, POINTS_SEASON)


class Country(VersionedMixin, Base):
    __tablename__ = "countries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    iso_code: Mapped[str] = mapped_column(String(3), unique=True)
    full_name: Mapped[str] = mapped_column(String(100))
    nationality: Mapped[str] = mapped_column(String(100))


class Location(VersionedMixin, Base):
    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True)
    city: Mapped[str | None] = mapped_column(String(100))
    address: Mapped[str | None] = mapped_column(String(200))


class Uma(VersionedMixin, Base):
    __tablename__ = "uma"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), unique=True)
    first_place: Mapped[int] = mapped_column(Integer)
    second_place: Mapped[int] = mapped_column(Integer)
    third_place: Mapped[int] = mapped_column(Integer)
    fourth_place: Mapped[int | None] = mapped_column(Integer)

    def values(self, sanma: bool) -> list[float]:
        vals = [self.first_place, self.second_place, self.third_place]
        if not sanma:
            vals.append(self.fourth_place or 0)
        return [float(v) for v in vals]


class Ruleset(VersionedMixin, Base):
    __tablename__ = "rulesets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), unique=True)
    uma_id: Mapped[int] = mapped_column(ForeignKey("uma.id"))
    oka: Mapped[int] = mapped_column(Integer, default=0)
    chonbo: Mapped[int] = mapped_column(Integer, default=0)
    in_points: Mapped[int] = mapped_column(Integer)
    out_points: Mapped[int] = mapped_column(Integer)
    sanma: Mapped[bool] = mapped_column(Boolean, default=False)

    uma: Mapped[Uma] = relationship(lazy="joined")


class Season(VersionedMixin, Base):
    __tablename__ = "seasons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), unique=True)
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False)


class Tournament(VersionedMixin, Base):
    __tablename__ = "tournaments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    season_id: Mapped[int | None] = mapped_column(ForeignKey("seasons.id"))
    tournament_type: Mapped[str] = mapped_column(String(20), default="INDIVIDUAL")
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)

    season: Mapped[Season | None] = relationship()
    results: Mapped[list["TournamentResult"]] = relationship(
        back_populates="tournament", order_by="TournamentResult.position"
    )


class TournamentResult(VersionedMixin, Base):
    __tablename__ = "tournament_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tournament_id: Mapped[int] = mapped_column(ForeignKey("tournaments.id"))
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"))
    position: Mapped[int] = mapped_column(Integer)
    points_won: Mapped[float] = mapped_column(Float, default=0.0)
    prize_won: Mapped[float | None] = mapped_column(Float)

    tournament: Mapped[Tournament] = relationship(back_populates="results")
    player: Mapped["Player"] = relationship()


class Player(VersionedMixin, Base):
    __tablename__ = "players"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    player_number: Mapped[int] = mapped_column(Integer, unique=True, index=True)
    nickname: Mapped[str] = mapped_column(String(50), unique=True)
    fullname: Mapped[str | None] = mapped_column(String(100))
    country_id: Mapped[int | None] = mapped_column(ForeignKey("countries.id"))
    birthday: Mapped[date | None] = mapped_column(Date)

    country: Mapped[Country | None] = relationship()
    rankings: Mapped[list["PlayerRanking"]] = relationship(back_populates="player")


class Game(VersionedMixin, Base):
    __tablename__ = "games"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    game_date: Mapped[datetime] = mapped_column(DateTime, index=True)
    game_number: Mapped[int] = mapped_column(Integer, default=1)
    game_type: Mapped[str] = mapped_column(String(1), default=HANCHAN)
    ruleset_id: Mapped[int] = mapped_column(ForeignKey("rulesets.id"))
    season_id: Mapped[int | None] = mapped_column(ForeignKey("seasons.id"))
    tournament_id: Mapped[int | None] = mapped_column(ForeignKey("tournaments.id"))
    location_id: Mapped[int | None] = mapped_column(ForeignKey("locations.id"))
    extra_data: Mapped[dict | None] = mapped_column(JSON)

    ruleset: Mapped[Ruleset] = relationship()
    season: Mapped[Season | None] = relationship()
    tournament: Mapped[Tournament | None] = relationship()
    location: Mapped[Location | None] = relationship()
    results: Mapped[list["GameResult"]] = relationship(
        back_populates="game", order_by="GameResult.final_position"
    )

    @property
    def is_sanma(self) -> bool:
        return self.ruleset.sanma

    @property
    def season_eligible(self) -> bool:
        return self.season_id is not None and self.tournament_id is not None


class GameResult(VersionedMixin, Base):
    __tablename__ = "game_results"
    __table_args__ = (UniqueConstraint("game_id", "player_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    game_id: Mapped[int] = mapped_column(ForeignKey("games.id"), index=True)
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), index=True)
    game_score: Mapped[int] = mapped_column(Integer)
    final_score: Mapped[float] = mapped_column(Float)
    final_position: Mapped[int] = mapped_column(Integer)
    chonbo: Mapped[int] = mapped_column(Integer, default=0)
    dan_points_earned: Mapped[float] = mapped_column(Float, default=0.0)
    rate_change: Mapped[float] = mapped_column(Float, default=0.0)
    season_points_earned: Mapped[float | None] = mapped_column(Float)
    extra_data: Mapped[dict | None] = mapped_column(JSON)

    game: Mapped[Game] = relationship(back_populates="results")
    player: Mapped[Player] = relationship()


class Points(VersionedMixin, Base):
    """Ledger of point events.

    DAN and RATE rows store the player's value *after* the game; SEASON rows
    store the points earned in that game.
    """

    __tablename__ = "points"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), index=True)
    game_id: Mapped[int | None] = mapped_column(ForeignKey("games.id"))
    tournament_id: Mapped[int | None] = mapped_column(ForeignKey("tournaments.id"))
    season_id: Mapped[int | None] = mapped_column(ForeignKey("seasons.id"))
    points_type: Mapped[str] = mapped_column(String(10), index=True)
    points_value: Mapped[float] = mapped_column(Float)
    is_sanma: Mapped[bool] = mapped_column(Boolean, default=False)
    event_date: Mapped[datetime] = mapped_column(DateTime)
    description: Mapped[str | None] = mapped_column(String(200))

    game: Mapped[Game | None] = relationship()


class PlayerRanking(VersionedMixin, Base):
    __tablename__ = "player_rankings"
    __table_args__ = (UniqueConstraint("player_id", "is_sanma"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"))
    is_sanma: Mapped[bool] = mapped_column(Boolean, default=False)

    dan_points: Mapped[float] = mapped_column(Float, default=0.0)
    rate_points: Mapped[float] = mapped_column(Float, default=1500.0)
    max_rate: Mapped[float] = mapped_column(Float, default=1500.0)
    total_games: Mapped[int] = mapped_column(Integer, default=0)
    average_position: Mapped[float] = mapped_column(Float, default=0.0)
    first_place_h: Mapped[int] = mapped_column(Integer, default=0)
    second_place_h: Mapped[int] = mapped_column(Integer, default=0)
    third_place_h: Mapped[int] = mapped_column(Integer, default=0)
    fourth_place_h: Mapped[int] = mapped_column(Integer, default=0)
    first_place_t: Mapped[int] = mapped_column(Integer, default=0)
    second_place_t: Mapped[int] = mapped_column(Integer, default=0)
    third_place_t: Mapped[int] = mapped_column(Integer, default=0)
    fourth_place_t: Mapped[int] = mapped_column(Integer, default=0)

    season_points: Mapped[float] = mapped_column(Float, default=0.0)
    season_total_games: Mapped[int] = mapped_column(Integer, default=0)
    season_average_position: Mapped[float] = mapped_column(Float, default=0.0)
    season_first_place_h: Mapped[int] = mapped_column(Integer, default=0)
    season_second_place_h: Mapped[int] = mapped_column(Integer, default=0)
    season_third_place_h: Mapped[int] = mapped_column(Integer, default=0)
    season_fourth_place_h: Mapped[int] = mapped_column(Integer, default=0)
    season_first_place_t: Mapped[int] = mapped_column(Integer, default=0)
    season_second_place_t: Mapped[int] = mapped_column(Integer, default=0)
    season_third_place_t: Mapped[int] = mapped_column(Integer, default=0)
    season_fourth_place_t: Mapped[int] = mapped_column(Integer, default=0)

    last_game_date: Mapped[datetime | None] = mapped_column(DateTime)

    player: Mapped[Player] = relationship(back_populates="rankings")


class SeasonResult(VersionedMixin, Base):
    __tablename__ = "season_results"
    __table_args__ = (UniqueConstraint("season_id", "player_id", "is_sanma"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id"))
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"))
    is_sanma: Mapped[bool] = mapped_column(Boolean, default=False)
    season_total_games: Mapped[int] = mapped_column(Integer, default=0)
    season_average_position: Mapped[float] = mapped_column(Float, default=0.0)
    season_points: Mapped[float] = mapped_column(Float, default=0.0)
    first_place_h: Mapped[int] = mapped_column(Integer, default=0)
    second_place_h: Mapped[int] = mapped_column(Integer, default=0)
    third_place_h: Mapped[int] = mapped_column(Integer, default=0)
    fourth_place_h: Mapped[int] = mapped_column(Integer, default=0)
    first_place_t: Mapped[int] = mapped_column(Integer, default=0)
    second_place_t: Mapped[int] = mapped_column(Integer, default=0)
    third_place_t: Mapped[int] = mapped_column(Integer, default=0)
    fourth_place_t: Mapped[int] = mapped_column(Integer, default=0)

    player: Mapped[Player] = relationship()


class DanConfig(VersionedMixin, Base):
    __tablename__ = "dan_configs"
    __table_args__ = (UniqueConstraint("rank", "sanma"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    rank: Mapped[str] = mapped_column(String(50))
    sanma: Mapped[bool] = mapped_column(Boolean, default=False)
    min_points: Mapped[float] = mapped_column(Float)
    max_points: Mapped[float | None] = mapped_column(Float)
    first_place: Mapped[float] = mapped_column(Float)
    second_place: Mapped[float] = mapped_column(Float)
    third_place: Mapped[float] = mapped_column(Float)
    fourth_place: Mapped[float | None] = mapped_column(Float)
    is_protected: Mapped[bool] = mapped_column(Boolean, default=False)
    is_last_rank: Mapped[bool] = mapped_column(Boolean, default=False)
    color: Mapped[str | None] = mapped_column(String(20))
    css_class: Mapped[str | None] = mapped_column(String(50))


class RateConfig(VersionedMixin, Base):
    __tablename__ = "rate_configs"
    __table_args__ = (UniqueConstraint("name", "sanma"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50))
    sanma: Mapped[bool] = mapped_column(Boolean, default=False)
    first_place: Mapped[float] = mapped_column(Float)
    second_place: Mapped[float] = mapped_column(Float)
    third_place: Mapped[float] = mapped_column(Float)
    fourth_place: Mapped[float | None] = mapped_column(Float)
    adjustment_rate: Mapped[float] = mapped_column(Float, default=0.002)
    adjustment_limit: Mapped[int] = mapped_column(Integer, default=400)
    min_adjustment: Mapped[float] = mapped_column(Float, default=0.2)


class SeasonConfig(VersionedMixin, Base):
    __tablename__ = "season_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50))
    sanma: Mapped[bool] = mapped_column(Boolean, default=False)
    season_id: Mapped[int | None] = mapped_column(ForeignKey("seasons.id"))
    first_place: Mapped[float] = mapped_column(Float)
    second_place: Mapped[float] = mapped_column(Float)
    third_place: Mapped[float] = mapped_column(Float)
    fourth_place: Mapped[float | None] = mapped_column(Float)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)

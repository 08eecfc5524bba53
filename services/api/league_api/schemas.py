"""Request bodies for the write endpoints.

Responses stay plain dictionaries (`{"ok": true, ...}`); only incoming payloads
are modelled here so FastAPI validates them and documents them in OpenAPI.

Update bodies carry the `version` the client last read. When it is present,
the server refuses the update if the row has changed since (HTTP 409).
"""

from datetime import date

from pydantic import BaseModel, Field, field_validator

from .models import GAME_TYPES


class PlayerCreate(BaseModel):
    nickname: str = Field(min_length=1, max_length=50)
    fullname: str | None = Field(default=None, max_length=100)
    player_number: int | None = Field(default=None, ge=1)
    country_iso: str | None = Field(default=None, max_length=3)
    birthday: date | None = None


class PlayerUpdate(BaseModel):
    nickname: str | None = Field(default=None, min_length=1, max_length=50)
    fullname: str | None = Field(default=None, max_length=100)
    country_iso: str | None = Field(default=None, max_length=3)
    birthday: date | None = None
    version: int | None = None


class GamePlayerIn(BaseModel):
    player_number: int = Field(ge=1)
    game_score: int
    chonbo: int = Field(default=0, ge=0)
    wind: str | None = None


class GameSubmission(BaseModel):
    game_date: date
    ruleset_id: int
    game_type: str = "H"
    season_id: int | None = None
    tournament_id: int | None = None
    location_id: int | None = None
    players: list[GamePlayerIn] = Field(min_length=3, max_length=4)

    @field_validator("game_type", mode="before")
    @classmethod
    def _normalize_game_type(cls, value):
        if isinstance(value, str):
            upper = value.strip().upper()
            if upper in ("HANCHAN", "H"):
                return "H"
            if upper in ("TONPUUSEN", "T"):
                return "T"
        if value not in GAME_TYPES:
            raise ValueError("game_type must be H (hanchan) or T (tonpuusen)")
        return value


class SeasonCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    start_date: date
    end_date: date | None = None
    is_active: bool = False


class SeasonClose(BaseModel):
    confirmation: str
    end_date: date | None = None
    next_season_id: int | None = None


class TournamentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    season_id: int | None = None
    tournament_type: str = "INDIVIDUAL"
    start_date: date
    end_date: date | None = None


class TournamentFinalize(BaseModel):
    confirmation: str


class DanConfigIn(BaseModel):
    rank: str = Field(min_length=1, max_length=50)
    sanma: bool = False
    min_points: float = Field(ge=0)
    max_points: float | None = None
    first_place: float
    second_place: float
    third_place: float
    fourth_place: float | None = None
    is_protected: bool = False
    is_last_rank: bool = False
    color: str | None = None
    css_class: str | None = None
    version: int | None = None


class RateConfigIn(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    sanma: bool = False
    first_place: float
    second_place: float
    third_place: float
    fourth_place: float | None = None
    adjustment_rate: float = Field(default=0.002, ge=0)
    adjustment_limit: int = Field(default=400, ge=0)
    min_adjustment: float = Field(default=0.2, ge=0)
    version: int | None = None


class SeasonConfigIn(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    sanma: bool = False
    season_id: int | None = None
    first_place: float
    second_place: float
    third_place: float
    fourth_place: float | None = None
    is_default: bool = False
    version: int | None = None


class CountryIn(BaseModel):
    iso_code: str = Field(min_length=2, max_length=3)
    full_name: str = Field(min_length=1, max_length=100)
    nationality: str = Field(min_length=1, max_length=100)
    version: int | None = None

    @field_validator("iso_code")
    @classmethod
    def _upper(cls, value: str) -> str:
        return value.upper()


class LocationIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    city: str | None = Field(default=None, max_length=100)
    address: str | None = Field(default=None, max_length=200)
    version: int | None = None


class UmaIn(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    first_place: int
    second_place: int
    third_place: int
    fourth_place: int | None = None
    version: int | None = None


class RulesetIn(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    uma_id: int
    oka: int = 0
    chonbo: int = 0
    in_points: int = Field(gt=0)
    out_points: int = Field(gt=0)
    sanma: bool = False
    version: int | None = None

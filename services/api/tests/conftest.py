"""Shared fixtures for the API test suite.

The suite runs against an in-memory SQLite database. `DATABASE_URL` must be set
before `league_api.db` is imported because the engine is created at import
time; SQLite URLs get a single shared connection (StaticPool) so every session
sees the same database.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_LEVEL"] = "WARNING"

from datetime import date

import pytest
from fastapi.testclient import TestClient

from league_api import models
from league_api.config_cache import config_cache
from league_api.db import Base, SessionLocal, engine
from league_api.defaults import ensure_default_configs
from league_api.ranking_cache import ranking_cache
from league_api.schemas import GamePlayerIn, GameSubmission
from league_api.services.players import create_player


@pytest.fixture(autouse=True)
def database():
    """Fresh schema with the default point tables for every test."""
    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        ensure_default_configs(db)
    config_cache.bind(SessionLocal)
    config_cache.clear()
    ranking_cache.invalidate()
    yield
    config_cache.clear()
    ranking_cache.invalidate()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    from league_api.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def rulesets(db):
    """One 4-player and one 3-player ruleset (M-League style uma and oka)."""
    yonma_uma = models.Uma(name="10-30", first_place=30, second_place=10, third_place=-10, fourth_place=-30)
    sanma_uma = models.Uma(name="sanma 20", first_place=20, second_place=0, third_place=-20)
    db.add_all([yonma_uma, sanma_uma])
    db.flush()
    yonma = models.Ruleset(
        name="Yonma", uma_id=yonma_uma.id, oka=20, chonbo=20, in_points=25000, out_points=30000, sanma=False
    )
    sanma = models.Ruleset(
        name="Sanma", uma_id=sanma_uma.id, oka=15, chonbo=20, in_points=35000, out_points=40000, sanma=True
    )
    db.add_all([yonma, sanma])
    db.commit()
    return {"yonma": yonma.id, "sanma": sanma.id}


@pytest.fixture
def players(db):
    """Four registered players numbered 1-4."""
    return [create_player(db, nickname=name) for name in ("Akagi", "Washizu", "Saki", "Nodoka")]


@pytest.fixture
def season(db):
    s = models.Season(name="2026", start_date=date(2026, 1, 1), is_active=True)
    db.add(s)
    db.commit()
    return s


@pytest.fixture
def tournament(db, season):
    t = models.Tournament(name="Spring Cup", season_id=season.id, start_date=date(2026, 3, 1), end_date=date(2026, 3, 2))
    db.add(t)
    db.commit()
    return t


@pytest.fixture
def make_submission():
    """Build a game submission where player N (1-based) scores `scores[N-1]`."""

    def build(ruleset_id, scores, game_date=date(2026, 3, 1), game_type="H", **kwargs) -> GameSubmission:
        return GameSubmission(
            game_date=game_date,
            ruleset_id=ruleset_id,
            game_type=game_type,
            players=[GamePlayerIn(player_number=i + 1, game_score=s) for i, s in enumerate(scores)],
            **kwargs,
        )

    return build

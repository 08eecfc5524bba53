"""Fixtures for the recalculation job tests (in-memory SQLite)."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import date

import pytest

from league_api import models
from league_api.config_cache import config_cache
from league_api.db import Base, SessionLocal, engine
from league_api.defaults import ensure_default_configs
from league_api.ranking_cache import ranking_cache
from league_api.schemas import GamePlayerIn, GameSubmission
from league_api.services.games import record_game
from league_api.services.players import create_player


@pytest.fixture(autouse=True)
def database():
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
def history(db):
    """Two 4-player games and one 3-player game between four players."""
    uma = models.Uma(name="10-30", first_place=30, second_place=10, third_place=-10, fourth_place=-30)
    sanma_uma = models.Uma(name="sanma", first_place=20, second_place=0, third_place=-20)
    db.add_all([uma, sanma_uma])
    db.flush()
    yonma = models.Ruleset(name="Yonma", uma_id=uma.id, oka=20, in_points=25000, out_points=30000)
    sanma = models.Ruleset(name="Sanma", uma_id=sanma_uma.id, oka=15, in_points=35000, out_points=40000, sanma=True)
    db.add_all([yonma, sanma])
    db.commit()
    for name in ("Akagi", "Washizu", "Saki", "Nodoka"):
        create_player(db, nickname=name)

    tables = [
        (yonma.id, date(2026, 2, 1), [45000, 30000, 20000, 5000]),
        (yonma.id, date(2026, 2, 8), [10000, 40000, 30000, 20000]),
        (sanma.id, date(2026, 2, 8), [50000, 35000, 20000]),
    ]
    for ruleset_id, game_date, scores in tables:
        record_game(db, GameSubmission(
            game_date=game_date,
            ruleset_id=ruleset_id,
            players=[GamePlayerIn(player_number=i + 1, game_score=s) for i, s in enumerate(scores)],
        ))
    return {"yonma": yonma.id, "sanma": sanma.id}

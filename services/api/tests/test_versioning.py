"""Soft delete, version counter and audit stamps on versioned entities."""

from datetime import datetime

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from league_common.db import retry_on_conflict

from league_api import models
from league_api.db import SessionLocal
from league_api.versioning import StaleVersionError, audit_as, check_version, include_deleted, only_deleted


def _location(db, name="Club Haku"):
    loc = models.Location(name=name, city="Buenos Aires")
    db.add(loc)
    db.commit()
    return loc


def test_insert_starts_at_version_zero_with_audit_stamps(db):
    with audit_as("admin", "10.0.0.1"):
        loc = _location(db)
    assert loc.version == 0
    assert loc.deleted is False
    assert loc.created_by == "admin"
    assert loc.created_ip == "10.0.0.1"
    assert loc.created_at is not None
    assert loc.updated_at == loc.created_at


def test_every_update_increments_version(db):
    loc = _location(db)
    with audit_as("editor"):
        loc.city = "Rosario"
        db.commit()
    assert loc.version == 1
    assert loc.updated_by == "editor"
    assert loc.created_by == "system"

    loc.address = "Calle 1"
    db.commit()
    assert loc.version == 2


def test_unchanged_object_keeps_its_version(db):
    loc = _location(db)
    loc.city = loc.city
    db.commit()
    assert loc.version == 0


def test_delete_is_soft_and_bumps_version(db):
    loc = _location(db)
    db.delete(loc)
    db.commit()

    assert loc.deleted is True
    assert loc.version == 1
    raw = db.execute(select(func.count()).select_from(models.Location.__table__)).scalar()
    assert raw == 1


def test_soft_deleted_rows_are_hidden_from_queries(db):
    keep = _location(db, "Keep")
    gone = _location(db, "Gone")
    db.delete(gone)
    db.commit()

    names = db.scalars(select(models.Location.name)).all()
    assert names == ["Keep"]
    assert db.scalars(select(models.Location).where(models.Location.id == gone.id)).first() is None

    everything = db.scalars(include_deleted(select(models.Location).order_by(models.Location.id))).all()
    assert [loc.id for loc in everything] == [keep.id, gone.id]
    assert [loc.id for loc in db.scalars(only_deleted(select(models.Location), models.Location))] == [gone.id]


def test_restore_makes_row_visible_again(db):
    loc = _location(db)
    db.delete(loc)
    db.commit()
    loc.deleted = False
    db.commit()

    assert loc.version == 2
    assert db.scalars(select(models.Location)).first() is loc


def test_relationship_loads_skip_deleted_children(db, rulesets, players):
    ruleset = db.get(models.Ruleset, rulesets["yonma"])
    game = models.Game(game_date=datetime(2026, 1, 1), ruleset=ruleset)
    db.add(game)
    for i, player in enumerate(players):
        db.add(models.GameResult(game=game, player=player, game_score=25000, final_score=0, final_position=i + 1))
    db.commit()
    first = game.results[0]
    db.delete(first)
    db.commit()

    with SessionLocal() as other:
        loaded = other.scalars(select(models.Game).where(models.Game.id == game.id)).one()
        assert len(loaded.results) == 3


def test_check_version():
    loc = models.Location(name="x")
    loc.version = 3
    check_version(loc, None)
    check_version(loc, 3)
    with pytest.raises(StaleVersionError) as excinfo:
        check_version(loc, 2)
    assert excinfo.value.expected == 2
    assert excinfo.value.found == 3


def _ranking_id(db, player):
    return db.scalars(
        select(models.PlayerRanking.id).where(
            models.PlayerRanking.player_id == player.id, models.PlayerRanking.is_sanma.is_(False)
        )
    ).one()


def test_flush_based_on_stale_read_is_rejected(db, players):
    ranking_id = _ranking_id(db, players[0])
    mine = db.get(models.PlayerRanking, ranking_id)

    with SessionLocal() as other:
        theirs = other.get(models.PlayerRanking, ranking_id)
        theirs.total_games += 1
        other.commit()

    mine.total_games += 1
    with pytest.raises(StaleDataError):
        db.commit()
    db.rollback()

    db.expire_all()
    current = db.get(models.PlayerRanking, ranking_id)
    assert (current.total_games, current.version) == (1, 1)


def test_conflicting_write_is_retried_on_fresh_data(db, players):
    ranking_id = _ranking_id(db, players[0])
    attempts = []

    def increment():
        ranking = db.get(models.PlayerRanking, ranking_id)
        if not attempts:
            with SessionLocal() as other:
                other.get(models.PlayerRanking, ranking_id).total_games += 1
                other.commit()
        attempts.append(ranking.version)
        ranking.total_games += 1
        db.commit()

    retry_on_conflict(increment, retries=3, on_retry=lambda exc: db.rollback(), sleep=lambda s: None)

    assert attempts == [0, 1]
    db.expire_all()
    current = db.get(models.PlayerRanking, ranking_id)
    assert (current.total_games, current.version) == (2, 2)

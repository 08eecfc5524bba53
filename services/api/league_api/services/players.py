"""Player directory: creation, lookup, search and soft delete."""

import logging

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models
from ..calculations import normalize_nickname, validate_nickname
from ..errors import ConflictError, NotFoundError, ValidationError
from ..ranking_cache import ranking_cache
from ..settings import get_settings
from ..versioning import check_version

logger = logging.getLogger(__name__)


def player_to_dict(player: models.Player) -> dict:
    return {
        "id": player.id,
        "player_number": player.player_number,
        "nickname": player.nickname,
        "fullname": player.fullname,
        "country_iso": player.country.iso_code if player.country else None,
        "country_name": player.country.full_name if player.country else None,
        "birthday": player.birthday.isoformat() if player.birthday else None,
        "version": player.version,
        "deleted": player.deleted,
        "created_at": player.created_at.isoformat() if player.created_at else None,
    }


def next_player_number(db: Session) -> int:
    """Lowest player number not taken, soft-deleted players included."""
    taken = set(
        db.scalars(
            select(models.Player.player_number).execution_options(include_deleted=True)
        ).all()
    )
    number = 1
    while number in taken:
        number += 1
    return number


def get_player(db: Session, player_number: int, include_deleted: bool = False) -> models.Player:
    stmt = select(models.Player).where(models.Player.player_number == player_number)
    if include_deleted:
        stmt = stmt.execution_options(include_deleted=True)
    player = db.scalars(stmt).first()
    if player is None:
        raise NotFoundError("Player not found")
    return player


def nickname_available(db: Session, nickname: str, exclude_player_id: int | None = None) -> bool:
    stmt = (
        select(models.Player.id)
        .where(func.lower(models.Player.nickname) == normalize_nickname(nickname).lower())
        .execution_options(include_deleted=True)
    )
    if exclude_player_id is not None:
        stmt = stmt.where(models.Player.id != exclude_player_id)
    return db.execute(stmt).first() is None


def _resolve_country(db: Session, iso: str | None) -> models.Country | None:
    if not iso:
        return None
    return db.scalars(select(models.Country).where(models.Country.iso_code == iso.upper())).first()


def create_player(
    db: Session,
    nickname: str,
    fullname: str | None = None,
    player_number: int | None = None,
    country_iso: str | None = None,
    birthday=None,
) -> models.Player:
    """Create a player with an empty 4-player and 3-player ranking.

    Raises:
        ValidationError: Bad nickname.
        ConflictError: Nickname or player number already in use.
    """
    errors = validate_nickname(nickname)
    if errors:
        raise ValidationError("Invalid nickname", errors=errors)
    nickname = normalize_nickname(nickname)

    if not nickname_available(db, nickname):
        raise ConflictError(f"Nickname '{nickname}' is already taken")

    settings = get_settings()
    if player_number is None:
        player_number = next_player_number(db)
    elif db.execute(
        select(models.Player.id)
        .where(models.Player.player_number == player_number)
        .execution_options(include_deleted=True)
    ).first():
        raise ConflictError(f"Player number {player_number} is already taken")

    country = _resolve_country(db, country_iso or settings.default_country_iso)
    player = models.Player(
        player_number=player_number,
        nickname=nickname,
        fullname=fullname,
        country=country,
        birthday=birthday,
    )
    db.add(player)
    for sanma in (False, True):
        db.add(models.PlayerRanking(
            player=player,
            is_sanma=sanma,
            dan_points=settings.initial_dan,
            rate_points=settings.initial_rate,
            max_rate=settings.initial_rate,
        ))

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("Player could not be created (duplicate value)") from exc

    ranking_cache.invalidate()
    logger.info("player created: #%s %s", player.player_number, player.nickname)
    return player


def update_player(db: Session, player_number: int, changes: dict, expected_version: int | None = None) -> models.Player:
    player = get_player(db, player_number)
    check_version(player, expected_version)

    if "nickname" in changes and changes["nickname"] is not None:
        errors = validate_nickname(changes["nickname"])
        if errors:
            raise ValidationError("Invalid nickname", errors=errors)
        nickname = normalize_nickname(changes["nickname"])
        if nickname != player.nickname and not nickname_available(db, nickname, exclude_player_id=player.id):
            raise ConflictError(f"Nickname '{nickname}' is already taken")
        player.nickname = nickname
    if "fullname" in changes:
        player.fullname = changes["fullname"]
    if "birthday" in changes:
        player.birthday = changes["birthday"]
    if changes.get("country_iso"):
        player.country = _resolve_country(db, changes["country_iso"])

    db.commit()
    ranking_cache.invalidate()
    return player


def delete_player(db: Session, player_number: int, expected_version: int | None = None) -> models.Player:
    player = get_player(db, player_number)
    check_version(player, expected_version)
    db.delete(player)
    db.commit()
    ranking_cache.invalidate()
    logger.info("player #%s soft-deleted", player_number)
    return player


def restore_player(db: Session, player_number: int) -> models.Player:
    player = get_player(db, player_number, include_deleted=True)
    if not player.deleted:
        raise ValidationError("Player is not deleted")
    player.deleted = False
    db.commit()
    ranking_cache.invalidate()
    return player


def list_players(
    db: Session,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
    include_deleted: bool = False,
) -> tuple[list[models.Player], int]:
    """Players ordered by player number, optionally filtered.

    `search` matches nickname or full name case-insensitively, or the player
    number exactly when it is numeric.
    """
    stmt = select(models.Player)
    count_stmt = select(func.count(models.Player.id))
    if search and search.strip():
        q = f"%{search.strip().lower()}%"
        cond = or_(
            func.lower(models.Player.nickname).like(q),
            func.lower(func.coalesce(models.Player.fullname, "")).like(q),
        )
        if search.strip().isdigit():
            cond = or_(cond, models.Player.player_number == int(search.strip()))
        stmt = stmt.where(cond)
        count_stmt = count_stmt.where(cond)
    if include_deleted:
        stmt = stmt.execution_options(include_deleted=True)
        count_stmt = count_stmt.execution_options(include_deleted=True)
    else:
        count_stmt = count_stmt.where(models.Player.deleted.is_(False))

    players = db.scalars(
        stmt.order_by(models.Player.player_number).limit(limit).offset(offset)
    ).all()
    total = db.scalar(count_stmt) or 0
    return list(players), int(total)

"""Point table administration (Dan, Rate and Season configs).

Every write commits and then refreshes the matching table in `config_cache`,
so the next calculation sees the new values. Cached ranking tables are dropped
as well because rank names and colours come from the Dan table.
"""

from dataclasses import asdict, dataclass
from typing import Callable
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from .. import models
from ..config_cache import config_cache
from ..errors import ConflictError, NotFoundError, ValidationError
from ..ranking_cache import ranking_cache
from ..versioning import check_version

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfigTable:
    name: str
    model: type
    key_fields: tuple[str, ...]
    refresh: Callable[[], None]


TABLES = {
    "dan": ConfigTable("dan", models.DanConfig, ("rank", "sanma"), config_cache.refresh_dan_configs),
    "rate": ConfigTable("rate", models.RateConfig, ("name", "sanma"), config_cache.refresh_rate_configs),
    "season": ConfigTable("season", models.SeasonConfig, ("name", "sanma", "season_id"), config_cache.refresh_season_configs),
}

_AUDIT_FIELDS = ("created_at", "created_by", "created_ip", "updated_at", "updated_by", "updated_ip")


def get_table(name: str) -> ConfigTable:
    try:
        return TABLES[name]
    except KeyError:
        raise NotFoundError(f"Unknown config table: {name}") from None


def row_to_dict(row) -> dict:
    data = {c.name: getattr(row, c.name) for c in row.__table__.columns if c.name not in _AUDIT_FIELDS}
    data["updated_at"] = row.updated_at.isoformat() if row.updated_at else None
    data["updated_by"] = row.updated_by
    return data


def entry_to_dict(entry) -> dict:
    return asdict(entry)


def _validate(table: ConfigTable, values: dict) -> None:
    errors = []
    if not values.get("sanma") and values.get("fourth_place") is None:
        errors.append("fourth_place is required for 4-player tables")
    if table.name == "dan":
        if values.get("max_points") is not None and values["max_points"] <= values["min_points"]:
            errors.append("max_points must be greater than min_points")
    if errors:
        raise ValidationError(f"Invalid {table.name} config", errors=errors)


def _after_write(table: ConfigTable) -> None:
    table.refresh()
    ranking_cache.invalidate()


def list_rows(db: Session, table: ConfigTable, sanma: bool | None = None, include_deleted: bool = False) -> list:
    stmt = select(table.model).order_by(table.model.sanma, table.model.id)
    if table.name == "dan":
        stmt = select(table.model).order_by(table.model.sanma, table.model.min_points)
    if sanma is not None:
        stmt = stmt.where(table.model.sanma.is_(sanma))
    if include_deleted:
        stmt = stmt.execution_options(include_deleted=True)
    return list(db.scalars(stmt).all())


def get_row(db: Session, table: ConfigTable, row_id: int, include_deleted: bool = False):
    stmt = select(table.model).where(table.model.id == row_id)
    if include_deleted:
        stmt = stmt.execution_options(include_deleted=True)
    row = db.scalars(stmt).first()
    if row is None:
        raise NotFoundError(f"{table.name} config not found")
    return row


def create_row(db: Session, table: ConfigTable, values: dict):
    """Insert a config row; a soft-deleted row with the same key is revived."""
    values = {k: v for k, v in values.items() if k != "version"}
    _validate(table, values)

    stmt = select(table.model).execution_options(include_deleted=True)
    for field in table.key_fields:
        column = getattr(table.model, field)
        stmt = stmt.where(column.is_(None) if values.get(field) is None else column == values[field])
    existing = db.scalars(stmt).first()
    if existing is not None and not existing.deleted:
        raise ConflictError(f"{table.name} config already exists")

    if existing is not None:
        row = existing
        row.deleted = False
        for field, value in values.items():
            setattr(row, field, value)
    else:
        row = table.model(**values)
        db.add(row)
    db.commit()
    _after_write(table)
    logger.info("%s config %s created", table.name, row.id)
    return row


def update_row(db: Session, table: ConfigTable, row_id: int, values: dict):
    row = get_row(db, table, row_id)
    values = dict(values)
    check_version(row, values.pop("version", None))
    merged = {c.name: getattr(row, c.name) for c in row.__table__.columns}
    merged.update(values)
    _validate(table, merged)
    for field, value in values.items():
        setattr(row, field, value)
    db.commit()
    _after_write(table)
    logger.info("%s config %s updated to version %s", table.name, row.id, row.version)
    return row


def delete_row(db: Session, table: ConfigTable, row_id: int, expected_version: int | None = None):
    row = get_row(db, table, row_id)
    check_version(row, expected_version)
    db.delete(row)
    db.commit()
    _after_write(table)
    logger.info("%s config %s soft-deleted", table.name, row_id)
    return row


def restore_row(db: Session, table: ConfigTable, row_id: int):
    row = get_row(db, table, row_id, include_deleted=True)
    if not row.deleted:
        raise ValidationError(f"{table.name} config is not deleted")
    row.deleted = False
    db.commit()
    _after_write(table)
    return row

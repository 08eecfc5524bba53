"""Admin CRUD routes (ABM) for reference data.

Countries, locations, uma tables and rulesets share one set of handlers,
registered per entity by `_register`:

- `GET    /{path}`                  list (`include_deleted` to show soft-deleted rows)
- `GET    /{path}/{id}`             fetch one
- `POST   /{path}`                  create
- `PUT    /{path}/{id}`             update (optional `version` in the body, 409 when stale)
- `DELETE /{path}/{id}`             soft delete
- `POST   /{path}/{id}/restore`     undo a soft delete
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models
from ..db import get_db
from ..errors import ConflictError
from ..schemas import CountryIn, LocationIn, RulesetIn, UmaIn
from ..versioning import check_version

logger = logging.getLogger(__name__)

router = APIRouter()

_HIDDEN = ("created_ip", "updated_ip")


def _to_dict(row) -> dict:
    data = {c.name: getattr(row, c.name) for c in row.__table__.columns if c.name not in _HIDDEN}
    for key in ("created_at", "updated_at"):
        if data.get(key) is not None:
            data[key] = data[key].isoformat()
    return data


def _load(db: Session, model, row_id: int, label: str, include_deleted: bool = False):
    stmt = select(model).where(model.id == row_id)
    if include_deleted:
        stmt = stmt.execution_options(include_deleted=True)
    row = db.scalars(stmt).first()
    if row is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return row


def _commit(db: Session, label: str) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(f"{label} conflicts with an existing record") from exc


def _check_references(db: Session, model, values: dict) -> None:
    if model is models.Ruleset and "uma_id" in values:
        if db.get(models.Uma, values["uma_id"]) is None:
            raise HTTPException(status_code=400, detail="Uma not found")


def _register(path: str, model, schema: type[BaseModel], label: str) -> None:
    def list_rows(
        include_deleted: bool = Query(default=False),
        db: Session = Depends(get_db),
    ):
        stmt = select(model).order_by(model.id)
        if include_deleted:
            stmt = stmt.execution_options(include_deleted=True)
        return {"ok": True, "items": [_to_dict(r) for r in db.scalars(stmt).all()]}

    def get_row(row_id: int, db: Session = Depends(get_db)):
        return {"ok": True, "item": _to_dict(_load(db, model, row_id, label))}

    def create_row(body: schema, db: Session = Depends(get_db)):
        values = body.model_dump(exclude={"version"})
        _check_references(db, model, values)
        row = model(**values)
        db.add(row)
        _commit(db, label)
        logger.info("%s %s created", label, row.id)
        return {"ok": True, "item": _to_dict(row)}

    def update_row(row_id: int, body: schema, db: Session = Depends(get_db)):
        row = _load(db, model, row_id, label)
        check_version(row, body.version)
        values = body.model_dump(exclude={"version"}, exclude_unset=True)
        _check_references(db, model, values)
        for field, value in values.items():
            setattr(row, field, value)
        _commit(db, label)
        return {"ok": True, "item": _to_dict(row)}

    def delete_row(
        row_id: int,
        version: int | None = Query(default=None),
        db: Session = Depends(get_db),
    ):
        row = _load(db, model, row_id, label)
        check_version(row, version)
        db.delete(row)
        _commit(db, label)
        logger.info("%s %s soft-deleted", label, row_id)
        return {"ok": True, "item": _to_dict(row)}

    def restore_row(row_id: int, db: Session = Depends(get_db)):
        row = _load(db, model, row_id, label, include_deleted=True)
        if not row.deleted:
            raise HTTPException(status_code=400, detail=f"{label} is not deleted")
        row.deleted = False
        _commit(db, label)
        return {"ok": True, "item": _to_dict(row)}

    name = path.replace("-", "_")
    router.add_api_route(f"/{path}", list_rows, methods=["GET"], name=f"list_{name}")
    router.add_api_route(f"/{path}/{{row_id}}", get_row, methods=["GET"], name=f"get_{name}")
    router.add_api_route(f"/{path}", create_row, methods=["POST"], status_code=201, name=f"create_{name}")
    router.add_api_route(f"/{path}/{{row_id}}", update_row, methods=["PUT"], name=f"update_{name}")
    router.add_api_route(f"/{path}/{{row_id}}", delete_row, methods=["DELETE"], name=f"delete_{name}")
    router.add_api_route(f"/{path}/{{row_id}}/restore", restore_row, methods=["POST"], name=f"restore_{name}")


_register("countries", models.Country, CountryIn, "Country")
_register("locations", models.Location, LocationIn, "Location")
_register("uma", models.Uma, UmaIn, "Uma")
_register("rulesets", models.Ruleset, RulesetIn, "Ruleset")

"""Soft delete, optimistic versioning and audit stamping for ORM entities.

Every mapped class that inherits `VersionedMixin` gets:

- `version`: optimistic lock counter. It is 0 on insert and incremented on
  every flushed change, soft deletes and restores included. Write endpoints
  compare it with the version the client read (`check_version`). It is also
  the mapper's `version_id_col`: every UPDATE carries `WHERE version = <old>`,
  so a flush based on a stale read fails with `StaleDataError` instead of
  overwriting a concurrent change.
- `deleted`: soft-delete flag. `session.delete(obj)` never issues a DELETE for
  these classes; the flush turns it into `deleted = True` instead.
- `created_*` / `updated_*`: who (user, ip) and when, taken from the audit
  context bound by the HTTP middleware (or "system" / "127.0.0.1" for jobs).

Reads are filtered too: every ORM SELECT, including lazy and eager relationship
loads, gets `deleted IS false` criteria for versioned classes. Pass
`execution_options(include_deleted=True)` to see soft-deleted rows.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Integer, String, event
from sqlalchemy.orm import Mapped, Session, declared_attr, mapped_column, with_loader_criteria

from league_common.db import OptimisticLockError


@dataclass(frozen=True)
class AuditContext:
    user: str = "system"
    ip: str = "127.0.0.1"


_audit: ContextVar[AuditContext] = ContextVar("audit", default=AuditContext())


def current_audit() -> AuditContext:
    return _audit.get()


def set_audit(user: str | None, ip: str | None):
    """Bind the acting user/ip for the current request. Returns a reset token."""
    return _audit.set(AuditContext(user=user or "system", ip=ip or "127.0.0.1"))


def reset_audit(token) -> None:
    _audit.reset(token)


@contextmanager
def audit_as(user: str, ip: str = "127.0.0.1"):
    token = set_audit(user, ip)
    try:
        yield
    finally:
        reset_audit(token)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class VersionedMixin:
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False, default="system")
    created_ip: Mapped[str] = mapped_column(String(64), nullable=False, default="127.0.0.1")
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_by: Mapped[str] = mapped_column(String(100), nullable=False, default="system")
    updated_ip: Mapped[str] = mapped_column(String(64), nullable=False, default="127.0.0.1")

    @declared_attr.directive
    def __mapper_args__(cls):
        # the before_flush listener sets the new value; the mapper only checks the old one
        return {"version_id_col": cls.__table__.c.version, "version_id_generator": False}


class StaleVersionError(OptimisticLockError):
    pass


def check_version(obj: VersionedMixin, expected: int | None) -> None:
    """Reject a write based on an outdated read.

    Clients send back the `version` they loaded; if the row has moved on since,
    the update is refused instead of silently overwriting someone else's change.
    A `None` expected version skips the check.

    Raises:
        StaleVersionError: If `expected` differs from the current version.
    """
    if expected is None:
        return
    if obj.version != expected:
        raise StaleVersionError(
            f"{type(obj).__name__} was modified (expected version {expected}, found {obj.version})",
            expected=expected,
            found=obj.version,
        )


def soft_delete(session: Session, obj: VersionedMixin) -> None:
    session.delete(obj)


def restore(obj: VersionedMixin) -> None:
    obj.deleted = False


def include_deleted(stmt):
    """Return `stmt` with soft-deleted rows visible."""
    return stmt.execution_options(include_deleted=True)


def only_deleted(stmt, cls):
    """Return `stmt` restricted to soft-deleted rows of `cls`."""
    return stmt.execution_options(include_deleted=True).where(cls.deleted.is_(True))


@event.listens_for(Session, "do_orm_execute")
def _exclude_soft_deleted(execute_state):
    if (
        execute_state.is_select
        and not execute_state.is_column_load
        and not execute_state.is_relationship_load
        and not execute_state.execution_options.get("include_deleted", False)
    ):
        execute_state.statement = execute_state.statement.options(
            with_loader_criteria(
                VersionedMixin,
                lambda cls: cls.deleted.is_(False),
                include_aliases=True,
            )
        )


def _touch(obj: VersionedMixin, audit: AuditContext, now: datetime) -> None:
    obj.updated_at = now
    obj.updated_by = audit.user
    obj.updated_ip = audit.ip


@event.listens_for(Session, "before_flush")
def _versioning_before_flush(session, flush_context, instances):
    audit = current_audit()
    now = utcnow()
    handled = set()

    for obj in list(session.deleted):
        if isinstance(obj, VersionedMixin):
            # re-attaching pulls the object out of the pending-delete set
            obj.deleted = True
            obj.version = (obj.version or 0) + 1
            _touch(obj, audit, now)
            session.add(obj)
            handled.add(id(obj))

    for obj in session.new:
        if isinstance(obj, VersionedMixin):
            obj.version = 0
            obj.deleted = bool(obj.deleted)
            obj.created_at = obj.created_at or now
            obj.created_by = audit.user
            obj.created_ip = audit.ip
            _touch(obj, audit, now)

    for obj in session.dirty:
        if id(obj) in handled or not isinstance(obj, VersionedMixin):
            continue
        if session.is_modified(obj, include_collections=False):
            obj.version = (obj.version or 0) + 1
            _touch(obj, audit, now)

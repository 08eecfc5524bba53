"""Database session and connectivity helpers for the API service.

This module centralizes SQLAlchemy engine/session construction and provides the
FastAPI dependency (`get_db`) used by route handlers.

- `DATABASE_URL` comes from `settings.get_settings()`.
- SQLite URLs (used by the test suite) get a single shared connection so that
  an in-memory database survives across sessions.
- Every session created here has the soft-delete / versioning listeners from
  `versioning.py` attached, because they are registered on the `Session` class.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from .settings import get_settings


class Base(DeclarativeBase):
    pass


def _make_engine(url: str, echo: bool = False):
    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=echo, pool_pre_ping=True)


engine = _make_engine(get_settings().database_url, get_settings().db_echo)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db():
    """FastAPI dependency that yields a request-scoped SQLAlchemy session.

    Route handlers declare `db: Session = Depends(get_db)` to receive a session
    bound to the API service engine.

    Yields:
        sqlalchemy.orm.Session: An open SQLAlchemy session for the duration of the request.

    Notes:
        Handlers commit explicitly. Anything left uncommitted when the request
        ends (including after an exception) is rolled back by `close()`.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create all tables that do not exist yet."""
    from . import models  # noqa: F401  (registers mappers)

    Base.metadata.create_all(bind=engine)

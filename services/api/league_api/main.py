"""FastAPI application entrypoint.

This service exposes HTTP endpoints for:
- the player directory, profiles and point history
- recording, previewing and deleting games
- GENERAL and SEASON ranking tables
- seasons and tournaments (activation, close, finalize)
- the Dan/Rate/Season point tables and their in-memory cache
- admin CRUD for countries, locations, uma tables and rulesets
- health checks

The API is consumed by the league web frontend and by admin tooling.

Operational notes:
- CORS origins come from `CORS_ORIGINS` (see `settings.py`).
- Database connectivity is provided via `db.py`.
- On startup the schema is created if missing, default point tables are
  inserted if missing and the config cache is warmed.
- Every request is tagged with a request id (`X-Request-ID`, generated when
  absent) and an audit actor (`X-Actor`) used for the created/updated stamps.
"""

from contextlib import asynccontextmanager
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from league_common.db import OptimisticLockError
from league_common.logging import configure_logging, reset_request_id, set_request_id

from .config_cache import config_cache
from .db import SessionLocal, init_db
from .defaults import ensure_default_configs
from .errors import LeagueError
from .routes import router
from .settings import get_settings
from .versioning import reset_audit, set_audit

settings = get_settings()
configure_logging("api", settings.log_level, settings.log_json)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    if settings.seed_default_configs:
        with SessionLocal() as db:
            ensure_default_configs(db)
    config_cache.bind(SessionLocal)
    if settings.warm_cache_on_startup:
        config_cache.initialize()
    logger.info("api started")
    yield


app = FastAPI(title="Mahjong League API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
    client_ip = request.client.host if request.client else None
    rid_token = set_request_id(request_id)
    audit_token = set_audit(request.headers.get("x-actor"), client_ip)
    started = time.perf_counter()
    try:
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "%s %s -> %s (%.1fms)",
            request.method, request.url.path, response.status_code, elapsed_ms,
            extra={"status": response.status_code, "duration_ms": round(elapsed_ms, 1)},
        )
        response.headers["X-Request-ID"] = request_id
        return response
    finally:
        reset_audit(audit_token)
        reset_request_id(rid_token)


@app.exception_handler(LeagueError)
async def league_error_handler(request: Request, exc: LeagueError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(OptimisticLockError)
async def optimistic_lock_handler(request: Request, exc: OptimisticLockError):
    logger.warning("version conflict on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=409,
        content={
            "ok": False,
            "error": str(exc),
            "details": {"expected_version": exc.expected, "current_version": exc.found},
        },
    )


@app.exception_handler(StaleDataError)
async def stale_data_handler(request: Request, exc: StaleDataError):
    logger.warning("row changed underneath %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=409, content={"ok": False, "error": "Record was modified by another transaction"})


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning("integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(status_code=409, content={"ok": False, "error": "Duplicate or conflicting record"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"ok": False, "error": "Internal server error"})


app.include_router(router)


@app.get("/health")
def health():
    """Health check endpoint.

    Returns a minimal payload used by local dev tooling, containers, and
    orchestrators to determine whether the API process is up.

    Returns:
        dict: `{"status": "ok", "service": "api"}`.
    """
    return {"status": "ok", "service": "api"}


if __name__ == "__main__":
    import os

    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))

"""Central API router composition.

Mounts the individual route modules under `/api/v1` and provides the single
router passed to `FastAPI.include_router(...)`.
"""

from fastapi import APIRouter

from .abm import router as abm_router
from .config import router as config_router
from .games import router as games_router
from .jobs import router as jobs_router
from .players import router as players_router
from .rankings import router as rankings_router
from .seasons import router as seasons_router

router = APIRouter(prefix="/api/v1", tags=["v1"])

router.include_router(players_router)
router.include_router(games_router)
router.include_router(rankings_router)
router.include_router(seasons_router)
router.include_router(config_router)
router.include_router(abm_router)
router.include_router(jobs_router)

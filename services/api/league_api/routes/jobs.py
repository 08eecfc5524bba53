"""Job-related API routes.

Exposes the full ranking recalculation so an admin can trigger it after
editing point tables or fixing historical games.

Note:
- The same rebuild runs as a standalone process in `jobs/recalculate`; for a
  large history prefer that over calling this endpoint.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..services.rankings import recalculate_all

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/jobs/recalculate")
def recalculate(db: Session = Depends(get_db)):
    """Replay every game in order and rebuild rankings and the points ledger.

    Returns:
        dict: `{ "ok": true, "summary": {"games", "rankings", "ledger_rows", "seconds"} }`.
    """
    logger.info("recalculation requested over HTTP")
    return {"ok": True, "summary": recalculate_all(db)}

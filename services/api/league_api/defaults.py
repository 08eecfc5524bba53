"""Default point tables.

A fresh database has no Dan/Rate/Season configuration, and without it no game
can be scored. On startup `ensure_default_configs` inserts the league's standard
tables for any (rank/name, mode) pair that is missing. Existing rows are never
touched, so admin edits survive restarts.
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)

_DAN_STYLE = {
    "新人": ("#f3f4f6", "rank-beginner"),
    "9級": ("#60a5fa", "rank-kyu"),
    "8級": ("#60a5fa", "rank-kyu"),
    "7級": ("#60a5fa", "rank-kyu"),
    "6級": ("#3b82f6", "rank-kyu"),
    "5級": ("#3b82f6", "rank-kyu"),
    "4級": ("#3b82f6", "rank-kyu"),
    "3級": ("#2563eb", "rank-kyu"),
    "2級": ("#2563eb", "rank-kyu"),
    "1級": ("#1d4ed8", "rank-kyu"),
    "初段": ("#10b981", "rank-dan-low"),
    "二段": ("#10b981", "rank-dan-low"),
    "三段": ("#10b981", "rank-dan-low"),
    "四段": ("#f59e0b", "rank-dan-mid"),
    "五段": ("#f59e0b", "rank-dan-mid"),
    "六段": ("#f59e0b", "rank-dan-mid"),
    "七段": ("#d97706", "rank-dan-high"),
    "八段": ("#d97706", "rank-dan-high"),
    "九段": ("#7c3aed", "rank-dan-master"),
    "十段": ("#7c3aed", "rank-dan-master"),
    "神室王": ("#6d28d9", "rank-god"),
}

# rank, min, max, 1st, 2nd, 3rd, 4th, protected
YONMA_DAN = [
    ("新人", 0, 50, 60, 30, 0, 0, True),
    ("9級", 50, 100, 60, 30, 0, 0, True),
    ("8級", 100, 200, 60, 30, 0, 0, True),
    ("7級", 200, 300, 60, 30, 0, 0, True),
    ("6級", 300, 400, 60, 30, 0, 0, True),
    ("5級", 400, 500, 60, 30, 0, 0, True),
    ("4級", 500, 600, 60, 30, 0, 0, True),
    ("3級", 600, 700, 60, 30, 0, 0, True),
    ("2級", 700, 850, 60, 30, 0, 0, True),
    ("1級", 850, 1000, 60, 30, 0, -30, True),
    ("初段", 1000, 1200, 60, 30, 0, -30, True),
    ("二段", 1200, 1600, 60, 30, 0, -30, False),
    ("三段", 1600, 2000, 60, 30, 0, -30, False),
    ("四段", 2000, 2600, 60, 30, -15, -45, False),
    ("五段", 2600, 3200, 60, 30, -15, -45, False),
    ("六段", 3200, 4000, 60, 30, -15, -45, False),
    ("七段", 4000, 5000, 60, 30, -30, -60, False),
    ("八段", 5000, 6000, 60, 30, -30, -60, False),
    ("九段", 6000, 7500, 60, 30, -30, -75, False),
    ("十段", 7500, 9000, 60, 30, -45, -75, False),
    ("神室王", 9000, None, 60, 30, -30, -60, True),
]

SANMA_DAN = [
    ("新人", 0, 60, 90, 0, 0, None, True),
    ("9級", 60, 150, 90, 0, 0, None, True),
    ("8級", 150, 240, 90, 0, 0, None, True),
    ("7級", 240, 330, 90, 0, 0, None, True),
    ("6級", 330, 420, 90, 0, 0, None, True),
    ("5級", 420, 510, 90, 0, 0, None, True),
    ("4級", 510, 600, 90, 0, 0, None, True),
    ("3級", 600, 690, 90, 0, 0, None, True),
    ("2級", 690, 810, 90, 0, 0, None, True),
    ("1級", 810, 930, 90, 0, 0, None, True),
    ("初段", 930, 1080, 90, 0, 0, None, True),
    ("二段", 1080, 1380, 90, 0, -30, None, False),
    ("三段", 1380, 1680, 90, 0, -30, None, False),
    ("四段", 1680, 2280, 90, 0, -60, None, False),
    ("五段", 2280, 2880, 90, 0, -60, None, False),
    ("六段", 2880, 3780, 90, 0, -60, None, False),
    ("七段", 3780, 4680, 90, 0, -90, None, False),
    ("八段", 4680, 5580, 90, 0, -90, None, False),
    ("九段", 5580, 6780, 90, 0, -120, None, False),
    ("十段", 6780, 7980, 90, 0, -150, None, False),
    ("神室王", 7980, None, 90, 0, -90, None, True),
]

RATE_CONFIGS = [
    dict(name="Standard Yonma", sanma=False, first_place=30, second_place=10, third_place=-10, fourth_place=-30,
         adjustment_rate=0.002, adjustment_limit=400, min_adjustment=0.2),
    dict(name="Standard Sanma", sanma=True, first_place=30, second_place=0, third_place=-30, fourth_place=None,
         adjustment_rate=0.002, adjustment_limit=400, min_adjustment=0.2),
]

SEASON_CONFIGS = [
    dict(name="Default Yonma", sanma=False, first_place=15, second_place=5, third_place=-5, fourth_place=-15,
         season_id=None, is_default=True),
    dict(name="Default Sanma", sanma=True, first_place=15, second_place=0, third_place=-15, fourth_place=None,
         season_id=None, is_default=True),
]


def dan_config_rows() -> list[dict]:
    rows = []
    for sanma, table in ((False, YONMA_DAN), (True, SANMA_DAN)):
        for rank, lo, hi, p1, p2, p3, p4, protected in table:
            color, css = _DAN_STYLE[rank]
            rows.append(dict(
                rank=rank, sanma=sanma, min_points=lo, max_points=hi,
                first_place=p1, second_place=p2, third_place=p3, fourth_place=p4,
                is_protected=protected, color=color, css_class=css, is_last_rank=hi is None,
            ))
    return rows


def ensure_default_configs(db: Session) -> dict:
    """Insert any missing default config rows and commit.

    Soft-deleted rows count as present, so a table an admin deleted on purpose
    is not resurrected.

    Returns:
        dict: number of rows created per table.
    """
    opts = {"include_deleted": True}
    dan_existing = {
        (r.rank, r.sanma)
        for r in db.scalars(select(models.DanConfig).execution_options(**opts))
    }
    rate_existing = {
        (r.name, r.sanma)
        for r in db.scalars(select(models.RateConfig).execution_options(**opts))
    }
    season_existing = {
        (r.name, r.sanma, r.season_id)
        for r in db.scalars(select(models.SeasonConfig).execution_options(**opts))
    }

    created = {"dan": 0, "rate": 0, "season": 0}
    for row in dan_config_rows():
        if (row["rank"], row["sanma"]) not in dan_existing:
            db.add(models.DanConfig(**row))
            created["dan"] += 1
    for row in RATE_CONFIGS:
        if (row["name"], row["sanma"]) not in rate_existing:
            db.add(models.RateConfig(**row))
            created["rate"] += 1
    for row in SEASON_CONFIGS:
        if (row["name"], row["sanma"], row["season_id"]) not in season_existing:
            db.add(models.SeasonConfig(**row))
            created["season"] += 1

    db.commit()
    if any(created.values()):
        logger.info("default configs created: %s", created)
    return created

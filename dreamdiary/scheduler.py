import logging
from datetime import date
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.engine import Engine
from sqlmodel import Session

from .records import list_user_ids
from .settings import settings, engine
from .wishlist import refresh_user_statuses

logger = logging.getLogger(__name__)


def run_tick(bind: Optional[Engine] = None, today: Optional[date] = None) -> int:
    """Reconcile wishlist statuses for every user. Returns how many rows changed."""
    changed = 0
    with Session(bind or engine) as s:
        for user_id in list_user_ids(s):
            changed += len(refresh_user_statuses(s, user_id, today or date.today()))
    logger.info("reconcile tick done, %d wishlist(s) changed", changed)
    return changed


def start_scheduler():
    sched = BackgroundScheduler()
    sched.add_job(
        run_tick,
        "interval",
        minutes=settings.RECONCILE_INTERVAL_MINUTES,
        id="reconcile",
        replace_existing=True,
    )
    sched.start()
    return sched

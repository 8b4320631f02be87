from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlmodel import select

from ..db import get_session
from ..errors import guarded
from ..models import Workout, WorkoutStatus, utcnow
from ..settings import get_settings
from .workouts import expire, expiry_window

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def expire_stale_workouts(now: Optional[datetime] = None) -> int:
    """Close every ACTIVE workout past the expiry window, for all users.

    Same outcome as the check made when a stale workout is read: completed
    at started_at plus the window.
    """
    cutoff = (now or utcnow()) - expiry_window()
    async with get_session() as session:
        async with guarded(session, "expire_stale_workouts"):
            result = await session.exec(
                select(Workout).where(Workout.status == WorkoutStatus.ACTIVE, Workout.started_at <= cutoff)
            )
            stale = result.all()
            for workout in stale:
                expire(workout)
                session.add(workout)
            await session.commit()
    if stale:
        logger.info("Expired %s stale active workouts", len(stale))
    return len(stale)


def start_scheduler() -> None:
    """Start the background sweep with the configured interval"""
    if not scheduler.running:
        interval = get_settings().expiry_sweep_minutes
        scheduler.add_job(
            expire_stale_workouts,
            IntervalTrigger(minutes=interval),
            id="expire_stale_workouts",
            replace_existing=True,
        )
        scheduler.start()
        logger.info("Expiry sweep started with %s minute interval", interval)


def stop_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)

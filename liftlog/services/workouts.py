from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import delete
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..auth import get_current_user_id
from ..db import get_session
from ..errors import BadRequest, Conflict, Forbidden, NotFound, guarded
from ..models import Workout, WorkoutStatus, utcnow
from ..schemas import WorkoutRead, WorkoutUpdate, WorkoutCreate
from ..settings import get_settings
from .loaders import expand_workout

logger = logging.getLogger(__name__)

router = APIRouter()

MS = timedelta(milliseconds=1)


def expiry_window() -> timedelta:
    return timedelta(hours=get_settings().active_workout_expiry_hours)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def is_stale(workout: Workout, now: datetime) -> bool:
    return workout.status == WorkoutStatus.ACTIVE and now - workout.started_at >= expiry_window()


def expire(workout: Workout) -> None:
    """Force-complete a stale session at the end of its allowed window."""
    workout.status = WorkoutStatus.COMPLETED
    workout.completed_at = workout.started_at + expiry_window()
    workout.is_paused = False
    workout.last_pause_start_time = None


async def expire_if_stale(session: AsyncSession, workout: Workout, now: datetime) -> bool:
    """Expire and commit ``workout`` when it is a stale ACTIVE session."""
    if not is_stale(workout, now):
        return False
    logger.info("Expiring stale active workout %s of user %s", workout.id, workout.user_id)
    expire(workout)
    session.add(workout)
    await session.commit()
    return True


async def find_workout(
    session: AsyncSession,
    user_id: int,
    workout_id: Optional[int] = None,
    status: Optional[WorkoutStatus] = None,
    now: Optional[datetime] = None,
    lock: bool = False,
) -> Optional[Workout]:
    """Newest matching workout of the user, or None.

    A stale ACTIVE match is expired and committed on the spot, and reported
    as absent.
    """
    query = select(Workout).where(Workout.user_id == user_id)
    if workout_id is not None:
        query = query.where(Workout.id == workout_id)
    if status is not None:
        query = query.where(Workout.status == status)
    query = query.order_by(Workout.started_at.desc()).limit(1)
    if lock:
        query = query.with_for_update()
    result = await session.exec(query.execution_options(populate_existing=True))
    workout = result.first()

    if workout is not None and await expire_if_stale(session, workout, now or utcnow()):
        return None
    return workout


async def owned_workout(session: AsyncSession, workout_id: int, user_id: int, action: str) -> Workout:
    workout = await session.get(Workout, workout_id, populate_existing=True)
    if workout is None:
        raise NotFound("Workout not found")
    if workout.user_id != user_id:
        logger.warning("User %s tried to %s workout %s they do not own", user_id, action, workout_id)
        raise Forbidden("Not allowed")
    return workout


async def get_workout(
    session: AsyncSession,
    user_id: int,
    workout_id: Optional[int] = None,
    status: Optional[WorkoutStatus] = None,
    now: Optional[datetime] = None,
) -> Optional[WorkoutRead]:
    logger.info("Getting workout user_id=%s id=%s status=%s", user_id, workout_id, status)
    async with guarded(session, "get_workout", user_id=user_id, workout_id=workout_id, status=status):
        workout = await find_workout(session, user_id, workout_id=workout_id, status=status, now=now)
        if workout is None:
            return None
        return await expand_workout(session, workout)


async def create_draft_workout(
    session: AsyncSession, user_id: int, data: WorkoutCreate, now: Optional[datetime] = None
) -> WorkoutRead:
    logger.info("Creating draft workout user_id=%s title=%r", user_id, data.title)
    async with guarded(session, "create_draft_workout", user_id=user_id):
        await session.exec(
            delete(Workout).where(Workout.user_id == user_id, Workout.status == WorkoutStatus.DRAFT)
        )
        workout = Workout(user_id=user_id, status=WorkoutStatus.DRAFT, title=data.title, started_at=now or utcnow())
        session.add(workout)
        await session.commit()
        return await expand_workout(session, workout)


async def create_active_workout(session: AsyncSession, user_id: int, now: Optional[datetime] = None) -> WorkoutRead:
    logger.info("Creating active workout user_id=%s", user_id)
    now = now or utcnow()
    async with guarded(session, "create_active_workout", user_id=user_id):
        if await find_workout(session, user_id, status=WorkoutStatus.ACTIVE, now=now) is not None:
            logger.warning("User %s tried to create an active workout but already has one", user_id)
            raise Conflict("Already have an active workout")

        workout = Workout(
            user_id=user_id,
            status=WorkoutStatus.ACTIVE,
            title=f"{now:%B} {now.day} Workout",
            started_at=now,
        )
        session.add(workout)
        await session.commit()
        return await expand_workout(session, workout)


async def pause_active_workout(session: AsyncSession, user_id: int, now: Optional[datetime] = None) -> WorkoutRead:
    logger.info("Pausing active workout user_id=%s", user_id)
    now = now or utcnow()
    async with guarded(session, "pause_active_workout", user_id=user_id):
        workout = await find_workout(session, user_id, status=WorkoutStatus.ACTIVE, now=now, lock=True)
        if workout is None:
            logger.warning("User %s tried to pause but has no active workout", user_id)
            raise Forbidden("Not allowed")
        if workout.is_paused:
            logger.warning("User %s tried to pause workout %s which is already paused", user_id, workout.id)
            raise BadRequest("Workout is already paused")

        workout.is_paused = True
        workout.last_pause_start_time = now
        session.add(workout)
        await session.commit()
        return await expand_workout(session, workout)


async def resume_active_workout(session: AsyncSession, user_id: int, now: Optional[datetime] = None) -> WorkoutRead:
    logger.info("Resuming active workout user_id=%s", user_id)
    now = now or utcnow()
    async with guarded(session, "resume_active_workout", user_id=user_id):
        workout = await find_workout(session, user_id, status=WorkoutStatus.ACTIVE, now=now, lock=True)
        if workout is None:
            logger.warning("User %s tried to resume but has no active workout", user_id)
            raise Forbidden("Not allowed")
        if not workout.is_paused or workout.last_pause_start_time is None:
            logger.warning("User %s tried to resume workout %s which is not paused", user_id, workout.id)
            raise BadRequest("Workout is not currently paused")

        # Clock skew can put the pause start in the future
        elapsed = max(0, (now - workout.last_pause_start_time) // MS)
        workout.pause_duration = (workout.pause_duration or 0) + elapsed
        workout.last_pause_start_time = None
        workout.is_paused = False
        session.add(workout)
        await session.commit()
        return await expand_workout(session, workout)


async def complete_workout(
    session: AsyncSession, user_id: int, workout_id: int, now: Optional[datetime] = None
) -> WorkoutRead:
    logger.info("Completing workout user_id=%s id=%s", user_id, workout_id)
    now = now or utcnow()
    async with guarded(session, "complete_workout", user_id=user_id, workout_id=workout_id):
        workout = await owned_workout(session, workout_id, user_id, "complete")
        # a stale session is closed at its expiry time and cannot be completed again
        await expire_if_stale(session, workout, now)
        if workout.status == WorkoutStatus.COMPLETED:
            logger.warning("User %s tried to complete workout %s twice", user_id, workout_id)
            raise BadRequest("Workout is already completed")

        if workout.status == WorkoutStatus.ACTIVE:
            if workout.is_paused and workout.last_pause_start_time is not None:
                workout.pause_duration += max(0, (now - workout.last_pause_start_time) // MS)
            elapsed = (now - workout.started_at) // MS - workout.pause_duration
            workout.active_duration = max(0, elapsed // 1000)
        # a draft keeps whatever duration was entered by hand

        workout.status = WorkoutStatus.COMPLETED
        workout.completed_at = now
        workout.is_paused = False
        workout.last_pause_start_time = None
        session.add(workout)
        await session.commit()
        return await expand_workout(session, workout)


async def update_workout(
    session: AsyncSession, workout_id: int, user_id: int, data: WorkoutUpdate, now: Optional[datetime] = None
) -> WorkoutRead:
    patch = data.model_dump(exclude_unset=True)
    logger.info("Updating workout user_id=%s id=%s data=%s", user_id, workout_id, patch)
    async with guarded(session, "update_workout", user_id=user_id, workout_id=workout_id):
        workout = await owned_workout(session, workout_id, user_id, "update")
        await expire_if_stale(session, workout, now or utcnow())
        if workout.status == WorkoutStatus.ACTIVE and patch.get("active_duration") is not None:
            logger.warning("User %s tried to set active_duration of active workout %s", user_id, workout_id)
            raise Forbidden("Not allowed")

        if patch.get("started_at") is not None:
            patch["started_at"] = as_naive_utc(patch["started_at"])
        for key, value in patch.items():
            setattr(workout, key, value)
        session.add(workout)
        await session.commit()
        return await expand_workout(session, workout)


async def _delete(session: AsyncSession, workout: Workout) -> WorkoutRead:
    expanded = await expand_workout(session, workout)
    await session.delete(workout)
    await session.commit()
    return expanded


async def delete_workout(session: AsyncSession, workout_id: int, user_id: int) -> WorkoutRead:
    logger.info("Deleting workout user_id=%s id=%s", user_id, workout_id)
    async with guarded(session, "delete_workout", user_id=user_id, workout_id=workout_id):
        workout = await owned_workout(session, workout_id, user_id, "delete")
        return await _delete(session, workout)


async def delete_active_workout(session: AsyncSession, user_id: int, now: Optional[datetime] = None) -> WorkoutRead:
    logger.info("Deleting active workout user_id=%s", user_id)
    async with guarded(session, "delete_active_workout", user_id=user_id):
        workout = await find_workout(session, user_id, status=WorkoutStatus.ACTIVE, now=now)
        if workout is None:
            logger.warning("User %s tried to delete but has no active workout", user_id)
            raise Forbidden("Not allowed")
        return await _delete(session, workout)


@router.get("/workouts/active", response_model=Optional[WorkoutRead])
async def get_active_workout_route(user_id: int = Depends(get_current_user_id)):
    async with get_session() as session:
        return await get_workout(session, user_id, status=WorkoutStatus.ACTIVE)


@router.post("/workouts/active", response_model=WorkoutRead)
async def create_active_workout_route(user_id: int = Depends(get_current_user_id)):
    async with get_session() as session:
        return await create_active_workout(session, user_id)


@router.delete("/workouts/active", response_model=WorkoutRead)
async def delete_active_workout_route(user_id: int = Depends(get_current_user_id)):
    async with get_session() as session:
        return await delete_active_workout(session, user_id)


@router.patch("/workouts/active/pause", response_model=WorkoutRead)
async def pause_active_workout_route(user_id: int = Depends(get_current_user_id)):
    async with get_session() as session:
        return await pause_active_workout(session, user_id)


@router.patch("/workouts/active/resume", response_model=WorkoutRead)
async def resume_active_workout_route(user_id: int = Depends(get_current_user_id)):
    async with get_session() as session:
        return await resume_active_workout(session, user_id)


@router.post("/workouts", response_model=WorkoutRead)
async def create_draft_workout_route(body: WorkoutCreate, user_id: int = Depends(get_current_user_id)):
    async with get_session() as session:
        return await create_draft_workout(session, user_id, body)


@router.get("/workouts/{workout_id}", response_model=WorkoutRead)
async def get_workout_route(workout_id: int, user_id: int = Depends(get_current_user_id)):
    async with get_session() as session:
        workout = await get_workout(session, user_id, workout_id=workout_id)
    if workout is None:
        raise NotFound("Workout not found")
    return workout


@router.post("/workouts/{workout_id}/complete", response_model=WorkoutRead)
async def complete_workout_route(workout_id: int, user_id: int = Depends(get_current_user_id)):
    async with get_session() as session:
        return await complete_workout(session, user_id, workout_id)


@router.patch("/workouts/{workout_id}", response_model=WorkoutRead)
async def update_workout_route(workout_id: int, body: WorkoutUpdate, user_id: int = Depends(get_current_user_id)):
    async with get_session() as session:
        return await update_workout(session, workout_id, user_id, body)


@router.delete("/workouts/{workout_id}", response_model=WorkoutRead)
async def delete_workout_route(workout_id: int, user_id: int = Depends(get_current_user_id)):
    async with get_session() as session:
        return await delete_workout(session, workout_id, user_id)

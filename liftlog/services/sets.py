from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import func, update
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..auth import get_current_user_id
from ..db import get_session
from ..errors import Conflict, Forbidden, NotFound, guarded
from ..models import SetType, Workout, WorkoutExercise, WorkoutSet, utcnow
from ..schemas import WorkoutRead, WorkoutSetCreate, WorkoutSetUpdate
from .exercises import owned_workout_exercise
from .loaders import load_workout

logger = logging.getLogger(__name__)

router = APIRouter()

WARMUP_SLOT = 0


async def shift_set_numbers(
    session: AsyncSession, workout_exercise_id: int, above: int, step: int, inclusive: bool = False
) -> None:
    """Move every sibling numbered above ``above`` by ``step``.

    The only writer of set_number besides the final placement of the set
    being changed; callers hold the parent row lock.
    """
    bound = WorkoutSet.set_number >= above if inclusive else WorkoutSet.set_number > above
    await session.exec(
        update(WorkoutSet)
        .where(WorkoutSet.workout_exercise_id == workout_exercise_id, bound)
        .values(set_number=WorkoutSet.set_number + step)
        .execution_options(synchronize_session="fetch")
    )


async def warmup_taken(session: AsyncSession, workout_exercise_id: int, exclude_id: Optional[int] = None) -> bool:
    query = select(WorkoutSet.id).where(
        WorkoutSet.workout_exercise_id == workout_exercise_id, WorkoutSet.type == SetType.WARMUP
    )
    if exclude_id is not None:
        query = query.where(WorkoutSet.id != exclude_id)
    result = await session.exec(query)
    return result.first() is not None


async def owned_set(session: AsyncSession, set_id: int, user_id: int, action: str) -> WorkoutSet:
    result = await session.exec(
        select(WorkoutSet, Workout.user_id)
        .join(WorkoutExercise, WorkoutExercise.id == WorkoutSet.workout_exercise_id)
        .join(Workout, Workout.id == WorkoutExercise.workout_id)
        .where(WorkoutSet.id == set_id)
        .execution_options(populate_existing=True)
    )
    row = result.first()
    if row is None:
        raise NotFound("Workout set not found")
    workout_set, owner_id = row
    if owner_id != user_id:
        logger.warning("User %s tried to %s workout set %s they do not own", user_id, action, set_id)
        raise Forbidden("Not allowed")
    return workout_set


async def create_set(
    session: AsyncSession, workout_exercise_id: int, user_id: int, data: WorkoutSetCreate
) -> WorkoutRead:
    logger.info("Creating workout set user_id=%s workout_exercise_id=%s", user_id, workout_exercise_id)
    async with guarded(session, "create_workout_set", user_id=user_id, workout_exercise_id=workout_exercise_id):
        workout_exercise = await owned_workout_exercise(session, workout_exercise_id, user_id, "add a set to", lock=True)

        if data.type == SetType.WARMUP:
            if await warmup_taken(session, workout_exercise_id):
                raise Conflict("Exercise already has a warmup set")
            set_number = WARMUP_SLOT
        else:
            max_number = await session.exec(
                select(func.max(WorkoutSet.set_number)).where(WorkoutSet.workout_exercise_id == workout_exercise_id)
            )
            set_number = (max_number.one() or 0) + 1

        session.add(
            WorkoutSet(
                workout_exercise_id=workout_exercise_id,
                set_number=set_number,
                type=data.type,
                reps=data.reps,
                weight=data.weight,
                duration=data.duration,
                notes=data.notes,
            )
        )
        await session.commit()
        return await load_workout(session, workout_exercise.workout_id)


async def update_set(
    session: AsyncSession, set_id: int, user_id: int, data: WorkoutSetUpdate, now: Optional[datetime] = None
) -> WorkoutRead:
    """Patch a set; completion and type changes are applied in one transaction.

    NORMAL -> WARMUP closes the gap it leaves and parks the set in slot 0.
    WARMUP -> NORMAL pushes every working set down one and takes number 1.
    """
    patch = data.model_dump(exclude_unset=True)
    logger.info("Updating workout set user_id=%s id=%s data=%s", user_id, set_id, patch)
    async with guarded(session, "update_workout_set", user_id=user_id, set_id=set_id):
        workout_set = await owned_set(session, set_id, user_id, "update")
        workout_exercise = await owned_workout_exercise(
            session, workout_set.workout_exercise_id, user_id, "update a set of", lock=True
        )
        await session.refresh(workout_set)

        completed = patch.pop("completed", None)
        if completed is True:
            workout_set.completed_at = now or utcnow()
        elif completed is False:
            workout_set.completed_at = None

        new_type = patch.pop("type", None)
        if new_type == SetType.WARMUP and workout_set.type == SetType.NORMAL:
            if await warmup_taken(session, workout_exercise.id, exclude_id=workout_set.id):
                raise Conflict("Exercise already has a warmup set")
            await shift_set_numbers(session, workout_exercise.id, above=workout_set.set_number, step=-1)
            workout_set.set_number = WARMUP_SLOT
            workout_set.type = SetType.WARMUP
        elif new_type == SetType.NORMAL and workout_set.type == SetType.WARMUP:
            await shift_set_numbers(session, workout_exercise.id, above=1, step=1, inclusive=True)
            workout_set.set_number = 1
            workout_set.type = SetType.NORMAL

        for key, value in patch.items():
            setattr(workout_set, key, value)
        session.add(workout_set)
        await session.commit()
        return await load_workout(session, workout_exercise.workout_id)


async def delete_set(session: AsyncSession, set_id: int, user_id: int) -> WorkoutRead:
    logger.info("Deleting workout set user_id=%s id=%s", user_id, set_id)
    async with guarded(session, "delete_workout_set", user_id=user_id, set_id=set_id):
        workout_set = await owned_set(session, set_id, user_id, "delete")
        workout_exercise = await owned_workout_exercise(
            session, workout_set.workout_exercise_id, user_id, "delete a set of", lock=True
        )
        # Re-read under the lock, a concurrent delete may have renumbered it
        await session.refresh(workout_set)

        set_number, set_type = workout_set.set_number, workout_set.type
        await session.delete(workout_set)
        await session.flush()
        if set_type == SetType.NORMAL and set_number > WARMUP_SLOT:
            await shift_set_numbers(session, workout_exercise.id, above=set_number, step=-1)
        await session.commit()
        return await load_workout(session, workout_exercise.workout_id)


@router.post("/workouts/{workout_id}/exercises/{workout_exercise_id}/sets", response_model=WorkoutRead)
async def create_set_route(
    workout_id: int, workout_exercise_id: int, body: WorkoutSetCreate, user_id: int = Depends(get_current_user_id)
):
    async with get_session() as session:
        return await create_set(session, workout_exercise_id, user_id, body)


@router.patch("/workouts/{workout_id}/exercises/{workout_exercise_id}/sets/{set_id}", response_model=WorkoutRead)
async def update_set_route(
    workout_id: int,
    workout_exercise_id: int,
    set_id: int,
    body: WorkoutSetUpdate,
    user_id: int = Depends(get_current_user_id),
):
    async with get_session() as session:
        return await update_set(session, set_id, user_id, body)


@router.delete("/workouts/{workout_id}/exercises/{workout_exercise_id}/sets/{set_id}", response_model=WorkoutRead)
async def delete_set_route(
    workout_id: int, workout_exercise_id: int, set_id: int, user_id: int = Depends(get_current_user_id)
):
    async with get_session() as session:
        return await delete_set(session, set_id, user_id)

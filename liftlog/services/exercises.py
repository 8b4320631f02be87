from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..auth import get_current_user_id
from ..db import get_session
from ..errors import Forbidden, NotFound, guarded
from ..models import Exercise, Workout, WorkoutExercise
from ..schemas import WorkoutExerciseCreate, WorkoutExerciseRead, WorkoutExerciseUpdate, WorkoutRead
from .carryover import resolve_carryover
from .loaders import expand_workout, expand_workout_exercise, load_workout
from .workouts import owned_workout

logger = logging.getLogger(__name__)

router = APIRouter()


async def owned_workout_exercise(
    session: AsyncSession, workout_exercise_id: int, user_id: int, action: str, lock: bool = False
) -> WorkoutExercise:
    """Workout exercise whose parent workout belongs to the user.

    ``lock`` takes a row lock on the workout exercise so concurrent set
    renumbering on it serializes.
    """
    query = (
        select(WorkoutExercise, Workout.user_id)
        .join(Workout, Workout.id == WorkoutExercise.workout_id)
        .where(WorkoutExercise.id == workout_exercise_id)
    )
    if lock:
        query = query.with_for_update(of=WorkoutExercise)
    result = await session.exec(query.execution_options(populate_existing=True))
    row = result.first()
    if row is None:
        raise NotFound("Workout exercise not found")
    workout_exercise, owner_id = row
    if owner_id != user_id:
        logger.warning(
            "User %s tried to %s workout exercise %s they do not own", user_id, action, workout_exercise_id
        )
        raise Forbidden("Not allowed")
    return workout_exercise


async def attach_exercise(
    session: AsyncSession, user_id: int, workout_id: int, data: WorkoutExerciseCreate
) -> WorkoutRead:
    logger.info("Attaching exercise user_id=%s workout_id=%s exercise_id=%s", user_id, workout_id, data.exercise_id)
    async with guarded(session, "attach_exercise", user_id=user_id, workout_id=workout_id, exercise_id=data.exercise_id):
        workout = await owned_workout(session, workout_id, user_id, "attach an exercise to")
        if await session.get(Exercise, data.exercise_id) is None:
            raise NotFound("Exercise not found")

        # Serializes concurrent attaches computing the next order
        await session.exec(select(Workout.id).where(Workout.id == workout_id).with_for_update())
        max_order = await session.exec(
            select(func.max(WorkoutExercise.exercise_order)).where(WorkoutExercise.workout_id == workout_id)
        )
        next_order = (max_order.one() or 0) + 1

        carryover = await resolve_carryover(session, user_id, data.exercise_id, workout.started_at)
        workout_exercise = WorkoutExercise(
            workout_id=workout_id,
            exercise_id=data.exercise_id,
            exercise_order=next_order,
            previous_workout_exercise_id=carryover.previous_workout_exercise_id,
        )
        session.add(workout_exercise)
        await session.flush()
        session.add_all(carryover.seed_sets(workout_exercise.id))
        await session.commit()
        return await expand_workout(session, workout)


async def update_exercise_notes(
    session: AsyncSession, user_id: int, workout_exercise_id: int, data: WorkoutExerciseUpdate
) -> WorkoutRead:
    logger.info("Updating workout exercise user_id=%s id=%s", user_id, workout_exercise_id)
    async with guarded(session, "update_workout_exercise", user_id=user_id, workout_exercise_id=workout_exercise_id):
        workout_exercise = await owned_workout_exercise(session, workout_exercise_id, user_id, "update")
        workout_exercise.notes = data.notes
        session.add(workout_exercise)
        await session.commit()
        return await load_workout(session, workout_exercise.workout_id)


async def detach_exercise(session: AsyncSession, user_id: int, workout_exercise_id: int) -> WorkoutRead:
    """Remove an exercise and its sets.

    The remaining exercises keep their exercise_order, gaps included;
    clients hold on to those values for the whole session.
    """
    logger.info("Detaching workout exercise user_id=%s id=%s", user_id, workout_exercise_id)
    async with guarded(session, "delete_workout_exercise", user_id=user_id, workout_exercise_id=workout_exercise_id):
        workout_exercise = await owned_workout_exercise(session, workout_exercise_id, user_id, "delete")
        workout_id = workout_exercise.workout_id
        await session.delete(workout_exercise)
        await session.commit()
        return await load_workout(session, workout_id)


async def get_exercise_sets(session: AsyncSession, user_id: int, workout_exercise_id: int) -> WorkoutExerciseRead:
    logger.info("Getting workout exercise sets user_id=%s id=%s", user_id, workout_exercise_id)
    async with guarded(session, "get_workout_exercise_sets", user_id=user_id, workout_exercise_id=workout_exercise_id):
        workout_exercise = await owned_workout_exercise(session, workout_exercise_id, user_id, "read sets of")
        return await expand_workout_exercise(session, workout_exercise)


@router.post("/workouts/{workout_id}/exercises", response_model=WorkoutRead)
async def attach_exercise_route(
    workout_id: int, body: WorkoutExerciseCreate, user_id: int = Depends(get_current_user_id)
):
    async with get_session() as session:
        return await attach_exercise(session, user_id, workout_id, body)


@router.patch("/workouts/{workout_id}/exercises/{workout_exercise_id}", response_model=WorkoutRead)
async def update_exercise_notes_route(
    workout_id: int,
    workout_exercise_id: int,
    body: WorkoutExerciseUpdate,
    user_id: int = Depends(get_current_user_id),
):
    async with get_session() as session:
        return await update_exercise_notes(session, user_id, workout_exercise_id, body)


@router.delete("/workouts/{workout_id}/exercises/{workout_exercise_id}", response_model=WorkoutRead)
async def detach_exercise_route(
    workout_id: int, workout_exercise_id: int, user_id: int = Depends(get_current_user_id)
):
    async with get_session() as session:
        return await detach_exercise(session, user_id, workout_exercise_id)


@router.get("/workouts/{workout_id}/exercises/{workout_exercise_id}/sets", response_model=WorkoutExerciseRead)
async def get_exercise_sets_route(
    workout_id: int, workout_exercise_id: int, user_id: int = Depends(get_current_user_id)
):
    async with get_session() as session:
        return await get_exercise_sets(session, user_id, workout_exercise_id)

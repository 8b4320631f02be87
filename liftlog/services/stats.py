from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import extract, func, or_, and_
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..auth import get_current_user_id
from ..db import get_session
from ..errors import NotFound, guarded
from ..models import Exercise, ExerciseCategory, Workout, WorkoutExercise, WorkoutSet, WorkoutStatus
from ..schemas import (
    BestSet,
    CompletedWorkoutPage,
    CompletedWorkoutSummary,
    ExerciseSummary,
    WorkoutCalendar,
    WorkoutStats,
)
from ..settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


def one_rep_max(weight: float, reps: int) -> float:
    """Epley estimate of the heaviest single rep."""
    if reps == 1:
        return weight
    return weight * (1 + reps / 30)


def _completed_filters(user_id: int, from_date: Optional[date], to_date: Optional[date]) -> list:
    filters = [Workout.user_id == user_id, Workout.status == WorkoutStatus.COMPLETED]
    if from_date is not None:
        filters.append(Workout.started_at >= datetime.combine(from_date, time.min))
    if to_date is not None:
        # inclusive of the whole last day
        filters.append(Workout.started_at < datetime.combine(to_date + timedelta(days=1), time.min))
    return filters


async def get_workout_stats(
    session: AsyncSession, user_id: int, from_date: Optional[date] = None, to_date: Optional[date] = None
) -> WorkoutStats:
    logger.info("Getting workout stats user_id=%s from=%s to=%s", user_id, from_date, to_date)
    filters = _completed_filters(user_id, from_date, to_date)
    async with guarded(session, "get_workout_stats", user_id=user_id):
        total_workouts = await session.exec(select(func.count(Workout.id)).where(*filters))
        total_seconds = await session.exec(
            select(func.coalesce(func.sum(Workout.active_duration), 0)).where(*filters)
        )
        total_weight = await session.exec(
            select(func.coalesce(func.sum(WorkoutSet.weight * WorkoutSet.reps), 0))
            .join(WorkoutExercise, WorkoutExercise.id == WorkoutSet.workout_exercise_id)
            .join(Workout, Workout.id == WorkoutExercise.workout_id)
            .where(
                *filters,
                WorkoutSet.completed_at.is_not(None),
                WorkoutSet.weight.is_not(None),
                WorkoutSet.reps.is_not(None),
            )
        )
        return WorkoutStats(
            total_workouts=total_workouts.one(),
            total_hours=round(float(total_seconds.one()) / 3600, 2),
            total_weight_lifted=round(float(total_weight.one()), 2),
        )


async def get_workout_calendar(session: AsyncSession, user_id: int, year: int) -> WorkoutCalendar:
    logger.info("Getting workout calendar user_id=%s year=%s", user_id, year)
    async with guarded(session, "get_workout_calendar", user_id=user_id, year=year):
        result = await session.exec(
            select(Workout.started_at)
            .where(*_completed_filters(user_id, None, None), extract("year", Workout.started_at) == year)
            .order_by(Workout.started_at)
        )
        started = result.all()
        return WorkoutCalendar(
            workout_dates=sorted({s.date() for s in started}),
            total_workouts=len(started),
        )


async def count_completed_workouts(session: AsyncSession, user_id: int) -> int:
    async with guarded(session, "count_completed_workouts", user_id=user_id):
        result = await session.exec(select(func.count(Workout.id)).where(*_completed_filters(user_id, None, None)))
        return result.one()


def pick_best_set(category: ExerciseCategory, sets: List[WorkoutSet]) -> WorkoutSet:
    if category == ExerciseCategory.CARDIO:
        return max(sets, key=lambda s: s.duration or 0)
    lifted = [s for s in sets if s.weight is not None and s.reps is not None]
    if not lifted:
        # bodyweight work, no load to estimate from
        return max(sets, key=lambda s: s.reps or 0)
    return max(lifted, key=lambda s: one_rep_max(s.weight, s.reps))


def _best_set(category: ExerciseCategory, workout_set: WorkoutSet) -> BestSet:
    estimate = None
    if category == ExerciseCategory.STRENGTH and workout_set.weight is not None and workout_set.reps:
        estimate = round(one_rep_max(workout_set.weight, workout_set.reps), 2)
    return BestSet(
        set_id=workout_set.id,
        reps=workout_set.reps,
        weight=workout_set.weight,
        duration=workout_set.duration,
        one_rep_max=estimate,
    )


async def _summarize(session: AsyncSession, workouts: List[Workout]) -> List[CompletedWorkoutSummary]:
    workout_ids = [w.id for w in workouts]
    if not workout_ids:
        return []

    we_result = await session.exec(
        select(WorkoutExercise)
        .where(WorkoutExercise.workout_id.in_(workout_ids))
        .order_by(WorkoutExercise.exercise_order)
    )
    workout_exercises = we_result.all()

    # Group completed sets by workout_exercise_id
    sets_by_we: Dict[int, List[WorkoutSet]] = {}
    we_ids = [we.id for we in workout_exercises]
    if we_ids:
        sets_result = await session.exec(
            select(WorkoutSet)
            .where(WorkoutSet.workout_exercise_id.in_(we_ids), WorkoutSet.completed_at.is_not(None))
            .order_by(WorkoutSet.set_number)
        )
        for s in sets_result.all():
            sets_by_we.setdefault(s.workout_exercise_id, []).append(s)

    exercise_map: Dict[int, Exercise] = {}
    exercise_ids = list({we.exercise_id for we in workout_exercises})
    if exercise_ids:
        ex_result = await session.exec(select(Exercise).where(Exercise.id.in_(exercise_ids)))
        exercise_map = {ex.id: ex for ex in ex_result.all()}

    exercises_by_workout: Dict[int, List[WorkoutExercise]] = {}
    for we in workout_exercises:
        exercises_by_workout.setdefault(we.workout_id, []).append(we)

    summaries = []
    for w in workouts:
        total_weight = 0.0
        total_sets = 0
        exercises = []
        for we in exercises_by_workout.get(w.id, []):
            sets = sets_by_we.get(we.id, [])
            if not sets:
                continue
            exercise = exercise_map.get(we.exercise_id)
            category = exercise.category if exercise else ExerciseCategory.STRENGTH
            total_sets += len(sets)
            for s in sets:
                if s.weight is not None and s.reps is not None:
                    total_weight += s.weight * s.reps
            exercises.append(
                ExerciseSummary(
                    workout_exercise_id=we.id,
                    exercise_id=we.exercise_id,
                    name=exercise.name if exercise else "Unknown",
                    category=category,
                    completed_sets=len(sets),
                    best_set=_best_set(category, pick_best_set(category, sets)),
                )
            )
        summaries.append(
            CompletedWorkoutSummary(
                id=w.id,
                title=w.title,
                started_at=w.started_at,
                completed_at=w.completed_at,
                active_duration=w.active_duration,
                total_weight_lifted=round(total_weight, 2),
                total_completed_sets=total_sets,
                exercises=exercises,
            )
        )
    return summaries


async def get_completed_workouts(
    session: AsyncSession,
    user_id: int,
    cursor: Optional[int] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> CompletedWorkoutPage:
    """Newest-first page of completed workouts; ``cursor`` is the last id seen."""
    logger.info("Getting completed workouts user_id=%s cursor=%s", user_id, cursor)
    page_size = get_settings().completed_page_size
    async with guarded(session, "get_completed_workouts", user_id=user_id, cursor=cursor):
        query = select(Workout).where(*_completed_filters(user_id, from_date, to_date))
        if cursor is not None:
            anchor = await session.get(Workout, cursor)
            if anchor is None or anchor.user_id != user_id:
                raise NotFound("Cursor not found")
            query = query.where(
                or_(
                    Workout.started_at < anchor.started_at,
                    and_(Workout.started_at == anchor.started_at, Workout.id < anchor.id),
                )
            )
        result = await session.exec(
            query.order_by(Workout.started_at.desc(), Workout.id.desc()).limit(page_size + 1)
        )
        workouts = result.all()

        has_more = len(workouts) > page_size
        workouts = workouts[:page_size]
        return CompletedWorkoutPage(
            results=await _summarize(session, workouts),
            next_cursor=workouts[-1].id if has_more else None,
        )


@router.get("/workouts", response_model=CompletedWorkoutPage)
async def completed_workouts(
    cursor: Optional[int] = None,
    from_: Optional[date] = Query(None, alias="from"),
    to: Optional[date] = None,
    user_id: int = Depends(get_current_user_id),
):
    async with get_session() as session:
        return await get_completed_workouts(session, user_id, cursor=cursor, from_date=from_, to_date=to)


@router.get("/workouts/count")
async def completed_workouts_count(user_id: int = Depends(get_current_user_id)) -> Dict[str, int]:
    async with get_session() as session:
        return {"count": await count_completed_workouts(session, user_id)}


@router.get("/workouts/calendar", response_model=WorkoutCalendar)
async def workout_calendar(year: int, user_id: int = Depends(get_current_user_id)):
    async with get_session() as session:
        return await get_workout_calendar(session, user_id, year)


@router.get("/workouts/stats", response_model=WorkoutStats)
async def workout_stats(
    from_: Optional[date] = Query(None, alias="from"),
    to: Optional[date] = None,
    user_id: int = Depends(get_current_user_id),
):
    async with get_session() as session:
        return await get_workout_stats(session, user_id, from_date=from_, to_date=to)

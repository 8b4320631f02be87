from __future__ import annotations

from typing import Dict, List

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..models import Exercise, Workout, WorkoutExercise, WorkoutSet
from ..schemas import ExerciseRead, WorkoutExerciseRead, WorkoutRead, WorkoutSetRead


async def _sets_by_workout_exercise(
    session: AsyncSession, we_ids: List[int], completed_only: bool = False
) -> Dict[int, List[WorkoutSet]]:
    if not we_ids:
        return {}
    query = select(WorkoutSet).where(WorkoutSet.workout_exercise_id.in_(we_ids))
    if completed_only:
        query = query.where(WorkoutSet.completed_at.is_not(None))
    query = query.order_by(WorkoutSet.set_number, WorkoutSet.updated_at)
    result = await session.exec(query.execution_options(populate_existing=True))
    grouped: Dict[int, List[WorkoutSet]] = {}
    for s in result.all():
        grouped.setdefault(s.workout_exercise_id, []).append(s)
    return grouped


async def _expand_exercises(
    session: AsyncSession, workout_exercises: List[WorkoutExercise]
) -> List[WorkoutExerciseRead]:
    we_ids = [we.id for we in workout_exercises]
    sets_by_we = await _sets_by_workout_exercise(session, we_ids)

    # Carryover snapshot: completed sets of the seeding instance
    previous_ids = [we.previous_workout_exercise_id for we in workout_exercises if we.previous_workout_exercise_id]
    previous_sets = await _sets_by_workout_exercise(session, previous_ids, completed_only=True)

    exercise_ids = list({we.exercise_id for we in workout_exercises})
    exercise_map: Dict[int, Exercise] = {}
    if exercise_ids:
        exercises = await session.exec(select(Exercise).where(Exercise.id.in_(exercise_ids)))
        exercise_map = {ex.id: ex for ex in exercises.all()}

    expanded = []
    for we in workout_exercises:
        exercise = exercise_map.get(we.exercise_id)
        expanded.append(
            WorkoutExerciseRead(
                id=we.id,
                workout_id=we.workout_id,
                exercise_id=we.exercise_id,
                exercise_order=we.exercise_order,
                notes=we.notes,
                previous_workout_exercise_id=we.previous_workout_exercise_id,
                exercise=ExerciseRead.model_validate(exercise) if exercise else None,
                workout_sets=[WorkoutSetRead.model_validate(s) for s in sets_by_we.get(we.id, [])],
                previous_sets=[
                    WorkoutSetRead.model_validate(s)
                    for s in previous_sets.get(we.previous_workout_exercise_id, [])
                ],
            )
        )
    return expanded


async def expand_workout(session: AsyncSession, workout: Workout) -> WorkoutRead:
    """Workout with its exercises, their sets and carryover snapshots, in order."""
    result = await session.exec(
        select(WorkoutExercise)
        .where(WorkoutExercise.workout_id == workout.id)
        .order_by(WorkoutExercise.exercise_order)
        .execution_options(populate_existing=True)
    )
    exercises = await _expand_exercises(session, list(result.all()))
    data = workout.model_dump()
    data["workout_exercises"] = exercises
    return WorkoutRead.model_validate(data)


async def load_workout(session: AsyncSession, workout_id: int) -> WorkoutRead:
    workout = await session.get(Workout, workout_id, populate_existing=True)
    return await expand_workout(session, workout)


async def expand_workout_exercise(session: AsyncSession, workout_exercise: WorkoutExercise) -> WorkoutExerciseRead:
    expanded = await _expand_exercises(session, [workout_exercise])
    return expanded[0]

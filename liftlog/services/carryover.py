from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..models import SetType, Workout, WorkoutExercise, WorkoutSet, WorkoutStatus


@dataclass(frozen=True)
class Carryover:
    """What a new occurrence of an exercise inherits from the last one."""

    previous_workout_exercise_id: Optional[int]
    set_count: int

    def seed_sets(self, workout_exercise_id: int) -> list[WorkoutSet]:
        return [
            WorkoutSet(workout_exercise_id=workout_exercise_id, set_number=n, type=SetType.NORMAL)
            for n in range(1, self.set_count + 1)
        ]


async def find_previous_workout_exercise(
    session: AsyncSession, user_id: int, exercise_id: int, before: datetime
) -> Optional[WorkoutExercise]:
    result = await session.exec(
        select(WorkoutExercise)
        .join(Workout, Workout.id == WorkoutExercise.workout_id)
        .where(
            WorkoutExercise.exercise_id == exercise_id,
            Workout.user_id == user_id,
            Workout.status == WorkoutStatus.COMPLETED,
            Workout.started_at < before,
        )
        .order_by(Workout.started_at.desc())
        .limit(1)
    )
    return result.first()


async def resolve_carryover(
    session: AsyncSession, user_id: int, exercise_id: int, before: datetime
) -> Carryover:
    """Mirror the completed working sets of the user's last go at this exercise.

    Only completed NORMAL sets count; warmups are never carried. With no
    history, or nothing completed last time, a single set is seeded.
    """
    previous = await find_previous_workout_exercise(session, user_id, exercise_id, before)
    if previous is None:
        return Carryover(previous_workout_exercise_id=None, set_count=1)

    completed = await session.exec(
        select(func.count(WorkoutSet.id)).where(
            WorkoutSet.workout_exercise_id == previous.id,
            WorkoutSet.type == SetType.NORMAL,
            WorkoutSet.completed_at.is_not(None),
        )
    )
    count = completed.one()
    return Carryover(previous_workout_exercise_id=previous.id, set_count=max(1, count))

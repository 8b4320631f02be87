from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    # Naive UTC, the Store keeps timestamps without zone info
    return datetime.now(timezone.utc).replace(tzinfo=None)


class WorkoutStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class SetType(str, Enum):
    WARMUP = "WARMUP"
    NORMAL = "NORMAL"


class ExerciseCategory(str, Enum):
    STRENGTH = "strength"
    CARDIO = "cardio"


class Exercise(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True)
    category: ExerciseCategory = ExerciseCategory.STRENGTH
    muscle_group: Optional[str] = None
    equipment: Optional[str] = None


class Workout(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    status: WorkoutStatus = Field(default=WorkoutStatus.DRAFT, index=True)
    title: Optional[str] = None
    notes: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow, index=True)
    completed_at: Optional[datetime] = None
    active_duration: Optional[int] = None  # seconds
    is_paused: bool = False
    last_pause_start_time: Optional[datetime] = None
    pause_duration: int = 0  # milliseconds
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow})


class WorkoutExercise(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    workout_id: int = Field(foreign_key="workout.id", ondelete="CASCADE", index=True)
    exercise_id: int = Field(foreign_key="exercise.id", index=True)
    exercise_order: int
    previous_workout_exercise_id: Optional[int] = Field(
        default=None, foreign_key="workoutexercise.id", ondelete="SET NULL"
    )
    notes: Optional[str] = None


class WorkoutSet(SQLModel, table=True):
    # No unique constraint on (workout_exercise_id, set_number): bulk shifts
    # pass through duplicate numbers mid-statement.
    id: Optional[int] = Field(default=None, primary_key=True)
    workout_exercise_id: int = Field(foreign_key="workoutexercise.id", ondelete="CASCADE", index=True)
    set_number: int
    type: SetType = SetType.NORMAL
    reps: Optional[int] = None
    weight: Optional[float] = None
    duration: Optional[int] = None  # seconds
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow})

    @property
    def completed(self) -> bool:
        return self.completed_at is not None

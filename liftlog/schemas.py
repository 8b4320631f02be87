from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import ExerciseCategory, SetType, WorkoutStatus


# Inputs

class WorkoutCreate(BaseModel):
    title: str = Field(min_length=2, max_length=50)


class WorkoutUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=2, max_length=50)
    notes: Optional[str] = Field(default=None, max_length=200)
    started_at: Optional[datetime] = None
    active_duration: Optional[int] = Field(default=None, gt=0, le=43200)


class WorkoutExerciseCreate(BaseModel):
    exercise_id: int


class WorkoutExerciseUpdate(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=200)


class WorkoutSetCreate(BaseModel):
    reps: Optional[int] = Field(default=None, gt=0, le=1000)
    weight: Optional[float] = Field(default=None, ge=0, le=10000)
    duration: Optional[int] = Field(default=None, gt=0, le=86400)
    type: SetType = SetType.NORMAL
    notes: Optional[str] = Field(default=None, max_length=200)


class WorkoutSetUpdate(BaseModel):
    reps: Optional[int] = Field(default=None, gt=0, le=1000)
    weight: Optional[float] = Field(default=None, ge=0, le=10000)
    duration: Optional[int] = Field(default=None, gt=0, le=86400)
    completed: Optional[bool] = None
    type: Optional[SetType] = None
    notes: Optional[str] = Field(default=None, max_length=200)


# Expanded records

class ExerciseRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    category: ExerciseCategory
    muscle_group: Optional[str] = None
    equipment: Optional[str] = None


class WorkoutSetRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    set_number: int
    type: SetType
    reps: Optional[int] = None
    weight: Optional[float] = None
    duration: Optional[int] = None
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None
    completed: bool = False


class WorkoutExerciseRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    workout_id: int
    exercise_id: int
    exercise_order: int
    notes: Optional[str] = None
    previous_workout_exercise_id: Optional[int] = None
    exercise: Optional[ExerciseRead] = None
    workout_sets: List[WorkoutSetRead] = []
    # completed sets of the instance this one was seeded from
    previous_sets: List[WorkoutSetRead] = []


class WorkoutRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    status: WorkoutStatus
    title: Optional[str] = None
    notes: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    active_duration: Optional[int] = None
    is_paused: bool = False
    last_pause_start_time: Optional[datetime] = None
    pause_duration: int = 0
    workout_exercises: List[WorkoutExerciseRead] = []


# Derived views

class WorkoutStats(BaseModel):
    total_workouts: int
    total_hours: float
    total_weight_lifted: float


class WorkoutCalendar(BaseModel):
    workout_dates: List[date]
    total_workouts: int


class BestSet(BaseModel):
    set_id: int
    reps: Optional[int] = None
    weight: Optional[float] = None
    duration: Optional[int] = None
    one_rep_max: Optional[float] = None


class ExerciseSummary(BaseModel):
    workout_exercise_id: int
    exercise_id: int
    name: str
    category: ExerciseCategory
    completed_sets: int
    best_set: BestSet


class CompletedWorkoutSummary(BaseModel):
    id: int
    title: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    active_duration: Optional[int] = None
    total_weight_lifted: float
    total_completed_sets: int
    exercises: List[ExerciseSummary] = []


class CompletedWorkoutPage(BaseModel):
    results: List[CompletedWorkoutSummary]
    next_cursor: Optional[int] = None

import os
import tempfile
from datetime import timedelta

import pytest
import pytest_asyncio

# Point the engine at a throwaway database before liftlog is imported
_DB_PATH = os.path.join(tempfile.mkdtemp(prefix="liftlog-tests-"), "test.db")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_PATH}"
os.environ["ENABLE_EXPIRY_SWEEP"] = "false"

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from liftlog.db import get_session  # noqa: E402
from liftlog.main import app  # noqa: E402
from liftlog.models import (  # noqa: E402
    Exercise,
    ExerciseCategory,
    SetType,
    Workout,
    WorkoutExercise,
    WorkoutSet,
    WorkoutStatus,
)

# Schema resets go through a plain sync engine, outside any event loop
sync_engine = create_engine(f"sqlite:///{_DB_PATH}")


@pytest.fixture(autouse=True)
def fresh_db():
    SQLModel.metadata.drop_all(sync_engine)
    SQLModel.metadata.create_all(sync_engine)
    yield


async def add_exercise(name: str, category: ExerciseCategory) -> int:
    async with get_session() as s:
        exercise = Exercise(name=name, category=category)
        s.add(exercise)
        await s.commit()
        return exercise.id


@pytest_asyncio.fixture
async def session():
    async with get_session() as s:
        yield s


# Fixtures hand out ids rather than ORM objects: a rollback inside a
# service expires every instance held by the session.

@pytest_asyncio.fixture
async def bench_id():
    return await add_exercise("Bench Press", ExerciseCategory.STRENGTH)


@pytest_asyncio.fixture
async def squat_id():
    return await add_exercise("Squat", ExerciseCategory.STRENGTH)


@pytest_asyncio.fixture
async def rowing_id():
    return await add_exercise("Rowing Machine", ExerciseCategory.CARDIO)


@pytest_asyncio.fixture
async def log_workout():
    """Write a finished workout straight to the store.

    Each entry of ``sets`` is passed to WorkoutSet; sets are numbered 1..N
    and completed at the workout start unless they say otherwise.
    """

    async def _log(user_id, exercise_id, started_at, sets=(), duration=3600, warmup=None):
        async with get_session() as s:
            workout = Workout(
                user_id=user_id,
                status=WorkoutStatus.COMPLETED,
                title="Logged",
                started_at=started_at,
                completed_at=started_at + timedelta(seconds=duration),
                active_duration=duration,
            )
            s.add(workout)
            await s.flush()
            workout_exercise = WorkoutExercise(workout_id=workout.id, exercise_id=exercise_id, exercise_order=1)
            s.add(workout_exercise)
            await s.flush()
            for number, fields in enumerate(sets, start=1):
                fields = dict(fields)
                fields.setdefault("completed_at", started_at)
                s.add(WorkoutSet(workout_exercise_id=workout_exercise.id, set_number=number, **fields))
            if warmup is not None:
                s.add(
                    WorkoutSet(
                        workout_exercise_id=workout_exercise.id,
                        set_number=0,
                        type=SetType.WARMUP,
                        completed_at=started_at,
                        **warmup,
                    )
                )
            await s.commit()
            return workout.id, workout_exercise.id

    return _log


@pytest.fixture
def client():
    # no context manager: startup would start the sweep and re-run init_db
    return TestClient(app)


@pytest.fixture
def catalog():
    """Insert exercises synchronously for the HTTP tests; returns name -> id."""
    with Session(sync_engine) as s:
        exercises = [
            Exercise(name="Deadlift", category=ExerciseCategory.STRENGTH, muscle_group="back", equipment="barbell"),
            Exercise(name="Bike", category=ExerciseCategory.CARDIO, equipment="machine"),
        ]
        s.add_all(exercises)
        s.commit()
        return {e.name: e.id for e in exercises}

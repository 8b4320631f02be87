from datetime import timedelta

import pytest
from sqlmodel import select

from liftlog.errors import BadRequest, Conflict, Forbidden, NotFound
from liftlog.models import Workout, WorkoutExercise, WorkoutSet, WorkoutStatus, utcnow
from liftlog.schemas import WorkoutCreate, WorkoutExerciseCreate, WorkoutUpdate
from liftlog.services import exercises, workouts


async def workouts_with_status(session, user_id, status):
    result = await session.exec(
        select(Workout).where(Workout.user_id == user_id, Workout.status == status)
    )
    return result.all()


@pytest.mark.asyncio
async def test_new_draft_replaces_previous_draft(session):
    await workouts.create_draft_workout(session, 1, WorkoutCreate(title="Push day"))
    second = await workouts.create_draft_workout(session, 1, WorkoutCreate(title="Pull day"))
    other = await workouts.create_draft_workout(session, 2, WorkoutCreate(title="Leg day"))

    drafts = await workouts_with_status(session, 1, WorkoutStatus.DRAFT)
    assert [d.id for d in drafts] == [second.id]
    assert second.status == WorkoutStatus.DRAFT
    assert second.title == "Pull day"
    # other users keep theirs
    assert [d.id for d in await workouts_with_status(session, 2, WorkoutStatus.DRAFT)] == [other.id]


@pytest.mark.asyncio
async def test_second_active_workout_conflicts(session):
    first = await workouts.create_active_workout(session, 1)
    with pytest.raises(Conflict):
        await workouts.create_active_workout(session, 1)

    active = await workouts_with_status(session, 1, WorkoutStatus.ACTIVE)
    assert [w.id for w in active] == [first.id]


@pytest.mark.asyncio
async def test_active_workout_gets_dated_title(session):
    now = utcnow().replace(month=3, day=7)
    workout = await workouts.create_active_workout(session, 1, now=now)
    assert workout.title == "March 7 Workout"
    assert workout.started_at == now


@pytest.mark.asyncio
async def test_stale_active_workout_is_expired_on_read(session):
    started = utcnow() - timedelta(hours=13)
    stale = await workouts.create_active_workout(session, 1, now=started)

    assert await workouts.get_workout(session, 1, status=WorkoutStatus.ACTIVE) is None

    stored = await session.get(Workout, stale.id, populate_existing=True)
    assert stored.status == WorkoutStatus.COMPLETED
    assert stored.completed_at == started + timedelta(hours=12)


@pytest.mark.asyncio
async def test_expiry_threshold_is_twelve_hours(session):
    started = utcnow() - timedelta(days=1)
    workout = await workouts.create_active_workout(session, 1, now=started)

    almost = started + timedelta(hours=12) - timedelta(seconds=1)
    found = await workouts.get_workout(session, 1, status=WorkoutStatus.ACTIVE, now=almost)
    assert found is not None and found.id == workout.id

    expired = await workouts.get_workout(session, 1, status=WorkoutStatus.ACTIVE, now=started + timedelta(hours=12))
    assert expired is None


@pytest.mark.asyncio
async def test_expired_session_does_not_block_new_active_workout(session):
    stale = await workouts.create_active_workout(session, 1, now=utcnow() - timedelta(hours=20))
    fresh = await workouts.create_active_workout(session, 1)

    assert fresh.id != stale.id
    active = await workouts_with_status(session, 1, WorkoutStatus.ACTIVE)
    assert [w.id for w in active] == [fresh.id]


@pytest.mark.asyncio
async def test_get_workout_by_id_is_scoped_to_owner(session):
    workout = await workouts.create_draft_workout(session, 1, WorkoutCreate(title="Mine"))
    assert (await workouts.get_workout(session, 1, workout_id=workout.id)).id == workout.id
    assert await workouts.get_workout(session, 2, workout_id=workout.id) is None


@pytest.mark.asyncio
async def test_pause_then_resume_accumulates_pause_time(session):
    start = utcnow()
    await workouts.create_active_workout(session, 1, now=start)

    paused = await workouts.pause_active_workout(session, 1, now=start + timedelta(seconds=10))
    assert paused.is_paused
    assert paused.last_pause_start_time == start + timedelta(seconds=10)

    resumed = await workouts.resume_active_workout(session, 1, now=start + timedelta(seconds=40))
    assert not resumed.is_paused
    assert resumed.last_pause_start_time is None
    assert resumed.pause_duration == 30_000

    await workouts.pause_active_workout(session, 1, now=start + timedelta(seconds=100))
    resumed = await workouts.resume_active_workout(session, 1, now=start + timedelta(seconds=105))
    assert resumed.pause_duration == 35_000


@pytest.mark.asyncio
async def test_immediate_resume_adds_wall_clock_delta(session):
    await workouts.create_active_workout(session, 1)
    await workouts.pause_active_workout(session, 1)
    resumed = await workouts.resume_active_workout(session, 1)
    assert 0 <= resumed.pause_duration < 5_000


@pytest.mark.asyncio
async def test_resume_clamps_clock_skew_to_zero(session):
    start = utcnow()
    await workouts.create_active_workout(session, 1, now=start)
    await workouts.pause_active_workout(session, 1, now=start + timedelta(minutes=5))
    resumed = await workouts.resume_active_workout(session, 1, now=start + timedelta(minutes=4))
    assert resumed.pause_duration == 0


@pytest.mark.asyncio
async def test_pausing_twice_is_rejected(session):
    start = utcnow()
    await workouts.create_active_workout(session, 1, now=start)
    await workouts.pause_active_workout(session, 1, now=start + timedelta(seconds=5))

    with pytest.raises(BadRequest):
        await workouts.pause_active_workout(session, 1, now=start + timedelta(seconds=50))

    current = await workouts.get_workout(session, 1, status=WorkoutStatus.ACTIVE, now=start)
    assert current.pause_duration == 0
    assert current.is_paused
    assert current.last_pause_start_time == start + timedelta(seconds=5)


@pytest.mark.asyncio
async def test_resume_without_pause_is_rejected(session):
    await workouts.create_active_workout(session, 1)
    with pytest.raises(BadRequest):
        await workouts.resume_active_workout(session, 1)


@pytest.mark.asyncio
async def test_pause_and_resume_need_an_active_workout(session):
    await workouts.create_draft_workout(session, 1, WorkoutCreate(title="Later"))
    with pytest.raises(Forbidden):
        await workouts.pause_active_workout(session, 1)
    with pytest.raises(Forbidden):
        await workouts.resume_active_workout(session, 1)


@pytest.mark.asyncio
async def test_complete_active_workout_computes_duration(session):
    start = utcnow() - timedelta(hours=1)
    workout = await workouts.create_active_workout(session, 1, now=start)

    done = await workouts.complete_workout(session, 1, workout.id, now=start + timedelta(seconds=600))
    assert done.status == WorkoutStatus.COMPLETED
    assert done.active_duration == 600
    assert done.completed_at == start + timedelta(seconds=600)


@pytest.mark.asyncio
async def test_complete_subtracts_pauses(session):
    start = utcnow() - timedelta(hours=1)
    workout = await workouts.create_active_workout(session, 1, now=start)
    await workouts.pause_active_workout(session, 1, now=start + timedelta(seconds=100))
    await workouts.resume_active_workout(session, 1, now=start + timedelta(seconds=160))

    done = await workouts.complete_workout(session, 1, workout.id, now=start + timedelta(seconds=600, milliseconds=900))
    assert done.pause_duration == 60_000
    assert done.active_duration == 540


@pytest.mark.asyncio
async def test_complete_while_paused_closes_the_pause(session):
    start = utcnow() - timedelta(hours=1)
    workout = await workouts.create_active_workout(session, 1, now=start)
    await workouts.pause_active_workout(session, 1, now=start + timedelta(seconds=500))

    done = await workouts.complete_workout(session, 1, workout.id, now=start + timedelta(seconds=600))
    assert done.active_duration == 500
    assert not done.is_paused
    assert done.last_pause_start_time is None


@pytest.mark.asyncio
async def test_complete_draft_keeps_manual_duration(session):
    draft = await workouts.create_draft_workout(session, 1, WorkoutCreate(title="Yesterday"))
    await workouts.update_workout(session, draft.id, 1, WorkoutUpdate(active_duration=1800))

    done = await workouts.complete_workout(session, 1, draft.id)
    assert done.status == WorkoutStatus.COMPLETED
    assert done.active_duration == 1800


@pytest.mark.asyncio
async def test_completed_is_terminal(session):
    workout = await workouts.create_active_workout(session, 1)
    await workouts.complete_workout(session, 1, workout.id)
    with pytest.raises(BadRequest):
        await workouts.complete_workout(session, 1, workout.id)


@pytest.mark.asyncio
async def test_complete_checks_ownership(session):
    workout = await workouts.create_active_workout(session, 1)
    with pytest.raises(Forbidden):
        await workouts.complete_workout(session, 2, workout.id)
    with pytest.raises(NotFound):
        await workouts.complete_workout(session, 1, workout.id + 100)


@pytest.mark.asyncio
async def test_active_duration_is_not_settable_during_session(session):
    workout = await workouts.create_active_workout(session, 1)
    with pytest.raises(Forbidden):
        await workouts.update_workout(session, workout.id, 1, WorkoutUpdate(active_duration=100))

    updated = await workouts.update_workout(session, workout.id, 1, WorkoutUpdate(title="Heavy", notes="felt good"))
    assert updated.title == "Heavy"
    assert updated.notes == "felt good"
    assert updated.active_duration is None


@pytest.mark.asyncio
async def test_update_checks_ownership(session):
    workout = await workouts.create_draft_workout(session, 1, WorkoutCreate(title="Mine"))
    with pytest.raises(Forbidden):
        await workouts.update_workout(session, workout.id, 2, WorkoutUpdate(title="Theirs"))
    with pytest.raises(NotFound):
        await workouts.update_workout(session, workout.id + 100, 1, WorkoutUpdate(title="Nope"))


@pytest.mark.asyncio
async def test_delete_workout_cascades(session, bench_id):
    workout = await workouts.create_active_workout(session, 1)
    await exercises.attach_exercise(session, 1, workout.id, WorkoutExerciseCreate(exercise_id=bench_id))

    deleted = await workouts.delete_workout(session, workout.id, 1)
    assert len(deleted.workout_exercises) == 1

    assert (await session.exec(select(Workout))).all() == []
    assert (await session.exec(select(WorkoutExercise))).all() == []
    assert (await session.exec(select(WorkoutSet))).all() == []


@pytest.mark.asyncio
async def test_delete_workout_checks_ownership(session):
    workout = await workouts.create_draft_workout(session, 1, WorkoutCreate(title="Mine"))
    with pytest.raises(Forbidden):
        await workouts.delete_workout(session, workout.id, 2)


@pytest.mark.asyncio
async def test_delete_active_workout(session):
    with pytest.raises(Forbidden):
        await workouts.delete_active_workout(session, 1)

    workout = await workouts.create_active_workout(session, 1)
    deleted = await workouts.delete_active_workout(session, 1)
    assert deleted.id == workout.id
    assert await workouts.get_workout(session, 1, status=WorkoutStatus.ACTIVE) is None


@pytest.mark.asyncio
async def test_stale_session_cannot_be_completed_past_expiry(session):
    started = utcnow() - timedelta(hours=20)
    workout = await workouts.create_active_workout(session, 1, now=started)
    workout_id = workout.id

    with pytest.raises(BadRequest):
        await workouts.complete_workout(session, 1, workout_id)

    stored = await session.get(Workout, workout_id, populate_existing=True)
    assert stored.status == WorkoutStatus.COMPLETED
    assert stored.completed_at == started + timedelta(hours=12)
    assert stored.active_duration is None


@pytest.mark.asyncio
async def test_update_expires_stale_session_first(session):
    started = utcnow() - timedelta(hours=13)
    workout = await workouts.create_active_workout(session, 1, now=started)

    # once closed, a real duration can be entered by hand
    updated = await workouts.update_workout(session, workout.id, 1, WorkoutUpdate(active_duration=3600))
    assert updated.status == WorkoutStatus.COMPLETED
    assert updated.completed_at == started + timedelta(hours=12)
    assert updated.active_duration == 3600


@pytest.mark.asyncio
async def test_timestamps_are_stored_as_naive_utc(session):
    start = utcnow().replace(microsecond=0)
    workout = await workouts.create_active_workout(session, 1, now=start)
    await workouts.pause_active_workout(session, 1, now=start + timedelta(seconds=30))

    stored = await session.get(Workout, workout.id, populate_existing=True)
    assert stored.started_at == start
    assert stored.started_at.tzinfo is None
    assert stored.last_pause_start_time == start + timedelta(seconds=30)

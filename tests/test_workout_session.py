import json
import time

import pytest

from core import EXTEND_SECONDS, SESSION_KEY
from companion import settings
from companion.catalog import Workout
from companion.errors import CatalogError
from companion.storage import MemoryStore
from companion.workout_session import Phase, WorkoutSession


def _ticks(session, count):
    for _ in range(count):
        session.tick()
    return session.state


def test_fresh_session_starts_at_first_set(session):
    state = session.state
    assert state.workout_type == "push-day"
    assert state.current_exercise_index == 0
    assert state.current_set == 1
    assert state.phase is Phase.WORK
    assert state.remaining_seconds == 10
    assert not state.completed
    assert not session.is_active


def test_tick_ignored_while_paused(session):
    assert session.tick().remaining_seconds == 10
    session.set_active(True)
    assert session.tick().remaining_seconds == 9
    session.set_active(False)
    assert session.tick().remaining_seconds == 9


def test_work_to_rest_advances_set(session):
    session.set_active(True)
    state = _ticks(session, 9)
    assert state.phase is Phase.WORK and state.remaining_seconds == 1

    state = session.tick()
    assert state.phase is Phase.REST
    assert state.remaining_seconds == 5
    assert state.current_exercise_index == 0
    assert state.current_set == 2


def test_rest_to_work_keeps_pointers(session):
    session.set_active(True)
    _ticks(session, 10)
    state = _ticks(session, 5)
    assert state.phase is Phase.WORK
    assert state.remaining_seconds == 10
    assert state.current_exercise_index == 0
    assert state.current_set == 2


def test_last_set_advances_exercise(session):
    session.set_active(True)
    _ticks(session, 10 + 5)
    state = _ticks(session, 10)
    assert state.phase is Phase.REST
    assert state.current_exercise_index == 1
    assert state.current_set == 1
    assert state.remaining_seconds == 5


def test_single_set_exercise_advances_on_first_boundary(store, catalog):
    dips = catalog["push-day"].exercises[1]
    catalog["dips"] = Workout(title="Dips", exercises=(dips, dips))
    session = WorkoutSession(store, work_duration=10, rest_duration=5)
    session.load_or_init("dips", catalog)
    state = session.skip()
    assert state.current_exercise_index == 1
    assert state.current_set == 1
    assert state.phase is Phase.REST


def test_completion_happens_once(session, store):
    completions = []
    session.bind(on_complete=completions.append)
    session.set_active(True)

    # work, rest, work, rest, work
    state = _ticks(session, 10 + 5 + 10 + 5 + 9)
    assert state.phase is Phase.WORK and state.current_exercise_index == 1
    state = session.tick()

    assert state.phase is Phase.COMPLETE
    assert state.completed
    assert state.remaining_seconds == 0
    assert not session.is_active
    assert len(completions) == 1
    assert store.get(SESSION_KEY) is None

    assert session.tick() == state
    assert session.skip() == state
    assert session.extend() == state
    assert len(completions) == 1


def test_completed_session_cannot_be_restarted(session):
    for _ in range(5):
        session.skip()
    assert session.state.phase is Phase.COMPLETE
    session.set_active(True)
    assert not session.is_active


def test_transition_callback_receives_each_boundary(session):
    phases = []
    session.bind(on_transition=lambda state: phases.append(state.phase))
    for _ in range(5):
        session.skip()
    assert phases == [
        Phase.REST,
        Phase.WORK,
        Phase.REST,
        Phase.WORK,
        Phase.COMPLETE,
    ]


def test_skip_matches_natural_ticks(catalog):
    ticked = WorkoutSession(MemoryStore(), work_duration=60, rest_duration=60)
    skipped = WorkoutSession(MemoryStore(), work_duration=60, rest_duration=60)
    for session in (ticked, skipped):
        session.load_or_init("push-day", catalog)
        session.set_active(True)
        _ticks(session, 15)
        assert session.state.remaining_seconds == 45

    _ticks(ticked, 45)
    skipped.skip()

    for field in ("phase", "current_exercise_index", "current_set", "remaining_seconds"):
        assert getattr(ticked.state, field) == getattr(skipped.state, field)


def test_skip_rest_returns_to_work(session):
    session.skip()
    assert session.state.phase is Phase.REST
    state = session.skip()
    assert state.phase is Phase.WORK
    assert state.remaining_seconds == 10
    assert state.current_set == 2


def test_skip_works_while_paused(session):
    assert not session.is_active
    assert session.skip().phase is Phase.REST
    assert not session.is_active


def test_extend_adds_time_without_transition(session):
    session.set_active(True)
    _ticks(session, 9)
    state = session.extend()
    assert state.remaining_seconds == 1 + EXTEND_SECONDS
    assert state.phase is Phase.WORK
    assert state.current_set == 1

    session.skip()
    assert session.extend(7).remaining_seconds == 5 + 7


def test_extend_rejects_negative(session):
    with pytest.raises(ValueError):
        session.extend(-5)


def test_activation_rearms_elapsed_interval(store, catalog):
    store.set(
        SESSION_KEY,
        json.dumps(
            {
                "workout_type": "push-day",
                "current_exercise_index": 0,
                "current_set": 2,
                "phase": "rest",
                "remaining_seconds": 0,
                "last_updated": time.time(),
                "completed": False,
            }
        ),
    )
    session = WorkoutSession(store, work_duration=10, rest_duration=5)
    assert session.load_or_init("push-day", catalog).remaining_seconds == 0

    session.set_active(True)
    assert session.state.phase is Phase.REST
    assert session.state.remaining_seconds == 5
    assert session.tick().remaining_seconds == 4


def test_progress_fraction(session):
    assert session.progress_fraction() == 0
    session.skip()
    session.skip()
    assert session.progress_fraction() == 0
    session.skip()
    assert session.progress_fraction() == pytest.approx(0.5)


def test_phase_progress(session):
    session.set_active(True)
    assert session.phase_progress() == 0
    _ticks(session, 5)
    assert session.phase_progress() == pytest.approx(0.5)
    session.extend(30)
    assert session.phase_progress() == 0


def test_upcoming_exercise(session, catalog):
    push_ups, dips = catalog["push-day"].exercises
    assert session.current_exercise == push_ups
    assert session.upcoming_exercise() == push_ups
    session.skip()  # rest before set 2
    assert session.upcoming_exercise() == push_ups
    session.skip()  # set 2, last push-up set
    assert session.upcoming_exercise() == dips
    session.skip()
    session.skip()  # dips, final set
    assert session.upcoming_exercise() is None


def test_reset_restarts_workout(session, store):
    session.set_active(True)
    session.skip()
    state = session.reset()
    assert state.current_set == 1
    assert state.phase is Phase.WORK
    assert state.remaining_seconds == 10
    assert not session.is_active
    assert store.get(SESSION_KEY) is not None


def test_unknown_workout_raises(store, catalog):
    session = WorkoutSession(store)
    with pytest.raises(CatalogError):
        session.load_or_init("arms", catalog)


def test_state_requires_loaded_workout(store):
    with pytest.raises(RuntimeError):
        WorkoutSession(store).state


def test_durations_must_be_positive(store):
    with pytest.raises(ValueError):
        WorkoutSession(store, work_duration=0)


def test_default_durations(store, catalog):
    session = WorkoutSession(store)
    state = session.load_or_init("legs", catalog)
    assert state.remaining_seconds == 60
    assert session.skip().remaining_seconds == 60


def test_from_settings_uses_configured_durations(store, catalog, settings_path):
    settings.set_value("work_duration", 45)
    settings.set_value("rest_duration", 20)
    session = WorkoutSession.from_settings(store)
    assert session.load_or_init("legs", catalog).remaining_seconds == 45
    assert session.skip().remaining_seconds == 20

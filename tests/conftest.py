import os
from pathlib import Path
import sys

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

# Keep Kivy from parsing pytest's arguments or taking over logging
os.environ.setdefault("KIVY_NO_ARGS", "1")
os.environ.setdefault("KIVY_NO_CONSOLELOG", "1")
os.environ.setdefault("KIVY_NO_FILELOG", "1")
os.environ.setdefault("KIVY_LOG_MODE", "PYTHON")

from companion import settings
from companion.catalog import Exercise, Workout
from companion.storage import MemoryStore
from companion.workout_session import WorkoutSession


class FakeEvent:
    def __init__(self, callback, timeout):
        self.callback = callback
        self.timeout = timeout
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeClock:
    """Stand-in for ``kivy.clock.Clock`` that only moves when told to."""

    def __init__(self):
        self.events: list[FakeEvent] = []

    def schedule_interval(self, callback, timeout):
        event = FakeEvent(callback, timeout)
        self.events.append(event)
        return event

    @property
    def active_events(self):
        return [e for e in self.events if not e.cancelled]

    def advance(self, seconds: int, dt: float = 1.0) -> None:
        for _ in range(seconds):
            for event in self.active_events:
                event.callback(dt)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def catalog() -> dict:
    """A small catalog: 'push-day' with 2x Push-Ups then 1x Dips."""
    return {
        "push-day": Workout(
            title="Push Day",
            exercises=(
                Exercise(id="ex-1", name="Push-Ups", sets=2, reps="8-12 reps"),
                Exercise(id="ex-2", name="Dips", sets=1, reps="Max reps", weight="Bodyweight"),
            ),
        ),
        "legs": Workout(
            title="Legs",
            exercises=(Exercise(id="ex-3", name="Squats", sets=3, reps="10 reps"),),
        ),
    }


@pytest.fixture
def session(store, catalog) -> WorkoutSession:
    """A freshly loaded 'push-day' session with 10s work and 5s rest."""
    workout = WorkoutSession(store, work_duration=10, rest_duration=5)
    workout.load_or_init("push-day", catalog)
    return workout


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings_path(tmp_path, monkeypatch) -> Path:
    path = tmp_path / "settings.json"
    monkeypatch.setattr(settings, "SETTINGS_PATH", path)
    monkeypatch.setattr(settings, "_settings_cache", None)
    return path

import datetime
import json
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable

from core import (
    DEFAULT_REST_DURATION,
    DEFAULT_WORK_DURATION,
    EXTEND_SECONDS,
    SESSION_KEY,
)
from companion import settings
from companion.catalog import Exercise, Workout
from companion.errors import CatalogError, Failure, StoreError
from companion.storage import KeyValueStore


class Phase(Enum):
    WORK = "work"
    REST = "rest"
    COMPLETE = "complete"


@dataclass(frozen=True)
class SessionState:
    """Snapshot of a workout in progress.

    ``current_exercise_index`` is 0-based and ``current_set`` is 1-based.
    A state with ``completed=True`` is terminal and is never resumed.
    """

    workout_type: str
    current_exercise_index: int = 0
    current_set: int = 1
    phase: Phase = Phase.WORK
    remaining_seconds: int = DEFAULT_WORK_DURATION
    last_updated: float = 0.0
    completed: bool = False

    def to_dict(self) -> dict:
        """Return a JSON-serialisable representation of the state."""

        return {
            "workout_type": self.workout_type,
            "current_exercise_index": self.current_exercise_index,
            "current_set": self.current_set,
            "phase": self.phase.value,
            "remaining_seconds": self.remaining_seconds,
            "last_updated": self.last_updated,
            "completed": self.completed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionState":
        """Reconstruct a :class:`SessionState` from ``data``.

        ``ValueError`` is raised if a field has the wrong type.
        """

        ints = (
            data["current_exercise_index"],
            data["current_set"],
            data["remaining_seconds"],
        )
        if not all(isinstance(v, int) and not isinstance(v, bool) for v in ints):
            raise ValueError("indices and remaining_seconds must be integers")
        if data["remaining_seconds"] < 0:
            raise ValueError("remaining_seconds must not be negative")
        if not isinstance(data["workout_type"], str):
            raise ValueError("workout_type must be a string")
        if not isinstance(data["completed"], bool):
            raise ValueError("completed must be a boolean")
        last_updated = data["last_updated"]
        if isinstance(last_updated, bool) or not isinstance(last_updated, (int, float)):
            raise ValueError("last_updated must be a timestamp")
        return cls(
            workout_type=data["workout_type"],
            current_exercise_index=data["current_exercise_index"],
            current_set=data["current_set"],
            phase=Phase(data["phase"]),
            remaining_seconds=data["remaining_seconds"],
            last_updated=float(last_updated),
            completed=data["completed"],
        )


# --------------------------------------------------------------
# Snapshot helpers
# --------------------------------------------------------------


def _same_day(first: float, second: float) -> bool:
    """Return ``True`` if both timestamps fall on the same local date."""

    return datetime.date.fromtimestamp(first) == datetime.date.fromtimestamp(second)


def _read_snapshot(store: KeyValueStore) -> tuple[SessionState | None, Failure | None]:
    """Return the stored snapshot (or ``None``) and any failure reading it."""

    try:
        text = store.get(SESSION_KEY)
    except StoreError:
        logging.exception("Failed to read saved workout progress")
        return None, Failure.READ_FAILED
    if not text:
        return None, None
    try:
        return SessionState.from_dict(json.loads(text)), None
    except (ValueError, TypeError, KeyError, AttributeError):
        logging.exception("Saved workout progress is corrupt, ignoring it")
        return None, Failure.CORRUPT_STATE


def _is_resumable(
    state: SessionState,
    workout_type: str,
    workout: Workout | None,
    now: float,
) -> bool:
    """Return ``True`` if ``state`` may be resumed for ``workout_type``.

    Snapshots are never repaired: anything out of bounds for the current
    catalog is rejected.
    """

    reason = None
    if state.workout_type != workout_type:
        reason = f"belongs to '{state.workout_type}'"
    elif state.completed or state.phase is Phase.COMPLETE:
        reason = "already completed"
    elif not _same_day(state.last_updated, now):
        reason = "from a previous day"
    elif workout is None:
        reason = "workout no longer exists"
    elif not 0 <= state.current_exercise_index < len(workout.exercises):
        reason = "exercise index out of range"
    elif not 1 <= state.current_set <= workout.exercises[state.current_exercise_index].sets:
        reason = "set out of range"
    if reason:
        logging.info("Discarding saved workout progress: %s", reason)
        return False
    return True


def load_saved_state(
    store: KeyValueStore, catalog: dict[str, Workout] | None = None
) -> SessionState | None:
    """Return the resumable in-progress workout, if any.

    Used to offer a "continue workout" shortcut.  Stale snapshots are removed
    from ``store``.  When ``catalog`` is given the snapshot must also fit the
    current catalog.
    """

    state, _failure = _read_snapshot(store)
    if state is None:
        return None
    now = time.time()
    if catalog is None:
        fits = not state.completed and _same_day(state.last_updated, now)
    else:
        workout = catalog.get(state.workout_type)
        fits = _is_resumable(state, state.workout_type, workout, now)
    if not fits:
        clear_saved_state(store)
        return None
    return state


def clear_saved_state(store: KeyValueStore) -> None:
    """Remove any saved workout progress."""

    try:
        store.remove(SESSION_KEY)
    except StoreError:
        logging.exception("Failed to clear saved workout progress")


# --------------------------------------------------------------
# Session engine
# --------------------------------------------------------------


class WorkoutSession:
    """Interval state machine for one workout.

    The session alternates WORK and REST intervals.  The set counter (or the
    exercise pointer) advances when a WORK interval ends, so during REST the
    state already points at the upcoming set.  Finishing the last set of the
    last exercise moves straight to :attr:`Phase.COMPLETE`.

    Time only moves when :meth:`tick` is called; whoever owns the clock calls
    it once per second.  State is written to ``store`` after every change so
    the workout can be resumed later the same day.
    """

    def __init__(
        self,
        store: KeyValueStore,
        work_duration: int = DEFAULT_WORK_DURATION,
        rest_duration: int = DEFAULT_REST_DURATION,
    ):
        if work_duration < 1 or rest_duration < 1:
            raise ValueError("Interval durations must be at least one second")
        self.store = store
        self.work_duration = int(work_duration)
        self.rest_duration = int(rest_duration)
        self.workout: Workout | None = None
        self.last_failure: Failure | None = None
        self._state: SessionState | None = None
        self._active = False
        self._transition_callbacks: list[Callable[[SessionState], None]] = []
        self._complete_callbacks: list[Callable[[SessionState], None]] = []

    @classmethod
    def from_settings(cls, store: KeyValueStore) -> "WorkoutSession":
        """Create a session using the durations from the user settings."""

        return cls(
            store,
            work_duration=int(settings.get_value("work_duration")),
            rest_duration=int(settings.get_value("rest_duration")),
        )

    def bind(
        self,
        on_transition: Callable[[SessionState], None] | None = None,
        on_complete: Callable[[SessionState], None] | None = None,
    ) -> None:
        """Register callbacks for phase changes and for completion."""

        if on_transition is not None:
            self._transition_callbacks.append(on_transition)
        if on_complete is not None:
            self._complete_callbacks.append(on_complete)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        if self._state is None:
            raise RuntimeError("No workout loaded")
        return self._state

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def current_exercise(self) -> Exercise:
        return self.workout.exercises[self.state.current_exercise_index]

    def upcoming_exercise(self) -> Exercise | None:
        """Return the exercise of the next WORK interval.

        During REST the pointers already reference it.  ``None`` is returned
        once nothing is left.
        """

        state = self.state
        if state.phase is Phase.COMPLETE:
            return None
        if state.phase is Phase.REST:
            return self.current_exercise
        if state.current_set < self.current_exercise.sets:
            return self.current_exercise
        next_index = state.current_exercise_index + 1
        if next_index < len(self.workout.exercises):
            return self.workout.exercises[next_index]
        return None

    def progress_fraction(self) -> float:
        """Share of exercises already behind the current one."""
        return self.state.current_exercise_index / len(self.workout.exercises)

    def phase_progress(self) -> float:
        """Elapsed share of the running interval, between 0 and 1."""

        state = self.state
        if state.phase is Phase.COMPLETE:
            return 1.0
        duration = self._duration_for(state.phase)
        elapsed = duration - state.remaining_seconds
        return min(1.0, max(0.0, elapsed / duration))

    def _duration_for(self, phase: Phase) -> int:
        return self.rest_duration if phase is Phase.REST else self.work_duration

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load_or_init(
        self, workout_type: str, catalog: dict[str, Workout]
    ) -> SessionState:
        """Resume today's progress on ``workout_type`` or start it fresh.

        :class:`CatalogError` is raised if ``catalog`` has no such workout.
        """

        workout = catalog.get(workout_type)
        if workout is None:
            raise CatalogError(f"Workout '{workout_type}' not found")
        self.workout = workout
        self._active = False
        self.last_failure = None

        snapshot, failure = _read_snapshot(self.store)
        self.last_failure = failure
        if snapshot is not None and _is_resumable(
            snapshot, workout_type, workout, time.time()
        ):
            logging.info(
                "Resuming %s at exercise %d set %d",
                workout_type,
                snapshot.current_exercise_index,
                snapshot.current_set,
            )
            self._state = snapshot
        else:
            self._state = SessionState(
                workout_type=workout_type, remaining_seconds=self.work_duration
            )
        self.save_state()
        return self._state

    def reset(self) -> SessionState:
        """Throw away progress and restart the loaded workout."""

        state = self.state
        clear_saved_state(self.store)
        self._active = False
        self._state = SessionState(
            workout_type=state.workout_type, remaining_seconds=self.work_duration
        )
        self.save_state()
        return self._state

    def save_state(self) -> None:
        """Persist the current state to the store.

        Completed sessions are not written; their snapshot was removed.  A
        failed write is logged and the in-memory state stays authoritative.
        """

        if self.state.completed:
            return
        self._state = replace(self.state, last_updated=time.time())
        try:
            self.store.set(SESSION_KEY, json.dumps(self._state.to_dict()))
        except StoreError:
            logging.exception("Failed to save workout progress")
            self.last_failure = Failure.WRITE_FAILED

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def set_active(self, active: bool) -> None:
        """Start or pause the timer.

        Starting with no time left re-arms the interval so the next tick does
        not immediately cross a boundary.  A completed session stays paused.
        """

        state = self.state
        if active and state.phase is Phase.COMPLETE:
            return
        if active and state.remaining_seconds == 0:
            self._state = replace(
                state, remaining_seconds=self._duration_for(state.phase)
            )
        self._active = bool(active)
        self.save_state()

    def tick(self) -> SessionState:
        """Advance the timer by one second while active."""

        state = self.state
        if not self._active or state.phase is Phase.COMPLETE:
            return state
        remaining = state.remaining_seconds - 1
        if remaining <= 0:
            self._cross_boundary()
        else:
            self._state = replace(state, remaining_seconds=remaining)
            self.save_state()
        return self._state

    def skip(self) -> SessionState:
        """End the running interval now, as if its time had run out."""

        if self.state.phase is not Phase.COMPLETE:
            self._cross_boundary()
        return self._state

    def extend(self, seconds: int = EXTEND_SECONDS) -> SessionState:
        """Add ``seconds`` to the running interval."""

        if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds < 0:
            raise ValueError("seconds must be a non-negative integer")
        state = self.state
        if state.phase is Phase.COMPLETE:
            return state
        self._state = replace(state, remaining_seconds=state.remaining_seconds + seconds)
        self.save_state()
        return self._state

    def _cross_boundary(self) -> None:
        state = self.state
        if state.phase is Phase.REST:
            self._state = replace(
                state, phase=Phase.WORK, remaining_seconds=self.work_duration
            )
        elif state.current_set < self.current_exercise.sets:
            self._state = replace(
                state,
                current_set=state.current_set + 1,
                phase=Phase.REST,
                remaining_seconds=self.rest_duration,
            )
        elif state.current_exercise_index < len(self.workout.exercises) - 1:
            self._state = replace(
                state,
                current_exercise_index=state.current_exercise_index + 1,
                current_set=1,
                phase=Phase.REST,
                remaining_seconds=self.rest_duration,
            )
        else:
            self._complete()
            return

        self.save_state()
        for callback in list(self._transition_callbacks):
            callback(self._state)

    def _complete(self) -> None:
        self._state = replace(
            self.state,
            phase=Phase.COMPLETE,
            remaining_seconds=0,
            completed=True,
            last_updated=time.time(),
        )
        self._active = False
        clear_saved_state(self.store)
        logging.info("Workout %s complete", self._state.workout_type)
        for callback in list(self._transition_callbacks):
            callback(self._state)
        for callback in list(self._complete_callbacks):
            callback(self._state)

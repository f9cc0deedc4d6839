"""Kivy side of the workout: clock ticks, user intents and rewards.

:class:`SessionController` owns the once-per-second clock event that drives a
:class:`~companion.workout_session.WorkoutSession` and mirrors the session
state into Kivy properties so screens can bind to them.
:class:`ProgressionMonitor` polls the progression store for level badges and
the level-up celebration.
"""

from __future__ import annotations

import logging
import threading

from kivy.clock import Clock
from kivy.event import EventDispatcher
from kivy.properties import BooleanProperty, NumericProperty, StringProperty

from core import EXTEND_SECONDS, format_time
from companion import settings
from companion.catalog import Workout
from companion.errors import StoreError
from companion.progression import (
    AwardResult,
    ProgressionEngine,
    is_recent_level_up,
    total_completed_workouts,
    xp_percentage as level_percentage,
)
from companion.workout_session import (
    Phase,
    SessionState,
    WorkoutSession,
    clear_saved_state,
)

# Clock callbacks arriving this close to a full second still count as one
TICK_TOLERANCE = 0.05


class SessionController(EventDispatcher):
    """Bind the clock and user actions to a workout session.

    Every action and tick runs under one lock so transitions never overlap.
    Completion is rewarded exactly once per opened workout, however often it
    is observed.
    """

    is_active = BooleanProperty(False)
    phase = StringProperty("")
    remaining_seconds = NumericProperty(0)
    current_exercise_index = NumericProperty(0)
    current_set = NumericProperty(1)
    time_label = StringProperty("0:00")
    did_level_up = BooleanProperty(False)

    __events__ = ("on_complete",)

    def __init__(
        self,
        session: WorkoutSession,
        progression: ProgressionEngine,
        clock=None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.session = session
        self.progression = progression
        self.result: AwardResult | None = None
        self._clock = clock or Clock
        self._event = None
        self._pending = 0.0
        self._lock = threading.RLock()
        self._completion_recorded = False
        session.bind(on_complete=self._on_session_complete)

    def on_complete(self, result):
        pass

    # ------------------------------------------------------------------
    # Scope management
    # ------------------------------------------------------------------

    def __enter__(self) -> "SessionController":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    def dispose(self) -> None:
        """Stop the clock and pause the session so its state is saved."""

        with self._lock:
            self._stop_clock()
            if self.session.workout is not None and not self.session.state.completed:
                self.session.set_active(False)
                self._sync()

    def _start_clock(self) -> None:
        if self._event is None:
            self._pending = 0.0
            self._event = self._clock.schedule_interval(self._on_clock, 1.0)

    def _stop_clock(self) -> None:
        if self._event is not None:
            self._event.cancel()
            self._event = None

    # ------------------------------------------------------------------
    # User intents
    # ------------------------------------------------------------------

    def open(self, workout_type: str, catalog: dict[str, Workout]) -> SessionState:
        """Load ``workout_type``, resuming today's progress if possible."""

        with self._lock:
            self._stop_clock()
            self._completion_recorded = False
            self.result = None
            self.did_level_up = False
            state = self.session.load_or_init(workout_type, catalog)
            self._sync()
            return state

    def start(self) -> None:
        with self._lock:
            self.session.set_active(True)
            if self.session.is_active:
                self._start_clock()
            self._sync()

    def pause(self) -> None:
        with self._lock:
            self._stop_clock()
            self.session.set_active(False)
            self._sync()

    def toggle(self) -> None:
        with self._lock:
            if self.session.is_active:
                self.pause()
            else:
                self.start()

    def skip(self) -> SessionState:
        with self._lock:
            state = self.session.skip()
            self._sync()
            return state

    def extend(self, seconds: int = EXTEND_SECONDS) -> SessionState:
        with self._lock:
            state = self.session.extend(seconds)
            self._sync()
            return state

    def observe_completion(self) -> AwardResult | None:
        """Reward a completed session if that has not happened yet.

        Safe to call whenever a completed view is shown again.
        """

        with self._lock:
            if self.session.state.completed:
                self._record_completion(self.session.state)
            return self.result

    # ------------------------------------------------------------------
    # Clock and completion
    # ------------------------------------------------------------------

    def _on_clock(self, dt) -> None:
        with self._lock:
            # An early tick leaves a negative balance for the next callback
            self._pending += dt
            while self._pending >= 1.0 - TICK_TOLERANCE and self.session.is_active:
                self._pending -= 1.0
                self.session.tick()
            if not self.session.is_active:
                self._stop_clock()
            self._sync()

    def _on_session_complete(self, state: SessionState) -> None:
        with self._lock:
            self._record_completion(state)

    def _record_completion(self, state: SessionState) -> None:
        if self._completion_recorded:
            return
        self._stop_clock()
        clear_saved_state(self.session.store)
        try:
            self.result = self.progression.record_completion(state.workout_type)
        except StoreError:
            # Left pending; observe_completion() tries again.
            logging.exception("Failed to record completion of %s", state.workout_type)
            self._sync()
            return
        self._completion_recorded = True
        self.did_level_up = self.result.did_level_up
        self._sync()
        self.dispatch("on_complete", self.result)

    def _sync(self) -> None:
        """Copy the session state into the Kivy properties."""

        state = self.session.state
        self.is_active = self.session.is_active
        self.phase = state.phase.value
        self.remaining_seconds = state.remaining_seconds
        self.current_exercise_index = state.current_exercise_index
        self.current_set = state.current_set
        self.time_label = format_time(state.remaining_seconds)

    @property
    def is_complete(self) -> bool:
        return self.phase == Phase.COMPLETE.value


class ProgressionMonitor(EventDispatcher):
    """Periodically re-read progression for badges and level-up effects.

    Values may lag the store by up to one ``poll_interval``.
    """

    level = NumericProperty(1)
    xp = NumericProperty(0)
    xp_to_next_level = NumericProperty(0)
    xp_percentage = NumericProperty(0)
    total_completed = NumericProperty(0)
    celebrating = BooleanProperty(False)

    def __init__(
        self,
        progression: ProgressionEngine,
        poll_interval: float | None = None,
        clock=None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.progression = progression
        if poll_interval is None:
            poll_interval = float(settings.get_value("poll_interval"))
        self.poll_interval = poll_interval
        self._clock = clock or Clock
        self._event = None

    def __enter__(self) -> "ProgressionMonitor":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def start(self) -> None:
        self.refresh()
        if self._event is None:
            self._event = self._clock.schedule_interval(self.refresh, self.poll_interval)

    def stop(self) -> None:
        if self._event is not None:
            self._event.cancel()
            self._event = None

    def refresh(self, *_args) -> None:
        state = self.progression.get_progression()
        self.level = state.level
        self.xp = state.xp
        self.xp_to_next_level = state.xp_to_next_level
        self.xp_percentage = level_percentage(state)
        self.total_completed = total_completed_workouts(state)
        self.celebrating = is_recent_level_up(state.last_level_up)

"""Experience points and levels earned by completing workouts."""

from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Callable, Mapping

from core import (
    COMPLETION_XP,
    INITIAL_XP_TO_NEXT_LEVEL,
    LEVEL_UP_WINDOW,
    PROGRESSION_KEY,
    XP_GROWTH_FACTOR,
)
from companion.errors import Failure, ProgressionConflictError, StoreError
from companion.storage import KeyValueStore

# Attempts at the read-modify-write cycle before giving up on a busy store
MAX_WRITE_ATTEMPTS = 5


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class ProgressionState:
    """Level, experience and per-workout completion counts."""

    level: int = 1
    xp: int = 0
    xp_to_next_level: int = INITIAL_XP_TO_NEXT_LEVEL
    completed_workouts: Mapping[str, int] = field(default_factory=dict)
    last_level_up: float | None = None

    def __post_init__(self) -> None:
        # Read-only copy; callers cannot change counts behind the engine
        object.__setattr__(
            self, "completed_workouts", MappingProxyType(dict(self.completed_workouts))
        )

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "xp": self.xp,
            "xp_to_next_level": self.xp_to_next_level,
            "completed_workouts": dict(self.completed_workouts),
            "last_level_up": self.last_level_up,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProgressionState":
        """Build a state from ``data``, raising ``ValueError`` if invalid."""

        level = data["level"]
        xp = data["xp"]
        threshold = data["xp_to_next_level"]
        counts = data.get("completed_workouts") or {}
        last = data.get("last_level_up")
        if not (_is_int(level) and _is_int(xp) and _is_int(threshold)):
            raise ValueError("level, xp and xp_to_next_level must be integers")
        if level < 1 or xp < 0 or threshold < 1:
            raise ValueError("progression values out of range")
        if not isinstance(counts, dict) or not all(
            _is_int(v) and v >= 0 for v in counts.values()
        ):
            raise ValueError("completed_workouts must map names to counts")
        if last is not None and (
            isinstance(last, bool) or not isinstance(last, (int, float))
        ):
            raise ValueError("last_level_up must be a timestamp")
        return cls(
            level=level,
            xp=xp,
            xp_to_next_level=threshold,
            completed_workouts={str(k): v for k, v in counts.items()},
            last_level_up=float(last) if last is not None else None,
        )


@dataclass(frozen=True)
class AwardResult:
    """Outcome of granting experience."""

    state: ProgressionState
    did_level_up: bool
    previous_level: int

    @property
    def completed_workouts(self) -> Mapping[str, int]:
        return self.state.completed_workouts


def apply_experience(
    state: ProgressionState, amount: int, now: float
) -> tuple[ProgressionState, bool]:
    """Return ``state`` with ``amount`` XP added and levels normalised.

    Large awards may gain several levels at once; each one grows the
    threshold by :data:`core.XP_GROWTH_FACTOR`.
    """

    level = state.level
    xp = state.xp + amount
    threshold = state.xp_to_next_level
    leveled = False
    while xp >= threshold:
        xp -= threshold
        level += 1
        threshold = math.floor(threshold * XP_GROWTH_FACTOR)
        leveled = True
    new_state = replace(
        state,
        level=level,
        xp=xp,
        xp_to_next_level=threshold,
        last_level_up=now if leveled else state.last_level_up,
    )
    return new_state, leveled


def is_recent_level_up(
    last_level_up: float | None,
    now: float | None = None,
    window: float = LEVEL_UP_WINDOW,
) -> bool:
    """Return ``True`` if a level up happened less than ``window`` seconds ago."""

    if last_level_up is None:
        return False
    if now is None:
        now = time.time()
    return 0 <= now - last_level_up < window


def xp_percentage(state: ProgressionState) -> int:
    """Progress towards the next level as a whole percentage."""
    return math.floor(state.xp / state.xp_to_next_level * 100)


def total_completed_workouts(state: ProgressionState) -> int:
    return sum(state.completed_workouts.values())


class ProgressionEngine:
    """Owns the persisted :class:`ProgressionState`.

    Every award is a read, compute and compare-and-set cycle against the
    store, so two engines sharing one store never drop each other's awards.
    Storage problems never raise; they are logged and recorded on
    :attr:`last_failure` while the computed state is still returned.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store
        self.last_failure: Failure | None = None
        self._state = ProgressionState()

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _read(self) -> tuple[str | None, ProgressionState]:
        """Return the raw stored text and the state it decodes to."""

        try:
            raw = self.store.get(PROGRESSION_KEY)
        except StoreError:
            logging.exception("Failed to read progression")
            self.last_failure = Failure.READ_FAILED
            raise
        if raw is None:
            return None, ProgressionState()
        try:
            return raw, ProgressionState.from_dict(json.loads(raw))
        except (ValueError, TypeError, KeyError, AttributeError):
            logging.exception("Stored progression is corrupt, using defaults")
            self.last_failure = Failure.CORRUPT_STATE
            return raw, ProgressionState()

    def get_progression(self) -> ProgressionState:
        """Return the stored progression, creating defaults on first use."""

        self.last_failure = None
        try:
            raw, state = self._read()
        except StoreError:
            return self._state
        if raw is None:
            try:
                self.store.compare_and_set(
                    PROGRESSION_KEY, None, json.dumps(state.to_dict(), sort_keys=True)
                )
            except StoreError:
                logging.exception("Failed to write default progression")
                self.last_failure = Failure.WRITE_FAILED
        self._state = state
        return state

    # ------------------------------------------------------------------
    # Awards
    # ------------------------------------------------------------------

    def _update(
        self,
        mutate: Callable[[ProgressionState], ProgressionState],
        amount: int,
    ) -> AwardResult:
        self.last_failure = None
        for attempt in range(MAX_WRITE_ATTEMPTS):
            try:
                raw, current = self._read()
            except StoreError:
                # Store unreachable, keep the award in memory only.
                previous = self._state
                new_state, leveled = apply_experience(
                    mutate(previous), amount, time.time()
                )
                self._state = new_state
                return AwardResult(new_state, leveled, previous.level)

            new_state, leveled = apply_experience(mutate(current), amount, time.time())
            result = AwardResult(new_state, leveled, current.level)
            payload = json.dumps(new_state.to_dict(), sort_keys=True)
            try:
                written = self.store.compare_and_set(PROGRESSION_KEY, raw, payload)
            except StoreError:
                logging.exception("Failed to save progression")
                self.last_failure = Failure.WRITE_FAILED
                self._state = new_state
                return result
            if written:
                self._state = new_state
                if leveled:
                    logging.info(
                        "Level up: %s -> %s", current.level, new_state.level
                    )
                return result
            logging.info(
                "Progression changed by another writer, retrying (attempt %d)",
                attempt + 1,
            )
        raise ProgressionConflictError(
            f"Progression update failed after {MAX_WRITE_ATTEMPTS} attempts"
        )

    def grant_experience(self, amount: int) -> AwardResult:
        """Add ``amount`` XP, levelling up as many times as it covers."""

        if not _is_int(amount) or amount < 0:
            raise ValueError("amount must be a non-negative integer")
        return self._update(lambda state: state, amount)

    def record_completion(self, workout_type: str) -> AwardResult:
        """Count a finished workout and award :data:`core.COMPLETION_XP`."""

        def mutate(state: ProgressionState) -> ProgressionState:
            counts = dict(state.completed_workouts)
            counts[workout_type] = counts.get(workout_type, 0) + 1
            return replace(state, completed_workouts=counts)

        result = self._update(mutate, COMPLETION_XP)
        logging.info(
            "Recorded completion of %s (%d total)",
            workout_type,
            result.completed_workouts[workout_type],
        )
        return result

    def reset(self) -> None:
        """Erase all progression (factory reset)."""

        self.last_failure = None
        self._state = ProgressionState()
        try:
            self.store.remove(PROGRESSION_KEY)
        except StoreError:
            logging.exception("Failed to reset progression")
            self.last_failure = Failure.WRITE_FAILED

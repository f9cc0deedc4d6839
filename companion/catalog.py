"""Workout catalog models and persistence.

The catalog maps a workout type (e.g. ``"chest-biceps"``) to a
:class:`Workout`.  It is stored as one JSON blob under
:data:`core.CATALOG_KEY`::

    {"chest-biceps": {"title": "Chest + Biceps",
                      "exercises": [{"id": "...", "name": "Push-Ups",
                                     "sets": 4, "reps": "8-12 reps",
                                     "weight": null}, ...]}}
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace

from core import CATALOG_KEY
from companion.errors import CatalogError
from companion.storage import KeyValueStore


@dataclass(frozen=True)
class Exercise:
    """A single exercise within a workout."""

    id: str
    name: str
    sets: int
    reps: str = ""
    weight: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.sets, int) or isinstance(self.sets, bool):
            raise ValueError("sets must be an integer")
        if self.sets < 1:
            raise ValueError("sets must be positive")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sets": self.sets,
            "reps": self.reps,
            "weight": self.weight,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Exercise":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            sets=data["sets"],
            reps=str(data.get("reps", "")),
            weight=data.get("weight"),
        )


@dataclass(frozen=True)
class Workout:
    """A titled, ordered and non-empty list of exercises."""

    title: str
    exercises: tuple[Exercise, ...]

    def __post_init__(self) -> None:
        if not self.exercises:
            raise ValueError(f"Workout '{self.title}' has no exercises")

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "exercises": [ex.to_dict() for ex in self.exercises],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Workout":
        return cls(
            title=str(data["title"]),
            exercises=tuple(Exercise.from_dict(ex) for ex in data["exercises"]),
        )


def parse_catalog(text: str) -> dict[str, Workout]:
    """Return the catalog encoded in ``text``.

    :class:`CatalogError` is raised if the blob is not a valid catalog.
    """

    try:
        data = json.loads(text)
        if not isinstance(data, dict):
            raise TypeError("catalog must be a JSON object")
        return {str(key): Workout.from_dict(value) for key, value in data.items()}
    except (ValueError, TypeError, KeyError) as exc:
        raise CatalogError("Stored workout catalog is invalid") from exc


def load_catalog(store: KeyValueStore) -> dict[str, Workout]:
    """Load the catalog from ``store``.  A missing catalog is empty."""

    text = store.get(CATALOG_KEY)
    if not text:
        return {}
    return parse_catalog(text)


def save_catalog(store: KeyValueStore, catalog: dict[str, Workout]) -> None:
    """Persist ``catalog`` to ``store``."""

    payload = {key: workout.to_dict() for key, workout in catalog.items()}
    store.set(CATALOG_KEY, json.dumps(payload))


def update_exercise(
    store: KeyValueStore, workout_type: str, exercise_id: str, **changes
) -> Exercise:
    """Replace fields of one exercise and persist the catalog.

    Only ``name``, ``sets``, ``reps`` and ``weight`` may be changed.  Returns
    the updated :class:`Exercise`.
    """

    unknown = set(changes) - {"name", "sets", "reps", "weight"}
    if unknown:
        raise KeyError(f"Cannot change {', '.join(sorted(unknown))}")

    catalog = load_catalog(store)
    workout = catalog.get(workout_type)
    if workout is None:
        raise CatalogError(f"Workout '{workout_type}' not found")

    updated = None
    exercises = []
    for ex in workout.exercises:
        if ex.id == exercise_id:
            ex = replace(ex, **changes)
            updated = ex
        exercises.append(ex)
    if updated is None:
        raise CatalogError(
            f"Exercise '{exercise_id}' not found in workout '{workout_type}'"
        )

    catalog[workout_type] = replace(workout, exercises=tuple(exercises))
    save_catalog(store, catalog)
    logging.info("Updated exercise %s in %s", updated.name, workout_type)
    return updated

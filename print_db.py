import datetime
import json
import sys

from core import CATALOG_KEY, DEFAULT_DB_PATH, PROGRESSION_KEY, SESSION_KEY
from companion.storage import SqliteStore

DB_PATH = DEFAULT_DB_PATH  # Pass another path as the first argument


def format_timestamp(ts):
    """Convert a stored epoch timestamp to a readable date/time string."""
    if ts is None:
        return "N/A"
    return datetime.datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def _load(store, key):
    text = store.get(key)
    if text is None:
        return None
    try:
        return json.loads(text)
    except ValueError:
        print(f"  <unreadable value for {key}>")
        return None


def main():
    store = SqliteStore(sys.argv[1] if len(sys.argv) > 1 else DB_PATH)

    print("\n=== Workout in progress ===")
    session = _load(store, SESSION_KEY)
    if session:
        print(f"Workout:  {session.get('workout_type')}")
        print(f"Exercise: {session.get('current_exercise_index', 0) + 1}")
        print(f"Set:      {session.get('current_set')}")
        print(f"Phase:    {session.get('phase')} ({session.get('remaining_seconds')} sec left)")
        print(f"Updated:  {format_timestamp(session.get('last_updated'))}")
    else:
        print("None")

    print("\n=== Progression ===")
    progress = _load(store, PROGRESSION_KEY)
    if progress:
        print(f"Level: {progress.get('level')}")
        print(f"XP:    {progress.get('xp')}/{progress.get('xp_to_next_level')}")
        print(f"Last level up: {format_timestamp(progress.get('last_level_up'))}")
        for workout_type, count in sorted(progress.get("completed_workouts", {}).items()):
            print(f"  {workout_type}: {count} completed")
    else:
        print("None")

    print("\n=== Catalog ===")
    catalog = _load(store, CATALOG_KEY) or {}
    for workout_type, workout in catalog.items():
        print(f"\n  {workout.get('title')} [{workout_type}]")
        for ex in workout.get("exercises", []):
            weight = f" @ {ex['weight']}" if ex.get("weight") else ""
            print(f"    {ex.get('name')}: {ex.get('sets')} x {ex.get('reps')}{weight}")


if __name__ == "__main__":
    main()

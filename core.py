from __future__ import annotations

from pathlib import Path

# Length of a work interval in seconds
DEFAULT_WORK_DURATION = 60

# Length of a rest interval in seconds
DEFAULT_REST_DURATION = 60

# Seconds added to the running interval by the "+30s" action
EXTEND_SECONDS = 30

# Experience awarded for finishing a whole workout
COMPLETION_XP = 50

# Progression starts at level 1 needing this much XP for level 2
INITIAL_XP_TO_NEXT_LEVEL = 100

# Each level up multiplies the XP threshold by this factor (floored)
XP_GROWTH_FACTOR = 1.2

# A level up counts as "recent" for this many seconds
LEVEL_UP_WINDOW = 5

# Seconds between progression re-reads by polling displays
POLL_INTERVAL = 2

# Keys used with the key-value store
SESSION_KEY = "workout-progress"
PROGRESSION_KEY = "user-progress"
CATALOG_KEY = "workout-data"

# Default path to the SQLite database backing the key-value store
DEFAULT_DB_PATH = Path(__file__).resolve().parent / "data" / "workout.db"


def format_time(seconds: int) -> str:
    """Return ``seconds`` formatted as ``m:ss``."""

    mins, secs = divmod(max(0, int(seconds)), 60)
    return f"{mins}:{secs:02d}"

"""
Window and direction helpers shared by the engine and its passes.
"""

from datetime import datetime
from datetime import timedelta

from freebusy_sync.models import BIDIRECTIONAL
from freebusy_sync.models import SOURCE_TO_TARGET
from freebusy_sync.models import SYNC_DIRECTIONS
from freebusy_sync.models import TARGET_TO_SOURCE


def compute_window(now: datetime, days: int) -> tuple[datetime, datetime]:
    """Return [now, now + days) as the scan window."""
    return now, now + timedelta(days=days)


def passes_for(direction: str) -> list[str]:
    """Single-direction passes a configuration's direction expands to.

    Bidirectional runs source_to_target first, then target_to_source.
    """
    if direction not in SYNC_DIRECTIONS:
        raise ValueError(f"Unknown sync direction: {direction!r}")
    if direction == BIDIRECTIONAL:
        return [SOURCE_TO_TARGET, TARGET_TO_SOURCE]
    return [direction]

"""
Week Number Derivation

The program runs in calendar weeks counted from a fixed epoch. Week 1 starts
at the epoch; every 7 days after that opens the next week.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Optional

WEEK = timedelta(days=7)


def compute_week_number(epoch: datetime, now: Optional[datetime] = None) -> int:
    """
    Compute the current week number.

    current_week = ceil((now - epoch) / 7 days), never less than 1.

    Args:
        epoch: Start of the program (timezone-aware)
        now: Point in time to evaluate (defaults to the current UTC time)

    Returns:
        Positive week number
    """
    now = now or datetime.now(timezone.utc)
    elapsed = (now - epoch) / WEEK
    return max(1, math.ceil(elapsed))


def is_snapshot_valid(last_loaded_week: Optional[int], current_week: int) -> bool:
    """A snapshot may only be restored into the week it was taken in."""
    return last_loaded_week is not None and last_loaded_week == current_week

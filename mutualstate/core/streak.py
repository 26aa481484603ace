"""
Streak continuity: compares Day Keys, never timestamps.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .clock import yesterday


class StreakOutcome(str, Enum):
    UNCHANGED = "unchanged"
    CONTINUED = "continued"
    RESET = "reset"


@dataclass(frozen=True)
class StreakUpdate:
    count: int
    date_to_store: str
    outcome: StreakOutcome


def next_streak(last_streak_date: Optional[str], today: str, current_count: int) -> StreakUpdate:
    """Streak after reciprocity is confirmed on `today`.

    Same day keeps the count, the day after `last_streak_date` adds one,
    any gap starts over at 1.
    """
    if last_streak_date == today:
        return StreakUpdate(count=current_count, date_to_store=today, outcome=StreakOutcome.UNCHANGED)

    if last_streak_date and last_streak_date == yesterday(today):
        return StreakUpdate(count=current_count + 1, date_to_store=today, outcome=StreakOutcome.CONTINUED)

    return StreakUpdate(count=1, date_to_store=today, outcome=StreakOutcome.RESET)

"""
Time range value types.

A TimeRange is what the caller asked for; a ResolvedTimeRange is the
concrete half-open [start, end) window a single query execution uses.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

# Beginning of recorded history for ranges without a start.
HISTORY_START = datetime(1970, 1, 1, tzinfo=timezone.utc)


class TimeRangeState(Enum):
    """Which bounds of a time range are set."""
    UNBOUNDED = "unbounded"
    START_ONLY = "start_only"
    END_ONLY = "end_only"
    FULLY_BOUNDED = "fully_bounded"


def _require_aware(value: datetime, name: str) -> None:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValueError(f"{name} must be timezone-aware")


@dataclass(frozen=True)
class ResolvedTimeRange:
    """Concrete [start, end) window fixed for one query execution."""
    start: datetime
    end: datetime

    def __post_init__(self):
        """Validate the window is well ordered."""
        _require_aware(self.start, "start")
        _require_aware(self.end, "end")
        if self.start > self.end:
            raise ValueError("start must not be after end")

    def contains(self, timestamp: datetime) -> bool:
        """Return True if timestamp falls inside [start, end)."""
        return self.start <= timestamp < self.end

    @property
    def is_empty(self) -> bool:
        return self.start == self.end


@dataclass(frozen=True)
class TimeRange:
    """Requested time range with optional bounds.

    An unset start means the beginning of recorded history. An unset end
    means "now" at execution time, so re-running the same query later may
    include newly arrived records.
    """
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def __post_init__(self):
        """Validate bounds are timezone-aware and ordered."""
        if self.start is not None:
            _require_aware(self.start, "start")
        if self.end is not None:
            _require_aware(self.end, "end")
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError("start must not be after end")

    @property
    def state(self) -> TimeRangeState:
        if self.start is None and self.end is None:
            return TimeRangeState.UNBOUNDED
        if self.end is None:
            return TimeRangeState.START_ONLY
        if self.start is None:
            return TimeRangeState.END_ONLY
        return TimeRangeState.FULLY_BOUNDED

    def resolve(self, now: datetime) -> ResolvedTimeRange:
        """Fix the open bounds against the given execution instant.

        Args:
            now: Current time at query execution (timezone-aware)

        Returns:
            ResolvedTimeRange with start defaulting to HISTORY_START and end
            defaulting to now. A start later than now with no end yields an
            empty range at start.
        """
        _require_aware(now, "now")
        if self.start is not None:
            start = self.start
        elif self.end is not None:
            start = min(HISTORY_START, self.end)
        else:
            start = HISTORY_START
        end = self.end if self.end is not None else max(now, start)
        return ResolvedTimeRange(start=start, end=end)

"""
Time-slot allocation shared by the site and social schedulers.

``allocate()`` walks a cursor forward from *now* in fixed intervals,
keeping every slot inside a daily ``[start_hour, end_hour)`` window and
optionally capping how many slots land on one calendar day.  It is pure:
same inputs, same output, no I/O.

Hours are interpreted in the configured timezone; returned datetimes are
timezone-aware UTC so they can be stored in ``TIMESTAMPTZ`` columns.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Dict, List, Mapping, Optional, Sequence

from src.exceptions import ValidationError
from src.utils import ensure_utc


@dataclass(frozen=True)
class ScheduleSlot:
    """An item paired with the time it was assigned."""

    item_id: str
    assigned_at: datetime


def _validate(
    items: Sequence[str], interval_minutes: int, start_hour: int, end_hour: int,
    max_per_day: int,
) -> None:
    if interval_minutes <= 0:
        raise ValidationError(f"interval_minutes must be positive, got {interval_minutes}")
    if not (0 <= start_hour < end_hour <= 24):
        raise ValidationError(
            f"window must satisfy 0 <= start_hour < end_hour <= 24, "
            f"got {start_hour}-{end_hour}"
        )
    if max_per_day < 0:
        raise ValidationError(f"max_per_day must be >= 0, got {max_per_day}")
    if len(set(items)) != len(items):
        raise ValidationError("item ids must be unique")


def _day_start(day: date, start_hour: int, tz: tzinfo) -> datetime:
    """Opening of the window on *day*, in UTC.

    A start hour skipped by a DST jump resolves to the first real instant
    after it.
    """
    return datetime(day.year, day.month, day.day, start_hour, tzinfo=tz).astimezone(
        timezone.utc
    )


def allocate(
    items: Sequence[str],
    now: datetime,
    interval_minutes: int,
    start_hour: int,
    end_hour: int,
    max_per_day: int = 0,
    tz: tzinfo = timezone.utc,
    day_counts: Optional[Mapping[date, int]] = None,
    occupied: Sequence[datetime] = (),
) -> Dict[str, datetime]:
    """Assign a publication time to each item, in the order given.

    Args:
        items: Item ids, already in priority order.
        now: Reference time; the first slot is never earlier than this
            (truncated to the minute).
        interval_minutes: Gap between consecutive slots.
        start_hour: First hour of the daily window (inclusive).
        end_hour: Hour the daily window closes (exclusive).
        max_per_day: Per-calendar-day cap in *tz*; ``0`` disables it.
        tz: Timezone the window and days are evaluated in.
        day_counts: Slots already used per local date (e.g. shares that
            already happened today).  Not mutated.
        occupied: Slots already taken by earlier runs.  They count toward
            *max_per_day* and no new slot is placed closer than
            *interval_minutes* to one of them.

    Returns:
        Mapping of item id to UTC datetime.  Iteration order follows *items*.

    Raises:
        ValidationError: On an empty or inverted window, a non-positive
            interval, a negative cap, or duplicate item ids.
    """
    _validate(items, interval_minutes, start_hour, end_hour, max_per_day)
    if not items:
        return {}

    counts: Dict[date, int] = dict(day_counts or {})
    taken = sorted(ensure_utc(t) for t in occupied)
    for t in taken:
        day = t.astimezone(tz).date()
        counts[day] = counts.get(day, 0) + 1
    step = timedelta(minutes=interval_minutes)
    # The cursor advances in UTC; *tz* only decides window and day boundaries.
    cursor = ensure_utc(now).replace(second=0, microsecond=0)
    result: Dict[str, datetime] = {}

    for item_id in items:
        while True:
            local = cursor.astimezone(tz)
            if local.hour < start_hour:
                cursor = _day_start(local.date(), start_hour, tz)
                continue
            if local.hour >= end_hour:
                cursor = _day_start(local.date() + timedelta(days=1), start_hour, tz)
                continue
            day = local.date()
            if max_per_day and counts.get(day, 0) >= max_per_day:
                cursor = _day_start(day + timedelta(days=1), start_hour, tz)
                continue
            clash = next((t for t in taken if abs(t - cursor) < step), None)
            if clash is not None:
                cursor = clash + step
                continue
            break

        result[item_id] = cursor
        counts[day] = counts.get(day, 0) + 1
        cursor = cursor + step

    return result


def as_slots(assignments: Mapping[str, datetime]) -> List[ScheduleSlot]:
    """Convert an ``allocate()`` result into ``ScheduleSlot`` records."""
    return [ScheduleSlot(item_id, at) for item_id, at in assignments.items()]


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "ScheduleSlot",
    "allocate",
    "as_slots",
]

"""
Showing slot resolution.

Pure functions over naive-UTC intervals; no database or network access. The
daily grid is laid out in the park's local timezone (slot starts every
``slot_minutes`` from ``start_hour:00`` up to and including ``end_hour:00``) and
converted to UTC before any comparison.

Overlap is strict: an interval ending exactly when a slot starts (or starting
exactly when it ends) does not block the slot.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

# Reasons a slot is not bookable, in the order they are checked.
REASON_PAST = "past"
REASON_CALENDAR_UNAVAILABLE = "calendar_unavailable"
REASON_BLOCKED = "blocked"
REASON_BOOKED = "booked"
REASON_BUSY = "busy"

# Friday at or after this local hour rolls the weekly view to next week.
FRIDAY_CUTOFF_HOUR = 17


@dataclass(frozen=True)
class Interval:
    start: datetime
    end: datetime

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end


def to_intervals(pairs: Iterable[tuple[datetime, datetime]]) -> list[Interval]:
    return [Interval(a, b) for a, b in pairs if b > a]


@dataclass(frozen=True)
class GridConfig:
    timezone: str = "America/Chicago"
    start_hour: int = 8
    end_hour: int = 19
    slot_minutes: int = 30

    def __post_init__(self) -> None:
        if not (0 <= self.start_hour <= self.end_hour <= 23):
            raise ValueError("Grid hours must satisfy 0 <= start_hour <= end_hour <= 23.")
        if self.slot_minutes <= 0 or 60 % self.slot_minutes:
            raise ValueError("slot_minutes must divide an hour evenly.")

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def slot_length(self) -> timedelta:
        return timedelta(minutes=self.slot_minutes)

    @classmethod
    def from_config(cls, config: dict) -> "GridConfig":
        return cls(
            timezone=config.get("SHOWING_TIMEZONE") or "America/Chicago",
            start_hour=int(config.get("SHOWING_DAY_START_HOUR", 8)),
            end_hour=int(config.get("SHOWING_DAY_END_HOUR", 19)),
            slot_minutes=int(config.get("SHOWING_SLOT_MINUTES", 30)),
        )


@dataclass
class Slot:
    start: datetime  # naive UTC
    end: datetime  # naive UTC
    local_start: datetime
    is_available: bool
    reason: str | None = None

    @property
    def label(self) -> str:
        return time_label(self.local_start.hour, self.local_start.minute)

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat() + "Z",
            "end": self.end.isoformat() + "Z",
            "date": self.local_start.date().isoformat(),
            "time": self.local_start.strftime("%H:%M"),
            "label": self.label,
            "isAvailable": self.is_available,
            "reason": self.reason,
        }


@dataclass
class DaySchedule:
    day: date
    slots: list[Slot] = field(default_factory=list)

    @property
    def day_name(self) -> str:
        return self.day.strftime("%a")

    def to_dict(self) -> dict:
        return {
            "date": self.day.isoformat(),
            "dayName": self.day_name,
            "dayNumber": self.day.day,
            "slots": [s.to_dict() for s in self.slots],
        }


def time_label(hour: int, minute: int) -> str:
    """9:00am, 12:30pm, 7:00pm."""
    display_hour = hour % 12 or 12
    suffix = "pm" if hour >= 12 else "am"
    return f"{display_hour}:{minute:02d}{suffix}"


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def local_to_utc(local: datetime) -> datetime:
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def utc_to_local(dt: datetime, grid: GridConfig) -> datetime:
    return dt.replace(tzinfo=timezone.utc).astimezone(grid.tz)


def day_bounds_utc(day: date, grid: GridConfig) -> tuple[datetime, datetime]:
    """Local midnight to the next local midnight, as naive UTC."""
    tz = grid.tz
    start = datetime.combine(day, time(0, 0), tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=tz)
    return local_to_utc(start), local_to_utc(end)


def candidate_starts(day: date, grid: GridConfig) -> list[datetime]:
    """Local slot start times for one day, start_hour:00 through end_hour:00 inclusive."""
    tz = grid.tz
    out: list[datetime] = []
    for minutes in range(grid.start_hour * 60, grid.end_hour * 60 + 1, grid.slot_minutes):
        out.append(datetime.combine(day, time(minutes // 60, minutes % 60), tzinfo=tz))
    return out


def resolve_day(
    day: date,
    *,
    now: datetime,
    grid: GridConfig,
    busy: Iterable[Interval] = (),
    showings: Iterable[Interval] = (),
    blocked: Iterable[Interval] = (),
    calendar_failed: bool = False,
) -> list[Slot]:
    """
    Every grid slot for the day with its availability. Weekends have no slots.

    ``now`` is naive UTC. ``calendar_failed`` marks the whole day unavailable and is
    only set by callers running the fail-closed policy.
    """
    if is_weekend(day):
        return []

    busy = list(busy)
    showings = list(showings)
    blocked = list(blocked)
    length = grid.slot_length

    slots: list[Slot] = []
    for local_start in candidate_starts(day, grid):
        start = local_to_utc(local_start)
        window = Interval(start, start + length)

        reason: str | None = None
        if start <= now:
            reason = REASON_PAST
        elif calendar_failed:
            reason = REASON_CALENDAR_UNAVAILABLE
        elif any(window.overlaps(b) for b in blocked):
            reason = REASON_BLOCKED
        elif any(window.overlaps(b) for b in showings):
            reason = REASON_BOOKED
        elif any(window.overlaps(b) for b in busy):
            reason = REASON_BUSY

        slots.append(
            Slot(
                start=window.start,
                end=window.end,
                local_start=local_start,
                is_available=reason is None,
                reason=reason,
            )
        )
    return slots


def available_slots(day: date, **kwargs) -> list[Slot]:
    return [s for s in resolve_day(day, **kwargs) if s.is_available]


def week_start(now: datetime, grid: GridConfig) -> date:
    """
    Monday of the week to show. On Saturday, Sunday, or Friday from 17:00 local the
    current week is nearly over, so next week is shown instead.
    """
    local_now = utc_to_local(now, grid)
    today = local_now.date()
    monday = today - timedelta(days=today.weekday())
    weekday = today.weekday()
    if weekday >= 5 or (weekday == 4 and local_now.hour >= FRIDAY_CUTOFF_HOUR):
        monday += timedelta(days=7)
    return monday


def week_days(now: datetime, grid: GridConfig) -> list[date]:
    monday = week_start(now, grid)
    return [monday + timedelta(days=i) for i in range(5)]


def resolve_week(
    *,
    now: datetime,
    grid: GridConfig,
    busy: Iterable[Interval] = (),
    showings: Iterable[Interval] = (),
    blocked: Iterable[Interval] = (),
    calendar_failed: bool = False,
) -> list[DaySchedule]:
    busy, showings, blocked = list(busy), list(showings), list(blocked)
    return [
        DaySchedule(
            day=d,
            slots=resolve_day(
                d,
                now=now,
                grid=grid,
                busy=busy,
                showings=showings,
                blocked=blocked,
                calendar_failed=calendar_failed,
            ),
        )
        for d in week_days(now, grid)
    ]


def find_slot(slots: Iterable[Slot], start: datetime) -> Slot | None:
    for slot in slots:
        if slot.start == start:
            return slot
    return None

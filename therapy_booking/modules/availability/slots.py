"""Slot computation.

Pure functions only: every caller passes ``now`` and the therapist's zone
explicitly, nothing here reads the clock or the database. Wall-clock
arithmetic happens on minutes-of-day in the therapist's named zone and is
converted to UTC instants per slot with ``zoneinfo``, so a 09:00 slot stays
09:00 local on both sides of a DST change.
"""
import calendar
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, NamedTuple, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from therapy_booking.core.errors import ValidationError

MINUTES_PER_DAY = 24 * 60
CLOCK_PATTERN = r"^\d{2}:\d{2}(:\d{2})?$"
_CLOCK_RE = re.compile(r"^(\d{2}):(\d{2})(?::(\d{2}))?$")

class TimeRange(NamedTuple):
    start_minute: int
    end_minute: int

class TimeSlot(NamedTuple):
    start_time: time
    end_time: time
    starts_at: datetime  # UTC
    ends_at: datetime

    def as_dict(self) -> dict:
        return {
            "start_time": format_clock(self.start_time),
            "end_time": format_clock(self.end_time),
            "starts_at": self.starts_at,
            "ends_at": self.ends_at,
        }

def parse_clock(value: str) -> time:
    m = _CLOCK_RE.match(value or "")
    if not m:
        raise ValidationError("Invalid time format (use HH:MM)")
    hour, minute, second = int(m.group(1)), int(m.group(2)), int(m.group(3) or 0)
    if hour > 23 or minute > 59 or second > 59:
        raise ValidationError(f"Invalid time of day: {value}")
    return time(hour, minute, second)

def format_clock(t: time) -> str:
    return t.strftime("%H:%M")

def load_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown timezone: {name}") from e

def ensure_aware(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt

def day_of_week(d: date) -> int:
    # 0=Sunday .. 6=Saturday
    return (d.weekday() + 1) % 7

def to_minute(t: time) -> int:
    return t.hour * 60 + t.minute

def from_minute(minute: int) -> time:
    return time(minute // 60, minute % 60)

def local_instant(d: date, t: time, tz: ZoneInfo) -> datetime:
    """UTC instant of wall-clock ``t`` on ``d`` in ``tz``.

    Uses fold=0: a time skipped by a spring-forward gap lands after the gap,
    a repeated time in the autumn resolves to its first occurrence.
    """
    return datetime.combine(d, t, tzinfo=tz).astimezone(timezone.utc)

def local_today(now: datetime, tz: ZoneInfo) -> date:
    return ensure_aware(now).astimezone(tz).date()

def booking_window(now: datetime, tz: ZoneInfo, max_days_ahead: int) -> tuple[date, date]:
    today = local_today(now, tz)
    return today, today + timedelta(days=max_days_ahead)

def month_days(year: int, month: int) -> list[date]:
    if not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12")
    if not 1 <= year <= 9999:
        raise ValidationError("Invalid year")
    last = calendar.monthrange(year, month)[1]
    return [date(year, month, day) for day in range(1, last + 1)]

def ranges_for_day(day: date, weekly: Iterable, override=None) -> list[TimeRange]:
    """Open ranges for ``day``: an override wins over the weekly template."""
    if override is not None:
        if not override.is_available or not override.start_time or not override.end_time:
            return []
        return [TimeRange(to_minute(override.start_time), to_minute(override.end_time))]
    dow = day_of_week(day)
    return [
        TimeRange(to_minute(w.start_time), to_minute(w.end_time))
        for w in weekly
        if w.day_of_week == dow and getattr(w, "is_active", True)
    ]

def materialize_slots(day: date, ranges: Iterable[TimeRange], slot_minutes: int, tz: ZoneInfo) -> list[TimeSlot]:
    if slot_minutes <= 0:
        raise ValidationError("Slot duration must be positive")
    by_start: dict[int, TimeSlot] = {}
    for r in ranges:
        cur = r.start_minute
        # trailing partial slot is dropped
        while cur + slot_minutes <= r.end_minute and cur + slot_minutes < MINUTES_PER_DAY:
            if cur not in by_start:
                st, et = from_minute(cur), from_minute(cur + slot_minutes)
                by_start[cur] = TimeSlot(st, et, local_instant(day, st, tz), local_instant(day, et, tz))
            cur += slot_minutes
    return [by_start[k] for k in sorted(by_start)]

def overlaps_buffered(start: datetime, end: datetime, busy_start: datetime, busy_end: datetime, buffer_minutes: int) -> bool:
    pad = timedelta(minutes=buffer_minutes)
    return start < busy_end + pad and end > busy_start - pad

def compute_day_slots(
    day: date,
    ranges: Iterable[TimeRange],
    *,
    slot_minutes: int,
    buffer_minutes: int,
    min_notice_hours: int,
    tz: ZoneInfo,
    busy: Sequence[tuple[datetime, datetime]],
    now: datetime,
) -> list[TimeSlot]:
    cutoff = ensure_aware(now) + timedelta(hours=min_notice_hours)
    out: list[TimeSlot] = []
    for slot in materialize_slots(day, ranges, slot_minutes, tz):
        if slot.starts_at < cutoff:
            continue
        if any(overlaps_buffered(slot.starts_at, slot.ends_at, bs, be, buffer_minutes) for bs, be in busy):
            continue
        out.append(slot)
    out.sort(key=lambda s: s.starts_at)
    return out

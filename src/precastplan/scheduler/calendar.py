"""Working-time calendar for the molding floor.

A day is either non-working (weekend or holiday) or has a single shift window
``[shift_start, shift_end)``. Per-date overrides can flag a holiday, change the
window, or open a weekend date.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from precastplan.core.errors import CalendarExhausted
from precastplan.core.models import DayOverride


DEFAULT_SHIFT_START = time(7, 0)
DEFAULT_SHIFT_END = time(17, 0)
DEFAULT_WEEKEND_DAYS = frozenset({5, 6})  # Saturday, Sunday
DEFAULT_MAX_SCAN_DAYS = 365


def parse_hhmm(value: str | time | None, *, field: str) -> time:
    if isinstance(value, time):
        return value
    s = str(value or "").strip()
    if not s:
        raise ValueError(f"{field} empty")
    try:
        parts = s.split(":")
        hh = int(parts[0])
        mm = int(parts[1]) if len(parts) > 1 else 0
        return time(hh, mm)
    except (ValueError, IndexError):
        raise ValueError(f"{field} invalid (expected HH:MM): {value!r}") from None


def parse_weekend_days(value: str | None) -> frozenset[int]:
    """Parse '5,6' into {5, 6}. Monday=0 as in datetime.weekday()."""
    s = str(value or "").strip()
    if not s:
        return frozenset()
    out: set[int] = set()
    for token in s.split(","):
        token = token.strip()
        if not token:
            continue
        d = int(token)
        if d < 0 or d > 6:
            raise ValueError(f"weekday out of range: {d}")
        out.add(d)
    return frozenset(out)


class WorkCalendar:
    def __init__(
        self,
        *,
        shift_start: time = DEFAULT_SHIFT_START,
        shift_end: time = DEFAULT_SHIFT_END,
        weekend_days: frozenset[int] | set[int] = DEFAULT_WEEKEND_DAYS,
        overrides: dict[date, DayOverride] | None = None,
        max_scan_days: int = DEFAULT_MAX_SCAN_DAYS,
    ) -> None:
        if shift_end <= shift_start:
            raise ValueError(f"shift_end {shift_end} must be after shift_start {shift_start}")
        if max_scan_days < 1:
            raise ValueError("max_scan_days must be >= 1")
        self.shift_start = shift_start
        self.shift_end = shift_end
        self.weekend_days = frozenset(weekend_days)
        self.overrides: dict[date, DayOverride] = dict(overrides or {})
        self.max_scan_days = int(max_scan_days)

    # ---------- Days ----------

    def window_for(self, day: date) -> tuple[datetime, datetime] | None:
        """Return the (open, close) shift window of a date, or None if non-working."""
        override = self.overrides.get(day)
        if override is not None:
            if override.is_holiday:
                return None
            start = override.shift_start or self.shift_start
            end = override.shift_end or self.shift_end
            if end <= start:
                return None
            return datetime.combine(day, start), datetime.combine(day, end)

        if day.weekday() in self.weekend_days:
            return None
        return datetime.combine(day, self.shift_start), datetime.combine(day, self.shift_end)

    def is_working_day(self, day: date) -> bool:
        return self.window_for(day) is not None

    # ---------- Instants ----------

    def is_working_instant(self, t: datetime) -> bool:
        window = self.window_for(t.date())
        if window is None:
            return False
        open_, close = window
        return open_ <= t < close

    def _next_window(self, t: datetime) -> tuple[datetime, datetime]:
        """First window whose close is after `t` (the one containing `t`, or the next one)."""
        day = t.date()
        for _ in range(self.max_scan_days + 1):
            window = self.window_for(day)
            if window is not None and window[1] > t:
                return window
            day = day + timedelta(days=1)
        raise CalendarExhausted(
            f"no working window within {self.max_scan_days} days after {t.isoformat()}",
            after=t.isoformat(),
        )

    def next_working_instant(self, t: datetime) -> datetime:
        open_, _close = self._next_window(t)
        return max(t, open_)

    def advance_working_minutes(self, start: datetime, minutes: float) -> datetime:
        """Move forward `minutes` of working time from `start`.

        Time outside shift windows is skipped. If the work finishes exactly when a
        window closes, that closing instant is returned.
        """
        if minutes < 0:
            raise ValueError(f"minutes must be >= 0, got {minutes}")
        cursor = self.next_working_instant(start)
        remaining = timedelta(minutes=minutes)
        while remaining > timedelta(0):
            open_, close = self._next_window(cursor)
            cursor = max(cursor, open_)
            available = close - cursor
            if remaining <= available:
                return cursor + remaining
            remaining -= available
            cursor = close
        return cursor


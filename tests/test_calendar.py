from datetime import date, datetime, time

import pytest

from precastplan.core.errors import CalendarExhausted
from precastplan.core.models import DayOverride
from precastplan.scheduler.calendar import WorkCalendar, parse_hhmm, parse_weekend_days


def test_working_instants_follow_shift_and_weekend():
    cal = WorkCalendar()

    assert cal.is_working_instant(datetime(2026, 3, 2, 7, 0)) is True
    assert cal.is_working_instant(datetime(2026, 3, 2, 16, 59)) is True
    # shift window is half-open
    assert cal.is_working_instant(datetime(2026, 3, 2, 17, 0)) is False
    assert cal.is_working_instant(datetime(2026, 3, 2, 6, 59)) is False
    assert cal.is_working_instant(datetime(2026, 3, 7, 10, 0)) is False  # Saturday
    assert cal.is_working_day(date(2026, 3, 8)) is False  # Sunday


def test_next_working_instant_skips_weekend():
    cal = WorkCalendar()

    assert cal.next_working_instant(datetime(2026, 3, 2, 9, 15)) == datetime(2026, 3, 2, 9, 15)
    assert cal.next_working_instant(datetime(2026, 3, 2, 5, 0)) == datetime(2026, 3, 2, 7, 0)
    assert cal.next_working_instant(datetime(2026, 3, 6, 17, 30)) == datetime(2026, 3, 9, 7, 0)


def test_advance_zero_minutes_snaps_to_working_time():
    cal = WorkCalendar()
    assert cal.advance_working_minutes(datetime(2026, 3, 7, 10, 0), 0) == datetime(2026, 3, 9, 7, 0)


def test_advance_ending_at_window_close_returns_close():
    cal = WorkCalendar()
    assert cal.advance_working_minutes(datetime(2026, 3, 2, 7, 0), 600) == datetime(2026, 3, 2, 17, 0)
    assert cal.advance_working_minutes(datetime(2026, 3, 2, 7, 0), 601) == datetime(2026, 3, 3, 7, 1)


def test_advance_carries_remainder_overnight():
    cal = WorkCalendar()
    assert cal.advance_working_minutes(datetime(2026, 3, 2, 16, 0), 120) == datetime(2026, 3, 3, 8, 0)


def test_holiday_override_is_skipped():
    cal = WorkCalendar(overrides={date(2026, 3, 3): DayOverride(day=date(2026, 3, 3), is_holiday=True, name="Carnival")})

    assert cal.is_working_day(date(2026, 3, 3)) is False
    assert cal.advance_working_minutes(datetime(2026, 3, 2, 16, 0), 120) == datetime(2026, 3, 4, 8, 0)


def test_override_can_open_a_weekend_date():
    saturday = date(2026, 3, 7)
    cal = WorkCalendar(
        overrides={saturday: DayOverride(day=saturday, shift_start=time(8, 0), shift_end=time(12, 0))}
    )

    assert cal.window_for(saturday) == (datetime(2026, 3, 7, 8, 0), datetime(2026, 3, 7, 12, 0))
    assert cal.advance_working_minutes(datetime(2026, 3, 6, 16, 0), 120) == datetime(2026, 3, 7, 9, 0)


def test_override_shortens_shift():
    monday = date(2026, 3, 2)
    cal = WorkCalendar(overrides={monday: DayOverride(day=monday, shift_end=time(12, 0))})

    assert cal.advance_working_minutes(datetime(2026, 3, 2, 11, 0), 90) == datetime(2026, 3, 3, 7, 30)


def test_negative_minutes_rejected():
    with pytest.raises(ValueError):
        WorkCalendar().advance_working_minutes(datetime(2026, 3, 2, 8, 0), -1)


def test_calendar_without_working_days_is_exhausted():
    cal = WorkCalendar(weekend_days={0, 1, 2, 3, 4, 5, 6}, max_scan_days=10)

    with pytest.raises(CalendarExhausted) as exc:
        cal.next_working_instant(datetime(2026, 3, 2, 8, 0))
    assert exc.value.to_row()["error"] == "CalendarExhausted"


def test_shift_end_must_follow_start():
    with pytest.raises(ValueError):
        WorkCalendar(shift_start=time(17, 0), shift_end=time(7, 0))


@pytest.mark.parametrize(
    "start",
    [
        datetime(2026, 3, 2, 6, 0),
        datetime(2026, 3, 2, 12, 30),
        datetime(2026, 3, 6, 16, 45),
        datetime(2026, 3, 7, 9, 0),
    ],
)
@pytest.mark.parametrize("minutes", [0, 15, 600, 725, 3000])
def test_advance_never_lands_inside_non_working_time(start, minutes):
    cal = WorkCalendar(overrides={date(2026, 3, 3): DayOverride(day=date(2026, 3, 3), is_holiday=True)})
    end = cal.advance_working_minutes(start, minutes)

    assert end >= start
    window = cal.window_for(end.date())
    assert window is not None
    assert cal.is_working_instant(end) or end == window[1]


def test_parse_helpers():
    assert parse_hhmm("07:30", field="shift") == time(7, 30)
    assert parse_hhmm("8", field="shift") == time(8, 0)
    assert parse_weekend_days("5, 6") == frozenset({5, 6})
    assert parse_weekend_days("") == frozenset()

    with pytest.raises(ValueError):
        parse_hhmm("late", field="shift")
    with pytest.raises(ValueError):
        parse_weekend_days("7")

from datetime import date

from availability.period import BookingPeriod, parse_slot_key, format_slot_key
from tests.fixtures import default_period


def test_generate_dates_skips_weekends():
    period = default_period()
    dates = period.generate_dates()
    assert date(2026, 1, 31) not in dates  # Saturday
    assert date(2026, 2, 1) not in dates  # Sunday
    assert dates[0] == date(2026, 1, 28)
    assert dates[-1] == date(2026, 2, 13)
    assert all(d.weekday() < 5 for d in dates)
    assert len(dates) == 13


def test_capacity_cutover():
    period = default_period()
    assert period.capacity_for(date(2026, 2, 5)) == 1
    assert period.capacity_for(date(2026, 2, 6)) == 2
    assert period.capacity_for(date(2026, 2, 13)) == 2
    assert period.capacity_for(date(2026, 2, 14)) == 0


def test_enumerate_slots_grid():
    period = default_period()
    slots = period.enumerate_slots(date(2026, 2, 2))
    assert len(slots) == 24
    assert slots[0] == "2026-02-02-06:00"
    assert slots[-1] == "2026-02-02-17:30"
    assert period.enumerate_slots(date(2026, 1, 31)) == []
    assert period.enumerate_slots(date(2026, 2, 20)) == []


def test_parse_slot_key_fractional_hour():
    day, hour = parse_slot_key("2026-02-10-14:30")
    assert day == date(2026, 2, 10)
    assert hour == 14.5
    assert format_slot_key(day, 14, 30) == "2026-02-10-14:30"


def test_check_slot_key_reasons():
    period = default_period()
    assert period.check_slot_key("2026-02-02-09:00") == (True, "ok")
    assert period.check_slot_key("2026-2-2-09:00") == (False, "malformed")
    assert period.check_slot_key("2026-02-02 09:00") == (False, "malformed")
    assert period.check_slot_key("2026-02-30-09:00") == (False, "malformed")
    assert period.check_slot_key("2026-02-14-10:00") == (False, "outside_period")
    assert period.check_slot_key("2026-01-31-10:00") == (False, "weekend")
    assert period.check_slot_key("2026-02-02-05:30") == (False, "off_grid")
    assert period.check_slot_key("2026-02-02-09:15") == (False, "off_grid")
    assert period.check_slot_key("2026-02-02-18:00") == (False, "off_grid")


def test_custom_grid():
    period = BookingPeriod(
        start=date(2026, 3, 2), end=date(2026, 3, 6), cutover=date(2026, 3, 4),
        capacity_before=2, capacity_from=3, day_start_hour=9, day_end_hour=10, slot_minutes=15,
    )
    assert period.enumerate_slots(date(2026, 3, 2)) == [
        "2026-03-02-09:00", "2026-03-02-09:15", "2026-03-02-09:30", "2026-03-02-09:45",
    ]
    assert period.capacity_for(date(2026, 3, 3)) == 2
    assert period.capacity_for(date(2026, 3, 4)) == 3

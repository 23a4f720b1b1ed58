from datetime import date, datetime

from bizagent.schedule import normalize_working_hours, parse_time_range, parse_week_spec, working_window

FRIDAY = date(2025, 5, 2)
SATURDAY = date(2025, 5, 3)


def test_parse_time_range():
    assert parse_time_range("9:00-18:00") == ("09:00", "18:00")
    assert parse_time_range("10:00 - 14:30") == ("10:00", "14:30")
    assert parse_time_range("18:00-10:00") is None
    assert parse_time_range("25:00-26:00") is None
    assert parse_time_range("вранці") is None


def test_week_spec_ranges_and_off_days():
    doc = parse_week_spec("mon-fri 09:00-18:00; sat 10:00-15:00")
    assert doc["friday"] == {"enabled": True, "start": "09:00", "end": "18:00"}
    assert doc["saturday"]["start"] == "10:00"
    assert doc["sunday"]["enabled"] is False

    ukrainian = parse_week_spec("пн-пт 10:00-19:00, сб вихідний")
    assert ukrainian["monday"]["start"] == "10:00"
    assert ukrainian["saturday"]["enabled"] is False

    assert parse_week_spec("коли завгодно") == {}


def test_normalize_accepts_loose_input():
    doc = normalize_working_hours({"Mon": "9:00-17:00", "sunday": "off", "tue": {"start": "10:00", "end": "16:00"}, "xyz": "1"})
    assert doc == {
        "monday": {"enabled": True, "start": "09:00", "end": "17:00"},
        "sunday": {"enabled": False, "start": "09:00", "end": "18:00"},
        "tuesday": {"enabled": True, "start": "10:00", "end": "16:00"},
    }


def test_working_window_from_weekly_doc():
    weekly = parse_week_spec("mon-fri 09:00-18:00")
    assert working_window(weekly, {}, FRIDAY) == (datetime(2025, 5, 2, 9, 0), datetime(2025, 5, 2, 18, 0))
    assert working_window(weekly, {}, SATURDAY) is None
    assert working_window({}, {}, FRIDAY) is None


def test_override_wins_over_weekly_entry():
    weekly = parse_week_spec("mon-sun 09:00-18:00")

    assert working_window(weekly, {"2025-05-02": {"enabled": False}}, FRIDAY) is None

    short = working_window(weekly, {"2025-05-02": {"enabled": True, "start": "12:00"}}, FRIDAY)
    assert short == (datetime(2025, 5, 2, 12, 0), datetime(2025, 5, 2, 18, 0))

    off_week = parse_week_spec("mon-fri 09:00-18:00")
    extra_day = working_window(off_week, {"2025-05-03": {"enabled": True, "start": "10:00", "end": "14:00"}}, SATURDAY)
    assert extra_day == (datetime(2025, 5, 3, 10, 0), datetime(2025, 5, 3, 14, 0))

"""
Working-hours documents.

A weekly document maps weekday names to {"enabled", "start", "end"}:
    {"monday": {"enabled": true, "start": "09:00", "end": "18:00"}, ...}
Date overrides map "YYYY-MM-DD" to the same shape and win over the weekly
entry for that day.
"""

from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Optional, Tuple
import re

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
DEFAULT_DAY_START = "09:00"
DEFAULT_DAY_END = "18:00"

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_RANGE_RE = re.compile(r"^(\d{1,2}:\d{2})\s*-\s*(\d{1,2}:\d{2})$")

# English and Ukrainian short names
_DAY_ALIASES = {
    "mon": 0, "tue": 1, "wed": 2, "thu": 3, "fri": 4, "sat": 5, "sun": 6,
    "пн": 0, "вт": 1, "ср": 2, "чт": 3, "пт": 4, "сб": 5, "нд": 6,
}
_DAY_ALIASES.update({name: i for i, name in enumerate(WEEKDAYS)})

OFF_WORDS = ("off", "вихідний", "вихідні")


def parse_hhmm(value: Any, day: date) -> Optional[datetime]:
    m = _HHMM_RE.match(str(value or "").strip())
    if not m:
        return None
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour == 24 and minute == 0:
        return datetime.combine(day + timedelta(days=1), time.min)
    if hour > 23 or minute > 59:
        return None
    return datetime.combine(day, time(hour, minute))


def is_hhmm(value: Any) -> bool:
    return parse_hhmm(value, date(2000, 1, 3)) is not None


def _hhmm_text(value: str) -> str:
    hour, minute = value.split(":")
    return f"{int(hour):02d}:{minute}"


def parse_time_range(text: str) -> Optional[Tuple[str, str]]:
    """'9:00-18:00' -> ('09:00', '18:00'); None when malformed or end <= start."""
    m = _RANGE_RE.match((text or "").strip())
    if not m or not is_hhmm(m.group(1)) or not is_hhmm(m.group(2)):
        return None
    start, end = _hhmm_text(m.group(1)), _hhmm_text(m.group(2))
    return (start, end) if end > start else None


def _day_index(token: str) -> Optional[int]:
    return _DAY_ALIASES.get(token.strip().lower())


def parse_week_spec(spec: str) -> Dict[str, Dict[str, Any]]:
    """
    Parse a compact weekly schedule into a weekly document.

        "mon-fri 09:00-18:00"                 -> Mon..Fri enabled, Sat/Sun off
        "mon-fri 09:00-18:00; sat 10:00-15:00" -> plus Saturday

    Days not mentioned are disabled. Returns {} when nothing parses.
    """
    doc = {name: {"enabled": False, "start": DEFAULT_DAY_START, "end": DEFAULT_DAY_END} for name in WEEKDAYS}
    parsed_any = False
    for part in re.split(r"[;,]", spec or ""):
        tokens = part.strip().split(None, 1)
        if len(tokens) != 2:
            continue
        days_token, hours_token = tokens
        if "-" in days_token:
            first, _, last = days_token.partition("-")
            lo, hi = _day_index(first), _day_index(last)
            days = list(range(lo, hi + 1)) if lo is not None and hi is not None and lo <= hi else []
        else:
            single = _day_index(days_token)
            days = [single] if single is not None else []
        if not days:
            continue
        if hours_token.strip().lower() in OFF_WORDS:
            for i in days:
                doc[WEEKDAYS[i]]["enabled"] = False
            parsed_any = True
            continue
        hours = parse_time_range(hours_token)
        if hours is None:
            continue
        for i in days:
            doc[WEEKDAYS[i]] = {"enabled": True, "start": hours[0], "end": hours[1]}
        parsed_any = True
    return doc if parsed_any else {}


def normalize_working_hours(raw: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """
    Canonicalize a weekly document from loose input.

    Keys may be full or short weekday names (any case); values may be
    {"enabled", "start", "end"} dicts, "HH:MM-HH:MM" strings or "off".
    Unrecognized keys and malformed entries are dropped.
    """
    doc: Dict[str, Dict[str, Any]] = {}
    for key, value in (raw or {}).items():
        index = _day_index(str(key))
        if index is None:
            continue
        name = WEEKDAYS[index]
        if isinstance(value, str):
            if value.strip().lower() in OFF_WORDS:
                doc[name] = {"enabled": False, "start": DEFAULT_DAY_START, "end": DEFAULT_DAY_END}
                continue
            hours = parse_time_range(value)
            if hours:
                doc[name] = {"enabled": True, "start": hours[0], "end": hours[1]}
            continue
        if isinstance(value, dict):
            start = value.get("start") or DEFAULT_DAY_START
            end = value.get("end") or DEFAULT_DAY_END
            if not (is_hhmm(start) and is_hhmm(end)):
                continue
            doc[name] = {"enabled": bool(value.get("enabled", True)), "start": _hhmm_text(start), "end": _hhmm_text(end)}
    return doc


def working_window(weekly_doc: Dict[str, Any], overrides: Dict[str, Any], day: date) -> Optional[Tuple[datetime, datetime]]:
    """
    Working interval on a day, or None when off.

    The override for the date wins over the weekly entry; an enabled override
    without times borrows them from the weekly entry.
    """
    weekly = {str(k).lower(): v for k, v in (weekly_doc or {}).items()}.get(WEEKDAYS[day.weekday()])
    weekly = weekly if isinstance(weekly, dict) else {}

    override = (overrides or {}).get(day.isoformat())
    if isinstance(override, dict):
        if not override.get("enabled", True):
            return None
        entry = {
            "start": override.get("start") or weekly.get("start") or DEFAULT_DAY_START,
            "end": override.get("end") or weekly.get("end") or DEFAULT_DAY_END,
        }
    else:
        if not weekly.get("enabled", False):
            return None
        entry = weekly

    start = parse_hhmm(entry.get("start"), day)
    end = parse_hhmm(entry.get("end"), day)
    if start is None or end is None or end <= start:
        return None
    return start, end

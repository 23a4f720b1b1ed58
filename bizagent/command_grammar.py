"""
Explicit command grammar.

Owners can bypass the LLM entirely with "verb: arguments" commands, e.g.

    service: Стрижка, 500, 45
    appointment: Іван Петров, 0671234567, Олена, 2025-05-01T10:00, Стрижка
    cancel: 0671234567
    reschedule: 0671234567, завтра 12:00, 90
    schedule: Олена, mon-fri 09:00-18:00; sat 10:00-15:00

Rules are tried in order; the first whose pattern matches builds the
Decision. A rule that matches but receives incomplete arguments still
produces its action: the executor then answers with the missing fields.
"""

import json
import re
from datetime import date, datetime, time
from typing import Callable, List, Optional, Tuple

from bizagent.decision import ActionType, Decision
from bizagent.language.replies_uk import get_reply_text
from bizagent.phone import is_valid_ua_phone
from bizagent.schedule import OFF_WORDS, parse_time_range, parse_week_spec
from bizagent.tools import resolve_day

_DAY_WORDS = ("today", "tomorrow", "сьогодні", "завтра", "післязавтра")
_DAY_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}|\d{1,2}\.\d{1,2}(?:\.\d{4})?)$")
_WHEN_RE = re.compile(r"^(?P<day>\S+)(?:T|\s+)(?P<hour>\d{1,2}):(?P<minute>\d{2})$", re.IGNORECASE)
_INT_RE = re.compile(r"-?\d+")
_ID_RE = re.compile(r"^[0-9a-f]{32}$|^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

Builder = Callable[[str, date], Decision]


def _split(args: str, maxsplit: int = -1) -> List[str]:
    return [part.strip() for part in args.split(",", maxsplit)] if args.strip() else []


def _at(parts: List[str], index: int) -> Optional[str]:
    return parts[index] if len(parts) > index and parts[index] else None


def _int(value: Optional[str]):
    """'500 грн' -> 500; unparsable text is passed through for validation to reject."""
    if value is None:
        return None
    m = _INT_RE.search(value)
    return int(m.group(0)) if m else value


def _parse_day(text: str, today: date) -> Optional[date]:
    """Strict day parser: ISO, DD.MM[.YYYY] or a today/tomorrow word; None otherwise."""
    text = text.strip().lower()
    if text in _DAY_WORDS:
        return resolve_day(text, today)
    if not _DAY_RE.match(text):
        return None
    try:
        if "-" in text:
            return date.fromisoformat(text)
        day, month, *year = text.split(".")
        return date(int(year[0]) if year else today.year, int(month), int(day))
    except ValueError:
        return None


def _day(value: Optional[str], today: date) -> Optional[str]:
    """ISO date text; unparsable input is passed through for validation to reject."""
    if value is None:
        return None
    parsed = _parse_day(value, today)
    return parsed.isoformat() if parsed else value


def _when(value: Optional[str], today: date) -> Optional[str]:
    """'2025-05-01T10:00', '01.05 10:00', 'завтра 10:00' -> ISO datetime text."""
    if value is None:
        return None
    m = _WHEN_RE.match(value.strip())
    if not m:
        return value
    day = _parse_day(m.group("day"), today)
    if day is None:
        return value
    try:
        return datetime.combine(day, time(int(m.group("hour")), int(m.group("minute")))).isoformat()
    except ValueError:
        return value


def _appointment_ref(value: Optional[str]) -> dict:
    """A phone, an appointment id, or else a client name fragment."""
    if value is None:
        return {}
    if is_valid_ua_phone(value):
        return {"client_phone": value}
    if _ID_RE.match(value):
        return {"appointment_id": value}
    return {"client_name": value}


def _decision(action: ActionType, payload: dict, confidence: float = 0.9) -> Decision:
    return Decision(action=action, payload={k: v for k, v in payload.items() if v is not None}, confidence=confidence)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def _client(args: str, today: date) -> Decision:
    parts = _split(args)
    return _decision(ActionType.CREATE_CLIENT, {"name": _at(parts, 0), "phone": _at(parts, 1), "email": _at(parts, 2)}, 0.95)


def _service(args: str, today: date) -> Decision:
    parts = _split(args)
    return _decision(ActionType.CREATE_SERVICE, {
        "name": _at(parts, 0),
        "price": _int(_at(parts, 1)),
        "duration": _int(_at(parts, 2)),
        "category": _at(parts, 3),
    }, 0.95)


def _master(args: str, today: date) -> Decision:
    parts = _split(args, 1)
    return _decision(ActionType.CREATE_MASTER, {"name": _at(parts, 0), "bio": _at(parts, 1)}, 0.95)


def _appointment(args: str, today: date) -> Decision:
    parts = _split(args, 4)
    return _decision(ActionType.CREATE_APPOINTMENT, {
        "client_name": _at(parts, 0),
        "client_phone": _at(parts, 1),
        "master_name": _at(parts, 2),
        "start_time": _when(_at(parts, 3), today),
        "service_name": _at(parts, 4),
    }, 0.95)


def _cancel(args: str, today: date) -> Decision:
    return _decision(ActionType.CANCEL_APPOINTMENT, _appointment_ref(args.strip() or None))


def _reschedule(args: str, today: date) -> Decision:
    parts = _split(args, 2)
    payload = _appointment_ref(_at(parts, 0))
    payload["start_time"] = _when(_at(parts, 1), today)
    payload["duration_minutes"] = _int(_at(parts, 2))
    return _decision(ActionType.RESCHEDULE_APPOINTMENT, payload)


def _done(args: str, today: date) -> Decision:
    payload = _appointment_ref(args.strip() or None)
    payload["status"] = "Done"
    return _decision(ActionType.UPDATE_APPOINTMENT, payload)


def _sms(args: str, today: date) -> Decision:
    parts = _split(args, 1)
    return _decision(ActionType.SEND_SMS, {"phone": _at(parts, 0), "text": _at(parts, 1)})


def _tag(args: str, today: date) -> Decision:
    parts = _split(args, 1)
    return _decision(ActionType.ADD_CLIENT_TAG, {"phone": _at(parts, 0), "tag": _at(parts, 1)})


def _untag(args: str, today: date) -> Decision:
    parts = _split(args, 1)
    return _decision(ActionType.REMOVE_CLIENT_TAG, {"phone": _at(parts, 0), "tag": _at(parts, 1)})


def _segment(args: str, today: date) -> Decision:
    parts = _split(args, 1)
    criteria = _at(parts, 1)
    if criteria and criteria.startswith("{"):
        try:
            criteria = json.loads(criteria)
        except ValueError:
            pass
    return _decision(ActionType.CREATE_SEGMENT, {"name": _at(parts, 0), "criteria": criteria})


def _note(args: str, today: date) -> Decision:
    return _decision(ActionType.CREATE_NOTE, {"text": args.strip() or None})


def _reminder(args: str, today: date) -> Decision:
    parts = _split(args, 1)
    if parts and is_valid_ua_phone(parts[0]):
        return _decision(ActionType.CREATE_REMINDER, {"client_phone": parts[0], "message": _at(parts, 1)})
    return _decision(ActionType.CREATE_REMINDER, {"message": args.strip() or None})


def _delete_client(args: str, today: date) -> Decision:
    return _decision(ActionType.DELETE_CLIENT, {"phone": args.strip() or None})


def _delete_master(args: str, today: date) -> Decision:
    return _decision(ActionType.DELETE_MASTER, {"master_name": args.strip() or None})


def _delete_service(args: str, today: date) -> Decision:
    return _decision(ActionType.DELETE_SERVICE, {"service_name": args.strip() or None})


def _price(args: str, today: date) -> Decision:
    parts = _split(args)
    return _decision(ActionType.UPDATE_SERVICE, {"service_name": _at(parts, 0), "price": _int(_at(parts, 1))})


def _schedule(args: str, today: date) -> Decision:
    parts = _split(args, 1)
    return _decision(ActionType.UPDATE_MASTER_WORKING_HOURS, {
        "master_name": _at(parts, 0),
        "working_hours": parse_week_spec(_at(parts, 1) or ""),
    })


def _override(args: str, today: date) -> Decision:
    parts = _split(args, 2)
    payload = {"master_name": _at(parts, 0), "date": _day(_at(parts, 1), today)}
    hours = _at(parts, 2)
    if hours and hours.lower() in OFF_WORDS:
        payload["enabled"] = False
    elif hours:
        window = parse_time_range(hours)
        # An unparsable window is kept so the executor reports invalid_time_range.
        payload.update({"start": window[0], "end": window[1]} if window else {"start": hours, "end": hours})
    return _decision(ActionType.SET_MASTER_DATE_OVERRIDE, payload)


def _clear_override(args: str, today: date) -> Decision:
    parts = _split(args, 1)
    return _decision(ActionType.CLEAR_MASTER_DATE_OVERRIDE, {"master_name": _at(parts, 0), "date": _day(_at(parts, 1), today)})


def _business_hours(args: str, today: date) -> Decision:
    return _decision(ActionType.UPDATE_BUSINESS_WORKING_HOURS, {"working_hours": parse_week_spec(args)})


def _help(args: str, today: date) -> Decision:
    return Decision(action=ActionType.REPLY, reply=get_reply_text("help"), confidence=0.95)


def _verb(*names: str) -> re.Pattern:
    alternatives = "|".join(re.escape(name).replace(r"\ ", r"\s+") for name in names)
    return re.compile(rf"^\s*(?:{alternatives})\s*:\s*(?P<args>.*)$", re.IGNORECASE | re.DOTALL)


# Order matters: multi-word verbs come before their one-word tails.
COMMAND_RULES: List[Tuple[re.Pattern, Builder]] = [
    (_verb("delete client", "видалити клієнта"), _delete_client),
    (_verb("delete master", "видалити майстра"), _delete_master),
    (_verb("delete service", "видалити послугу"), _delete_service),
    (_verb("clear override", "прибрати виняток"), _clear_override),
    (_verb("business hours", "графік бізнесу"), _business_hours),
    (_verb("untag", "зняти тег"), _untag),
    (_verb("client", "клієнт"), _client),
    (_verb("service", "послуга"), _service),
    (_verb("master", "майстер"), _master),
    (_verb("appointment", "запис"), _appointment),
    (_verb("cancel", "скасувати"), _cancel),
    (_verb("reschedule", "перенести"), _reschedule),
    (_verb("done", "виконано"), _done),
    (_verb("sms", "смс"), _sms),
    (_verb("tag", "тег"), _tag),
    (_verb("segment", "сегмент"), _segment),
    (_verb("note", "нотатка"), _note),
    (_verb("reminder", "нагадування"), _reminder),
    (_verb("price", "ціна"), _price),
    (_verb("schedule", "графік"), _schedule),
    (_verb("override", "виняток"), _override),
    (re.compile(r"^\s*(?:help|допомога|команди)\s*[?!.]?\s*(?P<args>)$", re.IGNORECASE), _help),
]


def match_command(text: str, today: Optional[date] = None) -> Optional[Decision]:
    """Return the Decision for an explicit command, or None for free text."""
    if not text:
        return None
    today = today or date.today()
    for pattern, builder in COMMAND_RULES:
        m = pattern.match(text)
        if m:
            return builder(m.group("args"), today)
    return None

"""
Conversation heuristics that run before the LLM.

- Phone continuation: the assistant asked for a phone, the owner answers
  with a bare number, and the turn before was a booking request. The
  booking is rebuilt from that earlier text.
- Data-intent router: keyword intents mapped to read-only tool calls.
"""

import re
from datetime import date, datetime, time
from typing import List, Optional

from bizagent.decision import ActionType, Decision, ToolRequest
from bizagent.phone import PHONE_ONLY_RE, is_valid_ua_phone
from bizagent.tools import resolve_day

_BOOKING_RE = re.compile(r"\b(?:запиши|запишіть|записати|запис|book|appointment)\b", re.IGNORECASE)
_ASKS_PHONE_RE = re.compile(r"телефон|номер|phone", re.IGNORECASE)

_DAY_WORD_RE = re.compile(r"\b(післязавтра|завтра|сьогодні|tomorrow|today)\b", re.IGNORECASE)
_ISO_DAY_RE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
_DDMM_RE = re.compile(r"\b(\d{1,2}\.\d{1,2}(?:\.\d{4})?)\b")
_HHMM_RE = re.compile(r"\b(\d{1,2}):(\d{2})\b")
_AT_HOUR_RE = re.compile(r"(?:^|\s)(?:о|об|на|at)\s+(\d{1,2})(?!\s*[.\d])\b", re.IGNORECASE)
_MASTER_RE = re.compile(r"\bдо\s+([^\s,.!?]+)(?:\s+на\s+([^,.!?]+))?", re.IGNORECASE)
# Tokens that end the client name inside a booking request.
_NAME_STOP_RE = re.compile(r"\s(?:на|о|об|до|в|у|at|on|to)\s|,|\d", re.IGNORECASE)
# Words that end the service name: a time preposition or anything with digits.
_SERVICE_STOP_RE = re.compile(r"^(?:о|об|at|on)$|\d", re.IGNORECASE)

# Longest first; only stripped from words long enough to keep a stem.
_CASE_ENDINGS = ("ові", "еві", "ою", "ею", "ом", "ем", "ій", "ей", "и", "і", "у", "ю", "а", "я", "е", "о")


def trim_case_ending(word: str) -> str:
    """'Олени' -> 'Олен', 'стрижку' -> 'стрижк'. Short words are kept as is."""
    word = word.strip()
    for ending in _CASE_ENDINGS:
        if word.lower().endswith(ending) and len(word) - len(ending) >= 3:
            return word[: -len(ending)]
    return word


def _last_turn(history: List[dict], role: str, before: Optional[int] = None) -> Optional[int]:
    end = len(history) if before is None else before
    for i in range(end - 1, -1, -1):
        if history[i].get("role") == role:
            return i
    return None


def extract_booking_datetime(text: str, today: date) -> Optional[datetime]:
    """Day (сьогодні/завтра, ISO, DD.MM) plus time (HH:MM, 'о 10') from free text."""
    day = None
    m = _DAY_WORD_RE.search(text) or _ISO_DAY_RE.search(text) or _DDMM_RE.search(text)
    if m:
        day = resolve_day(m.group(1), today)

    hour = minute = None
    m = _HHMM_RE.search(text)
    if m:
        hour, minute = int(m.group(1)), int(m.group(2))
    else:
        m = _AT_HOUR_RE.search(text)
        if m:
            hour, minute = int(m.group(1)), 0

    if hour is None or hour > 23 or minute > 59:
        return None
    return datetime.combine(day or today, time(hour, minute))


def extract_client_name(text: str) -> Optional[str]:
    """Up to two tokens following the booking verb."""
    m = _BOOKING_RE.search(text)
    if not m:
        return None
    rest = text[m.end():].strip()
    stop = _NAME_STOP_RE.search(" " + rest + " ")
    if stop:
        rest = (" " + rest)[: stop.start()].strip()
    tokens = [t.strip(".,!?:;") for t in rest.split() if not _DAY_WORD_RE.fullmatch(t.strip(".,!?:;"))]
    tokens = [t for t in tokens if t]
    return " ".join(tokens[:2]) or None


def match_phone_continuation(message: str, history: List[dict], today: Optional[date] = None) -> Optional[Decision]:
    """
    Rebuild a create_appointment decision when the message only supplies the
    phone that the previous assistant turn asked for.
    """
    text = (message or "").strip()
    if not PHONE_ONLY_RE.match(text) or not is_valid_ua_phone(text):
        return None

    assistant_idx = _last_turn(history, "assistant")
    if assistant_idx is None or not _ASKS_PHONE_RE.search(history[assistant_idx].get("message") or ""):
        return None
    user_idx = _last_turn(history, "user", before=assistant_idx)
    if user_idx is None:
        return None
    request = history[user_idx].get("message") or ""
    if not _BOOKING_RE.search(request):
        return None

    today = today or date.today()
    payload = {"client_phone": text, "client_name": extract_client_name(request)}
    start = extract_booking_datetime(request, today)
    if start is not None:
        payload["start_time"] = start.isoformat()

    m = _MASTER_RE.search(request)
    if m:
        payload["master_name"] = trim_case_ending(m.group(1))
        words = []
        for word in (m.group(2) or "").split():
            if _DAY_WORD_RE.fullmatch(word) or _SERVICE_STOP_RE.search(word):
                break
            words.append(word)
        if words:
            payload["service_name"] = " ".join([trim_case_ending(words[0])] + words[1:])

    return Decision(
        action=ActionType.CREATE_APPOINTMENT,
        payload={k: v for k, v in payload.items() if v is not None},
        confidence=0.85,
    )


# ---------------------------------------------------------------------------
# Data-intent router
# ---------------------------------------------------------------------------

_SLOTS_MASTER_RE = re.compile(r"(?:слоти|слотів|вікна|вікон|slots)\s+(?:у\s+|в\s+|для\s+|for\s+)?([^\s,.!?\d]+)", re.IGNORECASE)

# (intent pattern, tool name); order is priority.
DATA_INTENTS = [
    (re.compile(r"вільн\w*\s+(?:слот|вікн|час)|free\s+slots?", re.IGNORECASE), "free_slots"),
    (re.compile(r"прогалин|пауз|gaps?\b", re.IGNORECASE), "gaps_summary"),
    (re.compile(r"хто\s+(?:сьогодні\s+|завтра\s+)?працює|who\s+is\s+working", re.IGNORECASE), "who_working"),
    (re.compile(r"графік|розклад|schedule", re.IGNORECASE), "schedule_overview"),
    (re.compile(r"kpi|аналітик|виручк|дохід|revenue", re.IGNORECASE), "analytics_kpi"),
    (re.compile(r"оплат|платеж|payments?", re.IGNORECASE), "payments_kpi"),
    (re.compile(r"(?:топ|популярн\w*|кращ\w*)\s+послуг|top\s+services", re.IGNORECASE), "services_top"),
    (re.compile(r"(?:топ|кращ\w*)\s+майстр|top\s+masters", re.IGNORECASE), "masters_top"),
    (re.compile(r"статистик\w*\s+запис|appointments?\s+stats", re.IGNORECASE), "appointments_stats"),
    (re.compile(r"(?:які|покажи|список)\s+запис|записи\s+на|appointments", re.IGNORECASE), "appointments_list"),
    (re.compile(r"нотатк|notes", re.IGNORECASE), "notes_list"),
    (re.compile(r"нагадуван|reminders", re.IGNORECASE), "reminders_list"),
    (re.compile(r"сегмент|segments", re.IGNORECASE), "segments_list"),
    (re.compile(r"інбокс|непрочитан|inbox", re.IGNORECASE), "social_inbox_summary"),
    (re.compile(r"огляд|як\s+справи|overview", re.IGNORECASE), "biz_overview"),
]

MAX_DATA_INTENTS = 3
_PHONE_IN_TEXT_RE = re.compile(r"(\+?\d[\d\s()\-]{8,18}\d)")


def _intent_args(tool: str, message: str) -> dict:
    args: dict = {}
    m = _DAY_WORD_RE.search(message) or _ISO_DAY_RE.search(message) or _DDMM_RE.search(message)
    if m and tool in ("free_slots", "gaps_summary", "who_working", "schedule_overview", "appointments_list"):
        args["date"] = m.group(1).lower()
    if tool in ("free_slots", "gaps_summary"):
        mm = _SLOTS_MASTER_RE.search(message)
        if mm and not _DAY_WORD_RE.fullmatch(mm.group(1)):
            args["master_name"] = trim_case_ending(mm.group(1))
    if tool in ("analytics_kpi", "payments_kpi", "services_top", "masters_top", "appointments_stats"):
        if re.search(r"місяц|month", message, re.IGNORECASE):
            args["days"] = 30
        elif re.search(r"тиждень|тижд|week", message, re.IGNORECASE):
            args["days"] = 7
    return args


def route_data_intents(message: str) -> List[ToolRequest]:
    """Map a free-text question to at most three read-only tool calls."""
    text = message or ""
    requests: List[ToolRequest] = []

    phone = _PHONE_IN_TEXT_RE.search(text)
    if phone and is_valid_ua_phone(phone.group(1)) and re.search(r"клієнт|client|хто це", text, re.IGNORECASE):
        requests.append(ToolRequest(name="client_by_phone", args={"phone": phone.group(1)}))

    for pattern, tool in DATA_INTENTS:
        if len(requests) >= MAX_DATA_INTENTS:
            break
        if pattern.search(text) and all(r.name != tool for r in requests):
            requests.append(ToolRequest(name=tool, args=_intent_args(tool, text)))
    return requests

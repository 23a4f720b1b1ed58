"""
Read-only business data tools.

Each tool takes (db, business_id, args, now) and returns a compact JSON-safe
dict: no long text fields, phones exposed as last 4 digits only, numeric
arguments clamped. Tools are invoked by name through ToolExecutor, either
one at a time (LLM tool_call) or fanned out on a thread pool (keyword router).
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
import re

from sqlalchemy import func
from sqlalchemy.orm import Session

from bizagent.config import config
from bizagent.database import get_session_factory
from bizagent.db_models import (
    CANCELLED_STATUSES,
    DONE_STATUSES,
    DBAppointment,
    DBBusiness,
    DBClient,
    DBMaster,
    DBPayment,
    DBSegment,
    DBService,
    DBSocialInboxMessage,
)
from bizagent.decision import ToolRequest
from bizagent.entity_resolver import EntityResolver
from bizagent.logging_config import get_logger
from bizagent.metrics import tool_calls_total
from bizagent.phone import is_valid_ua_phone, last4, normalize_ua_phone
from bizagent.schedule import working_window
from bizagent.services import (
    AppointmentService,
    BusinessService,
    ClientService,
    MasterService,
    NoteService,
    ReminderService,
)

logger = get_logger(__name__)

SLOT_STEP_MINUTES = 30
_DDMM_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})(?:\.(\d{4}))?$")


class UnknownToolError(ValueError):
    """Raised when a tool name is not registered."""


@dataclass
class ToolResult:
    tool: str
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------


def clamp_int(value: Any, low: int, high: int, fallback: int) -> int:
    """Parse an int and clamp it to [low, high]; unparsable input gives fallback."""
    if isinstance(value, bool):
        return fallback
    try:
        n = int(float(value))
    except (TypeError, ValueError):
        return fallback
    return max(low, min(high, n))


def arg(args: Optional[dict], *names: str) -> Any:
    """First non-empty value among snake_case / camelCase spellings."""
    for name in names:
        value = (args or {}).get(name)
        if value not in (None, ""):
            return value
    return None


def resolve_day(value: Any, today: date) -> date:
    """
    Turn a day reference into a date.

    Accepts ISO dates (or datetimes), DD.MM[.YYYY], and the words
    today/tomorrow (English and Ukrainian). Anything else means today.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip().lower()
    if not text or text in ("today", "сьогодні"):
        return today
    if text in ("tomorrow", "завтра"):
        return today + timedelta(days=1)
    if text in ("day after tomorrow", "післязавтра"):
        return today + timedelta(days=2)
    m = _DDMM_RE.match(text)
    if m:
        try:
            return date(int(m.group(3) or today.year), int(m.group(2)), int(m.group(1)))
        except ValueError:
            return today
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return today


def parse_range(args: Optional[dict], default_days: int, now: datetime) -> Tuple[datetime, datetime, int]:
    """Trailing window [now - days, now]; days clamped to 1..365."""
    days = clamp_int(arg(args, "days"), 1, 365, default_days)
    return now - timedelta(days=days), now, days


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _truncate(text: Optional[str], limit: int) -> str:
    text = text or ""
    return text if len(text) <= limit else text[:limit] + "…"


def _day_bounds(day: date) -> Tuple[datetime, datetime]:
    return datetime.combine(day, time.min), datetime.combine(day, time.max)


def master_window(master: DBMaster, business: Optional[DBBusiness], day: date) -> Optional[Tuple[datetime, datetime]]:
    """Working interval of a master; a master without a weekly document inherits the business hours."""
    weekly = master.working_hours_doc or (business.working_hours_doc if business else {})
    return working_window(weekly, master.date_overrides, day)


def _busy_intervals(db: Session, business_id: str, master_id: str, window: Tuple[datetime, datetime]) -> List[Tuple[datetime, datetime]]:
    rows = (
        db.query(DBAppointment)
        .filter(
            DBAppointment.business_id == business_id,
            DBAppointment.master_id == master_id,
            DBAppointment.status.notin_(CANCELLED_STATUSES),
            DBAppointment.start_time < window[1],
            DBAppointment.end_time > window[0],
        )
        .order_by(DBAppointment.start_time.asc())
        .all()
    )
    return [(row.start_time, row.end_time) for row in rows]


def _master_required(db: Session, business_id: str) -> Dict[str, Any]:
    return {
        "master_required": True,
        "masters": [m.name for m in MasterService.list_masters(db, business_id)],
    }


def _resolve_master_arg(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Optional[DBMaster]:
    resolver = EntityResolver(db, business_id, now=lambda: now)
    return resolver.master(
        master_id=arg(args, "master_id", "masterId"),
        master_name=arg(args, "master_name", "masterName", "master"),
    )


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


def biz_overview(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    business = BusinessService.get_business(db, business_id)

    def count(model) -> int:
        return db.query(func.count(model.id)).filter(model.business_id == business_id).scalar() or 0

    return {
        "business": {
            "id": business.id,
            "name": business.name,
            "ai_chat_enabled": bool(business.ai_chat_enabled),
            "reminders_enabled": bool(business.reminders_enabled),
            "location": business.location or None,
            "has_working_hours": bool(business.working_hours_doc),
            "created_at": _iso(business.created_at),
        } if business else None,
        "counts": {
            "clients": count(DBClient),
            "masters": count(DBMaster),
            "services": count(DBService),
            "appointments": count(DBAppointment),
        },
    }


def analytics_kpi(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    start, end, days = parse_range(args, 7, now)
    in_range = db.query(DBAppointment).filter(
        DBAppointment.business_id == business_id,
        DBAppointment.start_time >= start,
        DBAppointment.start_time <= end,
    )
    total = in_range.count()
    done = in_range.filter(DBAppointment.status.in_(DONE_STATUSES)).count()
    cancelled = in_range.filter(DBAppointment.status.in_(CANCELLED_STATUSES)).count()
    new_clients = (
        db.query(func.count(DBClient.id))
        .filter(DBClient.business_id == business_id, DBClient.created_at >= start, DBClient.created_at <= end)
        .scalar()
        or 0
    )
    revenue, payments_count = (
        db.query(func.coalesce(func.sum(DBPayment.amount), 0), func.count(DBPayment.id))
        .filter(
            DBPayment.business_id == business_id,
            DBPayment.status == "succeeded",
            DBPayment.created_at >= start,
            DBPayment.created_at <= end,
        )
        .one()
    )
    return {
        "range": {"start": _iso(start), "end": _iso(end), "days": days},
        "kpi": {
            "appointments_total": total,
            "appointments_done": done,
            "cancelled": cancelled,
            "new_clients": new_clients,
            "revenue": int(revenue or 0),
            "payments_count": payments_count,
            "cancel_rate": round(cancelled / total, 3) if total else 0.0,
        },
    }


def _top_masters(db: Session, business_id: str, start: datetime, end: datetime, limit: int) -> List[Dict[str, Any]]:
    rows = (
        db.query(DBAppointment.master_id, func.count(DBAppointment.id).label("cnt"))
        .filter(
            DBAppointment.business_id == business_id,
            DBAppointment.start_time >= start,
            DBAppointment.start_time <= end,
            DBAppointment.status.notin_(CANCELLED_STATUSES),
        )
        .group_by(DBAppointment.master_id)
        .order_by(func.count(DBAppointment.id).desc())
        .limit(limit)
        .all()
    )
    names = {m.id: m.name for m in MasterService.list_masters(db, business_id, active_only=False)}
    return [{"master_id": mid, "master_name": names.get(mid), "appointments": cnt} for mid, cnt in rows]


def appointments_stats(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    start, end, days = parse_range(args, 7, now)
    by_status = (
        db.query(DBAppointment.status, func.count(DBAppointment.id))
        .filter(
            DBAppointment.business_id == business_id,
            DBAppointment.start_time >= start,
            DBAppointment.start_time <= end,
        )
        .group_by(DBAppointment.status)
        .all()
    )
    return {
        "range": {"start": _iso(start), "end": _iso(end), "days": days},
        "by_status": [{"status": status, "count": cnt} for status, cnt in by_status],
        "top_masters": _top_masters(db, business_id, start, end, 5),
    }


def masters_top(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    start, end, days = parse_range(args, 30, now)
    limit = clamp_int(arg(args, "limit"), 1, 10, 5)
    return {
        "range": {"start": _iso(start), "end": _iso(end), "days": days},
        "rows": _top_masters(db, business_id, start, end, limit),
    }


def appointments_list(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    """A single day when `date` is given, otherwise the trailing `days` window."""
    limit = clamp_int(arg(args, "limit"), 1, 50, 20)
    day_arg = arg(args, "date", "day")
    if day_arg is not None:
        day = resolve_day(day_arg, now.date())
        start, end = _day_bounds(day)
        range_doc = {"date": day.isoformat()}
    else:
        start, end, days = parse_range(args, 7, now)
        range_doc = {"start": _iso(start), "end": _iso(end), "days": days}

    master = _resolve_master_arg(db, business_id, args, now) if arg(args, "master_name", "masterName", "master", "master_id", "masterId") else None
    rows = AppointmentService.list_between(db, business_id, start, end, master_id=master.id if master else None, limit=limit)
    names = {m.id: m.name for m in MasterService.list_masters(db, business_id, active_only=False)}
    return {
        "range": range_doc,
        "limit": limit,
        "rows": [
            {
                "id": a.id,
                "status": a.status,
                "start": _iso(a.start_time),
                "end": _iso(a.end_time),
                "master_name": names.get(a.master_id),
                "client": a.client_name,
                "phone_last4": last4(a.client_phone),
                "price": a.custom_price,
            }
            for a in rows
        ],
    }


def _client_row(client: DBClient) -> Dict[str, Any]:
    return {
        "id": client.id,
        "name": client.name,
        "phone_last4": last4(client.phone),
        "status": client.status,
        "last_visit": _iso(client.last_appointment_date),
        "total_appointments": client.total_appointments or 0,
        "total_spent": client.total_spent or 0,
    }


def clients_search(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    q = str(arg(args, "q", "query") or "").strip()
    limit = clamp_int(arg(args, "limit"), 1, 20, 10)
    if not q:
        return {"q": "", "limit": limit, "rows": []}
    return {"q": q, "limit": limit, "rows": [_client_row(c) for c in ClientService.search_clients(db, business_id, q, limit)]}


def client_by_phone(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    phone = str(arg(args, "phone") or "").strip()
    if not phone:
        return {"phone": "", "valid": False, "client": None}
    if not is_valid_ua_phone(phone):
        return {"phone": phone, "valid": False, "client": None}
    normalized = normalize_ua_phone(phone)
    client = ClientService.get_client_by_phone(db, business_id, normalized)
    return {"phone_last4": last4(normalized), "valid": True, "client": _client_row(client) if client else None}


def client_history(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    limit = clamp_int(arg(args, "limit"), 1, 30, 10)
    resolver = EntityResolver(db, business_id, now=lambda: now)
    client = resolver.client(client_id=arg(args, "client_id", "clientId"), phone=arg(args, "phone"))
    if client is None:
        return {"client": None, "appointments": []}

    appointments = (
        db.query(DBAppointment)
        .filter(DBAppointment.business_id == business_id, DBAppointment.client_id == client.id)
        .order_by(DBAppointment.start_time.desc())
        .limit(limit)
        .all()
    )
    paid, paid_count = (
        db.query(func.coalesce(func.sum(DBPayment.amount), 0), func.count(DBPayment.id))
        .filter(DBPayment.business_id == business_id, DBPayment.client_id == client.id, DBPayment.status == "succeeded")
        .one()
    )
    row = _client_row(client)
    row.update({"payments_succeeded": paid_count, "payments_revenue": int(paid or 0)})
    return {
        "client": row,
        "appointments": [
            {"id": a.id, "start": _iso(a.start_time), "status": a.status, "master_id": a.master_id, "price": a.custom_price}
            for a in appointments
        ],
    }


def segments_list(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    rows = (
        db.query(DBSegment)
        .filter(DBSegment.business_id == business_id)
        .order_by(DBSegment.updated_at.desc())
        .limit(20)
        .all()
    )
    return {
        "rows": [
            {"id": s.id, "name": s.name, "client_count": s.client_count or 0, "auto_update": bool(s.auto_update)}
            for s in rows
        ]
    }


def notes_list(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    limit = clamp_int(arg(args, "limit"), 1, 50, 20)
    day_arg = arg(args, "date")
    day = resolve_day(day_arg, now.date()) if day_arg is not None else None
    bounds = _day_bounds(day) if day else (None, None)
    rows = NoteService.list_notes(db, business_id, bounds[0], bounds[1], limit)
    return {
        "date": day.isoformat() if day else None,
        "limit": limit,
        "rows": [
            {"id": n.id, "text": _truncate(n.text, 140), "completed": bool(n.completed), "date": _iso(n.date)}
            for n in rows
        ],
    }


def reminders_list(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    limit = clamp_int(arg(args, "limit"), 1, 50, 20)
    status = str(arg(args, "status") or "").strip() or None
    rows = ReminderService.list_reminders(db, business_id, status, limit)
    return {
        "status": status,
        "limit": limit,
        "rows": [
            {
                "id": r.id,
                "status": r.status,
                "target_type": r.target_type,
                "scheduled_at": _iso(r.scheduled_at),
                "client_id": r.client_id,
                "message": _truncate(r.message, 140),
            }
            for r in rows
        ],
    }


def social_inbox_summary(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    limit = clamp_int(arg(args, "limit"), 1, 50, 20)
    platform = str(arg(args, "platform") or "").strip() or None
    query = db.query(DBSocialInboxMessage).filter(DBSocialInboxMessage.business_id == business_id)
    if platform:
        query = query.filter(DBSocialInboxMessage.platform == platform)
    unread = query.filter(DBSocialInboxMessage.is_read == False).count()  # noqa: E712
    rows = query.order_by(DBSocialInboxMessage.created_at.desc()).limit(limit).all()
    return {
        "platform": platform,
        "unread_count": unread,
        "limit": limit,
        "rows": [
            {
                "id": m.id,
                "platform": m.platform,
                "dir": m.direction,
                "sender": m.sender_name,
                "unread": not m.is_read,
                "at": _iso(m.created_at),
                "preview": _truncate(m.message, 120),
            }
            for m in rows
        ],
    }


def payments_kpi(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    start, end, days = parse_range(args, 30, now)
    rows = (
        db.query(DBPayment.status, func.count(DBPayment.id), func.coalesce(func.sum(DBPayment.amount), 0))
        .filter(DBPayment.business_id == business_id, DBPayment.created_at >= start, DBPayment.created_at <= end)
        .group_by(DBPayment.status)
        .all()
    )
    return {
        "range": {"start": _iso(start), "end": _iso(end), "days": days},
        "by_status": [{"status": status, "count": cnt, "sum": int(total or 0)} for status, cnt, total in rows],
    }


def services_top(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    start, end, days = parse_range(args, 30, now)
    limit = clamp_int(arg(args, "limit"), 1, 10, 5)
    counts: Dict[str, int] = {}
    # Service ids live in a JSON text column, so they are counted in Python.
    for appointment in AppointmentService.list_between(db, business_id, start, end, include_cancelled=False):
        for service_id in appointment.service_ids:
            counts[service_id] = counts.get(service_id, 0) + 1
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:limit]
    names = {
        s.id: s.name
        for s in db.query(DBService).filter(DBService.business_id == business_id, DBService.id.in_([sid for sid, _ in ranked])).all()
    } if ranked else {}
    return {
        "range": {"start": _iso(start), "end": _iso(end), "days": days},
        "rows": [{"service_id": sid, "name": names.get(sid), "count": cnt} for sid, cnt in ranked],
    }


def schedule_overview(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    first_day = resolve_day(arg(args, "date", "day"), now.date())
    days = clamp_int(arg(args, "days"), 1, 7, 1)
    business = BusinessService.get_business(db, business_id)
    masters = MasterService.list_masters(db, business_id)

    out = []
    for offset in range(days):
        day = first_day + timedelta(days=offset)
        day_start, day_end = _day_bounds(day)
        per_master = []
        for master in masters:
            window = master_window(master, business, day)
            booked = len(AppointmentService.list_between(db, business_id, day_start, day_end, master_id=master.id, include_cancelled=False))
            per_master.append({
                "master_name": master.name,
                "working": window is not None,
                "start": window[0].strftime("%H:%M") if window else None,
                "end": window[1].strftime("%H:%M") if window else None,
                "appointments": booked,
            })
        out.append({"date": day.isoformat(), "masters": per_master})
    return {"days": out}


def who_working(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    day = resolve_day(arg(args, "date", "day"), now.date())
    business = BusinessService.get_business(db, business_id)
    rows = []
    for master in MasterService.list_masters(db, business_id):
        window = master_window(master, business, day)
        if window:
            rows.append({
                "master_id": master.id,
                "master_name": master.name,
                "start": window[0].strftime("%H:%M"),
                "end": window[1].strftime("%H:%M"),
            })
    return {"date": day.isoformat(), "rows": rows}


def free_slots(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    """Slot starts (30 min step) where the full duration fits between bookings."""
    master = _resolve_master_arg(db, business_id, args, now)
    if master is None:
        return _master_required(db, business_id)

    day = resolve_day(arg(args, "date", "day"), now.date())
    duration = clamp_int(arg(args, "duration_minutes", "durationMinutes", "duration"), 15, 480, 60)
    limit = clamp_int(arg(args, "limit"), 1, 48, 20)
    window = master_window(master, BusinessService.get_business(db, business_id), day)
    result = {"master_name": master.name, "date": day.isoformat(), "duration_minutes": duration,
              "working": window is not None, "slots": []}
    if window is None:
        return result

    busy = _busy_intervals(db, business_id, master.id, window)
    cursor = window[0]
    step = timedelta(minutes=SLOT_STEP_MINUTES)
    length = timedelta(minutes=duration)
    while cursor + length <= window[1] and len(result["slots"]) < limit:
        if cursor >= now and not any(s < cursor + length and e > cursor for s, e in busy):
            result["slots"].append(cursor.strftime("%H:%M"))
        cursor += step
    return result


def gaps_summary(db: Session, business_id: str, args: Optional[dict], now: datetime) -> Dict[str, Any]:
    """Free intervals between bookings inside the master's working window."""
    master = _resolve_master_arg(db, business_id, args, now)
    if master is None:
        return _master_required(db, business_id)

    day = resolve_day(arg(args, "date", "day"), now.date())
    window = master_window(master, BusinessService.get_business(db, business_id), day)
    result = {"master_name": master.name, "date": day.isoformat(), "working": window is not None,
              "gaps": [], "free_minutes": 0, "booked_minutes": 0, "appointments": 0}
    if window is None:
        return result

    busy = _busy_intervals(db, business_id, master.id, window)
    cursor = window[0]
    for start, end in busy:
        start, end = max(start, window[0]), min(end, window[1])
        if start > cursor:
            result["gaps"].append(_gap(cursor, start))
        result["booked_minutes"] += int((end - start).total_seconds() // 60)
        cursor = max(cursor, end)
    if cursor < window[1]:
        result["gaps"].append(_gap(cursor, window[1]))
    result["appointments"] = len(busy)
    result["free_minutes"] = sum(g["minutes"] for g in result["gaps"])
    return result


def _gap(start: datetime, end: datetime) -> Dict[str, Any]:
    return {"start": start.strftime("%H:%M"), "end": end.strftime("%H:%M"), "minutes": int((end - start).total_seconds() // 60)}


TOOLS: Dict[str, Callable[[Session, str, Optional[dict], datetime], Dict[str, Any]]] = {
    "biz_overview": biz_overview,
    "analytics_kpi": analytics_kpi,
    "appointments_stats": appointments_stats,
    "appointments_list": appointments_list,
    "clients_search": clients_search,
    "client_by_phone": client_by_phone,
    "client_history": client_history,
    "segments_list": segments_list,
    "notes_list": notes_list,
    "reminders_list": reminders_list,
    "social_inbox_summary": social_inbox_summary,
    "payments_kpi": payments_kpi,
    "services_top": services_top,
    "masters_top": masters_top,
    "schedule_overview": schedule_overview,
    "who_working": who_working,
    "free_slots": free_slots,
    "gaps_summary": gaps_summary,
}

TOOL_NAMES = frozenset(TOOLS)


class ToolExecutor:
    """Runs read-only tools by name."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        now: Callable[[], datetime] = datetime.now,
        max_workers: Optional[int] = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self._now = now
        self.max_workers = max_workers or config.AGENT_TOOL_WORKERS

    def run(self, business_id: str, tool_name: str, args: Optional[dict] = None, db: Optional[Session] = None) -> ToolResult:
        """Run one tool. Uses the given session, or opens (and closes) its own."""
        handler = TOOLS.get(tool_name)
        if handler is None:
            raise UnknownToolError(tool_name)

        if db is not None:
            data = handler(db, business_id, args or {}, self._now())
        else:
            session = self.session_factory()
            try:
                data = handler(session, business_id, args or {}, self._now())
            finally:
                session.close()

        logger.info("tool_executed", business_id=business_id, tool=tool_name)
        tool_calls_total.labels(tool=tool_name, outcome="ok").inc()
        return ToolResult(tool=tool_name, data=data)

    def run_many(self, business_id: str, requests: Iterable[ToolRequest]) -> List[ToolResult]:
        """
        Fan out tool calls on a thread pool, one DB session per call.

        Results keep request order. A failing call yields a ToolResult with
        `error` set and does not cancel the others.
        """
        requests = list(requests)
        if not requests:
            return []

        workers = max(1, min(self.max_workers, len(requests)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="agent-tool") as pool:
            futures = [pool.submit(self.run_isolated, business_id, req) for req in requests]
            return [future.result() for future in futures]

    def run_isolated(self, business_id: str, request: ToolRequest) -> ToolResult:
        try:
            return self.run(business_id, request.name, request.args)
        except Exception as e:
            logger.warning("tool_failed", business_id=business_id, tool=request.name, error=str(e)[:300])
            tool_calls_total.labels(tool=request.name, outcome="error").inc()
            return ToolResult(tool=request.name, error=str(e)[:300])

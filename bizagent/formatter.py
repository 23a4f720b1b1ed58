"""
Deterministic Ukrainian summaries of tool results.

format_tool_result is pure: the same (tool, data) always gives the same
text. No LLM is involved.
"""

from typing import Any, Callable, Dict, List, Optional

GENERIC_REPLY = "Дані отримав. Уточніть, що саме показати."
MAX_LIST_ITEMS = 10

STATUS_LABELS = {
    "Pending": "очікує",
    "Confirmed": "підтверджено",
    "Done": "виконано",
    "Виконано": "виконано",
    "Cancelled": "скасовано",
    "Скасовано": "скасовано",
    "succeeded": "успішні",
    "pending": "очікують",
    "failed": "невдалі",
    "refunded": "повернені",
    "sent": "надіслані",
    "cancelled": "скасовані",
}


def _status(value: Optional[str]) -> str:
    return STATUS_LABELS.get(value or "", value or "-")


def _hhmm(iso: Optional[str]) -> str:
    return iso[11:16] if iso and len(iso) >= 16 else "-"


def _day(iso: Optional[str]) -> str:
    if not iso or len(iso) < 10:
        return "-"
    return f"{iso[8:10]}.{iso[5:7]}"


def _lines(header: str, items: List[str], total: Optional[int] = None) -> str:
    shown = items[:MAX_LIST_ITEMS]
    text = header + "\n" + "\n".join(f"- {item}" for item in shown)
    remaining = (total if total is not None else len(items)) - len(shown)
    if remaining > 0:
        text += f"\n…і ще {remaining}"
    return text


def _biz_overview(data: Dict[str, Any]) -> Optional[str]:
    business, counts = data.get("business"), data.get("counts") or {}
    if not business:
        return None
    return (
        f"{business.get('name')}: клієнтів {counts.get('clients', 0)}, майстрів {counts.get('masters', 0)}, "
        f"послуг {counts.get('services', 0)}, записів {counts.get('appointments', 0)}. "
        f"AI-чат {'увімкнено' if business.get('ai_chat_enabled') else 'вимкнено'}."
    )


def _analytics_kpi(data: Dict[str, Any]) -> Optional[str]:
    kpi = data.get("kpi")
    if not kpi:
        return None
    days = (data.get("range") or {}).get("days", "?")
    return (
        f"За {days} дн.: записів {kpi.get('appointments_total', 0)}, виконано {kpi.get('appointments_done', 0)}, "
        f"скасовано {kpi.get('cancelled', 0)} ({round(100 * kpi.get('cancel_rate', 0))}%). "
        f"Нових клієнтів {kpi.get('new_clients', 0)}. Виручка {kpi.get('revenue', 0)} грн "
        f"({kpi.get('payments_count', 0)} оплат)."
    )


def _appointments_stats(data: Dict[str, Any]) -> Optional[str]:
    by_status = data.get("by_status") or []
    if not by_status:
        return "За цей період записів немає."
    days = (data.get("range") or {}).get("days", "?")
    parts = ", ".join(f"{_status(s['status'])}: {s['count']}" for s in by_status)
    text = f"Записи за {days} дн.: {parts}."
    top = data.get("top_masters") or []
    if top:
        text += " Найзавантаженіші: " + ", ".join(f"{m.get('master_name') or '?'} ({m['appointments']})" for m in top) + "."
    return text


def _appointments_list(data: Dict[str, Any]) -> Optional[str]:
    rows = data.get("rows") or []
    if not rows:
        return "Записів не знайдено."
    items = [
        f"{_day(r.get('start'))} {_hhmm(r.get('start'))} {r.get('client') or '-'} (…{r.get('phone_last4') or '----'}), "
        f"майстер {r.get('master_name') or '-'}, {_status(r.get('status'))}"
        for r in rows
    ]
    return _lines(f"Записи ({len(rows)}):", items)


def _client_summary(c: Dict[str, Any]) -> str:
    last = _day(c.get("last_visit")) if c.get("last_visit") else "немає"
    return (
        f"{c.get('name')} (…{c.get('phone_last4')}): візитів {c.get('total_appointments', 0)}, "
        f"витрачено {c.get('total_spent', 0)} грн, останній візит {last}"
    )


def _clients_search(data: Dict[str, Any]) -> Optional[str]:
    if not data.get("q"):
        return "Напишіть ім'я або частину номера клієнта для пошуку."
    rows = data.get("rows") or []
    if not rows:
        return f"За запитом «{data['q']}» клієнтів не знайдено."
    return _lines(f"Знайдено клієнтів: {len(rows)}", [_client_summary(c) for c in rows])


def _client_by_phone(data: Dict[str, Any]) -> Optional[str]:
    if not data.get("valid"):
        return "Невірний номер телефону. Формат: 0XXXXXXXXX або +380XXXXXXXXX."
    client = data.get("client")
    if not client:
        return f"Клієнта з номером …{data.get('phone_last4')} немає в базі."
    return _client_summary(client) + "."


def _client_history(data: Dict[str, Any]) -> Optional[str]:
    client = data.get("client")
    if not client:
        return "Клієнта не знайдено."
    text = _client_summary(client) + f". Оплат: {client.get('payments_succeeded', 0)} на {client.get('payments_revenue', 0)} грн."
    appointments = data.get("appointments") or []
    if appointments:
        text += "\n" + "\n".join(
            f"- {_day(a.get('start'))} {_hhmm(a.get('start'))} {_status(a.get('status'))}" for a in appointments[:MAX_LIST_ITEMS]
        )
    return text


def _segments_list(data: Dict[str, Any]) -> Optional[str]:
    rows = data.get("rows") or []
    if not rows:
        return "Сегментів ще немає."
    return _lines("Сегменти:", [f"{s['name']}: {s.get('client_count', 0)} клієнтів" for s in rows])


def _notes_list(data: Dict[str, Any]) -> Optional[str]:
    rows = data.get("rows") or []
    if not rows:
        return "Нотаток немає."
    items = [f"{'[x]' if n.get('completed') else '[ ]'} {n.get('text')}" for n in rows]
    header = f"Нотатки на {_day(data['date'])}:" if data.get("date") else "Нотатки:"
    return _lines(header, items)


def _reminders_list(data: Dict[str, Any]) -> Optional[str]:
    rows = data.get("rows") or []
    if not rows:
        return "Нагадувань немає."
    items = [
        f"{_status(r.get('status'))}, {_day(r.get('scheduled_at'))} {_hhmm(r.get('scheduled_at'))}: {r.get('message')}"
        for r in rows
    ]
    return _lines("Нагадування:", items)


def _social_inbox_summary(data: Dict[str, Any]) -> Optional[str]:
    rows = data.get("rows") or []
    unread = data.get("unread_count", 0)
    if not rows:
        return "Інбокс порожній."
    items = [f"{m.get('platform')}, {m.get('sender') or '?'}: {m.get('preview')}" for m in rows if m.get("unread")]
    if not items:
        return "Непрочитаних повідомлень немає."
    return _lines(f"Непрочитаних повідомлень: {unread}", items, total=unread)


def _payments_kpi(data: Dict[str, Any]) -> Optional[str]:
    rows = data.get("by_status") or []
    days = (data.get("range") or {}).get("days", "?")
    if not rows:
        return f"За {days} дн. оплат немає."
    parts = ", ".join(f"{_status(r['status'])}: {r['count']} на {r['sum']} грн" for r in rows)
    return f"Оплати за {days} дн.: {parts}."


def _services_top(data: Dict[str, Any]) -> Optional[str]:
    rows = data.get("rows") or []
    if not rows:
        return "За цей період послуг не надавали."
    return "Топ послуг: " + ", ".join(f"{r.get('name') or '?'} ({r['count']})" for r in rows) + "."


def _masters_top(data: Dict[str, Any]) -> Optional[str]:
    rows = data.get("rows") or []
    if not rows:
        return "За цей період записів до майстрів немає."
    return "Топ майстрів: " + ", ".join(f"{r.get('master_name') or '?'} ({r['appointments']})" for r in rows) + "."


def _schedule_overview(data: Dict[str, Any]) -> Optional[str]:
    days = data.get("days") or []
    if not days:
        return None
    lines = []
    for day in days:
        working = [m for m in day.get("masters", []) if m.get("working")]
        if not working:
            lines.append(f"{_day(day['date'])}: ніхто не працює")
            continue
        lines.append(
            f"{_day(day['date'])}: "
            + "; ".join(f"{m['master_name']} {m['start']}-{m['end']}, записів {m['appointments']}" for m in working)
        )
    return "Розклад:\n" + "\n".join(lines)


def _who_working(data: Dict[str, Any]) -> Optional[str]:
    rows = data.get("rows") or []
    if not rows:
        return f"{_day(data.get('date'))} ніхто не працює."
    return f"{_day(data.get('date'))} працюють: " + ", ".join(f"{r['master_name']} ({r['start']}-{r['end']})" for r in rows) + "."


def _master_required(data: Dict[str, Any], what: str) -> str:
    masters = data.get("masters") or []
    if masters:
        return f"Щоб показати {what}, вкажіть майстра: {', '.join(masters)}."
    return f"Щоб показати {what}, вкажіть майстра."


def _free_slots(data: Dict[str, Any]) -> Optional[str]:
    if data.get("master_required"):
        return _master_required(data, "вільні слоти")
    if "master_name" not in data:
        return None
    when = _day(data.get("date"))
    if not data.get("working"):
        return f"{data['master_name']} {when} не працює."
    slots = data.get("slots") or []
    if not slots:
        return f"У {data['master_name']} {when} вільних слотів на {data.get('duration_minutes', 60)} хв немає."
    return f"Вільні слоти {data['master_name']} {when} ({data.get('duration_minutes', 60)} хв): {', '.join(slots)}."


def _gaps_summary(data: Dict[str, Any]) -> Optional[str]:
    if data.get("master_required"):
        return _master_required(data, "вікна в розкладі")
    if "master_name" not in data:
        return None
    when = _day(data.get("date"))
    if not data.get("working"):
        return f"{data['master_name']} {when} не працює."
    gaps = data.get("gaps") or []
    if not gaps:
        return f"У {data['master_name']} {when} вільних вікон немає, день заповнений."
    windows = ", ".join(f"{g['start']}-{g['end']}" for g in gaps)
    return (
        f"{data['master_name']} {when}: записів {data.get('appointments', 0)}, "
        f"вільно {data.get('free_minutes', 0)} хв. Вікна: {windows}."
    )


FORMATTERS: Dict[str, Callable[[Dict[str, Any]], Optional[str]]] = {
    "biz_overview": _biz_overview,
    "analytics_kpi": _analytics_kpi,
    "appointments_stats": _appointments_stats,
    "appointments_list": _appointments_list,
    "clients_search": _clients_search,
    "client_by_phone": _client_by_phone,
    "client_history": _client_history,
    "segments_list": _segments_list,
    "notes_list": _notes_list,
    "reminders_list": _reminders_list,
    "social_inbox_summary": _social_inbox_summary,
    "payments_kpi": _payments_kpi,
    "services_top": _services_top,
    "masters_top": _masters_top,
    "schedule_overview": _schedule_overview,
    "who_working": _who_working,
    "free_slots": _free_slots,
    "gaps_summary": _gaps_summary,
}


def format_tool_result(tool: str, data: Optional[Dict[str, Any]]) -> str:
    """Summarize a tool result; unknown tools or empty data give a generic reply."""
    formatter = FORMATTERS.get(tool)
    if formatter is None or not data:
        return GENERIC_REPLY
    try:
        text = formatter(data)
    except (KeyError, TypeError, AttributeError):
        text = None
    return text or GENERIC_REPLY

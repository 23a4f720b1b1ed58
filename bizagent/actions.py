"""
Action executor: every mutating agent action.

execute() looks the action up in a dispatch table. Each handler follows the
same shape:
    1. required fields present, else status="missing_fields"
    2. referenced entities resolved, else status="<entity>_not_found"
    3. phone numbers valid, else status="invalid_phone"
    4. mutation, then status="completed" with a snapshot of the record

Dependent writes are sequenced (client upsert, then appointment) rather than
wrapped in one transaction; upserts make a retry after a partial failure safe.
The appointment conflict check is read-then-write without row locks.
"""

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Any, Callable, Dict, Optional
import json

from sqlalchemy import func
from sqlalchemy.orm import Session

from bizagent.db_models import (
    AppointmentStatus,
    DBAppointment,
    DBClient,
    DBMaster,
    DBNote,
    DBReminder,
    DBSegment,
    DBService,
    DONE_STATUSES,
    ReminderStatus,
)
from bizagent.decision import ActionPayload, ActionType, Decision
from bizagent.entity_resolver import EntityResolver
from bizagent.language.replies_uk import get_reply_text
from bizagent.logging_config import get_logger
from bizagent.metrics import agent_actions_total
from bizagent.notifications import notify_new_appointment
from bizagent.phone import is_valid_ua_phone, normalize_ua_phone
from bizagent.schedule import is_hhmm, normalize_working_hours
from bizagent.services import (
    AppointmentService,
    BusinessService,
    ClientService,
    MasterService,
    NoteService,
    ReminderService,
    SegmentService,
    ServiceCatalogService,
    SmsLogService,
)
from bizagent.sms import SmsError, SmsService

logger = get_logger(__name__)

DEFAULT_DURATION_MINUTES = 60
MAX_DURATION_MINUTES = 24 * 60

FIELD_LABELS = {
    "name": "ім'я",
    "phone": "телефон",
    "client_id": "клієнт",
    "client_name": "ім'я клієнта",
    "client_phone": "телефон клієнта",
    "master_name": "майстер",
    "service_name": "послуга",
    "segment_name": "сегмент",
    "appointment_id": "запис (id, телефон або ім'я клієнта)",
    "start_time": "дата і час",
    "price": "ціна",
    "duration": "тривалість",
    "text": "текст",
    "tag": "тег",
    "working_hours": "графік",
    "date": "дата",
    "message": "текст нагадування",
    "note_id": "нотатка",
    "reminder_id": "нагадування",
}

STATUS_ALIASES = {
    "pending": AppointmentStatus.PENDING.value,
    "очікує": AppointmentStatus.PENDING.value,
    "confirmed": AppointmentStatus.CONFIRMED.value,
    "підтверджено": AppointmentStatus.CONFIRMED.value,
    "done": AppointmentStatus.DONE.value,
    "виконано": AppointmentStatus.DONE.value,
    "cancelled": AppointmentStatus.CANCELLED.value,
    "canceled": AppointmentStatus.CANCELLED.value,
    "скасовано": AppointmentStatus.CANCELLED.value,
}


@dataclass
class ActionResult:
    """Reply text plus structured outcome ({"action", "status", ...})."""
    message: str
    action_data: Dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> Optional[str]:
        return self.action_data.get("status")


# ---------------------------------------------------------------------------
# Record snapshots
# ---------------------------------------------------------------------------


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def client_doc(client: DBClient) -> Dict[str, Any]:
    return {
        "id": client.id,
        "name": client.name,
        "phone": client.phone,
        "email": client.email,
        "tags": client.tag_list,
        "status": client.status,
        "is_active": bool(client.is_active),
        "total_appointments": client.total_appointments or 0,
    }


def master_doc(master: DBMaster) -> Dict[str, Any]:
    return {
        "id": master.id,
        "name": master.name,
        "bio": master.bio,
        "is_active": bool(master.is_active),
        "working_hours": master.working_hours_doc,
        "date_overrides": master.date_overrides,
    }


def service_doc(service: DBService) -> Dict[str, Any]:
    return {
        "id": service.id,
        "name": service.name,
        "price": service.price,
        "duration": service.duration,
        "category": service.category,
        "is_active": bool(service.is_active),
    }


def appointment_doc(appointment: DBAppointment) -> Dict[str, Any]:
    return {
        "id": appointment.id,
        "master_id": appointment.master_id,
        "client_id": appointment.client_id,
        "client_name": appointment.client_name,
        "client_phone": appointment.client_phone,
        "start_time": _iso(appointment.start_time),
        "end_time": _iso(appointment.end_time),
        "status": appointment.status,
        "services": appointment.service_ids,
        "source": appointment.source,
    }


def note_doc(note: DBNote) -> Dict[str, Any]:
    return {"id": note.id, "text": note.text, "date": _iso(note.date), "completed": bool(note.completed)}


def reminder_doc(reminder: DBReminder) -> Dict[str, Any]:
    return {
        "id": reminder.id,
        "message": reminder.message,
        "target_type": reminder.target_type,
        "client_id": reminder.client_id,
        "scheduled_at": _iso(reminder.scheduled_at),
        "status": reminder.status,
    }


def segment_doc(segment: DBSegment) -> Dict[str, Any]:
    return {
        "id": segment.id,
        "name": segment.name,
        "criteria": segment.criteria,
        "auto_update": bool(segment.auto_update),
        "client_count": segment.client_count or 0,
    }


def _criteria_text(criteria: Any) -> Optional[str]:
    if criteria is None:
        return None
    if isinstance(criteria, dict):
        return json.dumps(criteria, ensure_ascii=False)
    return str(criteria)


class ActionExecutor:
    """Executes mutating decisions for one DB session."""

    def __init__(
        self,
        db: Session,
        now: Callable[[], datetime] = datetime.now,
        sms_service: Optional[SmsService] = None,
        notifier: Callable[..., Any] = notify_new_appointment,
    ):
        self.db = db
        self._now = now
        self.sms_service = sms_service or SmsService()
        self.notifier = notifier
        self._handlers: Dict[ActionType, Callable[[ActionType, str, Any, EntityResolver], ActionResult]] = {
            ActionType.CREATE_CLIENT: self._create_client,
            ActionType.UPDATE_CLIENT: self._update_client,
            ActionType.DELETE_CLIENT: self._delete_client,
            ActionType.ADD_CLIENT_TAG: self._add_client_tag,
            ActionType.REMOVE_CLIENT_TAG: self._remove_client_tag,
            ActionType.CREATE_MASTER: self._create_master,
            ActionType.UPDATE_MASTER: self._update_master,
            ActionType.DELETE_MASTER: self._delete_master,
            ActionType.UPDATE_MASTER_WORKING_HOURS: self._update_master_working_hours,
            ActionType.SET_MASTER_DATE_OVERRIDE: self._set_master_date_override,
            ActionType.CLEAR_MASTER_DATE_OVERRIDE: self._clear_master_date_override,
            ActionType.CREATE_SERVICE: self._create_service,
            ActionType.UPDATE_SERVICE: self._update_service,
            ActionType.DELETE_SERVICE: self._delete_service,
            ActionType.CREATE_APPOINTMENT: self._create_appointment,
            ActionType.UPDATE_APPOINTMENT: self._update_appointment,
            ActionType.RESCHEDULE_APPOINTMENT: self._reschedule_appointment,
            ActionType.CANCEL_APPOINTMENT: self._cancel_appointment,
            ActionType.CREATE_NOTE: self._create_note,
            ActionType.UPDATE_NOTE: self._update_note,
            ActionType.DELETE_NOTE: self._delete_note,
            ActionType.CREATE_REMINDER: self._create_reminder,
            ActionType.UPDATE_REMINDER: self._update_reminder,
            ActionType.DELETE_REMINDER: self._delete_reminder,
            ActionType.CREATE_SEGMENT: self._create_segment,
            ActionType.UPDATE_SEGMENT: self._update_segment,
            ActionType.DELETE_SEGMENT: self._delete_segment,
            ActionType.SEND_SMS: self._send_sms,
            ActionType.UPDATE_BUSINESS: self._update_business,
            ActionType.UPDATE_BUSINESS_WORKING_HOURS: self._update_business_working_hours,
        }

    def execute(self, business_id: str, decision: Decision) -> ActionResult:
        """Run a mutating decision and describe the outcome."""
        action = decision.action
        handler = self._handlers.get(action)
        if handler is None:
            return self._result(action, "unsupported", get_reply_text("unknown_action"))

        payload = decision.typed_payload()
        missing = payload.missing_fields()
        if missing:
            result = self._missing(action, missing, payload)
        else:
            result = handler(action, business_id, payload, EntityResolver(self.db, business_id, now=self._now))

        agent_actions_total.labels(action=action.value, status=result.status).inc()
        logger.info("action_executed", business_id=business_id, action=action.value, status=result.status)
        return result

    # -- helpers ------------------------------------------------------------

    @staticmethod
    def _result(action: ActionType, status: str, message: str, **data) -> ActionResult:
        return ActionResult(message=message, action_data={"action": action.value, "status": status, **data})

    def _missing(self, action: ActionType, missing: list, payload: Optional[ActionPayload] = None) -> ActionResult:
        labels = ", ".join(FIELD_LABELS.get(name, name) for name in missing)
        data = {"missing_fields": list(missing)}
        if payload is not None and payload.invalid_fields:
            data["invalid_fields"] = list(payload.invalid_fields)
        return self._result(action, "missing_fields", get_reply_text("missing_fields", fields=labels), **data)

    def _invalid_phone(self, action: ActionType, phone: Optional[str]) -> ActionResult:
        return self._result(action, "invalid_phone", get_reply_text("invalid_phone"), phone=phone)

    def _not_found(self, action: ActionType, entity: str, **variables) -> ActionResult:
        return self._result(action, f"{entity}_not_found", get_reply_text(f"{entity}_not_found", **variables), **variables)

    def _save(self, *rows) -> None:
        self.db.commit()
        for row in rows:
            self.db.refresh(row)

    def _resolve_client(self, action, p, resolver: EntityResolver):
        """Returns (client, None) or (None, ActionResult) for a ClientRef payload."""
        if p.phone and not is_valid_ua_phone(p.phone) and not p.client_id:
            return None, self._invalid_phone(action, p.phone)
        client = resolver.client(p.client_id, p.phone)
        if client is None:
            return None, self._not_found(action, "client")
        return client, None

    def _resolve_master(self, action, p, resolver: EntityResolver):
        master = resolver.master(p.master_id, p.master_name)
        if master is None or not master.is_active:
            return None, self._not_found(action, "master", name=p.master_name or p.master_id or "")
        return master, None

    def _resolve_appointment(self, action, p, resolver: EntityResolver):
        match = resolver.appointment(p.appointment_id, p.client_phone, p.previous_start_time, p.client_name)
        if match is None:
            return None, self._not_found(action, "appointment")
        return match, None

    def _conflict(self, action: ActionType, master: DBMaster, conflict: DBAppointment, start: datetime, end: datetime) -> ActionResult:
        message = get_reply_text(
            "time_conflict",
            master=master.name,
            start=conflict.start_time.strftime("%H:%M"),
            end=conflict.end_time.strftime("%H:%M"),
            date=start.strftime("%d.%m"),
        )
        return self._result(
            action,
            "time_conflict",
            message,
            conflict=appointment_doc(conflict),
            requested={"master_id": master.id, "start_time": _iso(start), "end_time": _iso(end)},
            suggestion={"tool": "free_slots", "args": {"master_name": master.name, "date": start.date().isoformat()}},
        )

    # -- clients ------------------------------------------------------------

    def _create_client(self, action, business_id, p, resolver):
        if not is_valid_ua_phone(p.phone):
            return self._invalid_phone(action, p.phone)
        client, created = ClientService.upsert_client(
            self.db, business_id, normalize_ua_phone(p.phone), p.name.strip(), email=p.email, notes=p.notes, tags=p.tags
        )
        key = "client_created" if created else "client_updated"
        return self._result(action, "completed", get_reply_text(key, name=client.name), created=created, client=client_doc(client))

    def _update_client(self, action, business_id, p, resolver):
        client, error = self._resolve_client(action, p, resolver)
        if error:
            return error

        if p.new_phone:
            if not is_valid_ua_phone(p.new_phone):
                return self._invalid_phone(action, p.new_phone)
            new_phone = normalize_ua_phone(p.new_phone)
            other = ClientService.get_client_by_phone(self.db, business_id, new_phone)
            if other is not None and other.id != client.id:
                return self._result(action, "phone_taken", get_reply_text("phone_taken", phone=new_phone), phone=new_phone)
            client.phone = new_phone

        for name in ("name", "email", "notes", "status"):
            value = getattr(p, name)
            if value is not None:
                setattr(client, name, value)
        self._save(client)
        return self._result(action, "completed", get_reply_text("client_updated", name=client.name), client=client_doc(client))

    def _delete_client(self, action, business_id, p, resolver):
        client, error = self._resolve_client(action, p, resolver)
        if error:
            return error
        client.is_active = False
        client.status = "inactive"
        self._save(client)
        return self._result(action, "completed", get_reply_text("client_deactivated", name=client.name), client=client_doc(client))

    def _add_client_tag(self, action, business_id, p, resolver):
        client, error = self._resolve_client(action, p, resolver)
        if error:
            return error
        tag = p.tag.strip()
        tags = client.tag_list
        changed = tag not in tags
        if changed:
            client.tag_list = tags + [tag]
            self._save(client)
        return self._result(action, "completed", get_reply_text("tag_added", tag=tag, name=client.name),
                            changed=changed, client=client_doc(client))

    def _remove_client_tag(self, action, business_id, p, resolver):
        client, error = self._resolve_client(action, p, resolver)
        if error:
            return error
        tag = p.tag.strip()
        tags = client.tag_list
        changed = tag in tags
        if changed:
            client.tag_list = [t for t in tags if t != tag]
            self._save(client)
        return self._result(action, "completed", get_reply_text("tag_removed", tag=tag, name=client.name),
                            changed=changed, client=client_doc(client))

    # -- masters ------------------------------------------------------------

    def _create_master(self, action, business_id, p, resolver):
        hours = normalize_working_hours(p.working_hours) if p.working_hours else {}
        master = MasterService.create_master(self.db, business_id, p.name.strip(), bio=p.bio, working_hours=hours)
        return self._result(action, "completed", get_reply_text("master_created", name=master.name), master=master_doc(master))

    def _update_master(self, action, business_id, p, resolver):
        master = resolver.master(p.master_id, p.master_name)
        if master is None:
            return self._not_found(action, "master", name=p.master_name or p.master_id or "")
        if p.name is not None:
            master.name = p.name
        if p.bio is not None:
            master.bio = p.bio
        if p.is_active is not None:
            master.is_active = p.is_active
        self._save(master)
        return self._result(action, "completed", get_reply_text("master_updated", name=master.name), master=master_doc(master))

    def _delete_master(self, action, business_id, p, resolver):
        master, error = self._resolve_master(action, p, resolver)
        if error:
            return error
        master.is_active = False
        self._save(master)
        return self._result(action, "completed", get_reply_text("master_deactivated", name=master.name), master=master_doc(master))

    def _update_master_working_hours(self, action, business_id, p, resolver):
        master, error = self._resolve_master(action, p, resolver)
        if error:
            return error
        hours = normalize_working_hours(p.working_hours)
        if not hours:
            return self._result(action, "invalid_working_hours", get_reply_text("invalid_working_hours"))
        merged = master.working_hours_doc
        merged.update(hours)
        master.working_hours_doc = merged
        self._save(master)
        return self._result(action, "completed", get_reply_text("master_hours_updated", name=master.name), master=master_doc(master))

    def _set_master_date_override(self, action, business_id, p, resolver):
        master, error = self._resolve_master(action, p, resolver)
        if error:
            return error
        entry: Dict[str, Any] = {"enabled": p.enabled}
        if p.enabled and (p.start or p.end):
            if not (is_hhmm(p.start) and is_hhmm(p.end)) or p.end <= p.start:
                return self._result(action, "invalid_time_range", get_reply_text("invalid_time_range"))
            entry.update({"start": p.start, "end": p.end})
        key = p.date.isoformat()
        overrides = master.date_overrides
        overrides[key] = entry
        master.date_overrides = overrides
        self._save(master)
        return self._result(action, "completed", get_reply_text("override_set", name=master.name, date=p.date.strftime("%d.%m")),
                            date=key, override=entry, master=master_doc(master))

    def _clear_master_date_override(self, action, business_id, p, resolver):
        master, error = self._resolve_master(action, p, resolver)
        if error:
            return error
        key = p.date.isoformat()
        overrides = master.date_overrides
        removed = overrides.pop(key, None) is not None
        if removed:
            master.date_overrides = overrides
            self._save(master)
        return self._result(action, "completed", get_reply_text("override_cleared", name=master.name, date=p.date.strftime("%d.%m")),
                            date=key, removed=removed, master=master_doc(master))

    # -- services -----------------------------------------------------------

    def _create_service(self, action, business_id, p, resolver):
        if p.price < 0 or p.duration <= 0:
            return self._missing(action, [name for name, bad in (("price", p.price < 0), ("duration", p.duration <= 0)) if bad])
        service, created = ServiceCatalogService.upsert_service(
            self.db, business_id, p.name, p.price, min(p.duration, MAX_DURATION_MINUTES), category=p.category
        )
        key = "service_created" if created else "service_updated"
        return self._result(action, "completed",
                            get_reply_text(key, name=service.name, price=service.price, duration=service.duration),
                            created=created, service=service_doc(service))

    def _update_service(self, action, business_id, p, resolver):
        service = resolver.service(p.service_id, p.service_name)
        if service is None:
            return self._not_found(action, "service", name=p.service_name or p.service_id or "")
        for name in ("name", "price", "duration", "category"):
            value = getattr(p, name)
            if value is not None:
                setattr(service, name, value)
        self._save(service)
        return self._result(action, "completed", get_reply_text("service_updated", name=service.name), service=service_doc(service))

    def _delete_service(self, action, business_id, p, resolver):
        service = resolver.service(p.service_id, p.service_name)
        if service is None:
            return self._not_found(action, "service", name=p.service_name or p.service_id or "")
        service.is_active = False
        self._save(service)
        return self._result(action, "completed", get_reply_text("service_deactivated", name=service.name), service=service_doc(service))

    # -- appointments -------------------------------------------------------

    @staticmethod
    def _duration(requested: Optional[int], fallback: Optional[int]) -> int:
        minutes = requested or fallback or DEFAULT_DURATION_MINUTES
        return max(1, min(int(minutes), MAX_DURATION_MINUTES))

    def _create_appointment(self, action, business_id, p, resolver):
        if not is_valid_ua_phone(p.client_phone):
            return self._invalid_phone(action, p.client_phone)
        phone = normalize_ua_phone(p.client_phone)

        master, error = self._resolve_master(action, p, resolver)
        if error:
            return error

        service = None
        if p.service_id or p.service_name:
            service = resolver.service(p.service_id, p.service_name)
            if service is None:
                return self._not_found(action, "service", name=p.service_name or p.service_id)

        start = p.start_time
        end = start + timedelta(minutes=self._duration(p.duration_minutes, service.duration if service else None))
        conflict = AppointmentService.find_overlapping(self.db, business_id, master.id, start, end)
        if conflict is not None:
            return self._conflict(action, master, conflict, start, end)

        client, client_created = ClientService.upsert_client(self.db, business_id, phone, p.client_name.strip())
        appointment = AppointmentService.create_appointment(
            self.db,
            business_id,
            master.id,
            client,
            start,
            end,
            status=AppointmentStatus.CONFIRMED.value,
            service_ids=[service.id] if service else [],
            notes=p.notes,
        )
        ClientService.record_visit(self.db, client, start)

        business = BusinessService.get_business(self.db, business_id)
        try:
            self.notifier(business_id, appointment.id, business.name if business else None, client.name, master.name, start)
        except Exception as e:
            logger.warning("appointment_notify_failed", business_id=business_id, appointment_id=appointment.id, error=str(e)[:300])

        return self._result(action, "completed", get_reply_text("appointment_created"),
                            appointment=appointment_doc(appointment), client=client_doc(client), client_created=client_created)

    def _reschedule_appointment(self, action, business_id, p, resolver):
        match, error = self._resolve_appointment(action, p, resolver)
        if error:
            return error
        appointment = match.appointment
        if appointment.is_cancelled:
            return self._result(action, "already_cancelled", get_reply_text("appointment_already_cancelled"),
                                appointment=appointment_doc(appointment), resolved_by=match.resolved_by)

        fallback = None
        service_ids = appointment.service_ids
        if service_ids:
            service = ServiceCatalogService.get_service(self.db, business_id, service_ids[0])
            fallback = service.duration if service else None
        if fallback is None and appointment.end_time and appointment.start_time:
            fallback = int((appointment.end_time - appointment.start_time).total_seconds() // 60) or None

        start = p.start_time
        end = start + timedelta(minutes=self._duration(p.duration_minutes, fallback))
        conflict = AppointmentService.find_overlapping(self.db, business_id, appointment.master_id, start, end, exclude_id=appointment.id)
        if conflict is not None:
            master = MasterService.get_master(self.db, business_id, appointment.master_id)
            return self._conflict(action, master, conflict, start, end)

        previous = appointment.start_time
        appointment.start_time = start
        appointment.end_time = end
        self._save(appointment)
        return self._result(action, "completed", get_reply_text("appointment_rescheduled", start=start.strftime("%d.%m %H:%M")),
                            appointment=appointment_doc(appointment), previous_start_time=_iso(previous),
                            resolved_by=match.resolved_by)

    def _cancel_appointment(self, action, business_id, p, resolver):
        match, error = self._resolve_appointment(action, p, resolver)
        if error:
            return error
        appointment = match.appointment
        if appointment.is_cancelled:
            return self._result(action, "completed", get_reply_text("appointment_already_cancelled"),
                                already_cancelled=True, appointment=appointment_doc(appointment), resolved_by=match.resolved_by)

        appointment.status = AppointmentStatus.CANCELLED.value
        self._save(appointment)
        return self._result(action, "completed", get_reply_text("appointment_cancelled"),
                            already_cancelled=False, appointment=appointment_doc(appointment), resolved_by=match.resolved_by)

    def _update_appointment(self, action, business_id, p, resolver):
        match, error = self._resolve_appointment(action, p, resolver)
        if error:
            return error
        appointment = match.appointment

        new_status = None
        if p.status is not None:
            new_status = STATUS_ALIASES.get(p.status.strip().lower())
            if new_status is None:
                return self._result(action, "invalid_status", get_reply_text("invalid_status", status=p.status))

        if p.notes is not None:
            appointment.notes = p.notes
        if p.custom_price is not None:
            appointment.custom_price = p.custom_price
        if new_status and new_status != appointment.status:
            if new_status in DONE_STATUSES and appointment.status not in DONE_STATUSES:
                self._add_spent(business_id, appointment)
            appointment.status = new_status
        self._save(appointment)
        return self._result(action, "completed", get_reply_text("appointment_updated"),
                            appointment=appointment_doc(appointment), resolved_by=match.resolved_by)

    def _add_spent(self, business_id: str, appointment: DBAppointment) -> None:
        """Count a completed visit into the client's total_spent."""
        client = ClientService.get_client(self.db, business_id, appointment.client_id) if appointment.client_id else None
        if client is None:
            return
        amount = appointment.custom_price
        if amount is None and appointment.service_ids:
            amount = (
                self.db.query(func.coalesce(func.sum(DBService.price), 0))
                .filter(DBService.business_id == business_id, DBService.id.in_(appointment.service_ids))
                .scalar()
            )
        client.total_spent = (client.total_spent or 0) + int(amount or 0)

    # -- notes --------------------------------------------------------------

    def _create_note(self, action, business_id, p, resolver):
        day = datetime.combine(p.date or self._now().date(), time.min)
        last_order = (
            self.db.query(func.max(DBNote.order))
            .filter(DBNote.business_id == business_id, DBNote.date == day)
            .scalar()
        )
        note = DBNote(business_id=business_id, text=p.text.strip(), date=day, order=0 if last_order is None else last_order + 1)
        self.db.add(note)
        self._save(note)
        return self._result(action, "completed", get_reply_text("note_created"), note=note_doc(note))

    def _update_note(self, action, business_id, p, resolver):
        note = NoteService.get_note(self.db, business_id, p.note_id)
        if note is None:
            return self._not_found(action, "note")
        if p.text is not None:
            note.text = p.text
        if p.completed is not None:
            note.completed = p.completed
        if p.date is not None:
            note.date = datetime.combine(p.date, time.min)
        self._save(note)
        return self._result(action, "completed", get_reply_text("note_updated"), note=note_doc(note))

    def _delete_note(self, action, business_id, p, resolver):
        note = NoteService.get_note(self.db, business_id, p.note_id)
        if note is None:
            return self._not_found(action, "note")
        snapshot = note_doc(note)
        self.db.delete(note)
        self.db.commit()
        return self._result(action, "completed", get_reply_text("note_deleted"), note=snapshot)

    # -- reminders ----------------------------------------------------------

    def _create_reminder(self, action, business_id, p, resolver):
        client = None
        if p.client_id or p.client_phone:
            if p.client_phone and not p.client_id and not is_valid_ua_phone(p.client_phone):
                return self._invalid_phone(action, p.client_phone)
            client = resolver.client(p.client_id, p.client_phone)
            if client is None:
                return self._not_found(action, "client")

        reminder = DBReminder(
            business_id=business_id,
            message=p.message.strip(),
            target_type="client" if client else "all",
            client_id=client.id if client else None,
            scheduled_at=p.scheduled_at,
            status=ReminderStatus.PENDING.value,
        )
        self.db.add(reminder)
        self._save(reminder)
        return self._result(action, "completed", get_reply_text("reminder_created"), reminder=reminder_doc(reminder))

    def _update_reminder(self, action, business_id, p, resolver):
        reminder = ReminderService.get_reminder(self.db, business_id, p.reminder_id)
        if reminder is None:
            return self._not_found(action, "reminder")
        if p.status is not None:
            status = p.status.strip().lower()
            if status not in {s.value for s in ReminderStatus}:
                return self._result(action, "invalid_status", get_reply_text("invalid_status", status=p.status))
            reminder.status = status
        if p.message is not None:
            reminder.message = p.message
        if p.scheduled_at is not None:
            reminder.scheduled_at = p.scheduled_at
        self._save(reminder)
        return self._result(action, "completed", get_reply_text("reminder_updated"), reminder=reminder_doc(reminder))

    def _delete_reminder(self, action, business_id, p, resolver):
        reminder = ReminderService.get_reminder(self.db, business_id, p.reminder_id)
        if reminder is None:
            return self._not_found(action, "reminder")
        snapshot = reminder_doc(reminder)
        self.db.delete(reminder)
        self.db.commit()
        return self._result(action, "completed", get_reply_text("reminder_deleted"), reminder=snapshot)

    # -- segments -----------------------------------------------------------

    def _create_segment(self, action, business_id, p, resolver):
        criteria = _criteria_text(p.criteria)
        segment = DBSegment(
            business_id=business_id,
            name=p.name.strip(),
            criteria=criteria,
            auto_update=p.auto_update,
            client_count=SegmentService.count_matching_clients(self.db, business_id, criteria, self._now()),
        )
        self.db.add(segment)
        self._save(segment)
        return self._result(action, "completed", get_reply_text("segment_created", name=segment.name, count=segment.client_count),
                            segment=segment_doc(segment))

    def _update_segment(self, action, business_id, p, resolver):
        segment = resolver.segment(p.segment_id, p.segment_name)
        if segment is None:
            return self._not_found(action, "segment")
        if p.name is not None:
            segment.name = p.name
        if p.criteria is not None:
            segment.criteria = _criteria_text(p.criteria)
        if p.auto_update is not None:
            segment.auto_update = p.auto_update
        segment.client_count = SegmentService.count_matching_clients(self.db, business_id, segment.criteria, self._now())
        self._save(segment)
        return self._result(action, "completed", get_reply_text("segment_updated", name=segment.name, count=segment.client_count),
                            segment=segment_doc(segment))

    def _delete_segment(self, action, business_id, p, resolver):
        segment = resolver.segment(p.segment_id, p.segment_name)
        if segment is None:
            return self._not_found(action, "segment")
        snapshot = segment_doc(segment)
        self.db.delete(segment)
        self.db.commit()
        return self._result(action, "completed", get_reply_text("segment_deleted", name=snapshot["name"]), segment=snapshot)

    # -- sms ----------------------------------------------------------------

    def _send_sms(self, action, business_id, p, resolver):
        if not is_valid_ua_phone(p.phone):
            return self._invalid_phone(action, p.phone)
        phone = normalize_ua_phone(p.phone)
        client = ClientService.get_client_by_phone(self.db, business_id, phone)
        client_id = client.id if client else None

        try:
            sent = self.sms_service.send(phone, p.text)
        except SmsError as e:
            SmsLogService.log_sms(self.db, business_id, phone, p.text, "failed", client_id=client_id)
            if not self.sms_service.configured:
                return self._result(action, "sms_not_configured", get_reply_text("sms_not_configured"))
            return self._result(action, "sms_failed", get_reply_text("sms_failed"), error=str(e)[:300])

        sms = SmsLogService.log_sms(self.db, business_id, phone, p.text, "sent" if sent.success else "failed",
                                    provider_message_id=sent.message_id, client_id=client_id)
        if not sent.success:
            return self._result(action, "sms_failed", get_reply_text("sms_failed"), sms_id=sms.id, error=sent.error)
        return self._result(action, "completed", get_reply_text("sms_sent", phone=phone),
                            sms_id=sms.id, message_id=sent.message_id)

    # -- business -----------------------------------------------------------

    def _update_business(self, action, business_id, p, resolver):
        business = BusinessService.get_business(self.db, business_id)
        if business is None:
            return self._not_found(action, "business")
        if p.name is None and p.description is None and p.location is None:
            return self._missing(action, ["name"])
        BusinessService.update_business(self.db, business, name=p.name, description=p.description, location=p.location)
        return self._result(action, "completed", get_reply_text("business_updated"),
                            business={"id": business.id, "name": business.name, "location": business.location})

    def _update_business_working_hours(self, action, business_id, p, resolver):
        business = BusinessService.get_business(self.db, business_id)
        if business is None:
            return self._not_found(action, "business")
        hours = normalize_working_hours(p.working_hours)
        if not hours:
            return self._result(action, "invalid_working_hours", get_reply_text("invalid_working_hours"))
        merged = business.working_hours_doc
        merged.update(hours)
        business.working_hours_doc = merged
        self._save(business)
        return self._result(action, "completed", get_reply_text("business_hours_updated"), working_hours=merged)

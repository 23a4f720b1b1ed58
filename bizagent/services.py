"""
Service layer for database operations.

Every query is scoped by business_id. Name matching (masters, services,
client names) is done in Python with str.casefold(): SQLite's lower() only
folds ASCII and most names here are Cyrillic.
"""

from typing import List, Optional, Tuple
from sqlalchemy.orm import Session
from datetime import datetime
import json

from bizagent.db_models import (
    CANCELLED_STATUSES,
    DBAppointment,
    DBBusiness,
    DBBusinessAiSnapshot,
    DBChatMessage,
    DBClient,
    DBMaster,
    DBNote,
    DBPlatformSetting,
    DBReminder,
    DBSegment,
    DBService,
    DBSmsMessage,
    utcnow,
)
from bizagent.logging_config import get_logger

logger = get_logger(__name__)


def _contains(haystack: Optional[str], needle: str) -> bool:
    return bool(haystack) and needle.casefold() in haystack.casefold()


class BusinessService:
    """Service for reading and updating the business profile."""

    @staticmethod
    def get_business(db: Session, business_id: str) -> Optional[DBBusiness]:
        """Get business by ID."""
        return db.query(DBBusiness).filter(DBBusiness.id == business_id).first()

    @staticmethod
    def update_business(db: Session, business: DBBusiness, **fields) -> DBBusiness:
        """Update selected business fields (None values are skipped)."""
        for key, value in fields.items():
            if value is not None:
                setattr(business, key, value)
        db.commit()
        db.refresh(business)

        logger.info("business_updated", business_id=business.id, fields=sorted(k for k, v in fields.items() if v is not None))
        return business


class ClientService:
    """Service for managing clients."""

    @staticmethod
    def get_client(db: Session, business_id: str, client_id: str) -> Optional[DBClient]:
        """Get client by ID."""
        return db.query(DBClient).filter(DBClient.business_id == business_id, DBClient.id == client_id).first()

    @staticmethod
    def get_client_by_phone(db: Session, business_id: str, phone: str) -> Optional[DBClient]:
        """Get client by normalized phone (unique per business)."""
        return db.query(DBClient).filter(DBClient.business_id == business_id, DBClient.phone == phone).first()

    @staticmethod
    def upsert_client(
        db: Session,
        business_id: str,
        phone: str,
        name: str,
        email: Optional[str] = None,
        notes: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Tuple[DBClient, bool]:
        """
        Create or update the client keyed on (business_id, phone).

        Returns (client, created). Repeating the same command converges on one row;
        a different name updates the existing row. Deactivated clients are reactivated.
        """
        client = ClientService.get_client_by_phone(db, business_id, phone)
        created = client is None
        if created:
            client = DBClient(business_id=business_id, phone=phone, name=name)
            client.tag_list = []
            db.add(client)
        else:
            client.name = name or client.name
            client.is_active = True
            if client.status == "inactive":
                client.status = "active"

        if email is not None:
            client.email = email
        if notes is not None:
            client.notes = notes
        if tags:
            merged = client.tag_list
            for tag in tags:
                if tag not in merged:
                    merged.append(tag)
            client.tag_list = merged

        db.commit()
        db.refresh(client)

        logger.info("client_upserted", business_id=business_id, client_id=client.id, created=created)
        return client, created

    @staticmethod
    def search_clients(db: Session, business_id: str, query: str, limit: int = 10) -> List[DBClient]:
        """Search clients by name, phone or email fragment (most recently updated first)."""
        rows = (
            db.query(DBClient)
            .filter(DBClient.business_id == business_id)
            .order_by(DBClient.updated_at.desc())
            .all()
        )
        digits = "".join(ch for ch in query if ch.isdigit())
        matches = []
        for client in rows:
            if (
                _contains(client.name, query)
                or _contains(client.email, query)
                or (len(digits) >= 3 and digits in client.phone)
            ):
                matches.append(client)
                if len(matches) >= limit:
                    break
        return matches

    @staticmethod
    def list_clients(db: Session, business_id: str, active_only: bool = True) -> List[DBClient]:
        query = db.query(DBClient).filter(DBClient.business_id == business_id)
        if active_only:
            query = query.filter(DBClient.is_active == True)  # noqa: E712
        return query.all()

    @staticmethod
    def record_visit(db: Session, client: DBClient, start_time: datetime) -> None:
        """Bump appointment counters after a booking."""
        client.total_appointments = (client.total_appointments or 0) + 1
        if not client.last_appointment_date or start_time > client.last_appointment_date:
            client.last_appointment_date = start_time
        db.commit()


class MasterService:
    """Service for managing masters."""

    @staticmethod
    def get_master(db: Session, business_id: str, master_id: str) -> Optional[DBMaster]:
        """Get master by ID."""
        return db.query(DBMaster).filter(DBMaster.business_id == business_id, DBMaster.id == master_id).first()

    @staticmethod
    def list_masters(db: Session, business_id: str, active_only: bool = True) -> List[DBMaster]:
        """List masters, earliest created first."""
        query = db.query(DBMaster).filter(DBMaster.business_id == business_id)
        if active_only:
            query = query.filter(DBMaster.is_active == True)  # noqa: E712
        return query.order_by(DBMaster.created_at.asc()).all()

    @staticmethod
    def find_master_by_name(db: Session, business_id: str, fragment: str) -> Optional[DBMaster]:
        """Earliest-created active master whose name contains the fragment."""
        fragment = (fragment or "").strip()
        if not fragment:
            return None
        for master in MasterService.list_masters(db, business_id):
            if _contains(master.name, fragment):
                return master
        return None

    @staticmethod
    def create_master(db: Session, business_id: str, name: str, bio: Optional[str] = None,
                      working_hours: Optional[dict] = None) -> DBMaster:
        """Create a new master."""
        master = DBMaster(business_id=business_id, name=name, bio=bio)
        master.working_hours_doc = working_hours or {}
        master.date_overrides = {}
        db.add(master)
        db.commit()
        db.refresh(master)

        logger.info("master_created", business_id=business_id, master_id=master.id)
        return master


class ServiceCatalogService:
    """Service for managing the service catalog."""

    @staticmethod
    def get_service(db: Session, business_id: str, service_id: str) -> Optional[DBService]:
        """Get service by ID."""
        return db.query(DBService).filter(DBService.business_id == business_id, DBService.id == service_id).first()

    @staticmethod
    def list_services(db: Session, business_id: str, active_only: bool = True) -> List[DBService]:
        query = db.query(DBService).filter(DBService.business_id == business_id)
        if active_only:
            query = query.filter(DBService.is_active == True)  # noqa: E712
        return query.order_by(DBService.created_at.asc()).all()

    @staticmethod
    def find_service_by_name(db: Session, business_id: str, name: str, include_inactive: bool = False) -> Optional[DBService]:
        """Case-insensitive exact name match first, then the first name containing it."""
        name = (name or "").strip()
        if not name:
            return None
        services = ServiceCatalogService.list_services(db, business_id, active_only=not include_inactive)
        for service in services:
            if service.name.casefold() == name.casefold():
                return service
        for service in services:
            if _contains(service.name, name):
                return service
        return None

    @staticmethod
    def upsert_service(db: Session, business_id: str, name: str, price: int, duration: int,
                       category: Optional[str] = None) -> Tuple[DBService, bool]:
        """Create or update the service matched by case-insensitive name."""
        existing = None
        for service in ServiceCatalogService.list_services(db, business_id, active_only=False):
            if service.name.casefold() == name.strip().casefold():
                existing = service
                break

        created = existing is None
        service = existing or DBService(business_id=business_id, name=name.strip())
        service.price = price
        service.duration = duration
        service.is_active = True
        if category is not None:
            service.category = category
        if created:
            db.add(service)
        db.commit()
        db.refresh(service)

        logger.info("service_upserted", business_id=business_id, service_id=service.id, created=created)
        return service, created


class AppointmentService:
    """Service for managing appointments."""

    @staticmethod
    def get_appointment(db: Session, business_id: str, appointment_id: str) -> Optional[DBAppointment]:
        """Get appointment by ID."""
        return (
            db.query(DBAppointment)
            .filter(DBAppointment.business_id == business_id, DBAppointment.id == appointment_id)
            .first()
        )

    @staticmethod
    def find_overlapping(db: Session, business_id: str, master_id: str, start: datetime, end: datetime,
                         exclude_id: Optional[str] = None) -> Optional[DBAppointment]:
        """First non-cancelled appointment of the master overlapping [start, end)."""
        query = db.query(DBAppointment).filter(
            DBAppointment.business_id == business_id,
            DBAppointment.master_id == master_id,
            DBAppointment.status.notin_(CANCELLED_STATUSES),
            DBAppointment.start_time < end,
            DBAppointment.end_time > start,
        )
        if exclude_id:
            query = query.filter(DBAppointment.id != exclude_id)
        return query.order_by(DBAppointment.start_time.asc()).first()

    @staticmethod
    def find_by_phone_and_start(db: Session, business_id: str, phone: str, start: datetime) -> Optional[DBAppointment]:
        return (
            db.query(DBAppointment)
            .filter(
                DBAppointment.business_id == business_id,
                DBAppointment.client_phone == phone,
                DBAppointment.start_time == start,
            )
            .first()
        )

    @staticmethod
    def next_upcoming_for_phone(db: Session, business_id: str, phone: str, now: datetime) -> Optional[DBAppointment]:
        return (
            db.query(DBAppointment)
            .filter(
                DBAppointment.business_id == business_id,
                DBAppointment.client_phone == phone,
                DBAppointment.status.notin_(CANCELLED_STATUSES),
                DBAppointment.start_time >= now,
            )
            .order_by(DBAppointment.start_time.asc())
            .first()
        )

    @staticmethod
    def next_upcoming_for_name(db: Session, business_id: str, fragment: str, now: datetime) -> Optional[DBAppointment]:
        upcoming = (
            db.query(DBAppointment)
            .filter(
                DBAppointment.business_id == business_id,
                DBAppointment.status.notin_(CANCELLED_STATUSES),
                DBAppointment.start_time >= now,
            )
            .order_by(DBAppointment.start_time.asc())
            .all()
        )
        for appointment in upcoming:
            if _contains(appointment.client_name, fragment):
                return appointment
        return None

    @staticmethod
    def list_between(db: Session, business_id: str, start: datetime, end: datetime,
                     master_id: Optional[str] = None, include_cancelled: bool = True,
                     limit: Optional[int] = None) -> List[DBAppointment]:
        """Appointments starting within [start, end], earliest first."""
        query = db.query(DBAppointment).filter(
            DBAppointment.business_id == business_id,
            DBAppointment.start_time >= start,
            DBAppointment.start_time <= end,
        )
        if master_id:
            query = query.filter(DBAppointment.master_id == master_id)
        if not include_cancelled:
            query = query.filter(DBAppointment.status.notin_(CANCELLED_STATUSES))
        query = query.order_by(DBAppointment.start_time.asc())
        if limit:
            query = query.limit(limit)
        return query.all()

    @staticmethod
    def create_appointment(db: Session, business_id: str, master_id: str, client: DBClient,
                           start: datetime, end: datetime, status: str, service_ids: List[str],
                           notes: Optional[str] = None, source: str = "ai_agent") -> DBAppointment:
        """Create a new appointment (the caller has already checked for conflicts)."""
        appointment = DBAppointment(
            business_id=business_id,
            master_id=master_id,
            client_id=client.id,
            client_name=client.name,
            client_phone=client.phone,
            start_time=start,
            end_time=end,
            status=status,
            notes=notes,
            source=source,
        )
        appointment.service_ids = service_ids
        db.add(appointment)
        db.commit()
        db.refresh(appointment)

        logger.info("appointment_created", business_id=business_id, appointment_id=appointment.id,
                    master_id=master_id, start_time=start.isoformat())
        return appointment


class NoteService:
    """Service for managing day notes."""

    @staticmethod
    def get_note(db: Session, business_id: str, note_id: str) -> Optional[DBNote]:
        return db.query(DBNote).filter(DBNote.business_id == business_id, DBNote.id == note_id).first()

    @staticmethod
    def list_notes(db: Session, business_id: str, day_start: Optional[datetime] = None,
                   day_end: Optional[datetime] = None, limit: int = 20) -> List[DBNote]:
        query = db.query(DBNote).filter(DBNote.business_id == business_id)
        if day_start and day_end:
            query = query.filter(DBNote.date >= day_start, DBNote.date <= day_end)
        return query.order_by(DBNote.order.asc(), DBNote.created_at.desc()).limit(limit).all()


class ReminderService:
    """Service for managing reminders."""

    @staticmethod
    def get_reminder(db: Session, business_id: str, reminder_id: str) -> Optional[DBReminder]:
        return db.query(DBReminder).filter(DBReminder.business_id == business_id, DBReminder.id == reminder_id).first()

    @staticmethod
    def list_reminders(db: Session, business_id: str, status: Optional[str] = None, limit: int = 20) -> List[DBReminder]:
        query = db.query(DBReminder).filter(DBReminder.business_id == business_id)
        if status:
            query = query.filter(DBReminder.status == status)
        return query.order_by(DBReminder.created_at.desc()).limit(limit).all()


class SegmentService:
    """Service for managing client segments."""

    @staticmethod
    def get_segment(db: Session, business_id: str, segment_id: str) -> Optional[DBSegment]:
        return db.query(DBSegment).filter(DBSegment.business_id == business_id, DBSegment.id == segment_id).first()

    @staticmethod
    def find_segment_by_name(db: Session, business_id: str, name: str) -> Optional[DBSegment]:
        for segment in db.query(DBSegment).filter(DBSegment.business_id == business_id).order_by(DBSegment.created_at.asc()):
            if segment.name.casefold() == (name or "").strip().casefold():
                return segment
        return None

    @staticmethod
    def count_matching_clients(db: Session, business_id: str, criteria: Optional[str], now: datetime) -> int:
        """
        Best-effort client count for segment criteria.

        Structured criteria (JSON) understand tag, minSpent, minVisits and
        inactiveDays; a free-form string counts clients carrying it as a tag.
        Unknown keys are ignored.
        """
        clients = ClientService.list_clients(db, business_id)
        if not criteria:
            return len(clients)

        try:
            predicate = json.loads(criteria)
        except (TypeError, ValueError):
            predicate = None
        if not isinstance(predicate, dict):
            tag = criteria.strip().casefold()
            return sum(1 for c in clients if any(t.casefold() == tag for t in c.tag_list))

        def matches(client: DBClient) -> bool:
            tag = predicate.get("tag")
            if tag and tag not in client.tag_list:
                return False
            min_spent = predicate.get("minSpent")
            if isinstance(min_spent, (int, float)) and (client.total_spent or 0) < min_spent:
                return False
            min_visits = predicate.get("minVisits")
            if isinstance(min_visits, (int, float)) and (client.total_appointments or 0) < min_visits:
                return False
            inactive_days = predicate.get("inactiveDays")
            if isinstance(inactive_days, (int, float)):
                last = client.last_appointment_date
                if last is not None and (now - last).days < inactive_days:
                    return False
            return True

        return sum(1 for c in clients if matches(c))


class SmsLogService:
    """Service for the outgoing SMS log."""

    @staticmethod
    def log_sms(db: Session, business_id: str, phone: str, message: str, status: str,
                provider_message_id: Optional[str] = None, client_id: Optional[str] = None) -> DBSmsMessage:
        sms = DBSmsMessage(
            business_id=business_id,
            client_id=client_id,
            phone=phone,
            message=message,
            status=status,
            provider_message_id=provider_message_id,
        )
        db.add(sms)
        db.commit()
        db.refresh(sms)

        logger.info("sms_logged", business_id=business_id, sms_id=sms.id, status=status)
        return sms


class SettingsService:
    """Generic key-value platform settings."""

    @staticmethod
    def get_settings(db: Session, keys: List[str]) -> dict:
        rows = db.query(DBPlatformSetting).filter(DBPlatformSetting.key.in_(keys)).all()
        return {row.key: row.value for row in rows}

    @staticmethod
    def set_setting(db: Session, key: str, value: str) -> None:
        row = db.query(DBPlatformSetting).filter(DBPlatformSetting.key == key).first()
        if row is None:
            db.add(DBPlatformSetting(key=key, value=value))
        else:
            row.value = value
        db.commit()


class SnapshotStoreService:
    """Persisted business snapshots."""

    @staticmethod
    def get_snapshot(db: Session, business_id: str) -> Optional[DBBusinessAiSnapshot]:
        return db.query(DBBusinessAiSnapshot).filter(DBBusinessAiSnapshot.business_id == business_id).first()

    @staticmethod
    def save_snapshot(db: Session, business_id: str, text: str) -> None:
        row = SnapshotStoreService.get_snapshot(db, business_id)
        if row is None:
            db.add(DBBusinessAiSnapshot(business_id=business_id, snapshot=text))
        else:
            row.snapshot = text
            row.updated_at = utcnow()
        db.commit()


class ConversationService:
    """Append-only conversation log."""

    @staticmethod
    def append_turn(db: Session, business_id: str, session_id: str, role: str, message: str,
                    metadata: Optional[dict] = None) -> DBChatMessage:
        """Persist one user or assistant turn."""
        row = DBChatMessage(
            business_id=business_id,
            session_id=session_id,
            role=role,
            message=message,
            meta=json.dumps(metadata or {}, ensure_ascii=False, default=str),
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        return row

    @staticmethod
    def recent_history(db: Session, business_id: str, session_id: str, limit: int = 6) -> List[dict]:
        """Last `limit` turns, oldest first, as {"role", "message"} dicts."""
        rows = (
            db.query(DBChatMessage)
            .filter(DBChatMessage.business_id == business_id, DBChatMessage.session_id == session_id)
            .order_by(DBChatMessage.id.desc())
            .limit(limit)
            .all()
        )
        return [{"role": row.role, "message": row.message} for row in reversed(rows)]

    @staticmethod
    def list_messages(db: Session, business_id: str, session_id: str) -> List[DBChatMessage]:
        return (
            db.query(DBChatMessage)
            .filter(DBChatMessage.business_id == business_id, DBChatMessage.session_id == session_id)
            .order_by(DBChatMessage.id.asc())
            .all()
        )


__all__ = [
    "AppointmentService",
    "BusinessService",
    "ClientService",
    "ConversationService",
    "MasterService",
    "NoteService",
    "ReminderService",
    "SegmentService",
    "ServiceCatalogService",
    "SettingsService",
    "SmsLogService",
    "SnapshotStoreService",
]

"""
SQLAlchemy database models.

Documents (tags, service id lists, working hours, schedule overrides,
segment criteria, chat metadata) are stored as JSON text columns, with
small accessors to read and write them as Python structures.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, Boolean, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from typing import Any
import enum
import json
import uuid

from bizagent.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp used for audit columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


def _load_json(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return default
    return value if isinstance(value, type(default)) else default


def _dump_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


class AppointmentStatus(str, enum.Enum):
    """Appointment status enum."""
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    DONE = "Done"
    CANCELLED = "Cancelled"


# Rows written by older versions of the dashboard carry Ukrainian status labels.
CANCELLED_STATUSES = (AppointmentStatus.CANCELLED.value, "Скасовано")
DONE_STATUSES = (AppointmentStatus.DONE.value, "Виконано")


class ReminderStatus(str, enum.Enum):
    """Reminder status enum."""
    PENDING = "pending"
    SENT = "sent"
    CANCELLED = "cancelled"


class DBBusiness(Base):
    """Business (tenant). The agent reads and updates it but never creates one."""
    __tablename__ = "businesses"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=True)
    description = Column(Text)
    location = Column(String(500))
    working_hours = Column(Text)  # JSON weekday document

    ai_chat_enabled = Column(Boolean, default=True)
    ai_api_key = Column(String(255), nullable=True)
    reminders_enabled = Column(Boolean, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def working_hours_doc(self) -> dict:
        return _load_json(self.working_hours, {})

    @working_hours_doc.setter
    def working_hours_doc(self, value: dict) -> None:
        self.working_hours = _dump_json(value or {})


class DBClient(Base):
    """Client database model. Unique per (business_id, phone)."""
    __tablename__ = "clients"
    __table_args__ = (UniqueConstraint("business_id", "phone", name="uq_clients_business_phone"),)

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=False)  # +380XXXXXXXXX
    email = Column(String(255))
    notes = Column(Text)
    tags = Column(Text, default="[]")  # JSON list, order preserved

    total_spent = Column(Integer, default=0)
    total_appointments = Column(Integer, default=0)
    last_appointment_date = Column(DateTime, nullable=True)
    status = Column(String(32), default="active")
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def tag_list(self) -> list:
        return _load_json(self.tags, [])

    @tag_list.setter
    def tag_list(self, value: list) -> None:
        self.tags = _dump_json(list(value or []))


class DBMaster(Base):
    """Master (staff member) database model."""
    __tablename__ = "masters"

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    bio = Column(Text)
    working_hours = Column(Text)  # JSON weekday document
    schedule_date_overrides = Column(Text)  # JSON map YYYY-MM-DD -> {enabled, start, end}
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def working_hours_doc(self) -> dict:
        return _load_json(self.working_hours, {})

    @working_hours_doc.setter
    def working_hours_doc(self, value: dict) -> None:
        self.working_hours = _dump_json(value or {})

    @property
    def date_overrides(self) -> dict:
        return _load_json(self.schedule_date_overrides, {})

    @date_overrides.setter
    def date_overrides(self, value: dict) -> None:
        self.schedule_date_overrides = _dump_json(value or {})


class DBService(Base):
    """Service (catalog item) database model."""
    __tablename__ = "services"

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Integer, default=0)
    duration = Column(Integer, default=60)  # minutes
    category = Column(String(255))
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class DBAppointment(Base):
    """
    Appointment database model.
    Non-cancelled appointments of one master never overlap on [start_time, end_time).
    """
    __tablename__ = "appointments"
    __table_args__ = (Index("ix_appointments_master_start", "master_id", "start_time"),)

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    master_id = Column(String(36), ForeignKey("masters.id"), nullable=False)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=True)

    # Snapshot of the client at booking time
    client_name = Column(String(255), nullable=False)
    client_phone = Column(String(20), nullable=False)

    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String(32), default=AppointmentStatus.PENDING.value)
    services = Column(Text, default="[]")  # JSON list of service ids
    notes = Column(Text)
    custom_price = Column(Integer, nullable=True)
    source = Column(String(32), default="dashboard")

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    master = relationship("DBMaster")
    client = relationship("DBClient")

    @property
    def service_ids(self) -> list:
        return _load_json(self.services, [])

    @service_ids.setter
    def service_ids(self, value: list) -> None:
        self.services = _dump_json(list(value or []))

    @property
    def is_cancelled(self) -> bool:
        return self.status in CANCELLED_STATUSES


class DBNote(Base):
    """Day note (owner's journal entry)."""
    __tablename__ = "notes"

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    date = Column(DateTime, nullable=False)  # day granularity (00:00)
    completed = Column(Boolean, default=False)
    order = Column(Integer, default=0)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class DBReminder(Base):
    """Scheduled reminder to all clients or to one client."""
    __tablename__ = "reminders"

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    message = Column(Text, nullable=False)
    target_type = Column(String(16), default="all")  # "all" | "client"
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=True)
    scheduled_at = Column(DateTime, nullable=True)
    status = Column(String(16), default=ReminderStatus.PENDING.value)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class DBSegment(Base):
    """Client segment. client_count is a best-effort cached count."""
    __tablename__ = "client_segments"

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    criteria = Column(Text)  # free-form string or JSON predicate
    auto_update = Column(Boolean, default=False)
    client_count = Column(Integer, default=0)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class DBSmsMessage(Base):
    """Outgoing SMS log."""
    __tablename__ = "sms_messages"

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=True)
    phone = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    status = Column(String(16), default="pending")  # pending | sent | failed
    provider_message_id = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=utcnow)


class DBPayment(Base):
    """Payment record (written by the billing flow, read by KPI tools)."""
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=True)
    amount = Column(Integer, default=0)
    status = Column(String(32), default="pending")  # pending | succeeded | failed | refunded

    created_at = Column(DateTime, default=utcnow)


class DBSocialInboxMessage(Base):
    """Message from a connected social channel (read by the inbox summary tool)."""
    __tablename__ = "social_inbox_messages"

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    platform = Column(String(32), nullable=False)
    direction = Column(String(8), default="in")
    sender_name = Column(String(255))
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False)

    created_at = Column(DateTime, default=utcnow)


class DBPlatformSetting(Base):
    """Generic platform key-value settings (LLM provider, base URL, model)."""
    __tablename__ = "platform_settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class DBBusinessAiSnapshot(Base):
    """Persisted business snapshot text used to ground the LLM."""
    __tablename__ = "business_ai_snapshots"

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), unique=True, nullable=False)
    snapshot = Column(Text, nullable=False)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class DBChatMessage(Base):
    """
    Conversation log - one row per user or assistant turn.
    metadata holds {decision_action, action_data, ai, timestamp} as JSON.
    """
    __tablename__ = "ai_chat_messages"
    __table_args__ = (Index("ix_ai_chat_business_session", "business_id", "session_id", "created_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)  # insertion order
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False)
    session_id = Column(String(100), nullable=False, default="default")
    role = Column(String(16), nullable=False)  # "user" | "assistant"
    message = Column(Text, nullable=False)
    meta = Column("metadata", Text)

    created_at = Column(DateTime, default=utcnow)

    @property
    def meta_doc(self) -> dict:
        return _load_json(self.meta, {})

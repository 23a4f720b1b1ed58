"""
Entity resolution for loose references (id, phone, name fragment).

Lookups never raise on a miss: None is a normal outcome and callers turn it
into a clarifying reply.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from bizagent.db_models import DBAppointment, DBClient, DBMaster, DBSegment, DBService
from bizagent.phone import is_valid_ua_phone, normalize_ua_phone
from bizagent.services import (
    AppointmentService,
    ClientService,
    MasterService,
    SegmentService,
    ServiceCatalogService,
)


@dataclass
class AppointmentMatch:
    appointment: DBAppointment
    resolved_by: str  # id | phone_start | phone_upcoming | name_upcoming


class EntityResolver:
    """Read-side lookups scoped to one business."""

    def __init__(self, db: Session, business_id: str, now: Callable[[], datetime] = datetime.now):
        self.db = db
        self.business_id = business_id
        self._now = now

    def master(self, master_id: Optional[str] = None, master_name: Optional[str] = None) -> Optional[DBMaster]:
        """Exact id, else the earliest-created active master whose name contains the fragment."""
        if master_id:
            found = MasterService.get_master(self.db, self.business_id, master_id)
            if found:
                return found
        if master_name:
            return MasterService.find_master_by_name(self.db, self.business_id, master_name)
        return None

    def client(self, client_id: Optional[str] = None, phone: Optional[str] = None) -> Optional[DBClient]:
        """By id, or by phone (normalized; invalid phones never match)."""
        if client_id:
            found = ClientService.get_client(self.db, self.business_id, client_id)
            if found:
                return found
        if phone:
            if not is_valid_ua_phone(phone):
                return None
            return ClientService.get_client_by_phone(self.db, self.business_id, normalize_ua_phone(phone))
        return None

    def service(self, service_id: Optional[str] = None, service_name: Optional[str] = None) -> Optional[DBService]:
        """By id, else case-insensitive exact name, else the first name containing it."""
        if service_id:
            found = ServiceCatalogService.get_service(self.db, self.business_id, service_id)
            if found:
                return found
        if service_name:
            return ServiceCatalogService.find_service_by_name(self.db, self.business_id, service_name)
        return None

    def segment(self, segment_id: Optional[str] = None, segment_name: Optional[str] = None) -> Optional[DBSegment]:
        if segment_id:
            found = SegmentService.get_segment(self.db, self.business_id, segment_id)
            if found:
                return found
        if segment_name:
            return SegmentService.find_segment_by_name(self.db, self.business_id, segment_name)
        return None

    def appointment(
        self,
        appointment_id: Optional[str] = None,
        client_phone: Optional[str] = None,
        previous_start_time: Optional[datetime] = None,
        client_name: Optional[str] = None,
    ) -> Optional[AppointmentMatch]:
        """
        Resolve an appointment in order:
        1. exact id
        2. (phone, exact prior start time)
        3. next upcoming non-cancelled appointment for the phone
        4. next upcoming non-cancelled appointment whose client name contains the fragment
        """
        if appointment_id:
            found = AppointmentService.get_appointment(self.db, self.business_id, appointment_id)
            if found:
                return AppointmentMatch(found, "id")

        now = self._now()
        phone = normalize_ua_phone(client_phone) if client_phone and is_valid_ua_phone(client_phone) else None

        if phone and previous_start_time:
            found = AppointmentService.find_by_phone_and_start(self.db, self.business_id, phone, previous_start_time)
            if found:
                return AppointmentMatch(found, "phone_start")

        if phone:
            found = AppointmentService.next_upcoming_for_phone(self.db, self.business_id, phone, now)
            if found:
                return AppointmentMatch(found, "phone_upcoming")

        if client_name and client_name.strip():
            found = AppointmentService.next_upcoming_for_name(self.db, self.business_id, client_name.strip(), now)
            if found:
                return AppointmentMatch(found, "name_upcoming")

        return None

from datetime import datetime, timedelta

import pytest

from bizagent.db_models import DBAppointment
from bizagent.entity_resolver import EntityResolver
from bizagent.services import ClientService, MasterService, ServiceCatalogService

FIXED_NOW = datetime(2025, 5, 1, 8, 0)


@pytest.fixture
def resolver(db, business):
    return EntityResolver(db, business.id, now=lambda: FIXED_NOW)


def add_appointment(db, master, start, phone="+380671234567", name="Іван Петров", status="Confirmed"):
    appointment = DBAppointment(
        business_id=master.business_id,
        master_id=master.id,
        client_name=name,
        client_phone=phone,
        start_time=start,
        end_time=start + timedelta(hours=1),
        status=status,
    )
    db.add(appointment)
    db.commit()
    return appointment


def test_master_by_id_or_name_fragment(db, resolver, business, master):
    MasterService.create_master(db, business.id, "Олександр")

    assert resolver.master(master_id=master.id).id == master.id
    assert resolver.master(master_name="олен").id == master.id
    assert resolver.master(master_name="Ол").id == master.id  # earliest created wins
    assert resolver.master(master_name="Петро") is None
    assert resolver.master() is None


def test_client_by_phone_normalizes(db, resolver, business):
    client, _ = ClientService.upsert_client(db, business.id, "+380671234567", "Іван")

    assert resolver.client(phone="067 123 45 67").id == client.id
    assert resolver.client(phone="+380 (67) 123-45-67").id == client.id
    assert resolver.client(phone="123") is None
    assert resolver.client(client_id="missing") is None


def test_service_prefers_exact_name(db, resolver, business):
    ServiceCatalogService.upsert_service(db, business.id, "Стрижка чоловіча", 400, 30)
    exact, _ = ServiceCatalogService.upsert_service(db, business.id, "Стрижка", 500, 45)

    assert resolver.service(service_name="стрижка").id == exact.id
    assert resolver.service(service_name="чолов").name == "Стрижка чоловіча"


def test_appointment_resolution_order(db, resolver, master):
    past = add_appointment(db, master, datetime(2025, 4, 20, 10, 0))
    soon = add_appointment(db, master, datetime(2025, 5, 2, 10, 0))
    later = add_appointment(db, master, datetime(2025, 5, 5, 10, 0))
    add_appointment(db, master, datetime(2025, 5, 1, 12, 0), status="Cancelled")

    by_id = resolver.appointment(appointment_id=later.id)
    assert (by_id.appointment.id, by_id.resolved_by) == (later.id, "id")

    by_start = resolver.appointment(client_phone="0671234567", previous_start_time=past.start_time)
    assert (by_start.appointment.id, by_start.resolved_by) == (past.id, "phone_start")

    upcoming = resolver.appointment(client_phone="0671234567")
    assert (upcoming.appointment.id, upcoming.resolved_by) == (soon.id, "phone_upcoming")

    by_name = resolver.appointment(client_name="петров")
    assert (by_name.appointment.id, by_name.resolved_by) == (soon.id, "name_upcoming")


def test_appointment_miss_is_none(resolver, master):
    assert resolver.appointment(appointment_id="missing") is None
    assert resolver.appointment(client_phone="0509999999") is None
    assert resolver.appointment() is None

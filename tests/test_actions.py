"""Tests for the action executor (mutating agent actions)."""

import random
from datetime import date, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from bizagent.actions import ActionExecutor
from bizagent.command_grammar import match_command
from bizagent.db_models import DBAppointment, DBClient, DBService
from bizagent.decision import ActionType, Decision
from bizagent.sms import SmsSendResult, SmsService

FIXED_NOW = datetime(2025, 5, 1, 8, 0)
TODAY = FIXED_NOW.date()


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def executor(db, business, notifier):
    return ActionExecutor(db, now=lambda: FIXED_NOW, notifier=notifier)


def run(executor, business, text):
    return executor.execute(business.id, match_command(text, TODAY))


def book(executor, business, when="2025-05-02T10:00", phone="0671234567", name="Іван Петров", service=""):
    tail = f", {service}" if service else ""
    return run(executor, business, f"appointment: {name}, {phone}, Олена, {when}{tail}")


def test_service_command_creates_service(db, executor, business):
    result = run(executor, business, "service: Стрижка, 500, 45")

    assert result.status == "completed"
    assert result.action_data["created"] is True
    service = db.query(DBService).filter_by(business_id=business.id, name="Стрижка").one()
    assert (service.price, service.duration) == (500, 45)

    again = run(executor, business, "service: стрижка, 550, 45")
    assert again.action_data["created"] is False
    assert db.query(DBService).filter_by(business_id=business.id).count() == 1


def test_appointment_command_creates_confirmed_appointment(db, executor, business, master, notifier):
    run(executor, business, "service: Стрижка, 500, 45")
    result = book(executor, business, service="Стрижка")

    assert result.message == "Готово, запис створено."
    assert result.status == "completed"
    appointment = db.query(DBAppointment).one()
    assert appointment.status == "Confirmed"
    assert appointment.master_id == master.id
    assert appointment.client_phone == "+380671234567"
    assert appointment.end_time - appointment.start_time == timedelta(minutes=45)
    assert appointment.source == "ai_agent"

    client = db.query(DBClient).one()
    assert client.name == "Іван Петров"
    assert client.total_appointments == 1
    notifier.assert_called_once()


def test_overlapping_booking_is_a_time_conflict(db, executor, business):
    assert book(executor, business, "2025-05-02T10:00").status == "completed"

    result = book(executor, business, "2025-05-02T10:30", phone="0501112233", name="Марія")

    assert result.status == "time_conflict"
    assert result.action_data["conflict"]["start_time"] == "2025-05-02T10:00:00"
    assert result.action_data["suggestion"] == {
        "tool": "free_slots",
        "args": {"master_name": "Олена", "date": "2025-05-02"},
    }
    assert "Олена" in result.message
    assert db.query(DBAppointment).count() == 1


def test_back_to_back_bookings_do_not_conflict(db, executor, business):
    assert book(executor, business, "2025-05-02T10:00").status == "completed"
    assert book(executor, business, "2025-05-02T11:00", phone="0501112233", name="Марія").status == "completed"


def test_appointments_of_one_master_never_overlap(db, executor, business):
    starts = ["10:00", "10:15", "10:30", "11:00", "11:45", "12:00", "09:30", "12:30"]
    for i, hhmm in enumerate(starts):
        book(executor, business, f"2025-05-02T{hhmm}", phone=f"050111220{i}", name=f"Клієнт {i}")

    rows = db.query(DBAppointment).filter(DBAppointment.status != "Cancelled").order_by(DBAppointment.start_time).all()
    assert len(rows) >= 2
    for earlier, later in zip(rows, rows[1:]):
        assert earlier.end_time <= later.start_time


def test_random_creates_and_reschedules_never_overlap(db, executor, business):
    rng = random.Random(20250502)
    for name, minutes in (("Стрижка", 30), ("Фарбування", 90), ("Укладка", 45)):
        run(executor, business, f"service: {name}, 300, {minutes}")

    booked, statuses = [], set()
    for i in range(40):
        when = f"2025-05-02T{rng.randint(9, 17):02d}:{rng.choice(['00', '15', '30', '45'])}"
        if booked and rng.random() < 0.5:
            result = run(executor, business, f"reschedule: {rng.choice(booked)}, {when}, {rng.randint(1, 8) * 15}")
        else:
            service = rng.choice(["Стрижка", "Фарбування", "Укладка"])
            result = book(executor, business, when, phone=f"0501{i:06d}", name=f"Клієнт {i}", service=service)
            if result.status == "completed":
                booked.append(result.action_data["appointment"]["id"])
        statuses.add(result.status)

    assert statuses == {"completed", "time_conflict"}
    rows = db.query(DBAppointment).filter(DBAppointment.status != "Cancelled").order_by(DBAppointment.start_time).all()
    for earlier, later in zip(rows, rows[1:]):
        assert earlier.end_time <= later.start_time


def test_cancel_is_idempotent(db, executor, business):
    appointment_id = book(executor, business).action_data["appointment"]["id"]

    first = run(executor, business, f"cancel: {appointment_id}")
    second = run(executor, business, f"cancel: {appointment_id}")

    assert first.status == "completed"
    assert first.action_data["already_cancelled"] is False
    assert second.status == "completed"
    assert second.action_data["already_cancelled"] is True
    assert db.query(DBAppointment).one().status == "Cancelled"


def test_cancelled_slot_can_be_rebooked(db, executor, business):
    appointment_id = book(executor, business).action_data["appointment"]["id"]
    run(executor, business, f"cancel: {appointment_id}")
    assert book(executor, business, phone="0501112233", name="Марія").status == "completed"


def test_cancel_by_phone_finds_next_upcoming(db, executor, business):
    book(executor, business, "2025-05-02T10:00")
    result = run(executor, business, "cancel: 067 123 45 67")
    assert result.status == "completed"
    assert result.action_data["resolved_by"] == "phone_upcoming"


def test_reschedule_keeps_duration_and_checks_conflicts(db, executor, business):
    first_id = book(executor, business, "2025-05-02T10:00").action_data["appointment"]["id"]
    book(executor, business, "2025-05-02T14:00", phone="0501112233", name="Марія")

    moved = run(executor, business, f"reschedule: {first_id}, 2025-05-02T12:00")
    assert moved.status == "completed"
    assert moved.action_data["appointment"]["end_time"] == "2025-05-02T13:00:00"
    assert moved.action_data["previous_start_time"] == "2025-05-02T10:00:00"

    clash = run(executor, business, f"reschedule: {first_id}, 2025-05-02T13:30")
    assert clash.status == "time_conflict"

    run(executor, business, f"cancel: {first_id}")
    assert run(executor, business, f"reschedule: {first_id}, 2025-05-02T16:00").status == "already_cancelled"


def test_reschedule_with_explicit_minutes(db, executor, business):
    appointment_id = book(executor, business, "2025-05-02T10:00").action_data["appointment"]["id"]

    moved = run(executor, business, f"reschedule: {appointment_id}, 2025-05-02T12:00, 90")

    assert moved.status == "completed"
    appointment = db.query(DBAppointment).one()
    assert (appointment.start_time, appointment.end_time) == (datetime(2025, 5, 2, 12, 0), datetime(2025, 5, 2, 13, 30))


def test_cancel_by_client_name_fragment(db, executor, business):
    book(executor, business, "2025-05-02T10:00", name="Іван Петров")

    result = run(executor, business, "cancel: петров")

    assert result.status == "completed"
    assert result.action_data["resolved_by"] == "name_upcoming"
    assert db.query(DBAppointment).one().status == "Cancelled"


def test_done_adds_service_price_to_client_total(db, executor, business):
    run(executor, business, "service: Стрижка, 500, 45")
    appointment_id = book(executor, business, service="Стрижка").action_data["appointment"]["id"]

    result = run(executor, business, f"done: {appointment_id}")
    assert result.status == "completed"
    assert db.query(DBClient).one().total_spent == 500

    # Marking it done again does not count twice.
    run(executor, business, f"done: {appointment_id}")
    assert db.query(DBClient).one().total_spent == 500


def test_missing_fields_and_invalid_phone(executor, business):
    missing = run(executor, business, "appointment: Іван")
    assert missing.status == "missing_fields"
    assert set(missing.action_data["missing_fields"]) >= {"client_phone", "start_time", "master_name"}
    assert "телефон клієнта" in missing.message

    bad_phone = run(executor, business, "appointment: Іван, 123, Олена, 2025-05-02T10:00")
    assert bad_phone.status == "invalid_phone"


PHONE_ACTIONS = {
    ActionType.CREATE_CLIENT: lambda phone: {"name": "Іван", "phone": phone},
    ActionType.CREATE_APPOINTMENT: lambda phone: {
        "client_name": "Іван", "client_phone": phone, "master_name": "Олена", "start_time": "2025-05-02T15:00",
    },
    ActionType.SEND_SMS: lambda phone: {"phone": phone, "text": "Чекаємо вас"},
    ActionType.ADD_CLIENT_TAG: lambda phone: {"phone": phone, "tag": "vip"},
    ActionType.REMOVE_CLIENT_TAG: lambda phone: {"phone": phone, "tag": "vip"},
    ActionType.CREATE_REMINDER: lambda phone: {"client_phone": phone, "message": "Подзвонити"},
    ActionType.UPDATE_CLIENT: lambda phone: {"phone": phone, "notes": "постійний"},
}


@pytest.mark.parametrize("action", list(PHONE_ACTIONS), ids=lambda action: action.value)
@pytest.mark.parametrize("phone, valid", [
    ("0671234567", True),
    ("+380671234567", True),
    ("123", False),
    ("+1234", False),
])
def test_phone_rules_are_the_same_for_every_action(executor, business, action, phone, valid):
    run(executor, business, "client: Іван, 0671234567")

    result = executor.execute(business.id, Decision(action=action, payload=PHONE_ACTIONS[action](phone)))

    assert (result.status == "invalid_phone") is not valid


def test_unknown_master_or_service(executor, business):
    assert run(executor, business, "appointment: Іван, 0671234567, Петро, 2025-05-02T10:00").status == "master_not_found"
    assert book(executor, business, service="Масаж").status == "service_not_found"


def test_create_client_is_idempotent(db, executor, business):
    first = run(executor, business, "client: Іван, 0671234567")
    second = run(executor, business, "client: Іван Петров, +380671234567")

    assert first.action_data["created"] is True
    assert second.action_data["created"] is False
    client = db.query(DBClient).one()
    assert client.name == "Іван Петров"


def test_tags_are_a_set_in_insertion_order(db, executor, business):
    run(executor, business, "client: Іван, 0671234567")
    run(executor, business, "tag: 0671234567, vip")
    repeat = run(executor, business, "tag: 0671234567, vip")
    run(executor, business, "tag: 0671234567, новий")

    assert repeat.action_data["changed"] is False
    assert db.query(DBClient).one().tag_list == ["vip", "новий"]

    run(executor, business, "untag: 0671234567, vip")
    db.expire_all()
    assert db.query(DBClient).one().tag_list == ["новий"]


def test_update_client_rejects_phone_of_another_client(executor, business):
    run(executor, business, "client: Іван, 0671234567")
    run(executor, business, "client: Марія, 0501112233")
    decision = Decision(action=ActionType.UPDATE_CLIENT, payload={"phone": "0671234567", "newPhone": "0501112233"})
    assert executor.execute(business.id, decision).status == "phone_taken"


def test_master_schedule_and_overrides(executor, business, master):
    result = run(executor, business, "schedule: Олена, mon-fri 10:00-19:00")
    assert result.status == "completed"
    assert result.action_data["master"]["working_hours"]["monday"] == {"enabled": True, "start": "10:00", "end": "19:00"}

    assert run(executor, business, "override: Олена, 2025-05-03, вихідний").action_data["override"] == {"enabled": False}
    assert run(executor, business, "override: Олена, 2025-05-04, 18:00-10:00").status == "invalid_time_range"

    cleared = run(executor, business, "clear override: Олена, 2025-05-03")
    assert cleared.action_data["removed"] is True
    assert run(executor, business, "clear override: Олена, 2025-05-03").action_data["removed"] is False

    assert run(executor, business, "schedule: Олена, щодня").status == "missing_fields"


def test_notes_are_ordered_per_day(executor, business):
    first = run(executor, business, "note: купити фарбу")
    second = run(executor, business, "note: подзвонити постачальнику")
    assert first.status == second.status == "completed"
    assert first.action_data["note"]["date"] == "2025-05-01T00:00:00"


def test_reminder_for_client_and_for_all(executor, business):
    run(executor, business, "client: Іван, 0671234567")
    personal = run(executor, business, "reminder: 0671234567, Чекаємо вас завтра")
    assert personal.action_data["reminder"]["target_type"] == "client"

    broadcast = run(executor, business, "reminder: Знижки цього тижня")
    assert broadcast.action_data["reminder"]["target_type"] == "all"


def test_segment_counts_matching_clients(executor, business):
    run(executor, business, "client: Іван, 0671234567")
    run(executor, business, "tag: 0671234567, vip")
    result = run(executor, business, 'segment: VIP, {"tag": "vip"}')
    assert result.status == "completed"
    assert result.action_data["segment"]["name"] == "VIP"


def test_sms_without_provider_is_reported(executor, business):
    result = run(executor, business, "sms: 0671234567, Чекаємо вас")
    assert result.status == "sms_not_configured"


def test_sms_is_sent_and_logged(db, business):
    sms = MagicMock(spec=SmsService)
    sms.configured = True
    sms.send.return_value = SmsSendResult(success=True, message_id="42")
    executor = ActionExecutor(db, now=lambda: FIXED_NOW, sms_service=sms, notifier=MagicMock())

    result = executor.execute(business.id, match_command("sms: 0671234567, Чекаємо вас", TODAY))

    assert result.status == "completed"
    assert result.action_data["message_id"] == "42"
    sms.send.assert_called_once_with("+380671234567", "Чекаємо вас")


def test_business_hours_update(executor, business):
    result = run(executor, business, "business hours: mon-sat 10:00-20:00")
    assert result.status == "completed"
    assert result.action_data["working_hours"]["saturday"]["start"] == "10:00"


def test_reply_has_no_handler(executor, business):
    result = executor.execute(business.id, Decision(action=ActionType.REPLY, reply="hi"))
    assert result.status == "unsupported"

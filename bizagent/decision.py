"""
Agent decisions.

A Decision is built once per inbound message and consumed immediately. The
action tag selects a typed payload model from PAYLOAD_MODELS; the action
executor dispatches on the same tag. Payload fields accept both snake_case
and the camelCase keys the LLM tends to produce.
"""

from __future__ import annotations

import enum
import datetime as dt
from typing import Any, ClassVar, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel


class ActionType(str, enum.Enum):
    """Every action the agent can decide on."""
    REPLY = "reply"
    TOOL_CALL = "tool_call"

    CREATE_CLIENT = "create_client"
    UPDATE_CLIENT = "update_client"
    DELETE_CLIENT = "delete_client"
    ADD_CLIENT_TAG = "add_client_tag"
    REMOVE_CLIENT_TAG = "remove_client_tag"

    CREATE_MASTER = "create_master"
    UPDATE_MASTER = "update_master"
    DELETE_MASTER = "delete_master"
    UPDATE_MASTER_WORKING_HOURS = "update_master_working_hours"
    SET_MASTER_DATE_OVERRIDE = "set_master_date_override"
    CLEAR_MASTER_DATE_OVERRIDE = "clear_master_date_override"

    CREATE_SERVICE = "create_service"
    UPDATE_SERVICE = "update_service"
    DELETE_SERVICE = "delete_service"

    CREATE_APPOINTMENT = "create_appointment"
    UPDATE_APPOINTMENT = "update_appointment"
    RESCHEDULE_APPOINTMENT = "reschedule_appointment"
    CANCEL_APPOINTMENT = "cancel_appointment"

    CREATE_NOTE = "create_note"
    UPDATE_NOTE = "update_note"
    DELETE_NOTE = "delete_note"

    CREATE_REMINDER = "create_reminder"
    UPDATE_REMINDER = "update_reminder"
    DELETE_REMINDER = "delete_reminder"

    CREATE_SEGMENT = "create_segment"
    UPDATE_SEGMENT = "update_segment"
    DELETE_SEGMENT = "delete_segment"

    SEND_SMS = "send_sms"

    UPDATE_BUSINESS = "update_business"
    UPDATE_BUSINESS_WORKING_HOURS = "update_business_working_hours"


NON_MUTATING_ACTIONS = frozenset({ActionType.REPLY, ActionType.TOOL_CALL})


class ToolRequest(BaseModel):
    """A single read-only tool invocation."""
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class Decision(BaseModel):
    """The arbiter's single output per message."""
    action: ActionType = ActionType.REPLY
    reply: str = ""
    confidence: Optional[float] = None
    needs_confirmation: bool = False
    payload: dict[str, Any] = Field(default_factory=dict)
    tool: Optional[ToolRequest] = None

    @property
    def is_mutating(self) -> bool:
        return self.action not in NON_MUTATING_ACTIONS

    def typed_payload(self) -> "ActionPayload":
        """Parse the raw payload into the model registered for this action."""
        return parse_payload(PAYLOAD_MODELS[self.action], self.payload)


# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------


class ActionPayload(BaseModel):
    """Base payload. REQUIRED lists fields that must be present for the action."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    REQUIRED: ClassVar[tuple[str, ...]] = ()
    # Groups where any one field is enough; reported under the first name.
    REQUIRED_ANY: ClassVar[tuple[tuple[str, ...], ...]] = ()

    # Fields dropped because their values could not be parsed.
    invalid_fields: list[str] = Field(default_factory=list, exclude=True)

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("*", mode="after")
    @classmethod
    def _naive_wall_clock(cls, value):
        # Times are business-local wall clock; an offset from the LLM is dropped, not converted.
        if isinstance(value, dt.datetime) and value.tzinfo is not None:
            return value.replace(tzinfo=None)
        return value

    def missing_fields(self) -> list[str]:
        missing = [name for name in self.REQUIRED if getattr(self, name, None) in (None, "", [], {})]
        for group in self.REQUIRED_ANY:
            if all(getattr(self, name, None) in (None, "") for name in group):
                missing.append(group[0])
        return missing


class EmptyPayload(ActionPayload):
    pass


class ClientRef(ActionPayload):
    client_id: Optional[str] = None
    phone: Optional[str] = None

    REQUIRED_ANY = (("phone", "client_id"),)


class CreateClientPayload(ActionPayload):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[list[str]] = None

    REQUIRED = ("name", "phone")


class UpdateClientPayload(ClientRef):
    name: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[str] = None
    new_phone: Optional[str] = None


class DeleteClientPayload(ClientRef):
    pass


class ClientTagPayload(ClientRef):
    tag: Optional[str] = None

    REQUIRED = ("tag",)


class MasterRef(ActionPayload):
    master_id: Optional[str] = None
    master_name: Optional[str] = None

    REQUIRED_ANY = (("master_name", "master_id"),)


class CreateMasterPayload(ActionPayload):
    name: Optional[str] = None
    bio: Optional[str] = None
    working_hours: Optional[dict[str, Any]] = None

    REQUIRED = ("name",)


class UpdateMasterPayload(MasterRef):
    name: Optional[str] = None
    bio: Optional[str] = None
    is_active: Optional[bool] = None


class DeleteMasterPayload(MasterRef):
    pass


class MasterWorkingHoursPayload(MasterRef):
    working_hours: Optional[dict[str, Any]] = None

    REQUIRED = ("working_hours",)


class SetMasterDateOverridePayload(MasterRef):
    date: Optional[dt.date] = None
    enabled: bool = True
    start: Optional[str] = None
    end: Optional[str] = None

    REQUIRED = ("date",)


class ClearMasterDateOverridePayload(MasterRef):
    date: Optional[dt.date] = None

    REQUIRED = ("date",)


class ServiceRef(ActionPayload):
    service_id: Optional[str] = None
    service_name: Optional[str] = None

    REQUIRED_ANY = (("service_name", "service_id"),)


class CreateServicePayload(ActionPayload):
    name: Optional[str] = None
    price: Optional[int] = None
    duration: Optional[int] = None
    category: Optional[str] = None

    REQUIRED = ("name", "price", "duration")


class UpdateServicePayload(ServiceRef):
    name: Optional[str] = None
    price: Optional[int] = None
    duration: Optional[int] = None
    category: Optional[str] = None


class DeleteServicePayload(ServiceRef):
    pass


class AppointmentRef(ActionPayload):
    """Loose appointment reference: id, or phone (+ prior start), or client name."""
    appointment_id: Optional[str] = None
    client_phone: Optional[str] = None
    client_name: Optional[str] = None
    previous_start_time: Optional[dt.datetime] = None

    REQUIRED_ANY = (("appointment_id", "client_phone", "client_name"),)


class CreateAppointmentPayload(ActionPayload):
    client_name: Optional[str] = None
    client_phone: Optional[str] = None
    master_id: Optional[str] = None
    master_name: Optional[str] = None
    start_time: Optional[dt.datetime] = None
    service_id: Optional[str] = None
    service_name: Optional[str] = None
    duration_minutes: Optional[int] = None
    notes: Optional[str] = None

    REQUIRED = ("client_name", "client_phone", "start_time")
    REQUIRED_ANY = (("master_name", "master_id"),)


class RescheduleAppointmentPayload(AppointmentRef):
    start_time: Optional[dt.datetime] = None
    duration_minutes: Optional[int] = None

    REQUIRED = ("start_time",)


class CancelAppointmentPayload(AppointmentRef):
    pass


class UpdateAppointmentPayload(AppointmentRef):
    status: Optional[str] = None
    notes: Optional[str] = None
    custom_price: Optional[int] = None


class CreateNotePayload(ActionPayload):
    text: Optional[str] = None
    date: Optional[dt.date] = None

    REQUIRED = ("text",)


class UpdateNotePayload(ActionPayload):
    note_id: Optional[str] = None
    text: Optional[str] = None
    completed: Optional[bool] = None
    date: Optional[dt.date] = None

    REQUIRED = ("note_id",)


class DeleteNotePayload(ActionPayload):
    note_id: Optional[str] = None

    REQUIRED = ("note_id",)


class CreateReminderPayload(ActionPayload):
    message: Optional[str] = None
    scheduled_at: Optional[dt.datetime] = None
    client_id: Optional[str] = None
    client_phone: Optional[str] = None

    REQUIRED = ("message",)


class UpdateReminderPayload(ActionPayload):
    reminder_id: Optional[str] = None
    message: Optional[str] = None
    scheduled_at: Optional[dt.datetime] = None
    status: Optional[str] = None

    REQUIRED = ("reminder_id",)


class DeleteReminderPayload(ActionPayload):
    reminder_id: Optional[str] = None

    REQUIRED = ("reminder_id",)


class CreateSegmentPayload(ActionPayload):
    name: Optional[str] = None
    criteria: Optional[Union[dict[str, Any], str]] = None
    auto_update: bool = False

    REQUIRED = ("name",)


class SegmentRef(ActionPayload):
    segment_id: Optional[str] = None
    segment_name: Optional[str] = None

    REQUIRED_ANY = (("segment_name", "segment_id"),)


class UpdateSegmentPayload(SegmentRef):
    name: Optional[str] = None
    criteria: Optional[Union[dict[str, Any], str]] = None
    auto_update: Optional[bool] = None


class DeleteSegmentPayload(SegmentRef):
    pass


class SendSmsPayload(ActionPayload):
    phone: Optional[str] = None
    text: Optional[str] = None

    REQUIRED = ("phone", "text")


class UpdateBusinessPayload(ActionPayload):
    name: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None


class BusinessWorkingHoursPayload(ActionPayload):
    working_hours: Optional[dict[str, Any]] = None

    REQUIRED = ("working_hours",)


PAYLOAD_MODELS: dict[ActionType, type[ActionPayload]] = {
    ActionType.REPLY: EmptyPayload,
    ActionType.TOOL_CALL: EmptyPayload,
    ActionType.CREATE_CLIENT: CreateClientPayload,
    ActionType.UPDATE_CLIENT: UpdateClientPayload,
    ActionType.DELETE_CLIENT: DeleteClientPayload,
    ActionType.ADD_CLIENT_TAG: ClientTagPayload,
    ActionType.REMOVE_CLIENT_TAG: ClientTagPayload,
    ActionType.CREATE_MASTER: CreateMasterPayload,
    ActionType.UPDATE_MASTER: UpdateMasterPayload,
    ActionType.DELETE_MASTER: DeleteMasterPayload,
    ActionType.UPDATE_MASTER_WORKING_HOURS: MasterWorkingHoursPayload,
    ActionType.SET_MASTER_DATE_OVERRIDE: SetMasterDateOverridePayload,
    ActionType.CLEAR_MASTER_DATE_OVERRIDE: ClearMasterDateOverridePayload,
    ActionType.CREATE_SERVICE: CreateServicePayload,
    ActionType.UPDATE_SERVICE: UpdateServicePayload,
    ActionType.DELETE_SERVICE: DeleteServicePayload,
    ActionType.CREATE_APPOINTMENT: CreateAppointmentPayload,
    ActionType.UPDATE_APPOINTMENT: UpdateAppointmentPayload,
    ActionType.RESCHEDULE_APPOINTMENT: RescheduleAppointmentPayload,
    ActionType.CANCEL_APPOINTMENT: CancelAppointmentPayload,
    ActionType.CREATE_NOTE: CreateNotePayload,
    ActionType.UPDATE_NOTE: UpdateNotePayload,
    ActionType.DELETE_NOTE: DeleteNotePayload,
    ActionType.CREATE_REMINDER: CreateReminderPayload,
    ActionType.UPDATE_REMINDER: UpdateReminderPayload,
    ActionType.DELETE_REMINDER: DeleteReminderPayload,
    ActionType.CREATE_SEGMENT: CreateSegmentPayload,
    ActionType.UPDATE_SEGMENT: UpdateSegmentPayload,
    ActionType.DELETE_SEGMENT: DeleteSegmentPayload,
    ActionType.SEND_SMS: SendSmsPayload,
    ActionType.UPDATE_BUSINESS: UpdateBusinessPayload,
    ActionType.UPDATE_BUSINESS_WORKING_HOURS: BusinessWorkingHoursPayload,
}


def parse_payload(model: type[ActionPayload], raw: dict[str, Any] | None) -> ActionPayload:
    """
    Validate a free-form payload against its model.

    Values that fail validation are dropped and recorded in invalid_fields, so
    a bad date from the LLM becomes a "missing field" question for the user
    rather than an exception.
    """
    data = dict(raw or {})
    invalid: list[str] = []
    name_by_alias = {(field.alias or name): name for name, field in model.model_fields.items()}
    for _ in range(len(data) + 1):
        try:
            payload = model.model_validate(data)
            payload.invalid_fields = invalid
            return payload
        except ValidationError as exc:
            bad_names = {
                name_by_alias.get(str(err["loc"][0]), str(err["loc"][0]))
                for err in exc.errors()
                if err.get("loc")
            }
            bad_keys = {key for key in data if name_by_alias.get(key, key) in bad_names}
            if not bad_keys:
                break
            for key in bad_keys:
                data.pop(key)
                invalid.append(name_by_alias.get(key, key))
    payload = model()
    payload.invalid_fields = invalid or list(raw or {})
    return payload

from pydantic import BaseModel, Field, model_validator
from typing import Literal
import uuid
from datetime import datetime
from app.modules.availability.schemas import Meta

AppointmentStatus = Literal["scheduled", "confirmed", "completed", "cancelled", "no_show"]
AppointmentType = Literal["consultation", "follow_up", "assessment", "other"]

# ---- Booking ----

class BookingDetails(BaseModel):
    title: str = Field(default="Appointment", min_length=1, max_length=200)
    description: str | None = None
    appointment_type: AppointmentType = "consultation"
    notes: str | None = None
    meta: Meta | None = None

class BookRequest(BookingDetails):
    hold_token: str | None = None

# ---- Appointments ----

class AppointmentCreate(BookingDetails):
    professional_id: uuid.UUID
    client_id: uuid.UUID | None = None  # defaults to the caller
    scheduled_start: datetime
    scheduled_end: datetime
    timezone: str | None = None

    @model_validator(mode="after")
    def _order(self):
        if self.scheduled_start.tzinfo is None or self.scheduled_end.tzinfo is None:
            raise ValueError("scheduled_start and scheduled_end must carry a UTC offset")
        if self.scheduled_end <= self.scheduled_start:
            raise ValueError("scheduled_end must be after scheduled_start")
        return self

class AppointmentReschedule(BaseModel):
    scheduled_start: datetime
    scheduled_end: datetime
    reason: str | None = None

    @model_validator(mode="after")
    def _order(self):
        if self.scheduled_start.tzinfo is None or self.scheduled_end.tzinfo is None:
            raise ValueError("scheduled_start and scheduled_end must carry a UTC offset")
        if self.scheduled_end <= self.scheduled_start:
            raise ValueError("scheduled_end must be after scheduled_start")
        return self

class AppointmentStatusChange(BaseModel):
    status: AppointmentStatus
    reason: str | None = None

class AppointmentCancel(BaseModel):
    reason: str | None = Field(default=None, max_length=500)

class AppointmentOut(BaseModel):
    id: uuid.UUID
    professional_id: uuid.UUID
    client_id: uuid.UUID
    slot_id: uuid.UUID | None = None
    config_id: uuid.UUID | None = None
    title: str
    description: str | None = None
    appointment_type: str
    notes: str | None = None
    scheduled_start: datetime
    scheduled_end: datetime
    timezone: str
    status: AppointmentStatus
    reschedule_count: int
    cancelled_at: datetime | None = None
    cancelled_by: uuid.UUID | None = None
    cancel_reason: str | None = None
    meta: Meta | None = None
    version: int
    created_at: datetime
    updated_at: datetime
    class Config: from_attributes = True

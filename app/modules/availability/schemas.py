import uuid
from datetime import date, datetime, time
from typing import Literal
from pydantic import BaseModel, Field, model_validator
from app.core.config import settings
from app.modules.availability.recurrence import Recurrence

# Free-form metadata, validated once here and stored as JSON
Meta = dict[str, str | int | float | bool | None]

DSTHandling = Literal["auto", "fixed"]
SlotStatus = Literal["available", "held", "booked", "cancelled"]
BlockReason = Literal["vacation", "sick_leave", "personal", "training", "other"]


class BusinessRules(BaseModel):
    buffer_minutes: int = Field(default_factory=lambda: settings.DEFAULT_BUFFER_MINUTES, ge=0, le=240)
    max_slots_per_day: int = Field(default_factory=lambda: settings.DEFAULT_MAX_SLOTS_PER_DAY, ge=1, le=96)
    min_advance_minutes: int = Field(default_factory=lambda: settings.DEFAULT_MIN_ADVANCE_MINUTES, ge=0)
    max_advance_days: int = Field(default_factory=lambda: settings.DEFAULT_MAX_ADVANCE_DAYS, ge=1, le=365)


# ---- Configs ----

class ConfigCreate(BaseModel):
    professional_id: uuid.UUID | None = None  # defaults to the caller
    title: str = Field(min_length=1, max_length=120)
    description: str | None = None
    recurrence: Recurrence
    start_time: time
    end_time: time
    duration_minutes: int = Field(default_factory=lambda: settings.DEFAULT_SLOT_MINUTES, ge=5, le=480)
    timezone: str = Field(default_factory=lambda: settings.DEFAULT_TIMEZONE)
    dst_handling: DSTHandling = "auto"
    valid_from: date
    valid_until: date | None = None
    rules: BusinessRules = Field(default_factory=BusinessRules)
    meta: Meta | None = None

    @model_validator(mode="after")
    def _window(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        if self.valid_until is not None and self.valid_until < self.valid_from:
            raise ValueError("valid_until must not be before valid_from")
        return self


class ConfigUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=120)
    description: str | None = None
    recurrence: Recurrence | None = None
    start_time: time | None = None
    end_time: time | None = None
    duration_minutes: int | None = Field(default=None, ge=5, le=480)
    timezone: str | None = None
    dst_handling: DSTHandling | None = None
    valid_from: date | None = None
    valid_until: date | None = None
    is_active: bool | None = None
    rules: BusinessRules | None = None
    meta: Meta | None = None


class ConfigOut(BaseModel):
    id: uuid.UUID
    professional_id: uuid.UUID
    title: str
    description: str | None = None
    recurrence: Recurrence
    start_time: time
    end_time: time
    duration_minutes: int
    timezone: str
    dst_handling: DSTHandling
    valid_from: date
    valid_until: date | None = None
    is_active: bool
    rules: BusinessRules
    meta: Meta | None = None
    version: int
    created_at: datetime
    updated_at: datetime
    class Config: from_attributes = True


class GenerateRequest(BaseModel):
    range_start: date
    range_end: date  # exclusive
    force_regenerate: bool = False


class GenerationResult(BaseModel):
    generated_count: int
    deleted_count: int = 0
    skipped_days: list[date] = []
    warnings: list[str] = []


# ---- Slots ----

class SlotOut(BaseModel):
    id: uuid.UUID
    config_id: uuid.UUID | None = None
    professional_id: uuid.UUID
    start_time: datetime
    end_time: datetime
    local_date: date
    local_start: str
    local_end: str
    timezone: str
    status: SlotStatus
    booked_by: uuid.UUID | None = None
    booked_at: datetime | None = None
    held_by: uuid.UUID | None = None
    hold_expires_at: datetime | None = None
    meta: Meta | None = None
    # filled when a display zone is requested
    display_timezone: str | None = None
    display_start: datetime | None = None
    display_end: datetime | None = None
    class Config: from_attributes = True


class SlotUpdate(BaseModel):
    status: Literal["available", "cancelled"] | None = None
    meta: Meta | None = None


class HoldRequest(BaseModel):
    ttl_seconds: int | None = Field(default=None, ge=1, le=settings.MAX_HOLD_TTL_SECONDS)


class HoldOut(BaseModel):
    slot_id: uuid.UUID
    hold_token: str
    expires_at: datetime


class ReleaseRequest(BaseModel):
    hold_token: str


# ---- Blocked periods ----

class BlockCreate(BaseModel):
    professional_id: uuid.UUID | None = None
    start_time: datetime
    end_time: datetime
    reason: BlockReason = "other"
    source: Literal["manual", "import"] = "manual"
    notes: str | None = None
    allow_override: bool = False

    @model_validator(mode="after")
    def _order(self):
        if self.start_time.tzinfo is None or self.end_time.tzinfo is None:
            raise ValueError("start_time and end_time must carry a UTC offset")
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class BlockOut(BaseModel):
    id: uuid.UUID
    professional_id: uuid.UUID
    start_time: datetime
    end_time: datetime
    reason: str
    source: str
    notes: str | None = None
    is_active: bool
    created_at: datetime
    class Config: from_attributes = True


class StatsOut(BaseModel):
    total_slots: int
    available_slots: int
    held_slots: int
    booked_slots: int
    cancelled_slots: int
    active_blocks: int
    appointments: int
    utilization_rate: float  # percent of non-cancelled slots that are booked

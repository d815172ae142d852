import uuid
from datetime import datetime
from pydantic import BaseModel, model_validator

class ConflictCheckRequest(BaseModel):
    professional_id: uuid.UUID | None = None  # defaults to the caller
    start_time: datetime
    end_time: datetime
    timezone: str | None = None
    exclude_appointment_id: uuid.UUID | None = None

    @model_validator(mode="after")
    def _order(self):
        if self.start_time.tzinfo is None or self.end_time.tzinfo is None:
            raise ValueError("start_time and end_time must carry a UTC offset")
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

class ConflictOut(BaseModel):
    type: str
    id: uuid.UUID
    start: datetime
    end: datetime
    status: str | None = None
    title: str | None = None
    reason: str | None = None

class ConflictCheckOut(BaseModel):
    valid: bool
    conflicts: list[ConflictOut]
    warnings: list[str] = []

from datetime import datetime
from pydantic import BaseModel

class ConvertRequest(BaseModel):
    instant: datetime  # naive = wall-clock in from_zone
    from_zone: str
    to_zone: str

class ConvertOut(BaseModel):
    utc: datetime
    local: datetime
    timezone: str
    offset_minutes: int
    is_dst: bool
    warnings: list[str] = []

class ZoneOut(BaseModel):
    identifier: str
    name: str
    abbreviation: str | None = None
    offset_minutes: int
    offset_string: str
    is_dst: bool

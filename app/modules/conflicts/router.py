from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.db import get_session
from app.core.intervals import Interval
from app.core.security import get_principal, require_scopes, Principal, AVAILABILITY_READ
from app.modules.conflicts.detector import ConflictDetector
from app.modules.conflicts.schemas import ConflictCheckRequest, ConflictCheckOut

router = APIRouter()

def detector(session: AsyncSession = Depends(get_session)) -> ConflictDetector:
    return ConflictDetector(session)

@router.post("/conflicts/check", response_model=ConflictCheckOut, dependencies=[Depends(require_scopes(AVAILABILITY_READ))])
async def check_conflicts(payload: ConflictCheckRequest, principal: Principal = Depends(get_principal), d: ConflictDetector = Depends(detector)):
    return await d.check(
        Interval(payload.start_time, payload.end_time),
        principal.acting_for(payload.professional_id),
        zone_id=payload.timezone,
        exclude_appointment_id=payload.exclude_appointment_id,
    )

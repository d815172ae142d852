import uuid
from datetime import datetime
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_session
from app.core.security import get_principal, Principal, require_scopes, APPOINTMENTS_READ, APPOINTMENTS_WRITE
from app.modules.appointments.schemas import (
    AppointmentCreate, AppointmentReschedule, AppointmentStatusChange, AppointmentCancel, AppointmentOut,
)
from app.modules.appointments.service import AppointmentService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> AppointmentService:
    return AppointmentService(session)

# ---- Appointments ----

@router.post("/appointments", response_model=AppointmentOut, status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_scopes(APPOINTMENTS_WRITE))])
async def create_appointment(
    payload: AppointmentCreate,
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(svc),
):
    return await service.create_appointment(principal.user_id, payload)

@router.get("/appointments", response_model=list[AppointmentOut], dependencies=[Depends(require_scopes(APPOINTMENTS_READ))])
async def list_appointments(
    professional_id: uuid.UUID | None = None,
    client_id: uuid.UUID | None = None,
    status: str | None = Query(default=None, pattern="^(scheduled|confirmed|completed|cancelled|no_show)$"),
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(svc),
):
    # without an explicit filter non-admins only see their own bookings
    if not principal.is_admin and not professional_id and not client_id:
        client_id = principal.user_id
    return await service.list_appointments(
        professional_id=professional_id, client_id=client_id, status=status,
        start=start, end=end, limit=limit, offset=offset,
    )

@router.get("/appointments/{appointment_id}", response_model=AppointmentOut, dependencies=[Depends(require_scopes(APPOINTMENTS_READ))])
async def get_appointment(
    appointment_id: uuid.UUID,
    service: AppointmentService = Depends(svc),
):
    return await service.get(appointment_id)

@router.post("/appointments/{appointment_id}/status", response_model=AppointmentOut, dependencies=[Depends(require_scopes(APPOINTMENTS_WRITE))])
async def change_appointment_status(
    appointment_id: uuid.UUID,
    payload: AppointmentStatusChange,
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(svc),
):
    return await service.change_status(appointment_id, payload.status, principal.user_id, payload.reason)

@router.post("/appointments/{appointment_id}/reschedule", response_model=AppointmentOut, dependencies=[Depends(require_scopes(APPOINTMENTS_WRITE))])
async def reschedule_appointment(
    appointment_id: uuid.UUID,
    payload: AppointmentReschedule,
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(svc),
):
    return await service.reschedule_appointment(
        appointment_id, payload.scheduled_start, payload.scheduled_end, principal.user_id, payload.reason
    )

@router.post("/appointments/{appointment_id}/cancel", response_model=AppointmentOut, dependencies=[Depends(require_scopes(APPOINTMENTS_WRITE))])
async def cancel_appointment(
    appointment_id: uuid.UUID,
    payload: AppointmentCancel | None = None,
    principal: Principal = Depends(get_principal),
    service: AppointmentService = Depends(svc),
):
    return await service.cancel_appointment(appointment_id, principal.user_id, payload.reason if payload else None)

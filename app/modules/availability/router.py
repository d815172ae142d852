import uuid
from datetime import datetime
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.db import get_session
from app.core.security import (
    get_principal, require_scopes, Principal,
    AVAILABILITY_READ, AVAILABILITY_WRITE, AVAILABILITY_ADMIN, APPOINTMENTS_WRITE,
)
from app.modules.availability.service import AvailabilityService
from app.modules.availability.schemas import (
    ConfigCreate, ConfigUpdate, ConfigOut, GenerateRequest, GenerationResult,
    SlotOut, SlotUpdate, HoldRequest, HoldOut, ReleaseRequest,
    BlockCreate, BlockOut, StatsOut,
)
from app.modules.appointments.service import AppointmentService
from app.modules.appointments.schemas import AppointmentOut, BookRequest, BookingDetails

router = APIRouter()

def svc(s: AsyncSession = Depends(get_session)) -> AvailabilityService:
    return AvailabilityService(s)

def booking(s: AsyncSession = Depends(get_session)) -> AppointmentService:
    return AppointmentService(s)

# ---- Configs ----
@router.post("/availability/configs", response_model=ConfigOut, status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_scopes(AVAILABILITY_WRITE))])
async def create_config(payload: ConfigCreate, principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    return await service.create_config(principal.acting_for(payload.professional_id), payload)

@router.get("/availability/configs", response_model=list[ConfigOut], dependencies=[Depends(require_scopes(AVAILABILITY_READ))])
async def list_configs(professional_id: uuid.UUID | None = None, include_inactive: bool = False, principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    return await service.list_configs(principal.acting_for(professional_id), include_inactive)

@router.get("/availability/configs/{config_id}", response_model=ConfigOut, dependencies=[Depends(require_scopes(AVAILABILITY_READ))])
async def get_config(config_id: uuid.UUID, service: AvailabilityService = Depends(svc)):
    return await service.get_config(config_id)

@router.patch("/availability/configs/{config_id}", response_model=ConfigOut, dependencies=[Depends(require_scopes(AVAILABILITY_WRITE))])
async def update_config(config_id: uuid.UUID, payload: ConfigUpdate, service: AvailabilityService = Depends(svc)):
    return await service.update_config(config_id, payload)

@router.delete("/availability/configs/{config_id}", response_model=ConfigOut, dependencies=[Depends(require_scopes(AVAILABILITY_WRITE))])
async def delete_config(config_id: uuid.UUID, service: AvailabilityService = Depends(svc)):
    return await service.delete_config(config_id)

@router.post("/availability/configs/{config_id}/generate", response_model=GenerationResult, dependencies=[Depends(require_scopes(AVAILABILITY_WRITE))])
async def generate_slots(config_id: uuid.UUID, payload: GenerateRequest, service: AvailabilityService = Depends(svc)):
    return await service.generate_slots(config_id, payload.range_start, payload.range_end, payload.force_regenerate)

# ---- Slots ----
@router.get("/availability/slots", response_model=list[SlotOut], dependencies=[Depends(require_scopes(AVAILABILITY_READ))])
async def query_slots(
    professional_id: uuid.UUID,
    start: datetime | None = None,
    end: datetime | None = None,
    status: str | None = Query(default=None, pattern="^(available|held|booked|cancelled)$"),
    config_id: uuid.UUID | None = None,
    timezone: str | None = None,
    limit: int = Query(default=200, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    service: AvailabilityService = Depends(svc),
):
    return await service.query_slots(
        professional_id, start=start, end=end, status=status, config_id=config_id,
        display_zone=timezone, limit=limit, offset=offset,
    )

@router.get("/availability/slots/{slot_id}", response_model=SlotOut, dependencies=[Depends(require_scopes(AVAILABILITY_READ))])
async def get_slot(slot_id: uuid.UUID, service: AvailabilityService = Depends(svc)):
    return await service.get_slot(slot_id)

@router.patch("/availability/slots/{slot_id}", response_model=SlotOut, dependencies=[Depends(require_scopes(AVAILABILITY_ADMIN))])
async def update_slot(slot_id: uuid.UUID, payload: SlotUpdate, service: AvailabilityService = Depends(svc)):
    return await service.update_slot(slot_id, payload)

@router.post("/availability/slots/{slot_id}/hold", response_model=HoldOut, dependencies=[Depends(require_scopes(APPOINTMENTS_WRITE))])
async def hold_slot(slot_id: uuid.UUID, payload: HoldRequest | None = None, principal: Principal = Depends(get_principal), service: AppointmentService = Depends(booking)):
    slot = await service.hold_slot(slot_id, principal.user_id, payload.ttl_seconds if payload else None)
    return {"slot_id": slot.id, "hold_token": slot.hold_token, "expires_at": slot.hold_expires_at}

@router.delete("/availability/slots/{slot_id}/hold", response_model=SlotOut, dependencies=[Depends(require_scopes(APPOINTMENTS_WRITE))])
async def release_hold(slot_id: uuid.UUID, payload: ReleaseRequest, service: AppointmentService = Depends(booking)):
    return await service.release_hold(slot_id, payload.hold_token)

@router.post("/availability/slots/{slot_id}/book", response_model=AppointmentOut, status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_scopes(APPOINTMENTS_WRITE))])
async def book_slot(slot_id: uuid.UUID, payload: BookRequest, principal: Principal = Depends(get_principal), service: AppointmentService = Depends(booking)):
    details = BookingDetails(**payload.model_dump(exclude={"hold_token"}))
    return await service.book_slot(slot_id, principal.user_id, details, hold_token=payload.hold_token)

# ---- Blocked periods ----
@router.post("/availability/blocks", response_model=BlockOut, status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_scopes(AVAILABILITY_WRITE))])
async def create_block(payload: BlockCreate, principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    return await service.create_block(principal.acting_for(payload.professional_id), payload)

@router.get("/availability/blocks", response_model=list[BlockOut], dependencies=[Depends(require_scopes(AVAILABILITY_READ))])
async def list_blocks(professional_id: uuid.UUID | None = None, start: datetime | None = None, end: datetime | None = None, include_inactive: bool = False, principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    return await service.list_blocks(principal.acting_for(professional_id), start, end, include_inactive)

@router.delete("/availability/blocks/{block_id}", response_model=BlockOut, dependencies=[Depends(require_scopes(AVAILABILITY_WRITE))])
async def deactivate_block(block_id: uuid.UUID, service: AvailabilityService = Depends(svc)):
    return await service.deactivate_block(block_id)

# ---- Stats ----
@router.get("/availability/stats", response_model=StatsOut, dependencies=[Depends(require_scopes(AVAILABILITY_READ))])
async def stats(professional_id: uuid.UUID | None = None, start: datetime | None = None, end: datetime | None = None, principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    return await service.stats(principal.acting_for(professional_id), start, end)

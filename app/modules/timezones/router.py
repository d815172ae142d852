from datetime import timezone
from fastapi import APIRouter, Depends
from app.core.security import require_scopes, TIMEZONES_READ
from app.modules.timezones import service as tz
from app.modules.timezones.schemas import ConvertRequest, ConvertOut, ZoneOut

router = APIRouter()

@router.post("/timezones/convert", response_model=ConvertOut, dependencies=[Depends(require_scopes(TIMEZONES_READ))])
async def convert(payload: ConvertRequest):
    src = tz.resolve_zone(payload.from_zone)
    dst = tz.resolve_zone(payload.to_zone)
    warnings = [str(w.warning) for w in (src, dst) if w.warning]
    local = tz.convert_timezone(payload.instant, src.zone_id, dst.zone_id)
    offset = local.utcoffset()
    return ConvertOut(
        utc=local.astimezone(timezone.utc),
        local=local,
        timezone=dst.zone_id,
        offset_minutes=int(offset.total_seconds() // 60) if offset else 0,
        is_dst=bool(local.dst()),
        warnings=warnings,
    )

@router.get("/timezones", response_model=list[ZoneOut], dependencies=[Depends(require_scopes(TIMEZONES_READ))])
async def list_zones():
    return [tz.zone_info(z) for z in tz.list_supported_zones()]

import uuid
from datetime import date
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from therapy_booking.core.base import utcnow
from therapy_booking.core.db import get_session
from therapy_booking.core.security import get_principal, Principal
from therapy_booking.modules.availability.service import AvailabilityService
from therapy_booking.modules.availability.slots import format_clock
from therapy_booking.modules.availability.schemas import (
    BookingSettingsUpdate, BookingSettingsOut, WeeklyDayIn, WeeklySlotOut,
    OverrideUpsert, OverrideOut, SlotOut, AvailableDatesOut,
)

router = APIRouter()
public_router = APIRouter()

def svc(s: AsyncSession = Depends(get_session)) -> AvailabilityService:
    return AvailabilityService(s)

def _weekly_out(w) -> WeeklySlotOut:
    return WeeklySlotOut(id=w.id, day_of_week=w.day_of_week, start_time=format_clock(w.start_time), end_time=format_clock(w.end_time))

def _override_out(o) -> OverrideOut:
    return OverrideOut(
        id=o.id, override_date=o.override_date, is_available=o.is_available, reason=o.reason,
        start_time=format_clock(o.start_time) if o.start_time else None,
        end_time=format_clock(o.end_time) if o.end_time else None,
    )

# ---- Public slot search ----

@public_router.get("/{therapist_id}/available-dates", response_model=AvailableDatesOut)
async def available_dates(therapist_id: uuid.UUID, year: int = Query(ge=1, le=9999), month: int = Query(ge=1, le=12), service: AvailabilityService = Depends(svc)):
    dates = await service.get_available_dates(therapist_id, year, month, utcnow())
    return AvailableDatesOut(year=year, month=month, dates=dates)

@public_router.get("/{therapist_id}/available-slots", response_model=list[SlotOut])
async def available_slots(therapist_id: uuid.UUID, date: date, service: AvailabilityService = Depends(svc)):
    slots = await service.get_available_slots(therapist_id, date, utcnow())
    return [SlotOut(**s.as_dict()) for s in slots]

# ---- Therapist settings ----

@router.get("/settings", response_model=BookingSettingsOut)
async def get_settings(principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    return await service.get_settings_for(principal)

@router.put("/settings", response_model=BookingSettingsOut)
async def update_settings(payload: BookingSettingsUpdate, principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    return await service.update_settings(principal, payload)

@router.get("/weekly", response_model=list[WeeklySlotOut])
async def get_weekly(principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    return [_weekly_out(w) for w in await service.get_weekly(principal)]

@router.put("/weekly", response_model=list[WeeklySlotOut])
async def save_weekly(payload: list[WeeklyDayIn], principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    return [_weekly_out(w) for w in await service.save_weekly(principal, payload)]

@router.get("/overrides", response_model=list[OverrideOut])
async def list_overrides(start: date | None = None, end: date | None = None, principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    return [_override_out(o) for o in await service.list_overrides(principal, start, end)]

@router.put("/overrides", response_model=OverrideOut)
async def upsert_override(payload: OverrideUpsert, principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    return _override_out(await service.upsert_override(principal, payload))

@router.delete("/overrides/{override_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_override(override_id: uuid.UUID, principal: Principal = Depends(get_principal), service: AvailabilityService = Depends(svc)):
    await service.delete_override(principal, override_id)

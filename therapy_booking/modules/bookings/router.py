import uuid
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from therapy_booking.core.base import utcnow
from therapy_booking.core.db import get_session
from therapy_booking.core.security import get_principal, Principal
from therapy_booking.modules.availability.slots import format_clock
from therapy_booking.modules.bookings.schemas import (
    BookingSubmit, BookingSubmitted, VerifyResult, CancelRequest, BookingOut, VisitorBookingOut, BookingFilter,
)
from therapy_booking.modules.bookings.service import BookingService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> BookingService:
    return BookingService(session)

# ---- Visitor ----

@router.post("", response_model=BookingSubmitted, status_code=status.HTTP_201_CREATED)
async def submit_booking(payload: BookingSubmit, service: BookingService = Depends(svc)):
    return await service.submit_booking(payload, utcnow())

@router.get("/verify", response_model=VerifyResult)
async def verify_booking(token: str = Query(min_length=1, max_length=64), service: BookingService = Depends(svc)):
    return await service.verify_booking(token, utcnow())

@router.get("/visitor/{visitor_token}", response_model=VisitorBookingOut)
async def get_visitor_booking(visitor_token: str, service: BookingService = Depends(svc)):
    b, therapist = await service.get_booking_by_visitor_token(visitor_token)
    return VisitorBookingOut(
        id=b.id, therapist_profile_id=b.therapist_profile_id, therapist_name=therapist.display_name,
        booking_date=b.booking_date, start_time=format_clock(b.start_time), end_time=format_clock(b.end_time),
        session_format=b.session_format, status=b.status, is_verified=b.is_verified,
        cancelled_at=b.cancelled_at, cancelled_by=b.cancelled_by,
    )

@router.post("/visitor/{visitor_token}/cancel", response_model=BookingOut)
async def visitor_cancel(visitor_token: str, payload: CancelRequest, service: BookingService = Depends(svc)):
    return await service.cancel_booking_by_visitor(visitor_token, payload.reason, utcnow())

# ---- Therapist ----

@router.get("", response_model=list[BookingOut])
async def list_bookings(
    filter: BookingFilter = Query(default="all"),
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(svc),
):
    return await service.list_bookings(principal, filter, utcnow())

@router.post("/{booking_id}/confirm", response_model=BookingOut)
async def confirm_booking(booking_id: uuid.UUID, principal: Principal = Depends(get_principal), service: BookingService = Depends(svc)):
    return await service.confirm_booking(principal, booking_id, utcnow())

@router.post("/{booking_id}/cancel", response_model=BookingOut)
async def cancel_booking(booking_id: uuid.UUID, payload: CancelRequest, principal: Principal = Depends(get_principal), service: BookingService = Depends(svc)):
    return await service.cancel_booking(principal, booking_id, payload.reason, utcnow())

@router.post("/{booking_id}/complete", response_model=BookingOut)
async def complete_booking(booking_id: uuid.UUID, principal: Principal = Depends(get_principal), service: BookingService = Depends(svc)):
    return await service.mark_completed(principal, booking_id, utcnow())

@router.post("/{booking_id}/no-show", response_model=BookingOut)
async def no_show_booking(booking_id: uuid.UUID, principal: Principal = Depends(get_principal), service: BookingService = Depends(svc)):
    return await service.mark_no_show(principal, booking_id, utcnow())

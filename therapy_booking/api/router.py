from fastapi import APIRouter
from therapy_booking.modules.availability.router import router as availability_router, public_router as therapists_router
from therapy_booking.modules.bookings.router import router as bookings_router
from therapy_booking.modules.calendar.router import router as calendar_router
from therapy_booking.modules.reminders.router import router as reminders_router

api_router = APIRouter()
api_router.include_router(therapists_router, prefix="/therapists", tags=["slots"])
api_router.include_router(availability_router, prefix="/availability", tags=["availability"])
api_router.include_router(calendar_router, prefix="/calendar", tags=["calendar"])
api_router.include_router(bookings_router, prefix="/bookings", tags=["bookings"])
api_router.include_router(reminders_router, prefix="/reminders", tags=["reminders"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}

from fastapi import APIRouter, Depends
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from therapy_booking.core.base import utcnow
from therapy_booking.core.config import settings
from therapy_booking.core.db import get_session
from therapy_booking.core.security import http_bearer, require_api_key
from therapy_booking.modules.reminders.schemas import ReminderSummary
from therapy_booking.modules.reminders.service import ReminderService

router = APIRouter()

@router.post("/run", response_model=ReminderSummary)
async def run_reminders(
    creds: HTTPAuthorizationCredentials | None = Depends(http_bearer),
    session: AsyncSession = Depends(get_session),
):
    """Triggered by an external scheduler; safe to call repeatedly or concurrently."""
    require_api_key(settings.REMINDER_API_KEY, creds)
    return await ReminderService(session).run_reminder_pass(utcnow())

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from therapy_booking.core.db import get_session
from therapy_booking.core.security import Principal, get_principal, require_scopes
from therapy_booking.modules.calendar.schemas import CalendarConnectionOut
from therapy_booking.modules.calendar.service import CalendarService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> CalendarService:
    return CalendarService(session)

@router.get("/connections", response_model=list[CalendarConnectionOut])
async def list_connections(service: CalendarService = Depends(svc), principal: Principal = Depends(get_principal)):
    return await service.list_connections(principal)

@router.delete("/connections/{provider}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(require_scopes("calendar:write"))])
async def disconnect(provider: str, service: CalendarService = Depends(svc), principal: Principal = Depends(get_principal)):
    await service.disconnect(principal, provider)

import uuid
import logging
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from therapy_booking.core.base import utcnow
from therapy_booking.core.errors import NotFound, ProviderUnavailable
from therapy_booking.core.security import Principal
from therapy_booking.modules.calendar.models import CalendarConnection
from therapy_booking.modules.directory.repository import TherapistRepository
from therapy_booking.platform.ports.calendar import BusyInterval
from therapy_booking.platform.provider_registry import registry

logger = logging.getLogger(__name__)

class CalendarService:
    def __init__(self, s: AsyncSession):
        self.s = s
        self.therapists = TherapistRepository(s)

    async def active_connections(self, therapist_id: uuid.UUID) -> list[CalendarConnection]:
        res = await self.s.execute(select(CalendarConnection).where(and_(
            CalendarConnection.therapist_profile_id == therapist_id,
            CalendarConnection.is_active.is_(True),
            CalendarConnection.deleted_at.is_(None),
        )).order_by(CalendarConnection.created_at))
        return list(res.scalars().all())

    async def get_busy_intervals(self, therapist_id: uuid.UUID, start: datetime, end: datetime) -> list[BusyInterval]:
        """Union of busy time across the therapist's active connections.

        A provider that fails is logged and contributes nothing; slot computation never
        fails because a calendar is unreachable.
        """
        out: list[BusyInterval] = []
        for conn in await self.active_connections(therapist_id):
            if not conn.access_token:
                continue
            adapter = registry.calendar(conn.provider)
            try:
                out.extend(await adapter.get_busy_intervals(conn.access_token, start, end))
            except ProviderUnavailable as e:
                logger.warning(f"Busy-time lookup failed for {conn.provider} connection {conn.id}: {e.message}")
            except Exception:
                logger.exception(f"Busy-time adapter for {conn.provider} connection {conn.id} raised")
        return out

    # ---- Therapist-facing ----
    async def list_connections(self, principal: Principal) -> list[CalendarConnection]:
        therapist = await self.therapists.require_for_user(principal.user_id)
        res = await self.s.execute(select(CalendarConnection).where(and_(
            CalendarConnection.therapist_profile_id == therapist.id,
            CalendarConnection.deleted_at.is_(None),
        )).order_by(CalendarConnection.created_at))
        return list(res.scalars().all())

    async def disconnect(self, principal: Principal, provider: str) -> None:
        conns = [c for c in await self.list_connections(principal) if c.provider == provider]
        if not conns:
            raise NotFound(f"No {provider} calendar connected")
        now = utcnow()
        for c in conns:
            c.is_active = False
            c.access_token = None
            c.deleted_at = now
        await self.s.commit()
        logger.info(f"Disconnected {provider} calendar for user {principal.user_id}")

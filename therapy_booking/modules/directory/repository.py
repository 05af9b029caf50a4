import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from therapy_booking.core.errors import NotFound, AuthorizationError
from therapy_booking.modules.directory.models import TherapistProfile

class TherapistRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, therapist_id: uuid.UUID) -> TherapistProfile | None:
        res = await self.session.execute(select(TherapistProfile).where(
            and_(TherapistProfile.id == therapist_id, TherapistProfile.deleted_at.is_(None))
        ))
        return res.scalar_one_or_none()

    async def get_by_user(self, user_id: uuid.UUID) -> TherapistProfile | None:
        res = await self.session.execute(select(TherapistProfile).where(
            and_(TherapistProfile.user_id == user_id, TherapistProfile.deleted_at.is_(None))
        ))
        return res.scalar_one_or_none()

    async def require(self, therapist_id: uuid.UUID) -> TherapistProfile:
        obj = await self.get(therapist_id)
        if obj is None:
            raise NotFound("Therapist not found")
        return obj

    async def require_for_user(self, user_id: uuid.UUID) -> TherapistProfile:
        obj = await self.get_by_user(user_id)
        if obj is None:
            raise AuthorizationError("No therapist profile for this account")
        return obj

import uuid
from datetime import datetime, timedelta
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_
from therapy_booking.modules.bookings.models import Booking, EmailVerification, VerifiedVisitorEmail
from therapy_booking.modules.bookings.policy import LIVE_STATUSES, PENDING, CONFIRMED

class BookingRepository:
    def __init__(self, s: AsyncSession): self.s = s

    async def get(self, booking_id: uuid.UUID) -> Booking | None:
        res = await self.s.execute(select(Booking).where(and_(Booking.id == booking_id, Booking.deleted_at.is_(None))))
        return res.scalar_one_or_none()

    async def get_by_visitor_token(self, token: str) -> Booking | None:
        res = await self.s.execute(select(Booking).where(and_(Booking.visitor_token == token, Booking.deleted_at.is_(None))))
        return res.scalar_one_or_none()

    async def has_conflict(self, therapist_id: uuid.UUID, starts_at: datetime, ends_at: datetime, buffer_minutes: int) -> bool:
        pad = timedelta(minutes=buffer_minutes)
        res = await self.s.execute(select(Booking.id).where(and_(
            Booking.therapist_profile_id == therapist_id,
            Booking.deleted_at.is_(None),
            Booking.status.in_(LIVE_STATUSES),
            Booking.starts_at < ends_at + pad,
            Booking.ends_at > starts_at - pad,
        )).limit(1))
        return res.first() is not None

    async def list_for_therapist(self, therapist_id: uuid.UUID, which: str, now: datetime) -> Sequence[Booking]:
        cond = [Booking.therapist_profile_id == therapist_id, Booking.deleted_at.is_(None)]
        order = Booking.starts_at.asc()
        if which == "pending":
            cond.append(Booking.status == PENDING)
        elif which == "upcoming":
            cond += [Booking.status == CONFIRMED, Booking.starts_at >= now]
        elif which == "past":
            cond.append(Booking.ends_at < now)
            order = Booking.starts_at.desc()
        else:
            order = Booking.starts_at.desc()
        res = await self.s.execute(select(Booking).where(and_(*cond)).order_by(order))
        return res.scalars().all()

    # verification
    async def add_verification(self, **data) -> EmailVerification:
        obj = EmailVerification(**data); self.s.add(obj); await self.s.flush(); return obj

    async def get_verification(self, token: str) -> EmailVerification | None:
        res = await self.s.execute(select(EmailVerification).where(and_(
            EmailVerification.token == token, EmailVerification.deleted_at.is_(None)
        )))
        return res.scalar_one_or_none()

    async def is_verified_email(self, email: str) -> bool:
        res = await self.s.execute(select(VerifiedVisitorEmail.id).where(VerifiedVisitorEmail.email == email.lower()))
        return res.first() is not None

    async def add_verified_email(self, email: str, via: str = "booking") -> VerifiedVisitorEmail:
        obj = VerifiedVisitorEmail(email=email.lower(), verified_via=via); self.s.add(obj); await self.s.flush(); return obj

    # reminders
    async def reminder_candidates(self, column, start: datetime, end: datetime) -> Sequence[Booking]:
        res = await self.s.execute(select(Booking).where(and_(
            Booking.status == CONFIRMED,
            Booking.deleted_at.is_(None),
            column.is_(None),
            Booking.starts_at >= start,
            Booking.starts_at <= end,
        )).order_by(Booking.starts_at))
        return res.scalars().all()

    async def stamp_reminder(self, booking_id: uuid.UUID, column, now: datetime) -> int:
        # conditional on the stamp still being empty; 0 rows means another pass already claimed it
        res = await self.s.execute(
            update(Booking)
            .where(and_(Booking.id == booking_id, column.is_(None)))
            .values({column.key: now})
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

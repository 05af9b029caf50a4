import uuid
from datetime import date, datetime
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, update, and_
from therapy_booking.modules.availability.models import WeeklyAvailabilitySlot, AvailabilityOverride, BookingSettings
from therapy_booking.modules.bookings.models import Booking
from therapy_booking.modules.bookings.policy import LIVE_STATUSES

class AvailabilityRepository:
    def __init__(self, s: AsyncSession): self.s = s

    # settings
    async def get_settings(self, therapist_id: uuid.UUID) -> BookingSettings | None:
        res = await self.s.execute(select(BookingSettings).where(
            BookingSettings.therapist_profile_id == therapist_id,
            BookingSettings.deleted_at.is_(None),
        ))
        return res.scalar_one_or_none()

    async def create_settings(self, therapist_id: uuid.UUID, **data) -> BookingSettings:
        obj = BookingSettings(therapist_profile_id=therapist_id, **data); self.s.add(obj); await self.s.flush(); return obj

    async def lock_therapist(self, therapist_id: uuid.UUID) -> int:
        # a write on the settings row serialises concurrent submitters for one therapist
        res = await self.s.execute(
            update(BookingSettings)
            .where(BookingSettings.therapist_profile_id == therapist_id)
            .values(booking_lock_version=BookingSettings.booking_lock_version + 1)
            .execution_options(synchronize_session=False)
        )
        return res.rowcount

    # weekly template
    async def list_weekly(self, therapist_id: uuid.UUID, *, active_only: bool = True) -> Sequence[WeeklyAvailabilitySlot]:
        cond = [WeeklyAvailabilitySlot.therapist_profile_id == therapist_id, WeeklyAvailabilitySlot.deleted_at.is_(None)]
        if active_only:
            cond.append(WeeklyAvailabilitySlot.is_active.is_(True))
        res = await self.s.execute(select(WeeklyAvailabilitySlot).where(and_(*cond)).order_by(
            WeeklyAvailabilitySlot.day_of_week, WeeklyAvailabilitySlot.start_time
        ))
        return res.scalars().all()

    async def replace_weekly(self, therapist_id: uuid.UUID, rows: list[dict]) -> Sequence[WeeklyAvailabilitySlot]:
        await self.s.execute(delete(WeeklyAvailabilitySlot).where(WeeklyAvailabilitySlot.therapist_profile_id == therapist_id))
        objs = [WeeklyAvailabilitySlot(therapist_profile_id=therapist_id, is_active=True, **r) for r in rows]
        self.s.add_all(objs)
        await self.s.flush()
        return objs

    # overrides
    async def list_overrides(self, therapist_id: uuid.UUID, start: date | None = None, end: date | None = None) -> Sequence[AvailabilityOverride]:
        cond = [AvailabilityOverride.therapist_profile_id == therapist_id, AvailabilityOverride.deleted_at.is_(None)]
        if start:
            cond.append(AvailabilityOverride.override_date >= start)
        if end:
            cond.append(AvailabilityOverride.override_date <= end)
        res = await self.s.execute(select(AvailabilityOverride).where(and_(*cond)).order_by(AvailabilityOverride.override_date))
        return res.scalars().all()

    async def get_override_for_date(self, therapist_id: uuid.UUID, d: date) -> AvailabilityOverride | None:
        res = await self.s.execute(select(AvailabilityOverride).where(
            AvailabilityOverride.therapist_profile_id == therapist_id,
            AvailabilityOverride.override_date == d,
        ))
        return res.scalar_one_or_none()

    async def get_override(self, therapist_id: uuid.UUID, override_id: uuid.UUID) -> AvailabilityOverride | None:
        res = await self.s.execute(select(AvailabilityOverride).where(
            AvailabilityOverride.therapist_profile_id == therapist_id,
            AvailabilityOverride.id == override_id,
        ))
        return res.scalar_one_or_none()

    async def delete_override(self, obj: AvailabilityOverride):
        await self.s.delete(obj); await self.s.flush()

    # conflicts
    async def list_live_bookings(self, therapist_id: uuid.UUID, start: datetime, end: datetime) -> Sequence[Booking]:
        res = await self.s.execute(select(Booking).where(
            Booking.therapist_profile_id == therapist_id,
            Booking.deleted_at.is_(None),
            Booking.status.in_(LIVE_STATUSES),
            Booking.starts_at < end,
            Booking.ends_at > start,
        ))
        return res.scalars().all()

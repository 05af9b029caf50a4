import uuid
import logging
from datetime import date, datetime, timedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from therapy_booking.core.config import settings as app_settings
from therapy_booking.core.errors import ValidationError, NotFound
from therapy_booking.core.security import Principal
from therapy_booking.modules.availability.repository import AvailabilityRepository
from therapy_booking.modules.availability.models import BookingSettings, AvailabilityOverride
from therapy_booking.modules.availability.schemas import BookingSettingsUpdate, WeeklyDayIn, OverrideUpsert
from therapy_booking.modules.availability import slots as engine
from therapy_booking.modules.availability.slots import TimeSlot
from therapy_booking.modules.calendar.service import CalendarService
from therapy_booking.modules.directory.repository import TherapistRepository
from therapy_booking.modules.events.outbox import OutboxService

logger = logging.getLogger(__name__)

class AvailabilityService:
    def __init__(self, s: AsyncSession):
        self.s = s
        self.repo = AvailabilityRepository(s)
        self.therapists = TherapistRepository(s)
        self.calendar = CalendarService(s)

    # ---- Settings ----
    async def get_or_create_settings(self, therapist_id: uuid.UUID) -> BookingSettings:
        obj = await self.repo.get_settings(therapist_id)
        if obj:
            return obj
        try:
            async with self.s.begin_nested():
                obj = await self.repo.create_settings(therapist_id, timezone=app_settings.DEFAULT_TIMEZONE)
        except IntegrityError:
            # lost the creation race to a concurrent first access
            obj = await self.repo.get_settings(therapist_id)
            if obj is None:
                raise
            return obj
        await self.s.commit()
        logger.info(f"Created default booking settings for therapist {therapist_id}")
        return obj

    async def get_settings_for(self, principal: Principal) -> BookingSettings:
        therapist = await self.therapists.require_for_user(principal.user_id)
        return await self.get_or_create_settings(therapist.id)

    async def update_settings(self, principal: Principal, payload: BookingSettingsUpdate) -> BookingSettings:
        therapist = await self.therapists.require_for_user(principal.user_id)
        engine.load_zone(payload.timezone)
        obj = await self.get_or_create_settings(therapist.id)
        for k, v in payload.model_dump().items():
            setattr(obj, k, v)
        await OutboxService(self.s).enqueue("BOOKING_SETTINGS_UPDATED", "therapist", therapist.id, payload.model_dump())
        await self.s.commit()
        return obj

    # ---- Weekly template ----
    async def get_weekly(self, principal: Principal):
        therapist = await self.therapists.require_for_user(principal.user_id)
        return await self.repo.list_weekly(therapist.id)

    async def save_weekly(self, principal: Principal, schedule: list[WeeklyDayIn]):
        therapist = await self.therapists.require_for_user(principal.user_id)
        rows: list[dict] = []
        for day in schedule:
            for r in day.slots:
                start, end = engine.parse_clock(r.start_time), engine.parse_clock(r.end_time)
                if start >= end:
                    raise ValidationError(f"Invalid time range on day {day.day_of_week}: start time must be before end time")
                rows.append({"day_of_week": day.day_of_week, "start_time": start, "end_time": end})
        objs = await self.repo.replace_weekly(therapist.id, rows)
        await OutboxService(self.s).enqueue("WEEKLY_AVAILABILITY_REPLACED", "therapist", therapist.id, {"ranges": len(rows)})
        await self.s.commit()
        return objs

    # ---- Overrides ----
    async def list_overrides(self, principal: Principal, start: date | None = None, end: date | None = None):
        therapist = await self.therapists.require_for_user(principal.user_id)
        return await self.repo.list_overrides(therapist.id, start, end)

    async def upsert_override(self, principal: Principal, payload: OverrideUpsert) -> AvailabilityOverride:
        therapist = await self.therapists.require_for_user(principal.user_id)
        start = engine.parse_clock(payload.start_time) if payload.start_time else None
        end = engine.parse_clock(payload.end_time) if payload.end_time else None
        if payload.is_available:
            if not start or not end:
                raise ValidationError("Start and end times are required when marking a date as available")
            if start >= end:
                raise ValidationError("Start time must be before end time")
        else:
            start = end = None
        obj = await self.repo.get_override_for_date(therapist.id, payload.override_date)
        if obj is None:
            obj = AvailabilityOverride(therapist_profile_id=therapist.id, override_date=payload.override_date)
            self.s.add(obj)
        obj.is_available = payload.is_available
        obj.start_time = start
        obj.end_time = end
        obj.reason = payload.reason
        obj.deleted_at = None
        await self.s.flush()
        await self.s.commit()
        return obj

    async def delete_override(self, principal: Principal, override_id: uuid.UUID) -> None:
        therapist = await self.therapists.require_for_user(principal.user_id)
        obj = await self.repo.get_override(therapist.id, override_id)
        if obj is None:
            raise NotFound("Date override not found")
        await self.repo.delete_override(obj)
        await self.s.commit()

    # ---- Slot engine ----
    async def get_available_slots(self, therapist_id: uuid.UUID, day: date, now: datetime) -> list[TimeSlot]:
        by_day = await self._slots_for_days(therapist_id, [day], now)
        return by_day.get(day, [])

    async def get_available_dates(self, therapist_id: uuid.UUID, year: int, month: int, now: datetime) -> list[date]:
        days = engine.month_days(year, month)
        by_day = await self._slots_for_days(therapist_id, days, now)
        return [d for d in days if by_day.get(d)]

    async def _slots_for_days(self, therapist_id: uuid.UUID, days: list[date], now: datetime) -> dict[date, list[TimeSlot]]:
        now = engine.ensure_aware(now)
        therapist = await self.therapists.require(therapist_id)
        cfg = await self.get_or_create_settings(therapist.id)
        if not cfg.accepts_online_booking:
            return {}
        tz = engine.load_zone(cfg.timezone)
        first_ok, last_ok = engine.booking_window(now, tz, cfg.max_booking_days_ahead)
        days = [d for d in days if first_ok <= d <= last_ok]
        if not days:
            return {}

        weekly = await self.repo.list_weekly(therapist.id)
        overrides = {o.override_date: o for o in await self.repo.list_overrides(therapist.id, days[0], days[-1])}
        ranges = {d: engine.ranges_for_day(d, weekly, overrides.get(d)) for d in days}
        if not any(ranges.values()):
            return {}

        # whole-range reads; padded by a day so buffers that cross midnight are seen
        span_start = engine.local_instant(days[0], datetime.min.time(), tz) - timedelta(days=1)
        span_end = engine.local_instant(days[-1], datetime.min.time(), tz) + timedelta(days=2)
        busy: list[tuple[datetime, datetime]] = [
            (b.starts_at, b.ends_at) for b in await self.repo.list_live_bookings(therapist.id, span_start, span_end)
        ]
        busy.extend((b.start, b.end) for b in await self.calendar.get_busy_intervals(therapist.id, span_start, span_end))

        out: dict[date, list[TimeSlot]] = {}
        for d in days:
            if not ranges[d]:
                continue
            out[d] = engine.compute_day_slots(
                d, ranges[d],
                slot_minutes=cfg.slot_duration_minutes,
                buffer_minutes=cfg.buffer_minutes,
                min_notice_hours=cfg.min_booking_notice_hours,
                tz=tz,
                busy=busy,
                now=now,
            )
        return out

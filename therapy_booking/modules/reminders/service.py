"""Reminder pass.

One call scans confirmed bookings and sends the 24-hour and 1-hour reminders
that are due. The ``reminder_*_sent_at`` stamp is the commit boundary: it is
written only after the send attempt and only if still empty, so a later pass
skips a reminder once it is stamped, and of two overlapping passes only one
counts it. Delivery is at-least-once: overlapping passes can both send before
either stamps, and a crash between sending and stamping means the next pass
sends again.
"""
import logging
from datetime import datetime, timedelta
from typing import NamedTuple
from sqlalchemy.ext.asyncio import AsyncSession
from therapy_booking.modules.availability.service import AvailabilityService
from therapy_booking.modules.availability import slots as engine
from therapy_booking.modules.bookings import policy
from therapy_booking.modules.bookings.models import Booking
from therapy_booking.modules.bookings.repository import BookingRepository
from therapy_booking.modules.directory.repository import TherapistRepository
from therapy_booking.modules.notifications import templates
from therapy_booking.modules.notifications.service import NotificationsService
from therapy_booking.modules.reminders.schemas import ReminderSummary

logger = logging.getLogger(__name__)

class ReminderWindow(NamedTuple):
    kind: str  # "24h" | "1h"
    column: object
    lead_from: timedelta
    lead_to: timedelta

WINDOWS = (
    ReminderWindow("24h", Booking.reminder_24h_sent_at, timedelta(hours=23, minutes=30), timedelta(hours=24, minutes=30)),
    ReminderWindow("1h", Booking.reminder_1h_sent_at, timedelta(minutes=30), timedelta(hours=1, minutes=30)),
)

# stored starts_at may predate a timezone change; widen the SQL prefilter and decide on the recomputed instant
PREFILTER_SLACK = timedelta(days=1)

def local_start(booking: Booking, tz_name: str) -> datetime:
    return engine.local_instant(booking.booking_date, booking.start_time, engine.load_zone(tz_name))

def in_window(start: datetime, now: datetime, window: ReminderWindow) -> bool:
    return now + window.lead_from <= start <= now + window.lead_to

class ReminderService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.bookings = BookingRepository(session)
        self.availability = AvailabilityService(session)
        self.therapists = TherapistRepository(session)
        self.notifications = NotificationsService(session)

    async def run_reminder_pass(self, now: datetime) -> ReminderSummary:
        now = engine.ensure_aware(now)
        summary = ReminderSummary(processed_at=now)
        for window in WINDOWS:
            sent = await self._run_window(window, now, summary.errors)
            if window.kind == "24h":
                summary.reminders_24h_sent = sent
            else:
                summary.reminders_1h_sent = sent
        logger.info(
            f"Reminder pass at {now.isoformat()}: 24h={summary.reminders_24h_sent} "
            f"1h={summary.reminders_1h_sent} errors={len(summary.errors)}"
        )
        return summary

    async def _run_window(self, window: ReminderWindow, now: datetime, errors: list[str]) -> int:
        candidates = await self.bookings.reminder_candidates(
            window.column,
            now + window.lead_from - PREFILTER_SLACK,
            now + window.lead_to + PREFILTER_SLACK,
        )
        # ids first: a rollback below expires every loaded row
        booking_ids = [b.id for b in candidates]
        sent = 0
        for booking_id in booking_ids:
            try:
                booking = await self.bookings.get(booking_id)
                if booking is None or booking.status != policy.CONFIRMED:
                    continue
                cfg = await self.availability.get_or_create_settings(booking.therapist_profile_id)
                if not in_window(local_start(booking, cfg.timezone), now, window):
                    continue
                failures = await self._send(booking, cfg, window.kind)
                errors.extend(failures)
                # stamp only after the send attempt; 0 rows means another pass already claimed it
                stamped = await self.bookings.stamp_reminder(booking_id, window.column, now)
                await self.session.commit()
            except Exception as e:
                logger.exception(f"Reminder {window.kind} failed for booking {booking_id}")
                await self.session.rollback()
                errors.append(f"Error processing {window.kind} reminder for booking {booking_id}: {e}")
                continue
            if stamped:
                sent += 1
            else:
                logger.info(f"Reminder {window.kind} for booking {booking_id} was stamped by a concurrent pass")
        return sent

    async def _send(self, booking: Booking, cfg, kind: str) -> list[str]:
        therapist = await self.therapists.require(booking.therapist_profile_id)
        meta = {"booking_id": str(booking.id), "reminder": kind}
        failures: list[str] = []
        if cfg.send_visitor_reminders:
            m = await self.notifications.send_email(
                booking.visitor_email,
                templates.visitor_reminder(
                    kind=kind, visitor_name=booking.visitor_name, therapist_name=therapist.display_name,
                    booking_date=booking.booking_date, start_time=booking.start_time,
                ),
                kind=f"reminder_{kind}_visitor", meta=meta,
            )
            if m.status != "sent":
                failures.append(f"Failed to send {kind} visitor reminder for booking {booking.id}")
        if cfg.send_therapist_reminders:
            m = await self.notifications.send_email(
                therapist.email,
                templates.therapist_reminder(
                    kind=kind, therapist_name=therapist.display_name, visitor_name=booking.visitor_name,
                    visitor_email=booking.visitor_email, booking_date=booking.booking_date,
                    start_time=booking.start_time,
                ),
                kind=f"reminder_{kind}_therapist", meta=meta,
            )
            if m.status != "sent":
                failures.append(f"Failed to send {kind} therapist reminder for booking {booking.id}")
        return failures


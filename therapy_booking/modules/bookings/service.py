import uuid
import secrets
import logging
from datetime import datetime, timedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.ext.asyncio import AsyncSession
from therapy_booking.core.config import settings as app_settings
from therapy_booking.core.errors import (
    ValidationError, SlotUnavailable, TokenNotFound, TokenExpired, AuthorizationError, NotFound,
    InvalidTransition, StaleState,
)
from therapy_booking.core.security import Principal
from therapy_booking.modules.availability.repository import AvailabilityRepository
from therapy_booking.modules.availability.service import AvailabilityService
from therapy_booking.modules.availability import slots as engine
from therapy_booking.modules.bookings import policy
from therapy_booking.modules.bookings.models import Booking
from therapy_booking.modules.bookings.repository import BookingRepository
from therapy_booking.modules.bookings.schemas import BookingSubmit, BookingSubmitted, VerifyResult
from therapy_booking.modules.directory.models import TherapistProfile
from therapy_booking.modules.directory.repository import TherapistRepository
from therapy_booking.modules.events.outbox import OutboxService
from therapy_booking.modules.notifications import templates
from therapy_booking.modules.notifications.service import NotificationsService

logger = logging.getLogger(__name__)

def new_token() -> str:
    return secrets.token_hex(32)

def _event_payload(b: Booking) -> dict:
    return {
        "booking_id": str(b.id),
        "therapist_profile_id": str(b.therapist_profile_id),
        "status": b.status,
        "is_verified": b.is_verified,
        "booking_date": b.booking_date.isoformat(),
        "start_time": engine.format_clock(b.start_time),
    }

class BookingService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = BookingRepository(session)
        self.availability = AvailabilityService(session)
        self.availability_repo = AvailabilityRepository(session)
        self.therapists = TherapistRepository(session)
        self.notifications = NotificationsService(session)
        self.outbox = OutboxService(session)

    # ---- Submission ----

    async def submit_booking(self, payload: BookingSubmit, now: datetime) -> BookingSubmitted:
        now = engine.ensure_aware(now)
        if payload.honeypot:
            raise ValidationError("Invalid submission")
        therapist = await self.therapists.require(payload.therapist_profile_id)
        therapist_id = therapist.id
        cfg = await self.availability.get_or_create_settings(therapist.id)
        if not cfg.accepts_online_booking:
            raise ValidationError("Online booking not available")

        start, end = engine.parse_clock(payload.start_time), engine.parse_clock(payload.end_time)
        if start >= end:
            raise ValidationError("Start time must be before end time")

        offered = await self.availability.get_available_slots(therapist.id, payload.booking_date, now)
        slot = next((s for s in offered if s.start_time == start and s.end_time == end), None)
        if slot is None:
            raise SlotUnavailable()

        pre_verified = await self.repo.is_verified_email(payload.visitor_email)
        auto_confirm = pre_verified and policy.auto_confirms(cfg)
        try:
            # serialise submitters for this therapist, then re-check against what is now committed
            await self.availability_repo.lock_therapist(therapist.id)
            if await self.repo.has_conflict(therapist.id, slot.starts_at, slot.ends_at, cfg.buffer_minutes):
                raise SlotUnavailable()
            booking = Booking(
                therapist_profile_id=therapist.id,
                service_id=payload.service_id,
                booking_date=payload.booking_date,
                start_time=slot.start_time,
                end_time=slot.end_time,
                duration_minutes=cfg.slot_duration_minutes,
                starts_at=slot.starts_at,
                ends_at=slot.ends_at,
                blocked_until=slot.ends_at + timedelta(minutes=cfg.buffer_minutes),
                session_format=payload.session_format,
                visitor_name=payload.visitor_name,
                visitor_email=payload.visitor_email,
                visitor_phone=payload.visitor_phone,
                visitor_notes=payload.visitor_notes,
                visitor_token=new_token(),
                status=policy.CONFIRMED if auto_confirm else policy.PENDING,
                is_verified=pre_verified,
                confirmed_at=now if auto_confirm else None,
            )
            self.session.add(booking)
            await self.session.flush()
            verification = None
            if not pre_verified:
                verification = await self.repo.add_verification(
                    token=new_token(),
                    booking_id=booking.id,
                    email=booking.visitor_email,
                    expires_at=now + timedelta(hours=app_settings.VERIFICATION_TTL_HOURS),
                )
            await self.outbox.enqueue("BOOKING_SUBMITTED", "booking", booking.id, _event_payload(booking))
            await self.session.commit()
        except SlotUnavailable:
            await self.session.rollback()
            raise
        except IntegrityError:
            # the store-level exclusion constraint caught a concurrent insert
            await self.session.rollback()
            logger.info(f"Overlap constraint rejected booking for therapist {therapist_id} on {payload.booking_date}")
            raise SlotUnavailable()

        logger.info(f"Booking {booking.id} submitted for therapist {therapist.id} (pre_verified={pre_verified}, status={booking.status})")
        if verification is not None:
            await self.notifications.send_email(
                booking.visitor_email,
                templates.booking_verification(
                    visitor_name=booking.visitor_name, therapist_name=therapist.display_name,
                    booking_date=booking.booking_date, start_time=booking.start_time, token=verification.token,
                ),
                kind="booking_verification", meta={"booking_id": str(booking.id)},
            )
        else:
            await self._notify_verified(booking, therapist)
        await self.session.commit()

        return BookingSubmitted(
            booking_id=booking.id,
            visitor_token=booking.visitor_token,
            status=booking.status,
            is_verified=booking.is_verified,
            requires_verification=not pre_verified,
        )

    # ---- Verification ----

    async def verify_booking(self, token: str, now: datetime) -> VerifyResult:
        now = engine.ensure_aware(now)
        verification = await self.repo.get_verification(token) if token else None
        if verification is None:
            raise TokenNotFound()
        booking = await self.repo.get(verification.booking_id)
        if booking is None:
            raise TokenNotFound()

        if verification.verified_at is not None or booking.is_verified:
            return VerifyResult(already_verified=True, booking_id=booking.id, status=booking.status)
        if verification.expires_at < now:
            raise TokenExpired()

        booking_id = booking.id
        cfg = await self.availability.get_or_create_settings(booking.therapist_profile_id)
        if not await self.repo.is_verified_email(booking.visitor_email):
            try:
                async with self.session.begin_nested():
                    await self.repo.add_verified_email(booking.visitor_email, via="booking")
            except IntegrityError:
                logger.debug(f"{booking.visitor_email} was added to the verified list concurrently")
        verification.verified_at = now
        booking.is_verified = True
        if booking.status == policy.PENDING and policy.auto_confirms(cfg):
            booking.status = policy.CONFIRMED
            booking.confirmed_at = now
        try:
            await self.outbox.enqueue("BOOKING_VERIFIED", "booking", booking.id, _event_payload(booking))
            await self.session.commit()
        except StaleDataError:
            # a concurrent click won; the booking is verified either way
            await self.session.rollback()
            fresh = await self.repo.get(booking_id)
            if fresh is not None and fresh.is_verified:
                return VerifyResult(already_verified=True, booking_id=fresh.id, status=fresh.status)
            raise StaleState()

        logger.info(f"Booking {booking.id} verified (status={booking.status})")
        therapist = await self.therapists.require(booking.therapist_profile_id)
        await self._notify_verified(booking, therapist)
        await self.session.commit()
        return VerifyResult(booking_id=booking.id, status=booking.status)

    async def _notify_verified(self, booking: Booking, therapist: TherapistProfile) -> None:
        confirmed = booking.status == policy.CONFIRMED
        await self.notifications.send_email(
            therapist.email,
            templates.new_booking_for_therapist(
                therapist_name=therapist.display_name, visitor_name=booking.visitor_name,
                visitor_email=booking.visitor_email, booking_date=booking.booking_date,
                start_time=booking.start_time, confirmed=confirmed,
            ),
            kind="booking_new_therapist", meta={"booking_id": str(booking.id)},
        )
        if confirmed:
            await self._email_confirmed(booking, therapist)

    async def _email_confirmed(self, booking: Booking, therapist: TherapistProfile) -> None:
        await self.notifications.send_email(
            booking.visitor_email,
            templates.booking_confirmed(
                visitor_name=booking.visitor_name, therapist_name=therapist.display_name,
                booking_date=booking.booking_date, start_time=booking.start_time,
            ),
            kind="booking_confirmed", meta={"booking_id": str(booking.id)},
        )

    # ---- Therapist transitions ----

    async def _load_owned(self, principal: Principal, booking_id: uuid.UUID) -> tuple[Booking, TherapistProfile]:
        therapist = await self.therapists.require_for_user(principal.user_id)
        booking = await self.repo.get(booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        if booking.therapist_profile_id != therapist.id:
            raise AuthorizationError()
        return booking, therapist

    async def _commit_transition(self, booking: Booking, event_type: str) -> None:
        booking_id = booking.id
        try:
            await self.outbox.enqueue(event_type, "booking", booking.id, _event_payload(booking))
            await self.session.commit()
        except StaleDataError:
            await self.session.rollback()
            logger.info(f"Lost a concurrent update on booking {booking_id}")
            raise StaleState()

    async def confirm_booking(self, principal: Principal, booking_id: uuid.UUID, now: datetime) -> Booking:
        booking, therapist = await self._load_owned(principal, booking_id)
        policy.ensure_transition(booking.status, policy.CONFIRMED)
        if not booking.is_verified:
            raise InvalidTransition("The visitor has not verified this booking yet")
        booking.status = policy.CONFIRMED
        booking.confirmed_at = engine.ensure_aware(now)
        await self._commit_transition(booking, "BOOKING_CONFIRMED")
        logger.info(f"Booking {booking.id} confirmed by therapist {therapist.id}")
        await self._email_confirmed(booking, therapist)
        await self.session.commit()
        return booking

    async def cancel_booking(self, principal: Principal, booking_id: uuid.UUID, reason: str | None, now: datetime) -> Booking:
        booking, therapist = await self._load_owned(principal, booking_id)
        self._cancel(booking, reason, policy.CANCELLED_BY_THERAPIST, now)
        await self._commit_transition(booking, "BOOKING_CANCELLED")
        logger.info(f"Booking {booking.id} cancelled by therapist {therapist.id}")
        await self.notifications.send_email(
            booking.visitor_email,
            templates.booking_cancelled_for_visitor(
                visitor_name=booking.visitor_name, therapist_name=therapist.display_name,
                booking_date=booking.booking_date, start_time=booking.start_time, reason=reason,
            ),
            kind="booking_cancelled_visitor", meta={"booking_id": str(booking.id)},
        )
        await self.session.commit()
        return booking

    async def cancel_booking_by_visitor(self, visitor_token: str, reason: str | None, now: datetime) -> Booking:
        booking = await self.repo.get_by_visitor_token(visitor_token) if visitor_token else None
        if booking is None:
            raise NotFound("Booking not found")
        self._cancel(booking, reason, policy.CANCELLED_BY_VISITOR, now)
        await self._commit_transition(booking, "BOOKING_CANCELLED")
        logger.info(f"Booking {booking.id} cancelled by visitor")
        therapist = await self.therapists.require(booking.therapist_profile_id)
        await self.notifications.send_email(
            therapist.email,
            templates.booking_cancelled_for_therapist(
                therapist_name=therapist.display_name, visitor_name=booking.visitor_name,
                booking_date=booking.booking_date, start_time=booking.start_time, reason=reason,
            ),
            kind="booking_cancelled_therapist", meta={"booking_id": str(booking.id)},
        )
        await self.session.commit()
        return booking

    def _cancel(self, booking: Booking, reason: str | None, by: str, now: datetime) -> None:
        policy.ensure_transition(booking.status, policy.CANCELLED)
        booking.status = policy.CANCELLED
        booking.cancelled_at = engine.ensure_aware(now)
        booking.cancellation_reason = reason
        booking.cancelled_by = by

    async def mark_completed(self, principal: Principal, booking_id: uuid.UUID, now: datetime) -> Booking:
        return await self._finish(principal, booking_id, policy.COMPLETED, now)

    async def mark_no_show(self, principal: Principal, booking_id: uuid.UUID, now: datetime) -> Booking:
        return await self._finish(principal, booking_id, policy.NO_SHOW, now)

    async def _finish(self, principal: Principal, booking_id: uuid.UUID, target: str, now: datetime) -> Booking:
        booking, _ = await self._load_owned(principal, booking_id)
        policy.ensure_transition(booking.status, target)
        if booking.ends_at > engine.ensure_aware(now):
            raise InvalidTransition(f"Cannot mark a booking as {target} before it has ended")
        booking.status = target
        await self._commit_transition(booking, f"BOOKING_{target.upper()}")
        return booking

    # ---- Reads ----

    async def list_bookings(self, principal: Principal, which: str, now: datetime) -> list[Booking]:
        therapist = await self.therapists.require_for_user(principal.user_id)
        return list(await self.repo.list_for_therapist(therapist.id, which, engine.ensure_aware(now)))

    async def get_booking_by_visitor_token(self, visitor_token: str) -> tuple[Booking, TherapistProfile]:
        booking = await self.repo.get_by_visitor_token(visitor_token) if visitor_token else None
        if booking is None:
            raise NotFound("Booking not found")
        therapist = await self.therapists.require(booking.therapist_profile_id)
        return booking, therapist

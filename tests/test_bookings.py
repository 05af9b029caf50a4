import asyncio
import uuid
from datetime import date, timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, func

from conftest import principal_for, utc
from therapy_booking.core.db import SessionLocal
from therapy_booking.core.errors import (
    AuthorizationError, InvalidTransition, NotFound, SlotUnavailable, StaleState, TokenExpired, TokenNotFound,
    ValidationError,
)
from therapy_booking.modules.availability.service import AvailabilityService
from therapy_booking.modules.bookings.models import Booking, EmailVerification, VerifiedVisitorEmail
from therapy_booking.modules.bookings.repository import BookingRepository
from therapy_booking.modules.bookings.schemas import BookingSubmit
from therapy_booking.modules.bookings.service import BookingService
from therapy_booking.modules.events.outbox import EventOutbox
from therapy_booking.modules.notifications.models import OutboundMessage
from therapy_booking.platform.provider_registry import registry

MONDAY = 1
NOW = utc(2026, 11, 1, 10)
NEXT_MONDAY = date(2026, 11, 9)

def submission(t, *, start="10:00", end="10:30", email="visitor@example.com", day=NEXT_MONDAY, **extra):
    return BookingSubmit(
        therapist_profile_id=t.id, booking_date=day, start_time=start, end_time=end,
        visitor_name="Alex Visitor", visitor_email=email, **extra,
    )

async def verification_token(session, booking_id) -> str:
    res = await session.execute(select(EmailVerification.token).where(EmailVerification.booking_id == booking_id))
    return res.scalar_one()

@pytest.fixture
async def therapist(make_therapist):
    return await make_therapist(weekly={MONDAY: [("09:00", "12:00")]})

# ---- Submission ----

async def test_submit_creates_pending_unverified_booking(session, calendar, emails, therapist):
    result = await BookingService(session).submit_booking(submission(therapist), NOW)
    assert result.status == "pending"
    assert result.requires_verification is True
    assert result.is_verified is False

    booking = await BookingRepository(session).get(result.booking_id)
    assert booking.starts_at == utc(2026, 11, 9, 10)
    assert booking.blocked_until == utc(2026, 11, 9, 10, 45)
    assert booking.duration_minutes == 30

    verification = await BookingRepository(session).get_verification(await verification_token(session, booking.id))
    assert verification.expires_at == NOW + timedelta(hours=24)
    sent = emails.to("visitor@example.com")
    assert len(sent) == 1
    assert verification.token in sent[0]["html"]
    assert emails.to(therapist.email) == []

async def test_submit_succeeds_when_email_sender_cannot_be_built(session, calendar, emails, therapist, monkeypatch):
    def unconfigured():
        raise RuntimeError("SENDGRID_API_KEY not configured")

    monkeypatch.setattr(registry, "email_sender", unconfigured)
    result = await BookingService(session).submit_booking(submission(therapist), NOW)
    assert result.status == "pending"
    assert (await BookingRepository(session).get(result.booking_id)) is not None
    stored = (await session.execute(select(OutboundMessage))).scalars().all()
    assert stored and all(m.status == "failed" for m in stored)

async def test_submit_into_taken_slot_is_rejected(session, calendar, emails, therapist):
    svc = BookingService(session)
    await svc.submit_booking(submission(therapist), NOW)
    with pytest.raises(SlotUnavailable) as exc:
        await svc.submit_booking(submission(therapist, email="other@example.com"), NOW)
    assert exc.value.message == "This time slot is no longer available. Please select another."
    # the buffer also takes out the neighbouring slot
    with pytest.raises(SlotUnavailable):
        await svc.submit_booking(submission(therapist, start="10:30", end="11:00", email="other@example.com"), NOW)

async def test_submit_off_grid_slot_is_rejected(session, calendar, emails, therapist):
    with pytest.raises(SlotUnavailable):
        await BookingService(session).submit_booking(submission(therapist, start="10:15", end="10:45"), NOW)

async def test_submit_with_inverted_times_is_a_validation_error(session, calendar, emails, therapist):
    with pytest.raises(ValidationError):
        await BookingService(session).submit_booking(submission(therapist, start="10:30", end="10:00"), NOW)

async def test_submit_when_online_booking_disabled(session, calendar, emails, make_therapist):
    t = await make_therapist(weekly={MONDAY: [("09:00", "12:00")]}, accepts_online_booking=False)
    with pytest.raises(ValidationError):
        await BookingService(session).submit_booking(submission(t), NOW)

def test_submission_field_validation():
    tid = uuid.uuid4()
    base = dict(therapist_profile_id=tid, booking_date=NEXT_MONDAY, start_time="10:00", end_time="10:30",
                visitor_name="Alex Visitor", visitor_email="Alex@Example.com")
    assert BookingSubmit(**base).visitor_email == "alex@example.com"
    for bad in (
        {"visitor_email": "not-an-email"},
        {"visitor_name": " A "},
        {"start_time": "10am"},
        {"session_format": "carrier-pigeon"},
        {"honeypot": "http://spam.example"},
        {"visitor_notes": "x" * 1001},
    ):
        with pytest.raises(PydanticValidationError):
            BookingSubmit(**{**base, **bad})

async def test_concurrent_submissions_for_one_slot(db, calendar, emails, therapist):
    async def submit(email):
        async with SessionLocal() as s:
            return await BookingService(s).submit_booking(submission(therapist, email=email), NOW)

    results = await asyncio.gather(submit("first@example.com"), submit("second@example.com"), return_exceptions=True)
    assert sum(1 for r in results if isinstance(r, SlotUnavailable)) == 1
    assert sum(1 for r in results if not isinstance(r, Exception)) == 1

    async with SessionLocal() as s:
        live = await s.execute(select(func.count()).select_from(Booking).where(Booking.status.in_(("pending", "confirmed"))))
        assert live.scalar_one() == 1

# ---- Verification ----

async def test_verify_is_idempotent(session, calendar, emails, therapist):
    svc = BookingService(session)
    submitted = await svc.submit_booking(submission(therapist), NOW)
    token = await verification_token(session, submitted.booking_id)

    first = await svc.verify_booking(token, NOW + timedelta(minutes=5))
    assert first.success is True
    assert first.already_verified is False
    assert first.status == "pending"  # approval required

    second = await svc.verify_booking(token, NOW + timedelta(minutes=6))
    assert second.success is True
    assert second.already_verified is True

    assert len(emails.to(therapist.email)) == 1
    booking = await BookingRepository(session).get(submitted.booking_id)
    assert booking.is_verified is True
    assert await BookingRepository(session).is_verified_email("VISITOR@example.com")
    events = await session.execute(select(func.count()).select_from(EventOutbox).where(EventOutbox.event_type == "BOOKING_VERIFIED"))
    assert events.scalar_one() == 1

async def test_verify_auto_confirms_without_approval(session, calendar, emails, make_therapist):
    t = await make_therapist(weekly={MONDAY: [("09:00", "12:00")]}, requires_approval=False)
    svc = BookingService(session)
    submitted = await svc.submit_booking(submission(t), NOW)
    result = await svc.verify_booking(await verification_token(session, submitted.booking_id), NOW)
    assert result.status == "confirmed"
    booking = await BookingRepository(session).get(submitted.booking_id)
    assert booking.confirmed_at == NOW
    assert len(emails.to("visitor@example.com")) == 2  # verification link, then confirmation

async def test_verify_unknown_token(session, calendar, emails):
    with pytest.raises(TokenNotFound):
        await BookingService(session).verify_booking("nope", NOW)

async def test_verify_expired_token(session, calendar, emails, therapist):
    svc = BookingService(session)
    submitted = await svc.submit_booking(submission(therapist), NOW)
    token = await verification_token(session, submitted.booking_id)
    with pytest.raises(TokenExpired):
        await svc.verify_booking(token, NOW + timedelta(hours=24, minutes=1))
    booking = await BookingRepository(session).get(submitted.booking_id)
    assert booking.is_verified is False

async def test_previously_verified_email_skips_verification(session, calendar, emails, make_therapist):
    t = await make_therapist(weekly={MONDAY: [("09:00", "12:00")]}, requires_approval=False)
    session.add(VerifiedVisitorEmail(email="returning@example.com"))
    await session.commit()

    result = await BookingService(session).submit_booking(submission(t, email="returning@example.com"), NOW)
    assert result.requires_verification is False
    assert result.is_verified is True
    assert result.status == "confirmed"
    assert len(emails.to(t.email)) == 1
    no_token = await session.execute(select(func.count()).select_from(EmailVerification))
    assert no_token.scalar_one() == 0

async def test_previously_verified_email_still_needs_approval(session, calendar, emails, therapist):
    session.add(VerifiedVisitorEmail(email="returning@example.com"))
    await session.commit()
    result = await BookingService(session).submit_booking(submission(therapist, email="returning@example.com"), NOW)
    assert result.is_verified is True
    assert result.status == "pending"

# ---- Therapist transitions ----

async def test_confirm_requires_verification(session, calendar, emails, therapist, make_booking):
    b = await make_booking(therapist, NEXT_MONDAY, "10:00", "10:30", status="pending", verified=False)
    with pytest.raises(InvalidTransition):
        await BookingService(session).confirm_booking(principal_for(therapist), b.id, NOW)

async def test_confirm_verified_booking(session, calendar, emails, therapist, make_booking):
    b = await make_booking(therapist, NEXT_MONDAY, "10:00", "10:30", status="pending")
    confirmed = await BookingService(session).confirm_booking(principal_for(therapist), b.id, NOW)
    assert confirmed.status == "confirmed"
    assert confirmed.confirmed_at == NOW
    assert len(emails.to(b.visitor_email)) == 1

async def test_cannot_act_on_another_therapists_booking(session, calendar, emails, therapist, make_therapist, make_booking):
    other = await make_therapist()
    b = await make_booking(therapist, NEXT_MONDAY, "10:00", "10:30", status="pending")
    svc = BookingService(session)
    with pytest.raises(AuthorizationError):
        await svc.confirm_booking(principal_for(other), b.id, NOW)
    with pytest.raises(AuthorizationError):
        await svc.cancel_booking(principal_for(other), b.id, None, NOW)
    with pytest.raises(NotFound):
        await svc.confirm_booking(principal_for(therapist), uuid.uuid4(), NOW)

async def test_cancel_frees_the_slot(session, calendar, emails, therapist):
    svc = BookingService(session)
    submitted = await svc.submit_booking(submission(therapist), NOW)
    cancelled = await svc.cancel_booking(principal_for(therapist), submitted.booking_id, "Unwell", NOW)
    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_by == "therapist"
    assert cancelled.cancellation_reason == "Unwell"
    assert cancelled.cancelled_at == NOW

    slots = await AvailabilityService(session).get_available_slots(therapist.id, NEXT_MONDAY, NOW)
    assert len(slots) == 6
    with pytest.raises(InvalidTransition):
        await svc.cancel_booking(principal_for(therapist), submitted.booking_id, None, NOW)

async def test_visitor_cancels_with_token(session, calendar, emails, therapist, make_booking):
    b = await make_booking(therapist, NEXT_MONDAY, "10:00", "10:30")
    svc = BookingService(session)
    found, owner = await svc.get_booking_by_visitor_token(b.visitor_token)
    assert found.id == b.id and owner.id == therapist.id

    cancelled = await svc.cancel_booking_by_visitor(b.visitor_token, "Can't make it", NOW)
    assert cancelled.cancelled_by == "visitor"
    assert len(emails.to(therapist.email)) == 1
    with pytest.raises(NotFound):
        await svc.cancel_booking_by_visitor("bogus", None, NOW)

async def test_complete_only_after_the_session_ends(session, calendar, emails, therapist, make_booking):
    b = await make_booking(therapist, NEXT_MONDAY, "10:00", "10:30")
    svc = BookingService(session)
    p = principal_for(therapist)
    with pytest.raises(InvalidTransition):
        await svc.mark_completed(p, b.id, utc(2026, 11, 9, 10, 15))
    done = await svc.mark_completed(p, b.id, utc(2026, 11, 9, 10, 30))
    assert done.status == "completed"
    with pytest.raises(InvalidTransition):
        await svc.cancel_booking(p, b.id, None, utc(2026, 11, 9, 11))

async def test_no_show_only_from_confirmed(session, calendar, emails, therapist, make_booking):
    pending = await make_booking(therapist, NEXT_MONDAY, "09:00", "09:30", status="pending")
    confirmed = await make_booking(therapist, NEXT_MONDAY, "11:00", "11:30")
    svc = BookingService(session)
    p = principal_for(therapist)
    later = utc(2026, 11, 9, 12)
    with pytest.raises(InvalidTransition):
        await svc.mark_no_show(p, pending.id, later)
    assert (await svc.mark_no_show(p, confirmed.id, later)).status == "no_show"

async def test_concurrent_transition_loser_sees_stale_state(session, calendar, emails, therapist, make_booking):
    b = await make_booking(therapist, NEXT_MONDAY, "10:00", "10:30", status="pending")
    p = principal_for(therapist)
    async with SessionLocal() as other:
        # keep a strong reference: the identity map only holds rows weakly
        stale = await BookingRepository(other).get(b.id)
        assert stale.status == "pending"
        await BookingService(session).confirm_booking(p, b.id, NOW)
        with pytest.raises(StaleState):
            await BookingService(other).cancel_booking(p, b.id, "too late", NOW)

    async with SessionLocal() as fresh:
        assert (await BookingRepository(fresh).get(b.id)).status == "confirmed"

async def test_list_bookings_filters(session, calendar, emails, therapist, make_booking):
    await make_booking(therapist, NEXT_MONDAY, "09:00", "09:30", status="pending")
    await make_booking(therapist, NEXT_MONDAY, "11:00", "11:30")
    await make_booking(therapist, date(2026, 10, 26), "09:00", "09:30", status="completed")
    svc = BookingService(session)
    p = principal_for(therapist)
    assert [b.status for b in await svc.list_bookings(p, "pending", NOW)] == ["pending"]
    assert [b.start_time.hour for b in await svc.list_bookings(p, "upcoming", NOW)] == [11]
    assert [b.status for b in await svc.list_bookings(p, "past", NOW)] == ["completed"]
    assert len(await svc.list_bookings(p, "all", NOW)) == 3

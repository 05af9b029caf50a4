import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="therapy-booking-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ["ENV"] = "local"
os.environ["EMAIL_PROVIDER"] = "noop"
os.environ["EVENT_BUS_PROVIDER"] = "noop"
os.environ["REMINDER_API_KEY"] = "test-reminder-key"
os.environ["DEFAULT_TIMEZONE"] = "Europe/London"

import uuid
from datetime import date, datetime, time, timedelta, timezone

import pytest

from therapy_booking.core.base import Base
from therapy_booking.core.db import engine, SessionLocal, import_models
from therapy_booking.core.errors import ProviderUnavailable
from therapy_booking.core.security import Principal
from therapy_booking.modules.availability import slots as engine_slots
from therapy_booking.modules.availability.models import BookingSettings, WeeklyAvailabilitySlot
from therapy_booking.modules.bookings.models import Booking
from therapy_booking.modules.bookings.service import new_token
from therapy_booking.modules.directory.models import TherapistProfile
from therapy_booking.platform.ports.calendar import BusyInterval
from therapy_booking.platform.ports.email_sender import EmailResult
from therapy_booking.platform.provider_registry import registry

import_models()

class FakeEmailSender:
    def __init__(self):
        self.sent: list[dict] = []
        self.fail_for: set[str] = set()

    async def send(self, to: str, subject: str, html: str, text: str | None = None) -> EmailResult:
        self.sent.append({"to": to, "subject": subject, "html": html})
        if to in self.fail_for:
            return EmailResult(success=False, error="rejected")
        return EmailResult(success=True, provider_message_id=f"fake-{len(self.sent)}")

    def to(self, address: str) -> list[dict]:
        return [m for m in self.sent if m["to"] == address]

class FakeCalendar:
    def __init__(self):
        self.busy: list[BusyInterval] = []
        self.fail = False
        self.calls = 0

    async def get_busy_intervals(self, access_token: str, start: datetime, end: datetime) -> list[BusyInterval]:
        self.calls += 1
        if self.fail:
            raise ProviderUnavailable("calendar down")
        return [b for b in self.busy if b.start < end and b.end > start]

@pytest.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()

@pytest.fixture
async def session(db):
    async with SessionLocal() as s:
        yield s

@pytest.fixture
def emails():
    sender = FakeEmailSender()
    registry.override(email_sender=sender)
    yield sender
    registry.reset()

@pytest.fixture
def calendar(emails):
    cal = FakeCalendar()
    registry.override(calendars={"google": cal, "microsoft": cal})
    return cal

@pytest.fixture
def make_therapist(session):
    async def _make(*, weekly: dict[int, list[tuple[str, str]]] | None = None, **settings_overrides):
        user_id = uuid.uuid4()
        t = TherapistProfile(
            user_id=user_id, slug=f"t-{user_id.hex[:8]}", display_name="Dr Jane Smith",
            email=f"therapist-{user_id.hex[:6]}@example.com",
        )
        session.add(t)
        await session.flush()
        cfg = {
            "slot_duration_minutes": 30,
            "buffer_minutes": 15,
            "min_booking_notice_hours": 24,
            "max_booking_days_ahead": 30,
            "timezone": "Europe/London",
            "requires_approval": True,
        }
        cfg.update(settings_overrides)
        session.add(BookingSettings(therapist_profile_id=t.id, **cfg))
        for dow, ranges in (weekly or {}).items():
            for start, end in ranges:
                session.add(WeeklyAvailabilitySlot(
                    therapist_profile_id=t.id, day_of_week=dow,
                    start_time=engine_slots.parse_clock(start), end_time=engine_slots.parse_clock(end),
                ))
        await session.commit()
        return t
    return _make

@pytest.fixture
def make_booking(session):
    async def _make(therapist: TherapistProfile, day: date, start: str, end: str, *, status: str = "confirmed",
                    tz: str = "Europe/London", buffer_minutes: int = 15, verified: bool = True,
                    email: str = "visitor@example.com") -> Booking:
        zone = engine_slots.load_zone(tz)
        st, et = engine_slots.parse_clock(start), engine_slots.parse_clock(end)
        starts_at, ends_at = engine_slots.local_instant(day, st, zone), engine_slots.local_instant(day, et, zone)
        b = Booking(
            therapist_profile_id=therapist.id, booking_date=day, start_time=st, end_time=et,
            duration_minutes=int((ends_at - starts_at).total_seconds() // 60),
            starts_at=starts_at, ends_at=ends_at, blocked_until=ends_at + timedelta(minutes=buffer_minutes),
            session_format="online", visitor_name="Alex Visitor", visitor_email=email,
            visitor_token=new_token(), status=status, is_verified=verified,
        )
        session.add(b)
        await session.commit()
        return b
    return _make

def principal_for(therapist: TherapistProfile) -> Principal:
    return Principal(user_id=therapist.user_id, roles=["therapist"], scopes=["*"])

def utc(y: int, m: int, d: int, hh: int = 0, mm: int = 0) -> datetime:
    return datetime(y, m, d, hh, mm, tzinfo=timezone.utc)

def clock(value: str) -> time:
    return engine_slots.parse_clock(value)

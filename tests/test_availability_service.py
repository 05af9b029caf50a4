from datetime import date

import httpx
import pytest

from conftest import principal_for, utc
from therapy_booking.core.errors import AuthorizationError, NotFound, ValidationError
from therapy_booking.modules.availability.schemas import BookingSettingsUpdate, OverrideUpsert, TimeRangeIn, WeeklyDayIn
from therapy_booking.modules.availability.service import AvailabilityService
from therapy_booking.modules.calendar.models import CalendarConnection
from therapy_booking.platform.adapters.calendar_google import GoogleFreeBusyCalendar
from therapy_booking.platform.ports.calendar import BusyInterval
from therapy_booking.platform.provider_registry import registry
from therapy_booking.core.security import Principal

MONDAY = 1
SUNDAY_10AM = utc(2026, 11, 1, 10)
NEXT_MONDAY = date(2026, 11, 9)

def starts(result):
    return [s.as_dict()["start_time"] for s in result]

async def test_available_slots_for_next_monday(session, calendar, make_therapist):
    t = await make_therapist(weekly={MONDAY: [("09:00", "12:00")]})
    result = await AvailabilityService(session).get_available_slots(t.id, NEXT_MONDAY, SUNDAY_10AM)
    assert starts(result) == ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30"]

async def test_existing_booking_blocks_buffered_neighbours(session, calendar, make_therapist, make_booking):
    t = await make_therapist(weekly={MONDAY: [("09:00", "12:00")]})
    await make_booking(t, NEXT_MONDAY, "10:00", "10:30")
    result = await AvailabilityService(session).get_available_slots(t.id, NEXT_MONDAY, SUNDAY_10AM)
    assert starts(result) == ["09:00", "11:00", "11:30"]

async def test_cancelled_booking_frees_the_slot(session, calendar, make_therapist, make_booking):
    t = await make_therapist(weekly={MONDAY: [("09:00", "12:00")]})
    await make_booking(t, NEXT_MONDAY, "10:00", "10:30", status="cancelled")
    result = await AvailabilityService(session).get_available_slots(t.id, NEXT_MONDAY, SUNDAY_10AM)
    assert len(result) == 6

async def test_calendar_busy_time_is_subtracted(session, calendar, make_therapist):
    t = await make_therapist(weekly={MONDAY: [("09:00", "12:00")]}, buffer_minutes=0)
    session.add(CalendarConnection(therapist_profile_id=t.id, provider="google", access_token="tok"))
    await session.commit()
    calendar.busy = [BusyInterval(start=utc(2026, 11, 9, 9, 15), end=utc(2026, 11, 9, 10, 0))]
    result = await AvailabilityService(session).get_available_slots(t.id, NEXT_MONDAY, SUNDAY_10AM)
    assert starts(result) == ["10:00", "10:30", "11:00", "11:30"]

async def test_calendar_failure_is_treated_as_no_busy_time(session, calendar, make_therapist):
    t = await make_therapist(weekly={MONDAY: [("09:00", "12:00")]})
    session.add(CalendarConnection(therapist_profile_id=t.id, provider="google", access_token="tok"))
    await session.commit()
    calendar.fail = True
    result = await AvailabilityService(session).get_available_slots(t.id, NEXT_MONDAY, SUNDAY_10AM)
    assert calendar.calls == 1
    assert len(result) == 6

async def test_garbled_calendar_response_is_treated_as_no_busy_time(session, emails, make_therapist):
    t = await make_therapist(weekly={MONDAY: [("09:00", "12:00")]})
    session.add(CalendarConnection(therapist_profile_id=t.id, provider="google", access_token="tok"))
    await session.commit()
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>")))
    registry.override(calendars={"google": GoogleFreeBusyCalendar(client=client)})
    try:
        result = await AvailabilityService(session).get_available_slots(t.id, NEXT_MONDAY, SUNDAY_10AM)
    finally:
        await client.aclose()
    assert len(result) == 6

async def test_unexpected_adapter_error_is_treated_as_no_busy_time(session, calendar, make_therapist, monkeypatch):
    t = await make_therapist(weekly={MONDAY: [("09:00", "12:00")]})
    session.add(CalendarConnection(therapist_profile_id=t.id, provider="google", access_token="tok"))
    await session.commit()

    async def explode(access_token, start, end):
        raise RuntimeError("adapter bug")

    monkeypatch.setattr(calendar, "get_busy_intervals", explode)
    result = await AvailabilityService(session).get_available_slots(t.id, NEXT_MONDAY, SUNDAY_10AM)
    assert len(result) == 6

async def test_inactive_connection_is_not_queried(session, calendar, make_therapist):
    t = await make_therapist(weekly={MONDAY: [("09:00", "12:00")]})
    session.add(CalendarConnection(therapist_profile_id=t.id, provider="google", access_token="tok", is_active=False))
    await session.commit()
    await AvailabilityService(session).get_available_slots(t.id, NEXT_MONDAY, SUNDAY_10AM)
    assert calendar.calls == 0

async def test_slots_outside_booking_window_are_empty(session, calendar, make_therapist):
    t = await make_therapist(weekly={MONDAY: [("09:00", "12:00")]}, max_booking_days_ahead=7)
    svc = AvailabilityService(session)
    assert await svc.get_available_slots(t.id, NEXT_MONDAY, SUNDAY_10AM) == []  # 8 days ahead
    assert await svc.get_available_slots(t.id, date(2026, 10, 26), SUNDAY_10AM) == []  # past

async def test_online_booking_disabled_offers_nothing(session, calendar, make_therapist):
    t = await make_therapist(weekly={MONDAY: [("09:00", "12:00")]}, accepts_online_booking=False)
    assert await AvailabilityService(session).get_available_slots(t.id, NEXT_MONDAY, SUNDAY_10AM) == []

async def test_unknown_therapist_is_not_found(session, calendar):
    import uuid
    with pytest.raises(NotFound):
        await AvailabilityService(session).get_available_slots(uuid.uuid4(), NEXT_MONDAY, SUNDAY_10AM)

async def test_available_dates_for_month(session, calendar, make_therapist):
    t = await make_therapist(weekly={MONDAY: [("09:00", "12:00")]})
    dates = await AvailabilityService(session).get_available_dates(t.id, 2026, 11, SUNDAY_10AM)
    # Mondays in November 2026 within 30 days of Nov 1; Nov 2 still has slots from 10:00
    assert dates == [date(2026, 11, 2), date(2026, 11, 9), date(2026, 11, 16), date(2026, 11, 23), date(2026, 11, 30)]

async def test_available_dates_drop_today_once_notice_covers_it(session, calendar, make_therapist):
    t = await make_therapist(weekly={MONDAY: [("09:00", "12:00")]}, min_booking_notice_hours=2)
    monday_late_morning = utc(2026, 11, 9, 10, 30)
    dates = await AvailabilityService(session).get_available_dates(t.id, 2026, 11, monday_late_morning)
    assert date(2026, 11, 9) not in dates
    assert date(2026, 11, 16) in dates

async def test_fully_booked_day_is_not_an_available_date(session, calendar, make_therapist, make_booking):
    t = await make_therapist(weekly={MONDAY: [("09:00", "10:00")]}, slot_duration_minutes=60)
    await make_booking(t, NEXT_MONDAY, "09:00", "10:00")
    dates = await AvailabilityService(session).get_available_dates(t.id, 2026, 11, SUNDAY_10AM)
    assert NEXT_MONDAY not in dates

async def test_settings_are_created_on_first_access(session):
    from therapy_booking.modules.directory.models import TherapistProfile
    import uuid
    t = TherapistProfile(user_id=uuid.uuid4(), slug="fresh", display_name="Fresh", email="fresh@example.com")
    session.add(t)
    await session.commit()
    svc = AvailabilityService(session)
    cfg = await svc.get_settings_for(principal_for(t))
    again = await svc.get_or_create_settings(t.id)
    assert cfg.id == again.id
    assert cfg.slot_duration_minutes == 60
    assert cfg.timezone == "Europe/London"

async def test_update_settings(session, make_therapist):
    t = await make_therapist()
    payload = BookingSettingsUpdate(
        slot_duration_minutes=45, buffer_minutes=10, min_booking_notice_hours=2, max_booking_days_ahead=60,
        timezone="America/New_York", requires_approval=False,
    )
    cfg = await AvailabilityService(session).update_settings(principal_for(t), payload)
    assert cfg.slot_duration_minutes == 45
    assert cfg.timezone == "America/New_York"
    assert cfg.requires_approval is False

@pytest.mark.parametrize("field,value", [
    ("slot_duration_minutes", 7),
    ("slot_duration_minutes", 250),
    ("slot_duration_minutes", 100),
    ("buffer_minutes", 7),
    ("timezone", "Not/AZone"),
])
def test_settings_payload_validation(field, value):
    from pydantic import ValidationError as PydanticValidationError
    data = {"slot_duration_minutes": 60, "buffer_minutes": 15, "min_booking_notice_hours": 24, "max_booking_days_ahead": 30}
    data[field] = value
    with pytest.raises(PydanticValidationError):
        BookingSettingsUpdate(**data)

async def test_save_weekly_replaces_the_template(session, make_therapist):
    t = await make_therapist(weekly={MONDAY: [("09:00", "12:00")]})
    svc = AvailabilityService(session)
    saved = await svc.save_weekly(principal_for(t), [
        WeeklyDayIn(day_of_week=2, slots=[TimeRangeIn(start_time="13:00", end_time="17:00")]),
    ])
    assert [(w.day_of_week, w.start_time.hour) for w in saved] == [(2, 13)]
    assert [(w.day_of_week, w.start_time.hour) for w in await svc.get_weekly(principal_for(t))] == [(2, 13)]

async def test_save_weekly_rejects_inverted_range(session, make_therapist):
    t = await make_therapist()
    with pytest.raises(ValidationError):
        await AvailabilityService(session).save_weekly(principal_for(t), [
            WeeklyDayIn(day_of_week=1, slots=[TimeRangeIn(start_time="12:00", end_time="09:00")]),
        ])

async def test_override_closes_and_reopens_a_day(session, calendar, make_therapist):
    t = await make_therapist(weekly={MONDAY: [("09:00", "12:00")]})
    svc = AvailabilityService(session)
    p = principal_for(t)
    o = await svc.upsert_override(p, OverrideUpsert(override_date=NEXT_MONDAY, is_available=False, reason="Holiday"))
    assert await svc.get_available_slots(t.id, NEXT_MONDAY, SUNDAY_10AM) == []

    await svc.upsert_override(p, OverrideUpsert(override_date=NEXT_MONDAY, is_available=True, start_time="14:00", end_time="15:00"))
    assert starts(await svc.get_available_slots(t.id, NEXT_MONDAY, SUNDAY_10AM)) == ["14:00", "14:30"]
    assert len(await svc.list_overrides(p)) == 1

    await svc.delete_override(p, o.id)
    assert len(await svc.get_available_slots(t.id, NEXT_MONDAY, SUNDAY_10AM)) == 6

async def test_available_override_needs_hours(session, make_therapist):
    t = await make_therapist()
    with pytest.raises(ValidationError):
        await AvailabilityService(session).upsert_override(principal_for(t), OverrideUpsert(override_date=NEXT_MONDAY, is_available=True))

async def test_non_therapist_cannot_edit_settings(session):
    import uuid
    with pytest.raises(AuthorizationError):
        await AvailabilityService(session).get_settings_for(Principal(user_id=uuid.uuid4()))

import uuid
from datetime import date, datetime
from pydantic import BaseModel, Field, field_validator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from therapy_booking.modules.availability.slots import CLOCK_PATTERN, MINUTES_PER_DAY

# ---- Booking settings ----

class BookingSettingsUpdate(BaseModel):
    slot_duration_minutes: int = Field(ge=15, le=240)
    buffer_minutes: int = Field(ge=0, le=60)
    min_booking_notice_hours: int = Field(ge=0, le=168)
    max_booking_days_ahead: int = Field(ge=1, le=365)
    timezone: str = Field(default="Europe/London", min_length=1, max_length=100)
    requires_approval: bool = True
    accepts_online_booking: bool = True
    send_visitor_reminders: bool = True
    send_therapist_reminders: bool = True

    @field_validator("slot_duration_minutes")
    @classmethod
    def _slot_divides_day(cls, v: int):
        if MINUTES_PER_DAY % v:
            raise ValueError("Slot duration must divide evenly into a day")
        return v

    @field_validator("buffer_minutes")
    @classmethod
    def _buffer_divides_day(cls, v: int):
        if v and MINUTES_PER_DAY % v:
            raise ValueError("Buffer must divide evenly into a day")
        return v

    @field_validator("timezone")
    @classmethod
    def _known_zone(cls, v: str):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

class BookingSettingsOut(BookingSettingsUpdate):
    id: uuid.UUID
    therapist_profile_id: uuid.UUID
    class Config: from_attributes = True

# ---- Weekly template ----

class TimeRangeIn(BaseModel):
    start_time: str = Field(pattern=CLOCK_PATTERN)
    end_time: str = Field(pattern=CLOCK_PATTERN)

class WeeklyDayIn(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    slots: list[TimeRangeIn] = []

class WeeklySlotOut(BaseModel):
    id: uuid.UUID
    day_of_week: int
    start_time: str
    end_time: str

# ---- Overrides ----

class OverrideUpsert(BaseModel):
    override_date: date
    is_available: bool
    start_time: str | None = Field(default=None, pattern=CLOCK_PATTERN)
    end_time: str | None = Field(default=None, pattern=CLOCK_PATTERN)
    reason: str | None = Field(default=None, max_length=255)

class OverrideOut(BaseModel):
    id: uuid.UUID
    override_date: date
    is_available: bool
    start_time: str | None = None
    end_time: str | None = None
    reason: str | None = None

# ---- Public slot search ----

class SlotOut(BaseModel):
    start_time: str
    end_time: str
    starts_at: datetime
    ends_at: datetime

class AvailableDatesOut(BaseModel):
    year: int
    month: int
    dates: list[date]

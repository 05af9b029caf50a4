import uuid
from datetime import date, datetime
from typing import Literal
from pydantic import BaseModel, Field, field_validator
from therapy_booking.modules.availability.slots import CLOCK_PATTERN

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

SessionFormat = Literal["online", "in-person", "phone"]
BookingFilter = Literal["pending", "upcoming", "past", "all"]

class BookingSubmit(BaseModel):
    therapist_profile_id: uuid.UUID
    service_id: uuid.UUID | None = None
    booking_date: date
    start_time: str = Field(pattern=CLOCK_PATTERN)
    end_time: str = Field(pattern=CLOCK_PATTERN)
    session_format: SessionFormat = "online"
    visitor_name: str = Field(min_length=2, max_length=100)
    visitor_email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    visitor_phone: str | None = Field(default=None, max_length=20)
    visitor_notes: str | None = Field(default=None, max_length=1000)
    honeypot: str | None = Field(default=None, max_length=0)  # bots fill hidden fields

    @field_validator("visitor_name")
    @classmethod
    def _strip_name(cls, v: str):
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        return v

    @field_validator("visitor_email")
    @classmethod
    def _normalise_email(cls, v: str):
        return v.strip().lower()

class BookingSubmitted(BaseModel):
    booking_id: uuid.UUID
    visitor_token: str
    status: str
    is_verified: bool
    requires_verification: bool

class VerifyResult(BaseModel):
    success: bool = True
    already_verified: bool = False
    booking_id: uuid.UUID
    status: str

class CancelRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)

class BookingOut(BaseModel):
    id: uuid.UUID
    therapist_profile_id: uuid.UUID
    service_id: uuid.UUID | None = None
    booking_date: date
    start_time: str
    end_time: str
    duration_minutes: int
    starts_at: datetime
    ends_at: datetime
    session_format: str
    visitor_name: str
    visitor_email: str
    visitor_phone: str | None = None
    visitor_notes: str | None = None
    status: str
    is_verified: bool
    created_at: datetime
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    cancelled_by: str | None = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _clock(cls, v):
        return v.strftime("%H:%M") if hasattr(v, "strftime") else v

    class Config:
        from_attributes = True

class VisitorBookingOut(BaseModel):
    """What the holder of a visitor token may see: no other visitor data, no internal stamps."""
    id: uuid.UUID
    therapist_profile_id: uuid.UUID
    therapist_name: str
    booking_date: date
    start_time: str
    end_time: str
    session_format: str
    status: str
    is_verified: bool
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None

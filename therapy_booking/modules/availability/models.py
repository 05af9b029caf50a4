import uuid
from datetime import date, time
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Time, Date, ForeignKey, Boolean, UniqueConstraint
from therapy_booking.core.base import Base, TimestampedMixin

# Recurring weekly template: day_of_week 0=Sun..6=Sat, local wall-clock times in the therapist's zone
class WeeklyAvailabilitySlot(Base, TimestampedMixin):
    __tablename__ = "weekly_availability"
    therapist_profile_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("therapist_profile.id"), index=True)
    day_of_week: Mapped[int] = mapped_column(Integer)  # 0..6
    start_time: Mapped[time] = mapped_column(Time)
    end_time: Mapped[time] = mapped_column(Time)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

# Per-date exception to the weekly template
class AvailabilityOverride(Base, TimestampedMixin):
    __tablename__ = "availability_override"
    __table_args__ = (UniqueConstraint("therapist_profile_id", "override_date", name="uq_override_therapist_date"),)
    therapist_profile_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("therapist_profile.id"), index=True)
    override_date: Mapped[date] = mapped_column(Date)
    is_available: Mapped[bool] = mapped_column(Boolean, default=False)
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)  # custom hours when is_available
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

class BookingSettings(Base, TimestampedMixin):
    __tablename__ = "booking_settings"
    therapist_profile_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("therapist_profile.id"), unique=True)
    slot_duration_minutes: Mapped[int] = mapped_column(Integer, default=60)
    buffer_minutes: Mapped[int] = mapped_column(Integer, default=15)
    min_booking_notice_hours: Mapped[int] = mapped_column(Integer, default=24)
    max_booking_days_ahead: Mapped[int] = mapped_column(Integer, default=30)
    timezone: Mapped[str] = mapped_column(String(100), default="Europe/London")
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=True)
    accepts_online_booking: Mapped[bool] = mapped_column(Boolean, default=True)
    send_visitor_reminders: Mapped[bool] = mapped_column(Boolean, default=True)
    send_therapist_reminders: Mapped[bool] = mapped_column(Boolean, default=True)
    # bumped by every booking submission; the UPDATE is the per-therapist write lock
    booking_lock_version: Mapped[int] = mapped_column(Integer, default=0)

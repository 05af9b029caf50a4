import uuid
from datetime import date, time, datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Text, Time, Date, ForeignKey, Boolean, DDL, event
from therapy_booking.core.base import Base, TimestampedMixin, UTCDateTime

class Booking(Base, TimestampedMixin):
    __tablename__ = "booking"
    therapist_profile_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("therapist_profile.id"), index=True)
    service_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)

    # wall-clock in the therapist's zone, as the visitor picked it
    booking_date: Mapped[date] = mapped_column(Date, index=True)
    start_time: Mapped[time] = mapped_column(Time)
    end_time: Mapped[time] = mapped_column(Time)
    duration_minutes: Mapped[int] = mapped_column(Integer)

    # the same slot as UTC instants; blocked_until = ends_at + buffer at booking time
    starts_at: Mapped[datetime] = mapped_column(UTCDateTime(), index=True)
    ends_at: Mapped[datetime] = mapped_column(UTCDateTime())
    blocked_until: Mapped[datetime] = mapped_column(UTCDateTime())

    session_format: Mapped[str] = mapped_column(String(16))  # online | in-person | phone
    visitor_name: Mapped[str] = mapped_column(String(100))
    visitor_email: Mapped[str] = mapped_column(String(255), index=True)
    visitor_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    visitor_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    visitor_token: Mapped[str] = mapped_column(String(64), unique=True, index=True)

    status: Mapped[str] = mapped_column(String(16), default="pending", index=True)  # pending, confirmed, cancelled, completed, no_show
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)

    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(16), nullable=True)  # therapist | visitor

    reminder_24h_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    reminder_1h_sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # optimistic lock: a concurrent transition on a stale row raises StaleDataError
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

class EmailVerification(Base, TimestampedMixin):
    __tablename__ = "email_verification"
    token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    booking_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("booking.id"), index=True)
    email: Mapped[str] = mapped_column(String(255))
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime())
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

# visitors who have proven ownership of an address once skip verification next time
class VerifiedVisitorEmail(Base, TimestampedMixin):
    __tablename__ = "verified_visitor_email"
    email: Mapped[str] = mapped_column(String(255), unique=True)  # lower-cased
    verified_via: Mapped[str] = mapped_column(String(32), default="booking")

# Store-level guard against double booking on PostgreSQL: live bookings of one therapist may not
# share any instant of [starts_at, blocked_until).
event.listen(
    Booking.__table__, "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    Booking.__table__, "after_create",
    DDL(
        "ALTER TABLE booking ADD CONSTRAINT booking_no_overlap EXCLUDE USING gist "
        "(therapist_profile_id WITH =, tstzrange(starts_at, blocked_until) WITH &&) "
        "WHERE (status IN ('pending', 'confirmed') AND deleted_at IS NULL)"
    ).execute_if(dialect="postgresql"),
)

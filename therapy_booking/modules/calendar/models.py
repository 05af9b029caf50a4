import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, ForeignKey, Boolean
from therapy_booking.core.base import Base, TimestampedMixin, UTCDateTime

# One row per connected provider; at most one active per therapist in practice, not enforced here
class CalendarConnection(Base, TimestampedMixin):
    __tablename__ = "calendar_connection"
    therapist_profile_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("therapist_profile.id"), index=True)
    provider: Mapped[str] = mapped_column(String(16))  # google | microsoft
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)

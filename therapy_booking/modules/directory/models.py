import uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Boolean
from therapy_booking.core.base import Base, TimestampedMixin

class TherapistProfile(Base, TimestampedMixin):
    __tablename__ = "therapist_profile"
    user_id: Mapped[uuid.UUID] = mapped_column(unique=True, index=True)  # owner account in the auth system
    slug: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    display_name: Mapped[str] = mapped_column(String(160))
    email: Mapped[str] = mapped_column(String(255))
    is_published: Mapped[bool] = mapped_column(Boolean, default=True)

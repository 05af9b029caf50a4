from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, JSON
from therapy_booking.core.base import Base, TimestampedMixin

# Every email the service attempts, delivered or not
class OutboundMessage(Base, TimestampedMixin):
    __tablename__ = "outbound_message"
    channel: Mapped[str] = mapped_column(String(16), default="email")
    to: Mapped[str] = mapped_column(String(255))
    subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    body: Mapped[str] = mapped_column(Text)
    kind: Mapped[str | None] = mapped_column(String(48), nullable=True)  # booking_verification, reminder_24h_visitor, ...
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="sent")  # sent | failed
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

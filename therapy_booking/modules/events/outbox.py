import uuid
import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import text, String, Integer, Text, JSON, select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from therapy_booking.core.base import Base, TimestampedMixin, UTCDateTime, utcnow
from therapy_booking.core.db import SessionLocal
from therapy_booking.platform.ports.event_bus import BOOKING_EVENTS_TOPIC
from therapy_booking.platform.provider_registry import registry

log = logging.getLogger("event.outbox")

class EventOutbox(Base, TimestampedMixin):
    __tablename__ = "event_outbox"
    event_type: Mapped[str] = mapped_column(String(64))
    subject_type: Mapped[str] = mapped_column(String(32))  # booking | therapist
    subject_id: Mapped[str] = mapped_column(String(64))
    payload: Mapped[dict] = mapped_column(JSON)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), server_default=text("CURRENT_TIMESTAMP"))

    status: Mapped[str] = mapped_column(String(16), default="pending")  # pending | processing | sent
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(UTCDateTime(), server_default=text("CURRENT_TIMESTAMP"))
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

class OutboxRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def enqueue(self, *, event_type: str, subject_type: str, subject_id: str, payload: dict, occurred_at: datetime | None = None) -> EventOutbox:
        now = utcnow()
        obj = EventOutbox(
            event_type=event_type,
            subject_type=subject_type,
            subject_id=str(subject_id),
            payload=payload,
            occurred_at=occurred_at or now,
            status="pending",
            attempts=0,
            next_attempt_at=now,
        )
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def claim_batch(self, limit: int = 50, now: datetime | None = None) -> list[EventOutbox]:
        # SELECT ... FOR UPDATE SKIP LOCKED
        q = (
            select(EventOutbox)
            .where(
                and_(
                    EventOutbox.deleted_at.is_(None),
                    EventOutbox.status == "pending",
                    EventOutbox.next_attempt_at <= (now or utcnow()),
                )
            )
            .order_by(EventOutbox.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        res = await self.session.execute(q)
        rows = list(res.scalars().all())
        for r in rows:
            r.status = "processing"
        await self.session.flush()
        return rows

    async def mark_sent(self, obj: EventOutbox):
        obj.status = "sent"
        obj.last_error = None
        await self.session.flush()

    async def mark_failed(self, obj: EventOutbox, error: str):
        obj.status = "pending"  # retry
        obj.attempts = (obj.attempts or 0) + 1
        backoff = min(60, 2 ** min(obj.attempts, 6))  # 2,4,8,16,32,60s
        obj.next_attempt_at = utcnow() + timedelta(seconds=backoff)
        obj.last_error = error[:2000]
        await self.session.flush()

class OutboxService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = OutboxRepository(session)

    async def enqueue(self, event_type: str, subject_type: str, subject_id: str | uuid.UUID, payload: dict, occurred_at: datetime | None = None) -> EventOutbox:
        return await self.repo.enqueue(event_type=event_type, subject_type=subject_type, subject_id=str(subject_id), payload=payload, occurred_at=occurred_at)

def event_envelope(ev: EventOutbox) -> dict:
    return {
        "event_type": ev.event_type,
        "subject": {"type": ev.subject_type, "id": ev.subject_id},
        "payload": ev.payload,
        "occurred_at": ev.occurred_at.isoformat(),
        "outbox_id": str(ev.id),
    }

async def relay_once(session: AsyncSession, limit: int = 50) -> int:
    """Publish one claimed batch; returns how many events were handed to the bus."""
    bus = registry.event_bus()
    repo = OutboxRepository(session)
    batch = await repo.claim_batch(limit=limit)
    published = 0
    for ev in batch:
        try:
            await bus.publish(topic=BOOKING_EVENTS_TOPIC, key=ev.subject_id or "-", value=event_envelope(ev))
            await repo.mark_sent(ev)
            published += 1
        except Exception as ex:
            log.exception("Publish failed for outbox event %s", ev.id)
            await repo.mark_failed(ev, error=str(ex))
    await session.commit()
    return published

# ---- Background relay ----

async def run_outbox_relay(poll_interval_seconds: float = 1.0):
    log.info("Outbox relay started with bus=%s", registry.event_bus().__class__.__name__)
    try:
        while True:
            async with SessionLocal() as session:
                try:
                    if not await relay_once(session):
                        await asyncio.sleep(poll_interval_seconds)
                        continue
                except Exception:
                    log.exception("Outbox relay iteration failed")
                    await session.rollback()
                    await asyncio.sleep(poll_interval_seconds)
            await asyncio.sleep(0)  # yield
    except asyncio.CancelledError:
        log.info("Outbox relay cancelled; shutting down")
        raise

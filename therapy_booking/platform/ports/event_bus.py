from typing import Protocol, runtime_checkable

BOOKING_EVENTS_TOPIC = "booking.events"

@runtime_checkable
class EventBusPort(Protocol):
    """Fire-and-forget publisher fed by the outbox relay; delivery is at-least-once."""

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None: ...

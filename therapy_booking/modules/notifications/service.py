import logging
from sqlalchemy.ext.asyncio import AsyncSession
from therapy_booking.modules.notifications.models import OutboundMessage
from therapy_booking.modules.notifications.templates import RenderedEmail
from therapy_booking.platform.provider_registry import registry

logger = logging.getLogger(__name__)

class NotificationsService:
    def __init__(self, s: AsyncSession): self.s = s

    async def send_email(self, to: str, email: RenderedEmail, *, kind: str, meta: dict | None = None) -> OutboundMessage:
        """Best-effort delivery; the outcome is recorded, never raised. The caller commits."""
        try:
            sender = registry.email_sender()
            result = await sender.send(to=to, subject=email.subject, html=email.html)
        except Exception as e:
            logger.exception(f"Email sender raised for {kind} to {to}")
            ok, provider_id, error = False, None, str(e)
        else:
            ok, provider_id, error = result.success, result.provider_message_id, result.error
        if not ok:
            logger.warning(f"Email {kind} to {to} failed: {error}")
        m = OutboundMessage(
            channel="email", to=to, subject=email.subject, body=email.html, kind=kind, meta=meta or {},
            status="sent" if ok else "failed", provider_message_id=provider_id, error=error,
        )
        self.s.add(m); await self.s.flush()
        return m

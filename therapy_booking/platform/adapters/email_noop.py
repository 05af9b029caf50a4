import logging
import uuid
from therapy_booking.platform.ports.email_sender import EmailSenderPort, EmailResult

log = logging.getLogger("email.noop")

class NoopEmailSender(EmailSenderPort):
    """Logs instead of delivering; used for local runs without a provider key."""

    async def send(self, to: str, subject: str, html: str, text: str | None = None) -> EmailResult:
        log.info(f"[NOOP EMAIL] to={to} subject={subject!r} bytes={len(html)}")
        return EmailResult(success=True, provider_message_id=f"noop-{uuid.uuid4().hex[:12]}")

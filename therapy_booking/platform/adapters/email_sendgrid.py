import logging
import re
import httpx
from therapy_booking.core.config import settings
from therapy_booking.platform.ports.email_sender import EmailSenderPort, EmailResult

log = logging.getLogger("email.sendgrid")

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"

def strip_html(html: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"<[^>]*>", "", html)).strip()

class SendGridEmailSender(EmailSenderPort):
    def __init__(self, api_key: str | None = None, client: httpx.AsyncClient | None = None):
        self.api_key = api_key or settings.SENDGRID_API_KEY
        if not self.api_key:
            raise RuntimeError("SENDGRID_API_KEY not configured")
        self._client = client

    async def send(self, to: str, subject: str, html: str, text: str | None = None) -> EmailResult:
        body = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": settings.EMAIL_FROM_ADDRESS, "name": settings.EMAIL_FROM_NAME},
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": text or strip_html(html)},
                {"type": "text/html", "value": html},
            ],
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            if self._client is not None:
                response = await self._client.post(SENDGRID_SEND_URL, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
                    response = await client.post(SENDGRID_SEND_URL, json=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.error(f"SendGrid rejected email to {to}: {e.response.status_code} {e.response.text}")
            return EmailResult(success=False, error=f"http_{e.response.status_code}")
        except httpx.HTTPError as e:
            log.error(f"SendGrid request failed for {to}: {e}", exc_info=True)
            return EmailResult(success=False, error=type(e).__name__)
        return EmailResult(success=True, provider_message_id=response.headers.get("x-message-id"))

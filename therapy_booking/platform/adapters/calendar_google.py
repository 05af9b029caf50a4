import logging
from datetime import datetime, timezone
import httpx
from therapy_booking.core.config import settings
from therapy_booking.core.errors import ProviderUnavailable
from therapy_booking.platform.ports.calendar import CalendarBusyTimePort, BusyInterval

log = logging.getLogger("calendar.google")

GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"

def _parse_instant(value: str) -> datetime:
    # Google returns RFC 3339 with a trailing Z
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

class GoogleFreeBusyCalendar(CalendarBusyTimePort):
    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    async def get_busy_intervals(self, access_token: str, start: datetime, end: datetime) -> list[BusyInterval]:
        body = {
            "timeMin": start.astimezone(timezone.utc).isoformat(),
            "timeMax": end.astimezone(timezone.utc).isoformat(),
            "items": [{"id": "primary"}],
        }
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            if self._client is not None:
                response = await self._client.post(f"{GOOGLE_CALENDAR_API}/freeBusy", json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
                    response = await client.post(f"{GOOGLE_CALENDAR_API}/freeBusy", json=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderUnavailable(f"Google free/busy returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Google free/busy request failed: {e}") from e

        try:
            primary = (response.json().get("calendars") or {}).get("primary") or {}
            busy = primary.get("busy") or []
            out = [BusyInterval(start=_parse_instant(b["start"]), end=_parse_instant(b["end"])) for b in busy]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ProviderUnavailable(f"Google free/busy returned an unreadable payload: {e!r}") from e
        log.debug(f"Google free/busy returned {len(out)} intervals")
        return out

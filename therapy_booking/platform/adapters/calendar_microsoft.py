import logging
from datetime import datetime, timezone
import httpx
from therapy_booking.core.config import settings
from therapy_booking.core.errors import ProviderUnavailable
from therapy_booking.platform.ports.calendar import CalendarBusyTimePort, BusyInterval

log = logging.getLogger("calendar.microsoft")

MICROSOFT_GRAPH_API = "https://graph.microsoft.com/v1.0"
BUSY_STATUSES = {"busy", "oof", "tentative"}

def _parse_graph_instant(value: str) -> datetime:
    # Graph returns naive UTC when asked for timeZone=UTC, with 7 fractional digits
    head, _, frac = value.partition(".")
    dt = datetime.fromisoformat(head)
    if frac:
        dt = dt.replace(microsecond=int(frac[:6].ljust(6, "0")))
    return dt.replace(tzinfo=timezone.utc)

class MicrosoftScheduleCalendar(CalendarBusyTimePort):
    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    async def _fetch(self, client: httpx.AsyncClient, access_token: str, start: datetime, end: datetime) -> list[dict]:
        headers = {"Authorization": f"Bearer {access_token}"}
        me = await client.get(f"{MICROSOFT_GRAPH_API}/me", headers=headers)
        me.raise_for_status()
        me_data = me.json()
        mailbox = me_data.get("mail") or me_data.get("userPrincipalName")
        if not mailbox:
            raise ProviderUnavailable("Microsoft account has no mailbox address")
        body = {
            "schedules": [mailbox],
            "startTime": {"dateTime": start.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S"), "timeZone": "UTC"},
            "endTime": {"dateTime": end.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S"), "timeZone": "UTC"},
            "availabilityViewInterval": 30,
        }
        response = await client.post(f"{MICROSOFT_GRAPH_API}/me/calendar/getSchedule", json=body, headers=headers)
        response.raise_for_status()
        return response.json().get("value") or []

    async def get_busy_intervals(self, access_token: str, start: datetime, end: datetime) -> list[BusyInterval]:
        try:
            if self._client is not None:
                schedules = await self._fetch(self._client, access_token, start, end)
            else:
                async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
                    schedules = await self._fetch(client, access_token, start, end)
        except httpx.HTTPStatusError as e:
            raise ProviderUnavailable(f"Microsoft getSchedule returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"Microsoft getSchedule request failed: {e}") from e
        except (ValueError, AttributeError) as e:
            raise ProviderUnavailable(f"Microsoft getSchedule returned an unreadable payload: {e!r}") from e

        out: list[BusyInterval] = []
        try:
            for schedule in schedules:
                for item in schedule.get("scheduleItems") or []:
                    if (item.get("status") or "").lower() not in BUSY_STATUSES:
                        continue
                    out.append(BusyInterval(
                        start=_parse_graph_instant(item["start"]["dateTime"]),
                        end=_parse_graph_instant(item["end"]["dateTime"]),
                    ))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise ProviderUnavailable(f"Microsoft getSchedule returned an unreadable payload: {e!r}") from e
        log.debug(f"Microsoft getSchedule returned {len(out)} busy items")
        return out

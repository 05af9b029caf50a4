from datetime import datetime
from therapy_booking.platform.ports.calendar import CalendarBusyTimePort, BusyInterval

class NoopCalendar(CalendarBusyTimePort):
    async def get_busy_intervals(self, access_token: str, start: datetime, end: datetime) -> list[BusyInterval]:
        return []

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable

@dataclass(frozen=True)
class BusyInterval:
    start: datetime  # aware, UTC
    end: datetime

@runtime_checkable
class CalendarBusyTimePort(Protocol):
    async def get_busy_intervals(self, access_token: str, start: datetime, end: datetime) -> list[BusyInterval]:
        """Read-only free/busy lookup. Raises ProviderUnavailable on transport or API failure."""
        ...

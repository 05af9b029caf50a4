from datetime import datetime
from pydantic import BaseModel, Field

class ReminderSummary(BaseModel):
    reminders_24h_sent: int = 0
    reminders_1h_sent: int = 0
    errors: list[str] = Field(default_factory=list)
    processed_at: datetime

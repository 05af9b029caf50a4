import uuid
from datetime import datetime
from pydantic import BaseModel

class CalendarConnectionOut(BaseModel):
    id: uuid.UUID
    provider: str
    is_active: bool
    last_sync_at: datetime | None = None
    sync_error: str | None = None

    class Config:
        from_attributes = True

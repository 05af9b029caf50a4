from dataclasses import dataclass
from typing import Protocol, runtime_checkable

@dataclass
class EmailResult:
    success: bool
    provider_message_id: str | None = None
    error: str | None = None

@runtime_checkable
class EmailSenderPort(Protocol):
    async def send(self, to: str, subject: str, html: str, text: str | None = None) -> EmailResult: ...

from therapy_booking.core.config import settings
from therapy_booking.platform.ports.event_bus import EventBusPort
from therapy_booking.platform.adapters.bus_noop import NoopEventBus
from therapy_booking.platform.adapters.bus_redis import RedisEventBus
from therapy_booking.platform.ports.email_sender import EmailSenderPort
from therapy_booking.platform.adapters.email_noop import NoopEmailSender
from therapy_booking.platform.adapters.email_sendgrid import SendGridEmailSender
from therapy_booking.platform.ports.calendar import CalendarBusyTimePort
from therapy_booking.platform.adapters.calendar_noop import NoopCalendar
from therapy_booking.platform.adapters.calendar_google import GoogleFreeBusyCalendar
from therapy_booking.platform.adapters.calendar_microsoft import MicrosoftScheduleCalendar

class ProviderRegistry:
    _event_bus: EventBusPort | None = None
    _email_sender: EmailSenderPort | None = None
    _calendars: dict[str, CalendarBusyTimePort] = {}

    @classmethod
    def event_bus(cls) -> EventBusPort:
        if cls._event_bus is None:
            prov = (settings.EVENT_BUS_PROVIDER or "noop").lower()
            if prov == "redis":
                cls._event_bus = RedisEventBus()
            else:
                cls._event_bus = NoopEventBus()
        return cls._event_bus

    @classmethod
    def email_sender(cls) -> EmailSenderPort:
        if cls._email_sender is None:
            prov = (settings.EMAIL_PROVIDER or "noop").lower()
            if prov == "sendgrid":
                cls._email_sender = SendGridEmailSender()
            else:
                cls._email_sender = NoopEmailSender()
        return cls._email_sender

    @classmethod
    def calendar(cls, provider: str) -> CalendarBusyTimePort:
        if provider not in cls._calendars:
            if not settings.CALENDAR_BUSY_PROVIDER_ENABLED:
                cls._calendars[provider] = NoopCalendar()
            elif provider == "google":
                cls._calendars[provider] = GoogleFreeBusyCalendar()
            elif provider == "microsoft":
                cls._calendars[provider] = MicrosoftScheduleCalendar()
            else:
                cls._calendars[provider] = NoopCalendar()
        return cls._calendars[provider]

    @classmethod
    def override(cls, *, event_bus: EventBusPort | None = None, email_sender: EmailSenderPort | None = None,
                 calendars: dict[str, CalendarBusyTimePort] | None = None) -> None:
        """Swap adapters in place (tests, one-off scripts)."""
        if event_bus is not None:
            cls._event_bus = event_bus
        if email_sender is not None:
            cls._email_sender = email_sender
        if calendars is not None:
            cls._calendars = dict(calendars)

    @classmethod
    def reset(cls) -> None:
        cls._event_bus = None
        cls._email_sender = None
        cls._calendars = {}

registry = ProviderRegistry()

"""Email content for the booking lifecycle.

Builders take plain values and return a ``RenderedEmail``; every interpolated
value is HTML-escaped before substitution.
"""
from datetime import date, time
from html import escape
from string import Template
from typing import NamedTuple
from therapy_booking.core.config import settings

class RenderedEmail(NamedTuple):
    subject: str
    html: str

_WRAPPER = Template("""<!DOCTYPE html>
<html><body style="margin:0;padding:0;background-color:#f5f5f5;font-family:Arial,sans-serif;">
<div style="max-width:600px;margin:0 auto;background-color:#ffffff;padding:40px 30px;">
<h1 style="color:#1a1a1a;font-size:22px;margin:0 0 24px;">$brand</h1>
$content
</div></body></html>""")

def format_date(d: date) -> str:
    return f"{d.strftime('%A')}, {d.day} {d.strftime('%B %Y')}"

def format_time(t: time) -> str:
    hour = t.hour % 12 or 12
    return f"{hour}:{t.minute:02d} {'PM' if t.hour >= 12 else 'AM'}"

def _render(subject: str, body: str, **values) -> RenderedEmail:
    safe = {k: escape(str(v)) for k, v in values.items()}
    content = Template(body).safe_substitute(safe)
    return RenderedEmail(subject, _WRAPPER.substitute(brand=escape(settings.EMAIL_FROM_NAME), content=content))

def _when(d: date, t: time) -> dict:
    return {"date": format_date(d), "time": format_time(t)}

def booking_verification(*, visitor_name: str, therapist_name: str, booking_date: date, start_time: time, token: str) -> RenderedEmail:
    return _render(
        f"Confirm your booking with {therapist_name}",
        """<h2>Confirm your booking</h2>
<p>Hi $visitor,</p>
<p>Please verify your email address to confirm your booking with <strong>$therapist</strong>.</p>
<p><strong>Date:</strong> $date<br><strong>Time:</strong> $time</p>
<p><a href="$url">Confirm Booking</a></p>
<p>This link will expire in $ttl hours.</p>""",
        visitor=visitor_name, therapist=therapist_name, ttl=settings.VERIFICATION_TTL_HOURS,
        url=f"{settings.PUBLIC_BASE_URL}{settings.API_PREFIX}/bookings/verify?token={token}",
        **_when(booking_date, start_time),
    )

def new_booking_for_therapist(*, therapist_name: str, visitor_name: str, visitor_email: str,
                              booking_date: date, start_time: time, confirmed: bool) -> RenderedEmail:
    action = "This booking was confirmed automatically." if confirmed else "Please confirm or decline this booking from your dashboard."
    return _render(
        f"New booking from {visitor_name}",
        """<h2>New booking request</h2>
<p>Hi $therapist,</p>
<p><strong>$visitor</strong> ($email) has requested a booking:</p>
<p><strong>Date:</strong> $date<br><strong>Time:</strong> $time</p>
<p><a href="$url">View bookings</a></p>
<p>$action</p>""",
        therapist=therapist_name, visitor=visitor_name, email=visitor_email, action=action,
        url=f"{settings.PUBLIC_BASE_URL}/dashboard/bookings",
        **_when(booking_date, start_time),
    )

def booking_confirmed(*, visitor_name: str, therapist_name: str, booking_date: date, start_time: time) -> RenderedEmail:
    return _render(
        f"Booking confirmed with {therapist_name}",
        """<h2>Your booking is confirmed!</h2>
<p>Hi $visitor,</p>
<p><strong>$therapist</strong> has confirmed your booking.</p>
<p><strong>Date:</strong> $date<br><strong>Time:</strong> $time</p>
<p>If you need to cancel, use the link in your booking email or contact $therapist directly.</p>""",
        visitor=visitor_name, therapist=therapist_name,
        **_when(booking_date, start_time),
    )

def booking_cancelled_for_visitor(*, visitor_name: str, therapist_name: str, booking_date: date,
                                  start_time: time, reason: str | None) -> RenderedEmail:
    return _render(
        f"Booking cancelled - {format_date(booking_date)}",
        """<h2>Your booking has been cancelled</h2>
<p>Hi $visitor,</p>
<p>We're sorry to inform you that <strong>$therapist</strong> has cancelled your booking.</p>
<p><strong>Date:</strong> $date<br><strong>Time:</strong> $time</p>
<p><strong>Reason:</strong> $reason</p>
<p>You can visit the therapist's profile to book a new appointment at a different time.</p>""",
        visitor=visitor_name, therapist=therapist_name, reason=reason or "No reason given",
        **_when(booking_date, start_time),
    )

def booking_cancelled_for_therapist(*, therapist_name: str, visitor_name: str, booking_date: date,
                                    start_time: time, reason: str | None) -> RenderedEmail:
    return _render(
        f"Booking cancelled by {visitor_name} - {format_date(booking_date)}",
        """<h2>A client cancelled their booking</h2>
<p>Hi $therapist,</p>
<p><strong>$visitor</strong> has cancelled their booking. The slot is available again.</p>
<p><strong>Date:</strong> $date<br><strong>Time:</strong> $time</p>
<p><strong>Reason:</strong> $reason</p>""",
        therapist=therapist_name, visitor=visitor_name, reason=reason or "No reason given",
        **_when(booking_date, start_time),
    )

def _timing(kind: str) -> tuple[str, str, str]:
    # (subject prefix, time until, urgency)
    if kind == "1h":
        return "Starting soon", "in 1 hour", "starting soon"
    return "Reminder", "tomorrow", "coming up"

def visitor_reminder(*, kind: str, visitor_name: str, therapist_name: str, booking_date: date, start_time: time) -> RenderedEmail:
    prefix, until, urgency = _timing(kind)
    return _render(
        f"{prefix}: Appointment {until} with {therapist_name}",
        """<h2>Appointment Reminder</h2>
<p>Hi $visitor,</p>
<p>This is a friendly reminder that your appointment with <strong>$therapist</strong> is $urgency.</p>
<p><strong>Date:</strong> $date<br><strong>Time:</strong> $time</p>
<p>If you need to cancel, please contact $therapist as soon as possible.</p>""",
        visitor=visitor_name, therapist=therapist_name, urgency=urgency,
        **_when(booking_date, start_time),
    )

def therapist_reminder(*, kind: str, therapist_name: str, visitor_name: str, visitor_email: str,
                       booking_date: date, start_time: time) -> RenderedEmail:
    prefix, until, urgency = _timing(kind)
    return _render(
        f"{prefix}: Client appointment {until}",
        """<h2>Appointment Reminder</h2>
<p>Hi $therapist,</p>
<p>This is a reminder that you have an appointment $urgency with <strong>$visitor</strong>.</p>
<p><strong>Client:</strong> $visitor<br><strong>Email:</strong> $email<br>
<strong>Date:</strong> $date<br><strong>Time:</strong> $time</p>""",
        therapist=therapist_name, visitor=visitor_name, email=visitor_email, urgency=urgency,
        **_when(booking_date, start_time),
    )

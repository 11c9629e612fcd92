"""Rendering of outbox jobs into invitation emails."""

from dataclasses import dataclass
from zoneinfo import ZoneInfo

from room_booking.config import CalendarSettings
from room_booking.domain.calendar import CalendarEvent, as_utc, encode_calendar
from room_booking.models.outbox import JobKind, OutboxJob

ATTACHMENT_FILENAME = "invite.ics"


@dataclass
class RenderedInvitation:
    """Everything the mail sender needs for one job."""

    subject: str
    text_body: str
    attachment_filename: str
    attachment_mime_type: str
    attachment_content: str


def build_calendar_event(job: OutboxJob, calendar: CalendarSettings) -> CalendarEvent:
    """Map a job snapshot onto the calendar event fields."""
    return CalendarEvent(
        uid=job.calendar_uid,
        sequence=job.sequence,
        method=job.kind.method,
        start_utc=job.start_time,
        end_utc=job.end_time,
        summary=f"{job.reason} ({job.room})" if job.reason else job.room,
        description=job.reason or "",
        location=job.room,
        organizer_email=calendar.organizer_email,
        organizer_name=calendar.organizer_name,
        attendee_email=job.email,
        attendee_name=job.name,
    )


def _format_period(job: OutboxJob, tz: ZoneInfo) -> str:
    start = as_utc(job.start_time).astimezone(tz)
    end = as_utc(job.end_time).astimezone(tz)
    if start.date() == end.date():
        return f"{start:%Y-%m-%d} {start:%H:%M}-{end:%H:%M} ({tz.key})"
    return f"{start:%Y-%m-%d %H:%M} - {end:%Y-%m-%d %H:%M} ({tz.key})"


def build_text_body(job: OutboxJob, calendar: CalendarSettings) -> str:
    """Human-readable summary of room, time and reason."""
    period = _format_period(job, ZoneInfo(calendar.display_timezone))
    greeting = f"Hello {job.name}," if job.name else "Hello,"

    if job.kind == JobKind.INVITE:
        intro = "You have been invited to a room booking."
        outro = "The attached calendar invitation adds it to your calendar."
    else:
        intro = "A room booking you were invited to has been cancelled."
        outro = "The attached calendar update removes it from your calendar."

    lines = [
        greeting,
        "",
        intro,
        "",
        f"Room:   {job.room}",
        f"When:   {period}",
        f"Reason: {job.reason or '-'}",
        "",
        outro,
        "",
        f"-- {calendar.organizer_name}",
    ]
    return "\n".join(lines) + "\n"


def build_subject(job: OutboxJob) -> str:
    prefix = "Invitation" if job.kind == JobKind.INVITE else "Cancelled"
    start = as_utc(job.start_time)
    label = job.reason or "Room booking"
    return f"{prefix}: {label} - {job.room} @ {start:%Y-%m-%d %H:%M} UTC"


def render_invitation(job: OutboxJob, calendar: CalendarSettings) -> RenderedInvitation:
    """Render the email and ICS attachment for one job.

    Raises:
        ValidationError: If the job snapshot cannot be encoded
    """
    event = build_calendar_event(job, calendar)
    content = encode_calendar(event, product_id=calendar.product_id)
    return RenderedInvitation(
        subject=build_subject(job),
        text_body=build_text_body(job, calendar),
        attachment_filename=ATTACHMENT_FILENAME,
        attachment_mime_type=f"text/calendar; method={event.method}; charset=UTF-8",
        attachment_content=content,
    )

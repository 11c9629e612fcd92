"""iCalendar (RFC 5545) encoding of booking invitations and cancellations.

The encoder is a pure function: the same event always yields the same
calendar object except for DTSTAMP, which is taken at encode time. Free
text that would break line framing is rejected with ValidationError
rather than written into the object.
"""

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from room_booking.models.exceptions import ValidationError

CRLF = "\r\n"
DEFAULT_PRODUCT_ID = "-//Room Booking//Invitations 1.0//EN"
METHODS = ("REQUEST", "CANCEL")

# Content lines are limited to 75 octets, excluding the line break.
_MAX_LINE_OCTETS = 75

# TAB is legal inside TEXT values; every other C0 control and DEL is not.
_ILLEGAL_TEXT_RE = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")
_ADDRESS_RE = re.compile(r"^[^@\s\x00-\x1f\x7f]+@[^@\s\x00-\x1f\x7f]+$")

_UID_NAMESPACE = uuid.UUID("6f1d3a52-9c4e-4b8e-a7d2-3e5b0c9f8a14")


@dataclass(frozen=True)
class CalendarEvent:
    """Fields of a single VEVENT together with the iTIP method it travels under."""

    uid: str
    sequence: int
    method: str
    start_utc: datetime
    end_utc: datetime
    summary: str
    description: str
    location: str
    organizer_email: str
    attendee_email: str
    attendee_name: str
    organizer_name: str | None = None


def calendar_uid(booking_id: uuid.UUID, participant_id: uuid.UUID, domain: str) -> str:
    """Deterministic UID shared by every message about one booking/participant pair."""
    digest = uuid.uuid5(_UID_NAMESPACE, f"{booking_id}:{participant_id}")
    return f"{digest}@{domain}"


def as_utc(value: datetime) -> datetime:
    """Convert to UTC; naive datetimes are taken to already be in UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_utc(value: datetime) -> str:
    """Format a datetime as an RFC 5545 UTC DATE-TIME (``YYYYMMDDTHHMMSSZ``)."""
    return as_utc(value).strftime("%Y%m%dT%H%M%SZ")


def _check_text(field: str, value: str, allow_newlines: bool = False) -> str:
    if value is None:
        raise ValidationError(f"{field} is required")
    checked = value
    if allow_newlines:
        value = value.replace("\r\n", "\n")
        checked = value.replace("\n", "")
    if _ILLEGAL_TEXT_RE.search(checked):
        raise ValidationError(f"{field} contains control characters")
    return value


def escape_text(value: str) -> str:
    """Escape a TEXT property value."""
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\n", "\\n")
    )


def _param_value(field: str, value: str) -> str:
    value = _check_text(field, value)
    if '"' in value:
        raise ValidationError(f"{field} must not contain double quotes")
    return f'"{value}"'


def _address(field: str, value: str) -> str:
    if not value or not _ADDRESS_RE.match(value):
        raise ValidationError(f"{field} is not a usable email address")
    return f"mailto:{value}"


def fold_line(line: str) -> str:
    """Fold a content line so no physical line exceeds 75 octets.

    Continuation lines start with a single space; multi-byte UTF-8
    characters are never split.
    """
    if len(line.encode("utf-8")) <= _MAX_LINE_OCTETS:
        return line

    parts = []
    current = []
    size = 0
    limit = _MAX_LINE_OCTETS
    for char in line:
        char_size = len(char.encode("utf-8"))
        if size + char_size > limit:
            parts.append("".join(current))
            current = [char]
            size = char_size
            # The leading space of a continuation line counts toward the limit
            limit = _MAX_LINE_OCTETS - 1
        else:
            current.append(char)
            size += char_size
    parts.append("".join(current))
    return (CRLF + " ").join(parts)


def encode_calendar(
    event: CalendarEvent,
    now: datetime | None = None,
    product_id: str = DEFAULT_PRODUCT_ID,
) -> str:
    """Encode an event as a complete VCALENDAR object.

    Args:
        event: Event fields and iTIP method
        now: DTSTAMP value; defaults to the current UTC time
        product_id: PRODID of the generated object

    Returns:
        The calendar object, every line terminated by CRLF

    Raises:
        ValidationError: If any field would produce a malformed object
    """
    if event.method not in METHODS:
        raise ValidationError(f"Unsupported calendar method: {event.method}")
    if not isinstance(event.sequence, int) or event.sequence < 0:
        raise ValidationError("sequence must be a non-negative integer")
    if as_utc(event.start_utc) >= as_utc(event.end_utc):
        raise ValidationError("start must be before end")

    uid = _check_text("uid", event.uid)
    if not uid or " " in uid:
        raise ValidationError("uid must be a non-empty token")

    summary = _check_text("summary", event.summary)
    description = _check_text("description", event.description, allow_newlines=True)
    location = _check_text("location", event.location)

    organizer = _address("organizer_email", event.organizer_email)
    attendee = _address("attendee_email", event.attendee_email)

    organizer_params = ""
    if event.organizer_name:
        organizer_params = f";CN={_param_value('organizer_name', event.organizer_name)}"

    attendee_params = ";ROLE=REQ-PARTICIPANT;PARTSTAT=NEEDS-ACTION;RSVP=TRUE"
    if event.attendee_name:
        attendee_params = f";CN={_param_value('attendee_name', event.attendee_name)}" + attendee_params

    stamp = format_utc(now or datetime.now(timezone.utc))
    status = "CONFIRMED" if event.method == "REQUEST" else "CANCELLED"

    lines = [
        "BEGIN:VCALENDAR",
        f"PRODID:{product_id}",
        "VERSION:2.0",
        "CALSCALE:GREGORIAN",
        f"METHOD:{event.method}",
        "BEGIN:VEVENT",
        f"UID:{uid}",
        f"SEQUENCE:{event.sequence}",
        f"DTSTAMP:{stamp}",
        f"DTSTART:{format_utc(event.start_utc)}",
        f"DTEND:{format_utc(event.end_utc)}",
        f"SUMMARY:{escape_text(summary)}",
        f"DESCRIPTION:{escape_text(description)}",
        f"LOCATION:{escape_text(location)}",
        f"ORGANIZER{organizer_params}:{organizer}",
        f"ATTENDEE{attendee_params}:{attendee}",
        f"STATUS:{status}",
        "TRANSP:OPAQUE",
        "END:VEVENT",
        "END:VCALENDAR",
    ]
    return "".join(fold_line(line) + CRLF for line in lines)

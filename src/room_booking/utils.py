"""Small normalization helpers shared by the booking service and the API."""

import re

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")


def normalize_email(value: str | None) -> str:
    """Trim and lower-case an email address; ``None`` becomes ``""``."""
    return (value or "").strip().lower()


def title_case_name(value: str | None) -> str:
    """Collapse whitespace and capitalize each word ("  ana  DE souza" -> "Ana De Souza").

    Double quotes and control characters are dropped: the result is used as
    a quoted calendar parameter, which can carry neither.
    """
    cleaned = _CONTROL_RE.sub(" ", (value or "").replace('"', ""))
    words = cleaned.strip().lower().split()
    return " ".join(word[0].upper() + word[1:] for word in words)


def has_control_characters(value: str) -> bool:
    return bool(_CONTROL_RE.search(value))


def is_valid_email(value: str | None) -> bool:
    """Pragmatic address check: ``local@domain.tld`` with no whitespace or control characters."""
    if not value:
        return False
    if has_control_characters(value):
        return False
    return bool(_EMAIL_RE.match(value))

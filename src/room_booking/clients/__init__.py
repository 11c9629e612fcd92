"""
Outgoing mail integrations.

- mail_sender.MailSender: Interface the dispatch worker depends on
- mail_sender.SmtpMailSender: Delivery through an SMTP server
- mail_sender.ConsoleMailSender: Logs messages instead of sending them
"""

from room_booking.clients.mail_sender import (
    Attachment,
    ConsoleMailSender,
    MailSender,
    SendResult,
    SmtpMailSender,
    get_mail_sender,
)

__all__ = [
    "Attachment",
    "ConsoleMailSender",
    "MailSender",
    "SendResult",
    "SmtpMailSender",
    "get_mail_sender",
]

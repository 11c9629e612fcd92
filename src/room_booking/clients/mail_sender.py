"""Mail sender capability used by the dispatch worker.

The dispatch worker only sees the ``MailSender`` interface. Which concrete
sender it gets is decided once at startup from settings and passed in.
"""

import asyncio
import smtplib
import ssl
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr, make_msgid

import structlog

from room_booking.config import Settings
from room_booking.models.exceptions import TransientDeliveryError

logger = structlog.get_logger(__name__)


@dataclass
class Attachment:
    """A single file attached to an outgoing message."""

    filename: str
    mime_type: str
    content: str


@dataclass
class SendResult:
    """Recipients the server accepted and rejected for one message."""

    accepted: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.accepted) and not self.rejected


class MailSender(ABC):
    """
    Abstract mail sender.

    Implementations report per-recipient outcomes in ``SendResult`` and raise
    ``TransientDeliveryError`` when the message could not be handed over at
    all (connection refused, timeout, protocol error).
    """

    @abstractmethod
    async def send(
        self,
        from_address: str,
        to: str,
        subject: str,
        text_body: str,
        attachment: Attachment | None = None,
        from_name: str | None = None,
    ) -> SendResult:
        """Send one message to one recipient."""
        pass


def _split_mime_type(mime_type: str) -> tuple[str, str, dict[str, str]]:
    """Split ``text/calendar; method=REQUEST; charset=UTF-8`` into parts."""
    main, *raw_params = [part.strip() for part in mime_type.split(";")]
    maintype, _, subtype = main.partition("/")
    params = {}
    for raw in raw_params:
        key, _, value = raw.partition("=")
        if key:
            params[key.strip().lower()] = value.strip().strip('"')
    return maintype or "application", subtype or "octet-stream", params


def build_message(
    from_address: str,
    to: str,
    subject: str,
    text_body: str,
    attachment: Attachment | None = None,
    from_name: str | None = None,
) -> EmailMessage:
    """Build a MIME message with a plain-text body and an optional attachment."""
    message = EmailMessage()
    message["From"] = formataddr((from_name, from_address)) if from_name else from_address
    message["To"] = to
    message["Subject"] = subject
    message["Message-ID"] = make_msgid(domain=from_address.rpartition("@")[2] or None)
    message.set_content(text_body)

    if attachment is not None:
        maintype, subtype, params = _split_mime_type(attachment.mime_type)
        charset = params.pop("charset", "utf-8")
        if maintype == "text":
            message.add_attachment(
                attachment.content,
                subtype=subtype,
                charset=charset,
                filename=attachment.filename,
                params=params,
            )
        else:
            message.add_attachment(
                attachment.content.encode(charset),
                maintype=maintype,
                subtype=subtype,
                filename=attachment.filename,
                params=params,
            )
    return message


class SmtpMailSender(MailSender):
    """
    Sends mail through an SMTP server.

    smtplib is blocking, so each send runs in a worker thread. The socket
    timeout is the only bound on a send; a timeout surfaces as
    ``TransientDeliveryError`` and the job counts it as an attempt.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str | None = None,
        password: str | None = None,
        use_starttls: bool = True,
        use_ssl: bool = False,
        timeout_seconds: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_starttls = use_starttls
        self.use_ssl = use_ssl
        self.timeout_seconds = timeout_seconds

        logger.info(
            "smtp_mail_sender_initialized",
            host=host,
            port=port,
            use_starttls=use_starttls,
            use_ssl=use_ssl,
            timeout_seconds=timeout_seconds,
        )

    async def send(
        self,
        from_address: str,
        to: str,
        subject: str,
        text_body: str,
        attachment: Attachment | None = None,
        from_name: str | None = None,
    ) -> SendResult:
        message = build_message(from_address, to, subject, text_body, attachment, from_name)
        return await asyncio.to_thread(self._deliver, message, [to])

    def _connect(self) -> smtplib.SMTP:
        if self.use_ssl:
            return smtplib.SMTP_SSL(
                self.host,
                self.port,
                timeout=self.timeout_seconds,
                context=ssl.create_default_context(),
            )
        return smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds)

    def _deliver(self, message: EmailMessage, recipients: list[str]) -> SendResult:
        try:
            with self._connect() as server:
                if self.use_starttls:
                    server.starttls(context=ssl.create_default_context())
                if self.username:
                    server.login(self.username, self.password or "")
                refused = server.send_message(message, to_addrs=recipients)
        except smtplib.SMTPRecipientsRefused as e:
            logger.warning(
                "smtp_recipients_refused",
                recipients=list(e.recipients),
            )
            return SendResult(accepted=[], rejected=list(e.recipients))
        except (smtplib.SMTPException, OSError) as e:
            raise TransientDeliveryError(f"SMTP delivery failed: {e}") from e

        rejected = list(refused)
        accepted = [r for r in recipients if r not in refused]
        return SendResult(accepted=accepted, rejected=rejected)


class ConsoleMailSender(MailSender):
    """Logs messages instead of sending them. For local development only."""

    async def send(
        self,
        from_address: str,
        to: str,
        subject: str,
        text_body: str,
        attachment: Attachment | None = None,
        from_name: str | None = None,
    ) -> SendResult:
        logger.info(
            "console_mail_sent",
            from_address=from_address,
            to=to,
            subject=subject,
            attachment=attachment.filename if attachment else None,
            body=text_body,
        )
        return SendResult(accepted=[to], rejected=[])


def get_mail_sender(app_settings: Settings) -> MailSender:
    """Build the configured mail sender.

    Raises:
        ValueError: If ``mail_backend`` is not a known backend
    """
    backend = app_settings.mail_backend.lower()
    if backend == "smtp":
        smtp = app_settings.smtp
        return SmtpMailSender(
            host=smtp.host,
            port=smtp.port,
            username=smtp.username,
            password=smtp.password,
            use_starttls=smtp.use_starttls,
            use_ssl=smtp.use_ssl,
            timeout_seconds=smtp.timeout_seconds,
        )
    if backend == "console":
        return ConsoleMailSender()
    raise ValueError(f"Unknown mail backend: {app_settings.mail_backend}")

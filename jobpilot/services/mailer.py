import html
import smtplib
import ssl
from abc import ABC, abstractmethod
from datetime import datetime
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from pathlib import Path

from pydantic import BaseModel

from jobpilot.core.config import Settings
from jobpilot.core.errors import ExternalServiceError, ServiceErrorKind, classify_exception
from jobpilot.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SENDER_NAME = "Job Applicant"


class OutgoingEmail(BaseModel):
    to: str
    subject: str
    body: str
    attachment: str | None = None
    sender_name: str = DEFAULT_SENDER_NAME
    company: str = ""


class SentEmail(BaseModel):
    message_id: str
    accepted: list[str]


def format_email_html(body: str, sender_name: str | None, *, today: datetime | None = None) -> str:
    current_date = (today or datetime.now()).strftime("%B %d, %Y")
    content = "<br>".join(html.escape(line) for line in body.splitlines())
    name = html.escape(sender_name or DEFAULT_SENDER_NAME)
    return (
        '<!DOCTYPE html><html><head><meta charset="utf-8"><title>Job Application</title>'
        "<style>body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }"
        ".container { max-width: 600px; margin: 0 auto; padding: 20px; }"
        ".signature { margin-top: 40px; }</style></head><body>"
        f'<div class="container"><p><strong>{current_date}</strong></p>'
        f"<div>{content}</div>"
        f'<div class="signature"><p>Best regards,</p><p><strong>{name}</strong></p></div>'
        "</div></body></html>"
    )


def _validate(email: OutgoingEmail) -> None:
    if not email.to or not email.subject or not email.body:
        raise ValueError("to, subject and body are required")


class EmailSender(ABC):
    @abstractmethod
    def send(self, email: OutgoingEmail) -> SentEmail:
        raise NotImplementedError


class MockEmailSender(EmailSender):
    """Records messages instead of delivering them."""

    def __init__(self, fail_for: set[str] | None = None) -> None:
        self.outbox: list[OutgoingEmail] = []
        self.fail_for = {address.lower() for address in fail_for or set()}

    def send(self, email: OutgoingEmail) -> SentEmail:
        _validate(email)
        if email.to.lower() in self.fail_for:
            raise ExternalServiceError("smtp", ServiceErrorKind.UNKNOWN, f"recipient rejected: {email.to}")
        self.outbox.append(email)
        return SentEmail(message_id=make_msgid(domain="mock.local"), accepted=[email.to])


class SmtpEmailSender(EmailSender):
    def __init__(
        self,
        *,
        host: str,
        port: int,
        username: str,
        password: str,
        timeout_seconds: int = 30,
    ) -> None:
        if not username or not password:
            raise ValueError("SMTP_USER and SMTP_PASSWORD are required when EMAIL_SENDER=smtp")
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout_seconds = timeout_seconds

    def build_message(self, email: OutgoingEmail) -> MIMEMultipart:
        msg = MIMEMultipart("mixed")
        msg["Subject"] = email.subject
        msg["From"] = formataddr((email.sender_name or DEFAULT_SENDER_NAME, self.username))
        msg["To"] = email.to
        msg["Message-ID"] = make_msgid()

        alternative = MIMEMultipart("alternative")
        alternative.attach(MIMEText(email.body, "plain", "utf-8"))
        alternative.attach(MIMEText(format_email_html(email.body, email.sender_name), "html", "utf-8"))
        msg.attach(alternative)

        if email.attachment:
            path = Path(email.attachment)
            if path.exists():
                part = MIMEApplication(path.read_bytes(), _subtype="pdf")
                part.add_header("Content-Disposition", "attachment", filename=path.name)
                msg.attach(part)
            else:
                logger.warning("Attachment missing; sending without it", extra={"extra": {"path": str(path)}})
        return msg

    def send(self, email: OutgoingEmail) -> SentEmail:
        _validate(email)
        msg = self.build_message(email)
        context = ssl.create_default_context()
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as server:
                server.starttls(context=context)
                server.login(self.username, self.password)
                refused = server.sendmail(self.username, [email.to], msg.as_string())
        except smtplib.SMTPAuthenticationError as exc:
            raise ExternalServiceError("smtp", ServiceErrorKind.AUTH, "SMTP login rejected") from exc
        except smtplib.SMTPRecipientsRefused as exc:
            raise ExternalServiceError("smtp", ServiceErrorKind.UNKNOWN, f"recipient refused: {email.to}") from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise classify_exception("smtp", exc) from exc

        logger.info("Application email sent", extra={"extra": {"to": email.to, "company": email.company}})
        return SentEmail(message_id=str(msg["Message-ID"]), accepted=[email.to] if email.to not in refused else [])


def build_email_sender(settings: Settings) -> EmailSender:
    sender = (settings.email_sender or "mock").strip().lower()
    if sender == "mock":
        return MockEmailSender()
    if sender == "smtp":
        return SmtpEmailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            timeout_seconds=settings.smtp_timeout_seconds,
        )
    raise ValueError("Unsupported EMAIL_SENDER. Supported values: mock, smtp.")

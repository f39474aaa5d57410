from datetime import datetime

import pytest

from jobpilot.core.config import Settings
from jobpilot.core.errors import ExternalServiceError
from jobpilot.services.mailer import (
    MockEmailSender,
    OutgoingEmail,
    SmtpEmailSender,
    build_email_sender,
    format_email_html,
)


def test_html_body_has_date_header_signature_and_escaped_lines():
    html = format_email_html("Hello <team>\nSecond line", "Alex Carter", today=datetime(2026, 3, 5))

    assert "March 05, 2026" in html
    assert "Hello &lt;team&gt;<br>Second line" in html
    assert "<strong>Alex Carter</strong>" in html


def test_mock_sender_records_and_can_fail_per_recipient():
    sender = MockEmailSender(fail_for={"bounce@acme.com"})

    sent = sender.send(OutgoingEmail(to="hr@acme.com", subject="Hi", body="Body"))

    assert sent.accepted == ["hr@acme.com"]
    assert sender.outbox[0].subject == "Hi"
    with pytest.raises(ExternalServiceError):
        sender.send(OutgoingEmail(to="bounce@acme.com", subject="Hi", body="Body"))
    with pytest.raises(ValueError):
        sender.send(OutgoingEmail(to="hr@acme.com", subject="", body="Body"))


def test_smtp_message_attaches_existing_pdf(tmp_path):
    pdf = tmp_path / "cv.pdf"
    pdf.write_bytes(b"%PDF-1.4 test")
    sender = SmtpEmailSender(host="smtp.test", port=587, username="me@test.dev", password="secret")

    msg = sender.build_message(
        OutgoingEmail(to="hr@acme.com", subject="Application", body="Hello", attachment=str(pdf), sender_name="Alex")
    )

    assert msg["To"] == "hr@acme.com"
    assert "Alex" in msg["From"]
    attachments = [part for part in msg.walk() if part.get_filename()]
    assert [part.get_filename() for part in attachments] == ["cv.pdf"]


def test_smtp_message_skips_missing_attachment(tmp_path):
    sender = SmtpEmailSender(host="smtp.test", port=587, username="me@test.dev", password="secret")
    msg = sender.build_message(
        OutgoingEmail(to="hr@acme.com", subject="Application", body="Hello", attachment=str(tmp_path / "gone.pdf"))
    )
    assert not [part for part in msg.walk() if part.get_filename()]


def test_build_email_sender():
    assert isinstance(build_email_sender(Settings(email_sender="mock")), MockEmailSender)
    with pytest.raises(ValueError):
        build_email_sender(Settings(email_sender="smtp", smtp_user="", smtp_password=""))

"""
Outbound email.

The provider is chosen by EMAIL_PROVIDER: "smtp" delivers through smtplib,
"mock" writes the message to the Mailer logger and delivers nothing.
Delivery errors propagate so the job queue can retry them.
"""

import smtplib
from logging import getLogger
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional

from fleetcore.src.constants import (
    EMAIL_PROVIDER,
    EMAIL_SENDER,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USERNAME,
)

logger = getLogger("Mailer")

# Templates keyed by the `template` field of send-email jobs
TEMPLATES = {
    "maintenance-reminder": (
        "Maintenance due for {vehicle_number}",
        "{service_type} for vehicle {vehicle_number} is due on {next_due_date}.",
    ),
}


def buildMessage(recipient: str, subject: str, text: str, html: Optional[str] = None):
    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = EMAIL_SENDER
    message["To"] = recipient
    message.attach(MIMEText(text, "plain"))
    if html:
        message.attach(MIMEText(html, "html"))
    return message


def render(template: str, context: dict) -> tuple[str, str]:
    """Subject and body of a named template."""
    subject, body = TEMPLATES[template]
    return subject.format(**context), body.format(**context)


class SMTPMailer:
    def send(self, recipient: str, subject: str, text: str, html: Optional[str] = None) -> bool:
        message = buildMessage(recipient, subject, text, html)
        with smtplib.SMTP(SMTP_HOST, SMTP_PORT) as server:
            server.starttls()
            if SMTP_USERNAME:
                server.login(SMTP_USERNAME, SMTP_PASSWORD)
            server.sendmail(EMAIL_SENDER, [recipient], message.as_string())
        logger.info(f"Email sent to {recipient}: {subject}")
        return True


class MockMailer:
    """Keeps sent messages in memory and logs them."""

    def __init__(self):
        self.outbox = []

    def send(self, recipient: str, subject: str, text: str, html: Optional[str] = None) -> bool:
        self.outbox.append({"to": recipient, "subject": subject, "text": text})
        logger.info(f"[mock] Email to {recipient}: {subject}")
        return True


def getMailer(provider: str = EMAIL_PROVIDER):
    if provider == "smtp":
        return SMTPMailer()
    return MockMailer()


mailer = getMailer()

"""
Outgoing email: password resets, password changes and verification decisions.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    def send(self, to: str, subject: str, body: str) -> bool:
        ...


@dataclass
class OutboxMailer:
    """Keeps messages in memory; used when SMTP is not configured and in tests."""

    sent: list[EmailMessage] = field(default_factory=list)
    sender: str = "rewards@localhost"

    def send(self, to: str, subject: str, body: str) -> bool:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        self.sent.append(msg)
        logger.info("Queued email to outbox: to=%s subject=%s", to, subject)
        return True


@dataclass
class SmtpMailer:
    host: str
    port: int
    username: Optional[str]
    password: Optional[str]
    sender: str
    timeout: float = 15.0

    def send(self, to: str, subject: str, body: str) -> bool:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        ctx = ssl.create_default_context()
        try:
            if self.port == 465:
                with smtplib.SMTP_SSL(self.host, self.port, context=ctx, timeout=self.timeout) as smtp:
                    if self.username:
                        smtp.login(self.username, self.password or "")
                    smtp.send_message(msg)
            else:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                    smtp.starttls(context=ctx)
                    if self.username:
                        smtp.login(self.username, self.password or "")
                    smtp.send_message(msg)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send email to=%s subject=%s", to, subject)
            return False
        logger.info("Sent email to=%s subject=%s", to, subject)
        return True


def password_reset_email(site_name: str, username: str, reset_link: str) -> tuple[str, str]:
    subject = f"Reset your {site_name} password"
    body = (
        f"Hi {username},\n\n"
        f"We received a request to reset the password for your {site_name} account.\n"
        f"Use the link below to choose a new one:\n\n{reset_link}\n\n"
        "The link expires in 1 hour. If you didn't ask for this, ignore this email.\n"
    )
    return subject, body


def password_changed_email(site_name: str, username: str) -> tuple[str, str]:
    subject = f"Your {site_name} password has been changed"
    body = (
        f"Hi {username},\n\n"
        f"Your {site_name} password was successfully changed.\n"
        "If you did not make this change, contact us immediately.\n"
    )
    return subject, body


def verification_result_email(
    site_name: str, username: str, approved: bool, notes: Optional[str] = None
) -> tuple[str, str]:
    if approved:
        subject = f"Your {site_name} account is verified"
        body = (
            f"Hi {username},\n\n"
            "Your Stake account has been verified. You can now use all features.\n"
        )
    else:
        subject = f"Your {site_name} verification was not approved"
        body = (
            f"Hi {username},\n\n"
            "We couldn't verify your Stake account. You can submit a new request.\n"
        )
    if notes:
        body += f"\nNotes from the team: {notes}\n"
    return subject, body

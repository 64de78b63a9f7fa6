"""
Proposal Workflow Service
Email Service.

Sends workflow emails for SEND_EMAIL actions.
When SMTP is not configured, emails are logged but not sent (dev/test mode).

Configuration (app config / env vars):
    MAIL_SERVER     SMTP host (default: None -> log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from proposal_workflow.utils.helpers import utc_now

logger = logging.getLogger(__name__)

MAIL_KEYS = (
    "MAIL_SERVER", "MAIL_PORT", "MAIL_USE_TLS",
    "MAIL_USERNAME", "MAIL_PASSWORD", "MAIL_DEFAULT_SENDER",
)

_TEMPLATES: dict[str, dict[str, str]] = {
    "proposal_update": {
        "subject": "[Clinic] Proposal {proposal_id}: {status}",
        "html": """
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2 style="margin: 0 0 12px; font-size: 18px;">Proposal {proposal_id}</h2>
            <p>Status: <strong>{status}</strong></p>
            <p style="color: #64748b; line-height: 1.6;">{message}</p>
        </div>
        """,
    },
    "proposal_escalated": {
        "subject": "[Clinic] Escalation: proposal {proposal_id}",
        "html": """
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <h2 style="margin: 0 0 12px; font-size: 18px; color: #dc2626;">Escalation</h2>
            <p>Proposal <strong>{proposal_id}</strong> needs attention.</p>
            <p style="color: #64748b; line-height: 1.6;">{message}</p>
        </div>
        """,
    },
}


@dataclass
class EmailRecord:
    """Audit entry for one send attempt."""
    to_email: str
    subject: str
    template_name: str | None = None
    status: str = "queued"
    error_message: str | None = None
    sent_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "to_email": self.to_email,
            "subject": self.subject,
            "template_name": self.template_name,
            "status": self.status,
            "error_message": self.error_message,
        }


class EmailService:
    """
    Email sending service with template support.

    Takes the mail settings at construction so the workflow engine can use
    it without an application context.
    """

    def __init__(self, settings: dict[str, Any] | None = None):
        self.settings = {k: v for k, v in (settings or {}).items() if k in MAIL_KEYS}
        self.outbox: list[EmailRecord] = []

    @classmethod
    def from_config(cls, config) -> "EmailService":
        return cls({key: config.get(key) for key in MAIL_KEYS})

    def is_configured(self) -> bool:
        return bool(self.settings.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        return _TEMPLATES.get(template_name)

    def send(self, *, to_email: str, subject: str, html_body: str,
             to_name: str | None = None, template_name: str | None = None) -> EmailRecord:
        """
        Send an email and record it in the outbox.

        If SMTP is not configured the email is marked sent without delivery.
        SMTP failures are recorded on the returned record, not raised.
        """
        record = EmailRecord(to_email=to_email, subject=subject, template_name=template_name)
        self.outbox.append(record)

        if not self.is_configured():
            record.status = "sent"
            record.sent_at = utc_now()
            logger.info(
                "Email (dev mode): to=%s subject='%s' template=%s",
                to_email, subject, template_name,
            )
            return record

        try:
            self._send_smtp(to_email=to_email, to_name=to_name,
                            subject=subject, html_body=html_body)
            record.status = "sent"
            record.sent_at = utc_now()
            logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        except (smtplib.SMTPException, OSError) as exc:
            record.status = "failed"
            record.error_message = str(exc)[:1000]
            logger.error("Email failed: to=%s error=%s", to_email, exc)

        return record

    def send_from_template(self, *, to_email: str, template_name: str,
                           context: dict[str, Any], to_name: str | None = None) -> EmailRecord | None:
        template = self.get_template(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return None

        subject = template["subject"].format_map(_SafeDict(context))
        html_body = template["html"].format_map(_SafeDict(context))
        return self.send(to_email=to_email, to_name=to_name, subject=subject,
                         html_body=html_body, template_name=template_name)

    def _send_smtp(self, *, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
        cfg = self.settings
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT") or 587
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER") or f"noreply@{server}"

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"

"""
VISION Platform
Email Service.

Sends transactional email (invitations, notifications, welcome) from
named templates. When SMTP is not configured, emails are logged but not
sent (dev/test mode).

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_LAYOUT = """
<div style="font-family: 'Inter', Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: {brand_color}; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
        <h2 style="margin: 0; font-size: 18px;">{header}</h2>
    </div>
    <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        {body}
    </div>
    <div style="background: #f1f5f9; padding: 12px 24px; border-radius: 0 0 8px 8px;
                border: 1px solid #e2e8f0; border-top: none; text-align: center;">
        <p style="color: #94a3b8; font-size: 12px; margin: 0;">VISION Platform</p>
    </div>
</div>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    "invitation": {
        "subject": "You're invited to join {organization_name} on VISION",
        "header": "{organization_name}",
        "body": """
        <p style="color: #334155;">{inviter_name} invited you to join
           <strong>{organization_name}</strong> as <strong>{role}</strong>.</p>
        {message_block}
        <p><a href="{accept_url}" style="background: #2563eb; color: white; padding: 10px 18px;
              border-radius: 6px; text-decoration: none;">Accept invitation</a></p>
        <p style="color: #64748b; font-size: 13px;">This invitation expires on {expires_at}.</p>
        """,
        "text": (
            "{inviter_name} invited you to join {organization_name} as {role}.\n\n"
            "{message}\n\nAccept: {accept_url}\nExpires: {expires_at}\n"
        ),
    },
    "notification": {
        "subject": "[VISION] {title}",
        "header": "Notification",
        "body": """
        <h3 style="margin: 0 0 8px; color: #1e293b;">{title}</h3>
        <p style="color: #64748b; line-height: 1.6;">{message}</p>
        {action_block}
        """,
        "text": "{title}\n\n{message}\n\n{action_url}\n",
    },
    "welcome": {
        "subject": "Welcome to VISION, {name}",
        "header": "Welcome to VISION",
        "body": """
        <p style="color: #334155;">Hi {name}, your account is ready.</p>
        <p style="color: #64748b;">Create an organization or accept an invitation to get started.</p>
        """,
        "text": "Hi {name}, your account is ready.\n",
    },
}


class EmailService:
    """
    Email sending service with template support.

    In development/test mode (no MAIL_SERVER configured), emails are
    logged but not actually sent via SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        """Check if SMTP is configured."""
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        """Get an email template by name."""
        return _TEMPLATES.get(template_name)

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> bool:
        """
        Send an email.

        Returns:
            True when the email was sent (or logged in dev mode).

        Raises:
            smtplib.SMTPException / OSError when the SMTP transfer fails.
        """
        if not cls.is_configured():
            logger.info("Email (dev mode): to=%s subject='%s'", to_email, subject)
            return True

        cls._send_smtp(to_email=to_email, to_name=to_name, subject=subject,
                       html_body=html_body, text_body=text_body)
        logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        return True

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        template_name: str,
        context: dict[str, Any],
    ) -> bool:
        """
        Send an email using a named template.

        Template variables are interpolated from the context dict; values
        are HTML-escaped for the HTML part.
        """
        template = cls.get_template(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return False

        # *_block values are pre-built HTML fragments; callers escape their parts
        escaped = _SafeDict({
            k: html.escape(v) if isinstance(v, str) and not k.endswith("_block") else v
            for k, v in context.items()
        })
        raw = _SafeDict(context)
        subject = template["subject"].format_map(raw)
        html_body = _LAYOUT.format(
            brand_color=context.get("brand_color", "#1e293b"),
            header=template["header"].format_map(escaped),
            body=template["body"].format_map(escaped),
        )
        text_body = template["text"].format_map(raw)

        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=subject,
            html_body=html_body,
            text_body=text_body,
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str, text_body: str | None) -> None:
        """Actually send via SMTP."""
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        if text_body:
            msg.attach(MIMEText(text_body, "plain"))
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

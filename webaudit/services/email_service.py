"""
Web Audit API — Transactional Email
=====================================

What:  Renders the account emails (welcome, confirmation reminder, password
       reset, plan expiry) and delivers them, or arbitrary HTML, over SMTP.
Why:   The auth backend and the admin panel trigger these through one
       endpoint so SMTP credentials live only on the server.
How:   smtplib with STARTTLS, run in Starlette's threadpool (smtplib blocks).
       Every message is multipart/alternative; the plain-text part is
       derived from the HTML when the caller does not supply one.

Templates:
    Interpolated values are HTML-escaped; URLs go into href attributes and
    are escaped the same way.
"""

import html
import logging
import re
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Optional

from starlette.concurrency import run_in_threadpool

from webaudit.config import settings
from webaudit.exceptions import EmailDeliveryError, ValidationError
from webaudit.schemas.email import SendEmailRequest

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")
_SPACE_RE = re.compile(r"\s+")
_HEAD_RE = re.compile(r"<(style|title|head)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)


def strip_html(markup: str) -> str:
    """Plain-text rendition of an HTML body: tags dropped, whitespace collapsed."""
    text = _HEAD_RE.sub(" ", markup)
    text = _TAG_RE.sub(" ", text)
    return _SPACE_RE.sub(" ", html.unescape(text)).strip()


@dataclass
class EmailTemplate:
    subject: str
    html: str


# ── Templates ─────────────────────────────────────────────────────────────

_LAYOUT = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{title}</title>
  <style>
    body {{ font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; }}
    .header {{ background: {accent}; color: white; padding: 30px; text-align: center; border-radius: 10px 10px 0 0; }}
    .content {{ background: #f8f9fa; padding: 30px; border-radius: 0 0 10px 10px; }}
    .button {{ display: inline-block; background: {accent}; color: white; padding: 12px 30px; text-decoration: none; border-radius: 5px; }}
    .footer {{ text-align: center; margin-top: 30px; color: #666; font-size: 14px; }}
  </style>
</head>
<body>
  <div class="header"><h1>{heading}</h1></div>
  <div class="content">
    <h2>Hi {name},</h2>
    {body}
    <p>Best regards,<br>The {brand} Team</p>
  </div>
  <div class="footer"><p>&copy; {brand}. All rights reserved.</p></div>
</body>
</html>
"""


def _button(url: str, label: str) -> str:
    return (
        f'<p style="text-align: center; margin: 30px 0;">'
        f'<a href="{html.escape(url)}" class="button">{html.escape(label)}</a></p>'
    )


def _render(title: str, heading: str, accent: str, name: str, body: str) -> str:
    return _LAYOUT.format(
        title=html.escape(title),
        heading=html.escape(heading),
        accent=accent,
        name=html.escape(name),
        body=body,
        brand=html.escape(settings.mail_from_name),
    )


def welcome_template(first_name: str, last_name: str = "") -> EmailTemplate:
    brand = settings.mail_from_name
    body = (
        f"<p>Welcome to {html.escape(brand)}! You've just taken the first step towards "
        "optimizing your website's performance and SEO.</p>"
        "<p><strong>Run your first audit</strong> to analyze performance, SEO and accessibility, "
        "then follow the recommendations in your report and track your progress over time.</p>"
        + _button(f"{settings.site_url}/dashboard", "Go to Dashboard")
        + "<p>If you have any questions, our support team is happy to help.</p>"
    )
    full_name = f"{first_name} {last_name}".strip()
    return EmailTemplate(
        subject=f"Welcome to {brand}!",
        html=_render(f"Welcome to {brand}", f"Welcome to {brand}!", "#667eea", full_name, body),
    )


def confirmation_template(first_name: str, confirmation_url: str) -> EmailTemplate:
    body = (
        "<p>Thank you for signing up! To complete your registration, please confirm "
        "your email address:</p>"
        + _button(confirmation_url, "Confirm Email Address")
        + "<p>If the button doesn't work, copy this link into your browser:</p>"
        f"<p style=\"word-break: break-all;\">{html.escape(confirmation_url)}</p>"
        "<p>This link will expire in 24 hours. If you didn't create an account, "
        "please ignore this email.</p>"
    )
    return EmailTemplate(
        subject="Please confirm your email address",
        html=_render("Confirm Your Email", "Confirm Your Email Address", "#667eea", first_name, body),
    )


def password_reset_template(first_name: str, reset_url: str) -> EmailTemplate:
    body = (
        "<p>We received a request to reset your password. Click the button below to "
        "choose a new one:</p>"
        + _button(reset_url, "Reset Password")
        + f"<p style=\"word-break: break-all;\">{html.escape(reset_url)}</p>"
        "<p>This link will expire in 1 hour. If you didn't request a reset, you can "
        "safely ignore this email.</p>"
    )
    return EmailTemplate(
        subject="Reset your password",
        html=_render("Reset Your Password", "Reset Your Password", "#dc3545", first_name, body),
    )


def plan_expiry_template(first_name: str, plan_name: str, expiry_date: str) -> EmailTemplate:
    body = (
        f"<p>This is a friendly reminder that your <strong>{html.escape(plan_name)}</strong> "
        f"plan will expire on <strong>{html.escape(expiry_date)}</strong>.</p>"
        "<p>To keep all of your features, please renew your subscription before the expiry date.</p>"
        + _button(f"{settings.site_url}/dashboard", "Renew Subscription")
    )
    return EmailTemplate(
        subject=f"Your {plan_name} plan expires soon",
        html=_render("Plan Expiry Notification", "Plan Expiry Notice", "#f0ad4e", first_name, body),
    )


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ValidationError(message=message, extra={"success": False})


def build_template(request: SendEmailRequest) -> EmailTemplate:
    """Picks and fills the template for `request.type`."""
    kind = request.type
    if kind == "welcome":
        _require(bool(request.first_name), "First name is required for welcome email")
        return welcome_template(request.first_name, request.last_name or "")
    if kind == "confirmation":
        _require(
            bool(request.first_name and request.confirmation_url),
            "First name and confirmation URL are required",
        )
        return confirmation_template(request.first_name, request.confirmation_url)
    if kind == "password-reset":
        _require(bool(request.first_name and request.reset_url), "First name and reset URL are required")
        return password_reset_template(request.first_name, request.reset_url)
    if kind == "plan-expiry":
        _require(
            bool(request.first_name and request.plan_name and request.expiry_date),
            "First name, plan name, and expiry date are required",
        )
        return plan_expiry_template(request.first_name, request.plan_name, request.expiry_date)
    raise ValidationError(message="Invalid email type", field="type", extra={"success": False})


# ══════════════════════════════════════════════════════════════════════════
# Delivery
# ══════════════════════════════════════════════════════════════════════════

class EmailService:

    def build_message(self, to: str, subject: str, html_body: str, text: Optional[str] = None) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = formataddr((settings.mail_from_name, settings.mail_from_address))
        message["To"] = to
        message["Message-ID"] = make_msgid(domain=settings.mail_from_address.split("@")[-1])
        message.attach(MIMEText(text or strip_html(html_body), "plain", "utf-8"))
        message.attach(MIMEText(html_body, "html", "utf-8"))
        return message

    def _deliver(self, message: MIMEMultipart) -> None:
        with smtplib.SMTP(settings.mail_host, settings.mail_port, timeout=30) as server:
            if settings.mail_use_tls:
                server.starttls()
            if settings.mail_username and settings.mail_password:
                server.login(settings.mail_username, settings.mail_password)
            server.send_message(message)

    async def send(self, to: str, subject: str, html_body: str, text: Optional[str] = None) -> str:
        """Sends one message and returns its Message-ID."""
        message = self.build_message(to, subject, html_body, text)
        try:
            await run_in_threadpool(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email '%s' to %s: %s", subject, to, e)
            raise EmailDeliveryError(context={"error_type": type(e).__name__})
        logger.info("Email sent to %s: %s", to, subject)
        return message["Message-ID"]

    async def send_request(self, request: SendEmailRequest) -> str:
        """Custom content when `to`, `subject` and `html` are all set, else a template."""
        if not request.email and not request.to:
            raise ValidationError(message="Email is required", field="email", extra={"success": False})

        if request.to and request.subject and request.html:
            return await self.send(request.to, request.subject, request.html, request.text)

        template = build_template(request)
        return await self.send(request.email or request.to, template.subject, template.html)


email_service = EmailService()

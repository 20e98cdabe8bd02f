"""Email bodies for welcome, admin notification and broadcast messages.

Every interpolated value is HTML-escaped. Renderers return
``(subject, html, text)``.
"""

from datetime import UTC, datetime
from html import escape
from urllib.parse import urlencode

from waitlist.services.auth import sign_unsubscribe_token
from waitlist.services.email_validator import normalize_email

UNSUBSCRIBE_PATH = "/api/unsubscribe"

_WRAPPER = (
    '<div style="font-family: Arial, sans-serif; max-width: 600px; '
    'margin: 0 auto; padding: 20px; color: #111;">{body}</div>'
)


def build_unsubscribe_url(base_url: str, email: str, secret: str) -> str:
    """Signed one-click unsubscribe link, or "" when no base URL is known."""
    if not base_url or not secret:
        return ""
    normalized = normalize_email(email)
    query = urlencode({"email": normalized, "token": sign_unsubscribe_token(normalized, secret)})
    return f"{base_url.rstrip('/')}{UNSUBSCRIBE_PATH}?{query}"


def _unsubscribe_footer(unsubscribe_url: str) -> tuple[str, str]:
    if not unsubscribe_url:
        return "", ""
    html = (
        '<p style="color: #999; font-size: 12px; margin-top: 30px;">'
        f'Don\'t want these emails? <a href="{escape(unsubscribe_url)}">Unsubscribe</a>.'
        "</p>"
    )
    return html, f"\n\nUnsubscribe: {unsubscribe_url}"


def render_welcome(name: str, brand: str, unsubscribe_url: str = "") -> tuple[str, str, str]:
    footer_html, footer_text = _unsubscribe_footer(unsubscribe_url)
    subject = f"Welcome to the {brand} waitlist!"
    body = (
        f'<h2 style="margin-bottom: 20px;">Welcome to {escape(brand)}, {escape(name)}!</h2>'
        '<p style="line-height: 1.6;">Thank you for joining our waitlist.</p>'
        '<p style="line-height: 1.6;">You\'ll be among the first to know when we launch. '
        "Keep an eye on your inbox for updates and early access.</p>"
        '<p style="color: #666; font-size: 14px; margin-top: 30px;">'
        f"Best regards,<br>The {escape(brand)} Team</p>"
        f"{footer_html}"
    )
    text = (
        f"Welcome to {brand}, {name}!\n\n"
        "Thank you for joining our waitlist. You'll be among the first to know "
        f"when we launch.\n\nThe {brand} Team{footer_text}"
    )
    return subject, _WRAPPER.format(body=body), text


def render_admin_notification(
    name: str, email: str, brand: str, when: datetime | None = None
) -> tuple[str, str, str]:
    stamp = (when or datetime.now(UTC)).strftime("%Y-%m-%d %H:%M:%S UTC")
    subject = f"New Waitlist Signup - {brand}"
    body = (
        '<h2 style="margin-bottom: 20px;">New Waitlist Signup</h2>'
        '<div style="background: #f5f5f5; padding: 15px; border-radius: 5px;">'
        f'<p style="margin: 5px 0;"><strong>Name:</strong> {escape(name)}</p>'
        f'<p style="margin: 5px 0;"><strong>Email:</strong> {escape(email)}</p>'
        f'<p style="margin: 5px 0;"><strong>Date:</strong> {stamp}</p>'
        "</div>"
    )
    text = f"New waitlist signup\n\nName: {name}\nEmail: {email}\nDate: {stamp}"
    return subject, _WRAPPER.format(body=body), text


def render_broadcast(
    subject: str, message: str, name: str, brand: str, unsubscribe_url: str = ""
) -> tuple[str, str, str]:
    footer_html, footer_text = _unsubscribe_footer(unsubscribe_url)
    body = (
        f'<h2 style="margin: 0 0 16px;">{escape(brand)} Update</h2>'
        f'<p style="line-height: 1.6;">Hi {escape(name)},</p>'
        f'<div style="line-height: 1.6; white-space: pre-wrap;">{escape(message)}</div>'
        f"{footer_html}"
    )
    text = f"Hi {name},\n\n{message}{footer_text}"
    return subject, _WRAPPER.format(body=body), text

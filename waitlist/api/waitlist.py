"""Public waitlist signup endpoint."""

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from waitlist.api.deps import (
    Mailer,
    client_ip,
    get_app_settings,
    get_mailer,
    get_rate_limiter,
    get_store,
    require_allowed_origin,
)
from waitlist.core.config import Settings
from waitlist.core.errors import Conflict, RateLimited, UpstreamFailure, ValidationError
from waitlist.core.logging import get_logger
from waitlist.schemas.subscriber import JoinWaitlistRequest, StatusResponse
from waitlist.services.email_templates import (
    build_unsubscribe_url,
    render_admin_notification,
    render_welcome,
)
from waitlist.services.email_validator import is_valid_email, normalize_email, redact_email
from waitlist.services.mailer import MailDeliveryError
from waitlist.services.rate_limiter import RateLimiter
from waitlist.services.subscriber_store import SubscriberStore

logger = get_logger("api.waitlist")

router = APIRouter(tags=["waitlist"])

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 120


def sanitize_name(raw: str | None) -> str:
    """Trim, drop angle brackets and cap the length of a display name."""
    cleaned = (raw or "").strip().replace("<", "").replace(">", "").strip()
    return cleaned[:MAX_NAME_LENGTH]


async def send_signup_emails(mailer: Mailer, settings: Settings, name: str, email: str) -> None:
    """Welcome the subscriber and notify the admin. Failures are only logged."""
    unsubscribe_url = build_unsubscribe_url(settings.public_base_url, email, settings.token_secret)
    subject, html, text = render_welcome(name, settings.brand_name, unsubscribe_url)
    try:
        await mailer.send(email, subject, html, text)
    except MailDeliveryError as e:
        logger.warning(f"Welcome email to {redact_email(email)} failed: {e}")

    admin_address = settings.admin_notification_address
    if not admin_address:
        return
    subject, html, text = render_admin_notification(name, email, settings.brand_name)
    try:
        await mailer.send(admin_address, subject, html, text)
    except MailDeliveryError as e:
        logger.warning(f"Admin signup notification failed: {e}")


def signup_gate(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    limiter: RateLimiter = Depends(get_rate_limiter),
    ip: str = Depends(client_ip),
) -> Settings:
    """Origin check, then the per-IP signup limit."""
    require_allowed_origin(request, settings)
    if not limiter.check_signup_rate_limit(ip):
        raise RateLimited(
            "Too many signup attempts. Please try again later.",
            retry_after=int(limiter.config.signup_window_seconds),
        )
    return settings


@router.post("/join-waitlist", response_model=StatusResponse)
async def join_waitlist(
    body: JoinWaitlistRequest,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(signup_gate),
    store: SubscriberStore = Depends(get_store),
    mailer: Mailer = Depends(get_mailer),
) -> StatusResponse:
    """Join the waitlist, or rejoin after unsubscribing."""
    name = sanitize_name(body.name)
    if len(name) < MIN_NAME_LENGTH:
        raise ValidationError("Name must be at least 2 characters long")
    email = normalize_email(body.email)
    if not is_valid_email(email):
        raise ValidationError("Please enter a valid email address")

    try:
        result = await store.add_or_resubscribe(name, email)
    except Exception as e:
        logger.exception(f"Failed to store signup for {redact_email(email)}")
        raise UpstreamFailure("Could not join the waitlist. Please try again later.") from e

    if result.status == "invalid":
        raise ValidationError("Please enter a valid email address")
    if result.status == "duplicate":
        raise Conflict("This email is already on the waitlist")

    logger.info(f"Waitlist signup ({result.status}): {redact_email(email)}")

    if mailer.is_configured:
        background_tasks.add_task(send_signup_emails, mailer, settings, name, email)
    else:
        logger.warning("Email service not configured; skipping signup emails")

    if result.status == "resubscribed":
        return StatusResponse(message="Welcome back! You have been resubscribed.")
    return StatusResponse(message="Successfully joined waitlist")

"""Signed one-click unsubscribe links."""

from fastapi import APIRouter, Body, Depends, Query

from waitlist.api.deps import get_app_settings, get_store
from waitlist.core.config import Settings
from waitlist.core.errors import (
    AuthError,
    Misconfigured,
    NotFound,
    UpstreamFailure,
    ValidationError,
)
from waitlist.core.logging import get_logger
from waitlist.schemas.subscriber import StatusResponse, UnsubscribeRequest
from waitlist.services.auth import verify_unsubscribe_token
from waitlist.services.email_validator import normalize_email, redact_email
from waitlist.services.subscriber_store import SubscriberStore

logger = get_logger("api.unsubscribe")

router = APIRouter(tags=["unsubscribe"])


async def _unsubscribe(
    raw_email: str, token: str, settings: Settings, store: SubscriberStore
) -> StatusResponse:
    email = normalize_email(raw_email)
    if not email or "@" not in email:
        raise ValidationError("Invalid email")

    secret = settings.token_secret
    if not secret:
        logger.error("Unsubscribe refused: no token secret configured")
        raise Misconfigured("Server not configured")

    if not verify_unsubscribe_token(email, token, secret):
        logger.warning(f"Invalid unsubscribe link for {redact_email(email)}")
        raise AuthError("Invalid unsubscribe link")

    try:
        result = await store.unsubscribe_email(email)
    except Exception as e:
        logger.exception(f"Failed to unsubscribe {redact_email(email)}")
        raise UpstreamFailure("Failed to update subscription") from e

    if not result.ok:
        if result.message == "Subscriber not found":
            raise NotFound("Subscriber not found")
        raise ValidationError(result.message)

    logger.info(f"Unsubscribed {redact_email(email)}")
    return StatusResponse(message="You have been unsubscribed.")


@router.get("/unsubscribe", response_model=StatusResponse)
async def unsubscribe_link(
    email: str = Query(default=""),
    token: str = Query(default=""),
    settings: Settings = Depends(get_app_settings),
    store: SubscriberStore = Depends(get_store),
) -> StatusResponse:
    """Unsubscribe via the link embedded in outbound emails."""
    return await _unsubscribe(email, token, settings, store)


@router.post("/unsubscribe", response_model=StatusResponse)
async def unsubscribe_form(
    body: UnsubscribeRequest | None = Body(default=None),
    email: str = Query(default=""),
    token: str = Query(default=""),
    settings: Settings = Depends(get_app_settings),
    store: SubscriberStore = Depends(get_store),
) -> StatusResponse:
    """Unsubscribe with email and token in a JSON body (query string as fallback)."""
    if body is not None:
        email = body.email or email
        token = body.token or token
    return await _unsubscribe(email, token, settings, store)

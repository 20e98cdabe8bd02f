"""Admin API: session login/logout, subscriber listing and export,
broadcast email, and bulk merge.

Every request passes, in order: origin check, API rate limit, and a
configuration check that fails closed when the admin password or token
secret is weak. Only then is the action routed.
"""

import csv
import io

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError

from waitlist.api.deps import (
    Mailer,
    client_ip,
    get_app_settings,
    get_mailer,
    get_rate_limiter,
    get_store,
    require_admin_session,
    require_allowed_origin,
    require_api_rate_limit,
    use_secure_cookie,
)
from waitlist.core.config import Settings
from waitlist.core.errors import (
    AuthError,
    MethodNotAllowed,
    Misconfigured,
    RateLimited,
    UpstreamFailure,
    ValidationError,
)
from waitlist.core.logging import get_logger
from waitlist.schemas.subscriber import (
    AdminActionRequest,
    BroadcastResponse,
    LoginResponse,
    MergeResponse,
    StatusResponse,
    SubscriberListResponse,
    SubscriberResponse,
)
from waitlist.services.auth import (
    clear_session_cookie,
    ensure_admin_configured,
    make_token,
    random_login_delay,
    secure_compare,
    set_session_cookie,
)
from waitlist.services.email_templates import build_unsubscribe_url, render_broadcast
from waitlist.services.email_validator import is_valid_email, normalize_email, redact_email
from waitlist.services.mailer import MailDeliveryError
from waitlist.services.rate_limiter import RateLimiter
from waitlist.services.subscriber_store import MergeRow, Subscriber, SubscriberStore

logger = get_logger("api.admin")

router = APIRouter(prefix="/admin", tags=["admin"])

MAX_SUBJECT_LENGTH = 140
MAX_MESSAGE_LENGTH = 10000
MAX_MERGE_ROWS = 5000
MAX_DIAGNOSTIC_LENGTH = 200

CSV_HEADER = ["name", "email", "timestamp", "unsubscribed"]
# Leading characters that make spreadsheet apps evaluate a cell
FORMULA_PREFIXES = ("=", "+", "-", "@")


def admin_gate(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    limiter: RateLimiter = Depends(get_rate_limiter),
    ip: str = Depends(client_ip),
) -> Settings:
    """Checks shared by every admin request, in order."""
    require_allowed_origin(request, settings)
    require_api_rate_limit(limiter, ip)
    ensure_admin_configured(settings)
    return settings


async def read_admin_action(
    request: Request, settings: Settings = Depends(admin_gate)
) -> AdminActionRequest:
    """Parse the POST body, only once the gate has passed."""
    try:
        payload = await request.json()
    except ValueError as e:
        raise ValidationError("Invalid JSON body") from e
    try:
        return AdminActionRequest.model_validate(payload)
    except PydanticValidationError as e:
        raise RequestValidationError(e.errors()) from e


# --- helpers ---


def _csv_cell(value: object) -> str:
    text = str(value)
    if text.startswith(FORMULA_PREFIXES):
        return f"'{text}"
    return text


def subscribers_to_csv(subscribers: list[Subscriber]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for s in subscribers:
        writer.writerow(
            [
                _csv_cell(s.name),
                _csv_cell(s.email),
                s.created_at.isoformat(),
                "true" if s.unsubscribed else "false",
            ]
        )
    return buffer.getvalue()


def parse_merge_text(text: str) -> list[MergeRow]:
    """Parse newline-delimited ``name,email`` or bare ``email`` rows.

    The name/email split uses the last comma so names may contain commas.
    A ``name,email`` header and blank lines are skipped, as are rows with an
    invalid email. Only the first ``MAX_MERGE_ROWS`` non-blank lines are read.
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if len(lines) > MAX_MERGE_ROWS:
        logger.warning(
            f"Merge input has {len(lines)} rows; ignoring all after the first {MAX_MERGE_ROWS}"
        )
        lines = lines[:MAX_MERGE_ROWS]

    rows: list[MergeRow] = []
    for line in lines:
        if line.replace(" ", "").lower() == "name,email":
            continue
        if "," in line:
            name, email = line.rsplit(",", 1)
        else:
            name, email = "", line
        email = normalize_email(email.strip().strip('"'))
        if not is_valid_email(email):
            continue
        rows.append(MergeRow(name=name.strip().strip('"'), email=email))
    return rows


def _clean_subject(raw: str | None) -> str:
    subject = (raw or "").replace("\r", " ").replace("\n", " ").strip()
    if not subject:
        raise ValidationError("Subject is required")
    if len(subject) > MAX_SUBJECT_LENGTH:
        raise ValidationError(f"Subject must be {MAX_SUBJECT_LENGTH} characters or fewer")
    return subject


def _clean_message(raw: str | None) -> str:
    message = (raw or "").strip()
    if not message:
        raise ValidationError("Message is required")
    if len(message) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message must be {MAX_MESSAGE_LENGTH} characters or fewer")
    return message


def _broadcast_recipients(subscribers: list[Subscriber]) -> list[Subscriber]:
    seen: set[str] = set()
    recipients: list[Subscriber] = []
    for s in subscribers:
        email = normalize_email(s.email)
        if not s.active or not is_valid_email(email) or email in seen:
            continue
        seen.add(email)
        recipients.append(s)
    return recipients


# --- routes ---


@router.get("", response_model=SubscriberListResponse)
async def list_subscribers(
    request: Request,
    output_format: str | None = Query(default=None, alias="format"),
    settings: Settings = Depends(admin_gate),
    store: SubscriberStore = Depends(get_store),
):
    """List all subscribers, newest first, as JSON or CSV."""
    require_admin_session(request, settings)

    try:
        subscribers = await store.get_all_subscribers()
    except Exception as e:
        logger.exception("Failed to load subscribers")
        raise UpstreamFailure(
            f"Failed to load subscribers: {str(e)[:MAX_DIAGNOSTIC_LENGTH]}"
        ) from e

    if (output_format or "").lower() == "csv":
        return Response(
            content=subscribers_to_csv(subscribers),
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": 'attachment; filename="waitlist.csv"'},
        )

    return SubscriberListResponse(
        count=len(subscribers),
        subscribers=[SubscriberResponse.from_subscriber(s) for s in subscribers],
    )


@router.post("")
async def admin_action(
    request: Request,
    response: Response,
    settings: Settings = Depends(admin_gate),
    body: AdminActionRequest = Depends(read_admin_action),
    limiter: RateLimiter = Depends(get_rate_limiter),
    store: SubscriberStore = Depends(get_store),
    mailer: Mailer = Depends(get_mailer),
    ip: str = Depends(client_ip),
):
    """Dispatch an admin action by the ``action`` field of the body."""
    action = body.action.strip().lower()

    if action == "login":
        return await _login(body, request, response, settings, limiter, ip)
    if action == "logout":
        clear_session_cookie(response, secure=use_secure_cookie(request, settings))
        return StatusResponse(message="Logged out")
    if action == "send-broadcast":
        require_admin_session(request, settings)
        return await _send_broadcast(body, settings, store, mailer)
    if action == "merge-subscribers":
        require_admin_session(request, settings)
        return await _merge_subscribers(body, store)

    raise MethodNotAllowed(f"Unsupported action: {action[:50]}" if action else "Missing action")


async def _login(
    body: AdminActionRequest,
    request: Request,
    response: Response,
    settings: Settings,
    limiter: RateLimiter,
    ip: str,
) -> LoginResponse:
    check = limiter.check_login_allowed(ip)
    if not check.ok:
        raise RateLimited(
            "Too many login attempts. Please try again later.",
            retry_after=check.retry_after_seconds,
        )

    if secure_compare(body.password or "", settings.admin_password):
        limiter.reset_login_attempts(ip)
        token = make_token(settings.token_secret, settings.session_ttl_seconds)
        set_session_cookie(
            response,
            token,
            secure=use_secure_cookie(request, settings),
            max_age=settings.session_ttl_seconds,
        )
        logger.info("Admin login", extra={"client_ip": ip})
        return LoginResponse(expires_in=settings.session_ttl_seconds)

    lock_seconds = limiter.note_failed_login(ip)
    await random_login_delay(settings.login_delay_min_ms, settings.login_delay_jitter_ms)
    logger.warning("Failed admin login", extra={"client_ip": ip, "locked": bool(lock_seconds)})
    if lock_seconds:
        raise RateLimited(
            "Too many login attempts. Please try again later.",
            retry_after=lock_seconds,
        )
    raise AuthError("Invalid password")


async def _send_broadcast(
    body: AdminActionRequest,
    settings: Settings,
    store: SubscriberStore,
    mailer: Mailer,
) -> BroadcastResponse:
    subject = _clean_subject(body.subject)
    message = _clean_message(body.message)

    try:
        subscribers = await store.get_active_subscribers()
    except Exception as e:
        logger.exception("Failed to load broadcast recipients")
        raise UpstreamFailure(
            f"Failed to load subscribers: {str(e)[:MAX_DIAGNOSTIC_LENGTH]}"
        ) from e

    recipients = _broadcast_recipients(subscribers)
    if not recipients:
        raise ValidationError("No subscribers found")
    if not mailer.is_configured:
        raise Misconfigured("Email service not configured")

    sent = failed = 0
    for recipient in recipients:
        unsubscribe_url = build_unsubscribe_url(
            settings.public_base_url, recipient.email, settings.token_secret
        )
        rendered_subject, html, text = render_broadcast(
            subject, message, recipient.name, settings.brand_name, unsubscribe_url
        )
        try:
            await mailer.send(recipient.email, rendered_subject, html, text)
            sent += 1
        except MailDeliveryError as e:
            failed += 1
            logger.warning(f"Broadcast to {redact_email(recipient.email)} failed: {e}")

    logger.info(f"Broadcast '{subject[:40]}' finished: {sent} sent, {failed} failed")
    return BroadcastResponse(sent=sent, failed=failed)


async def _merge_subscribers(body: AdminActionRequest, store: SubscriberStore) -> MergeResponse:
    rows = parse_merge_text(body.rows or "")
    if not rows:
        raise ValidationError("No valid rows to merge")

    try:
        result = await store.merge_subscribers(rows)
    except Exception as e:
        logger.exception("Subscriber merge failed")
        raise UpstreamFailure(f"Merge failed: {str(e)[:MAX_DIAGNOSTIC_LENGTH]}") from e

    logger.info(f"Merged {len(rows)} rows; store now holds {result.count} subscribers")
    return MergeResponse(count=result.count)

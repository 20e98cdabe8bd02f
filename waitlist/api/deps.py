"""Shared FastAPI dependencies.

Application-scoped collaborators (settings, store, rate limiter, mailer)
are attached to ``app.state`` by ``create_app`` and read back here, so tests
can build an app with their own instances.
"""

from typing import Protocol

from fastapi import Depends, Request

from waitlist.core.config import Settings
from waitlist.core.errors import AuthError, ForbiddenOrigin, RateLimited
from waitlist.core.logging import get_logger
from waitlist.core.request_utils import get_client_ip, is_https_request
from waitlist.middleware.origin import is_allowed_request_origin
from waitlist.services.auth import AdminToken, extract_session_token, parse_token
from waitlist.services.rate_limiter import RateLimiter
from waitlist.services.subscriber_store import SubscriberStore

logger = get_logger("api.deps")


class Mailer(Protocol):
    """Email capability: either delivers or raises MailDeliveryError."""

    @property
    def is_configured(self) -> bool: ...

    async def send(self, to: str, subject: str, html: str, text: str | None = None) -> None: ...


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> SubscriberStore:
    return request.app.state.store


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


def client_ip(request: Request, settings: Settings = Depends(get_app_settings)) -> str:
    return get_client_ip(request, settings.trusted_proxy_ip_set)


def use_secure_cookie(request: Request, settings: Settings) -> bool:
    if settings.cookie_secure is not None:
        return settings.cookie_secure
    return is_https_request(request)


def require_allowed_origin(request: Request, settings: Settings) -> None:
    if not is_allowed_request_origin(request, settings):
        logger.warning(
            f"Rejected {request.method} {request.url.path} from origin "
            f"{request.headers.get('origin')}"
        )
        raise ForbiddenOrigin()


def require_api_rate_limit(limiter: RateLimiter, ip: str) -> None:
    if not limiter.check_api_rate_limit(ip):
        raise RateLimited(retry_after=int(limiter.config.api_window_seconds))


def require_admin_session(request: Request, settings: Settings) -> AdminToken:
    """Validate the admin session; every failure reads "Unauthorized"."""
    token = parse_token(extract_session_token(request), settings.token_secret)
    if token is None:
        raise AuthError()
    return token

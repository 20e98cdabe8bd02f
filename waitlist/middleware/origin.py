"""Origin validation and credentialed CORS for browser clients.

The allowed set is recomputed for every request, because it includes the
request's own host. CORS headers are only ever echoed for an allowed
origin; there is no wildcard.
"""

import ipaddress
from urllib.parse import urlsplit

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from waitlist.core.config import Settings
from waitlist.core.logging import get_logger

logger = get_logger("middleware.origin")

LOCAL_DEV_ORIGINS = (
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
)

ALLOWED_METHODS = "GET, POST, OPTIONS"
ALLOWED_HEADERS = "Content-Type, Authorization"
PREFLIGHT_MAX_AGE = "600"


def _is_local_host(host: str) -> bool:
    if host == "localhost" or host.endswith(".localhost"):
        return True
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return False


def _format_origin(scheme: str, host: str, port: int | None) -> str:
    if ":" in host:
        host = f"[{host}]"
    return f"{scheme}://{host}:{port}" if port else f"{scheme}://{host}"


def normalize_origin(value: str | None) -> str | None:
    """Reduce a URL or origin to lowercase ``scheme://host[:port]``.

    A missing scheme defaults to https. Returns None if unparseable.
    """
    if not value:
        return None
    raw = value.strip()
    if not raw:
        return None
    if "://" not in raw:
        raw = f"https://{raw}"
    try:
        parts = urlsplit(raw)
        port = parts.port
    except ValueError:
        return None
    host = parts.hostname
    scheme = parts.scheme.lower()
    if not host or scheme not in ("http", "https"):
        return None
    return _format_origin(scheme, host.lower(), port)


def _with_www_variant(origin: str) -> set[str]:
    parts = urlsplit(origin)
    host = parts.hostname or ""
    if not host or _is_local_host(host):
        return {origin}
    alternate = host[4:] if host.startswith("www.") else f"www.{host}"
    if not alternate:
        return {origin}
    return {origin, _format_origin(parts.scheme, alternate, parts.port)}


def request_own_origin(request: Request) -> str | None:
    """Origin the request was addressed to, from Host and X-Forwarded-Proto."""
    host_header = request.headers.get("host", "").strip()
    if not host_header:
        return None
    forwarded_proto = request.headers.get("x-forwarded-proto", "")
    if forwarded_proto:
        scheme = forwarded_proto.split(",")[0].strip().lower()
    else:
        hostname = urlsplit(f"//{host_header}").hostname or ""
        scheme = "http" if _is_local_host(hostname) else "https"
    return normalize_origin(f"{scheme}://{host_header}")


def get_allowed_origins(request: Request, settings: Settings) -> set[str]:
    candidates = [
        *settings.configured_base_urls,
        *settings.allowed_origins_list,
        request_own_origin(request),
        *LOCAL_DEV_ORIGINS,
    ]
    allowed: set[str] = set()
    for candidate in candidates:
        origin = normalize_origin(candidate)
        if origin:
            allowed |= _with_www_variant(origin)
    return allowed


def is_allowed_request_origin(request: Request, settings: Settings) -> bool:
    """True when the request has no Origin header or its origin is allowed."""
    origin = request.headers.get("origin")
    if not origin:
        return True
    normalized = normalize_origin(origin)
    return normalized is not None and normalized in get_allowed_origins(request, settings)


def _cors_headers(origin: str) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": ALLOWED_METHODS,
        "Access-Control-Allow-Headers": ALLOWED_HEADERS,
        "Vary": "Origin",
    }


class OriginCorsMiddleware(BaseHTTPMiddleware):
    """Answer preflights and echo CORS headers for allowed origins only.

    Disallowed non-preflight requests pass through without CORS headers;
    the route decides whether to refuse them.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        origin = request.headers.get("origin")
        if not origin:
            return await call_next(request)

        settings: Settings = request.app.state.settings
        allowed = is_allowed_request_origin(request, settings)

        is_preflight = (
            request.method == "OPTIONS"
            and "access-control-request-method" in request.headers
        )
        if is_preflight:
            if not allowed:
                logger.warning(f"Rejected CORS preflight from {origin} for {request.url.path}")
                return Response(status_code=403, headers={"Vary": "Origin"})
            headers = _cors_headers(origin)
            headers["Access-Control-Max-Age"] = PREFLIGHT_MAX_AGE
            return Response(status_code=204, headers=headers)

        response = await call_next(request)
        if allowed:
            for key, value in _cors_headers(origin).items():
                response.headers[key] = value
        return response

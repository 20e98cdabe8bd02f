"""Middleware module for the waitlist backend."""

from waitlist.middleware.origin import OriginCorsMiddleware
from waitlist.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "OriginCorsMiddleware",
    "SecurityHeadersMiddleware",
]

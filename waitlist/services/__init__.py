# Waitlist Services
from waitlist.services.mailer import MailDeliveryError, SmtpMailer
from waitlist.services.rate_limiter import RateLimiter, rate_limit_cleanup_loop
from waitlist.services.subscriber_store import (
    Subscriber,
    SubscriberStore,
    create_subscriber_store,
)

__all__ = [
    "MailDeliveryError",
    "RateLimiter",
    "SmtpMailer",
    "Subscriber",
    "SubscriberStore",
    "create_subscriber_store",
    "rate_limit_cleanup_loop",
]

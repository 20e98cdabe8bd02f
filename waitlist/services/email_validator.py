"""Email address normalization and validation."""

import re

# local@domain.tld, at most 254 chars overall and 64 in the local part; each
# domain label 1-63 chars and not starting/ending with a hyphen
EMAIL_FORMAT = re.compile(
    r"^(?=.{1,254}$)(?=.{1,64}@)"
    r"[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@"
    r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)+$"
)

MAX_LOCAL_PART_LENGTH = 64


def normalize_email(raw: object) -> str:
    """Trim and lowercase. Never raises; ``None`` becomes ``""``."""
    if raw is None:
        return ""
    return str(raw).strip().lower()


def is_valid_email(value: object) -> bool:
    normalized = normalize_email(value)
    if not normalized:
        return False
    if ".." in normalized:
        return False
    if normalized.count("@") != 1:
        return False

    local, domain = normalized.split("@")
    if not local or not domain:
        return False
    if len(local) > MAX_LOCAL_PART_LENGTH or local.startswith(".") or local.endswith("."):
        return False

    return EMAIL_FORMAT.match(normalized) is not None


def redact_email(value: object) -> str:
    """Mask an address for log output: ``jane@example.com`` -> ``j***@example.com``."""
    normalized = normalize_email(value)
    local, sep, domain = normalized.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"

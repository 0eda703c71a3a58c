"""Target URL normalization and expiry validation helpers."""

import datetime
import re
from urllib.parse import urlsplit

import validators

from shortlinks.errors import ValidationError

__all__ = ["ALLOWED_SCHEMES", "ensure_future", "normalize_target", "to_utc", "utcnow"]

ALLOWED_SCHEMES = frozenset({"http", "https"})
SCHEME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*:/")


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def to_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    """Naive datetimes are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def normalize_target(raw: str | None) -> str:
    """Return ``raw`` with surrounding whitespace removed and a scheme guaranteed.

    ``example.com`` becomes ``https://example.com``; a value that already carries
    a scheme is returned as-is, so applying this twice changes nothing.
    """
    if raw is None or not raw.strip():
        raise ValidationError("URL is required")

    target = raw.strip()
    if not SCHEME_PATTERN.match(target):
        target = f"https://{target}"

    try:
        scheme = urlsplit(target).scheme
    except ValueError as exc:
        raise ValidationError("Invalid URL format", details=str(exc)) from exc
    if scheme.lower() not in ALLOWED_SCHEMES:
        raise ValidationError("Invalid URL format", details=f"Unsupported scheme '{scheme}'")
    # simple_host admits single-label hosts such as ``localhost``
    if not validators.url(target, simple_host=True, strict_query=False):
        raise ValidationError("Invalid URL format", details="URL must have a valid host")
    return target


def ensure_future(expires_at: datetime.datetime | None, now: datetime.datetime | None = None) -> datetime.datetime | None:
    expires_at = to_utc(expires_at)
    if expires_at is None:
        return None
    if expires_at < (now or utcnow()):
        raise ValidationError("Expiration date cannot be in the past")
    return expires_at

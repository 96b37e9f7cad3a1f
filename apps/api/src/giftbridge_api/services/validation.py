"""Boundary format checks for gift codes, sessions, amounts and metadata."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

from giftbridge_api.core.settings import settings
from giftbridge_api.services.errors import FieldError, ValidationError

SESSION_ID_PREFIX = "session-"
_SESSION_ID_PATTERN = re.compile(r"^session-[a-z0-9]+$")
_ALLOWED_URL_SCHEMES = {"http", "https"}


def _gift_code_pattern() -> re.Pattern[str]:
    prefix = re.escape(settings.gift_code_prefix)
    return re.compile(rf"^{prefix}[A-Z0-9]{{{settings.gift_code_suffix_length}}}$")


def is_valid_gift_code(code: object) -> bool:
    if not isinstance(code, str) or not code:
        return False
    return _gift_code_pattern().match(code) is not None


def is_valid_session_id(session_id: object) -> bool:
    if not isinstance(session_id, str) or not session_id:
        return False
    return _SESSION_ID_PATTERN.match(session_id) is not None


def is_approved_retailer_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in _ALLOWED_URL_SCHEMES:
        return False
    host = (parsed.hostname or "").lower()
    if not host:
        return False
    return any(host == domain or host.endswith(f".{domain}") for domain in settings.approved_retailer_domains)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def check_amount(
    value: object,
    field: str,
    *,
    allow_zero: bool,
    label: str | None = None,
) -> list[FieldError]:
    """Return field errors for a cents amount bounded by the configured ceiling."""

    label = label or field
    ceiling = settings.max_amount_cents
    if value is None:
        return [FieldError(field, f"{label} is required")]
    if not _is_int(value):
        return [FieldError(field, f"{label} must be a whole number of cents")]
    if allow_zero and value < 0:
        return [FieldError(field, f"{label} cannot be negative")]
    if not allow_zero and value <= 0:
        return [FieldError(field, f"{label} must be a positive number")]
    if value > ceiling:
        return [FieldError(field, f"{label} cannot exceed {ceiling} cents")]
    return []


def check_gift_code(code: object, field: str = "code") -> list[FieldError]:
    if not isinstance(code, str) or not code.strip():
        return [FieldError(field, "Gift code is required")]
    if not is_valid_gift_code(code):
        return [FieldError(field, "Invalid gift code format")]
    return []


def check_future(value: datetime | None, field: str, *, now: datetime | None = None) -> list[FieldError]:
    if value is None:
        return []
    reference = now or datetime.now(timezone.utc)
    if ensure_aware(value) <= reference:
        return [FieldError(field, f"{field} must be in the future")]
    return []


def parse_metadata(value: Any, field: str = "metadata") -> tuple[dict[str, Any] | None, list[FieldError]]:
    """Normalise metadata supplied as text or mapping into a bounded JSON object."""

    if value is None:
        return None, []
    limit = settings.metadata_max_bytes
    if isinstance(value, str):
        if len(value.encode("utf-8")) > limit:
            return None, [FieldError(field, f"Metadata cannot exceed {limit} bytes")]
        if not value.strip():
            return None, []
        try:
            parsed = json.loads(value)
        except ValueError:
            return None, [FieldError(field, "Metadata must be valid JSON")]
        if not isinstance(parsed, dict):
            return None, [FieldError(field, "Metadata must be a JSON object")]
        return parsed, []
    if isinstance(value, dict):
        try:
            encoded = json.dumps(value, default=str)
        except (TypeError, ValueError):
            return None, [FieldError(field, "Metadata must be JSON serialisable")]
        if len(encoded.encode("utf-8")) > limit:
            return None, [FieldError(field, f"Metadata cannot exceed {limit} bytes")]
        return dict(value), []
    return None, [FieldError(field, "Metadata must be a JSON object or string")]


def require_session_id(session_id: object, *, operation: str) -> str:
    if not is_valid_session_id(session_id):
        raise ValidationError([FieldError("sessionId", "Invalid session ID format")], operation=operation)
    return session_id  # type: ignore[return-value]


def raise_for_errors(errors: list[FieldError], *, operation: str) -> None:
    if errors:
        raise ValidationError(errors, operation=operation)


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

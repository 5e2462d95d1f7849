from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime, time, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

import bleach
from werkzeug.exceptions import BadRequest

CENTS = Decimal("0.01")
_SLUG_STRIP = re.compile(r"[^a-z0-9]+")

CONTENT_TAGS = frozenset({
    "a", "b", "blockquote", "br", "code", "em", "h2", "h3",
    "i", "li", "ol", "p", "pre", "strong", "ul",
})
CONTENT_ATTRIBUTES = {"a": ["href", "title"]}


def money(value: Any) -> Decimal:
    """Coerce a number (or numeric string) into a Decimal rounded to cents."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_money(value: Any, field: str, allow_zero: bool = False) -> Decimal:
    if isinstance(value, bool):
        raise BadRequest(f"{field} must be a number")
    try:
        amount = money(value)
    except (InvalidOperation, ValueError, TypeError):
        raise BadRequest(f"{field} must be a number")
    if not amount.is_finite():
        raise BadRequest(f"{field} must be a number")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise BadRequest(f"{field} must be positive")
    return amount


def parse_int(value: Any, field: str, minimum: Optional[int] = None, maximum: Optional[int] = None) -> int:
    if isinstance(value, bool):
        raise BadRequest(f"{field} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise BadRequest(f"{field} must be an integer")
    if minimum is not None and number < minimum:
        raise BadRequest(f"{field} must be at least {minimum}")
    if maximum is not None and number > maximum:
        raise BadRequest(f"{field} must be at most {maximum}")
    return number


def parse_enum(enum_cls, value: Any, field: str):
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise BadRequest(f"{field} must be one of: {allowed}")


def parse_date(value: Optional[str], field: str, end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse an ISO date or datetime query value into an aware UTC datetime.

    A bare date means midnight, or the last instant of that day when
    ``end_of_day`` is set, so it can close an inclusive range.
    """
    if not value:
        return None
    try:
        parsed_date = date.fromisoformat(value)
    except ValueError:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            raise BadRequest(f"{field} must be an ISO date")
    else:
        parsed = datetime.combine(parsed_date, time.max if end_of_day else time.min)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def slugify(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    return _SLUG_STRIP.sub("-", normalized.lower()).strip("-")


def sanitize_text(value: Any) -> Optional[str]:
    """Strip every HTML tag from user-submitted free text."""
    if value is None:
        return None
    return bleach.clean(str(value), tags=[], strip=True)


def sanitize_html(value: Any) -> Optional[str]:
    """Keep basic formatting markup in CMS bodies, drop everything else."""
    if value is None:
        return None
    return bleach.clean(str(value), tags=CONTENT_TAGS, attributes=CONTENT_ATTRIBUTES, strip=True)


def parse_text(value: Any, field: str) -> str:
    """Return a stripped string, treating a missing value as empty."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise BadRequest(f"{field} must be a string")
    return value.strip()

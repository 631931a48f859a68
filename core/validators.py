"""
Shared validation helpers for AgentStats services.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional, Type

from core.config import MAX_SEARCH_LENGTH
from core.errors import ValidationIssue

ISO_DATE_REGEX = re.compile(
    r"^\d{4}-\d{2}-\d{2}(T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})?)?$"
)
DATE_ONLY_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")
END_OF_DAY_SUFFIX = "T23:59:59.999Z"
_FRACTION_REGEX = re.compile(r"\.(\d+)")


def validate_required_text(value: str, field: str, max_len: int) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationIssue(f"{field} must be a non-empty string", field=field, error_type="required")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_limit(value: int, field: str, max_value: int) -> None:
    if value <= 0 or value > max_value:
        raise ValidationIssue(f"{field} must be between 1 and {max_value}", field=field, error_type="out_of_range")


def validate_offset(value: int, field: str = "offset") -> None:
    if value < 0:
        raise ValidationIssue(f"{field} must be zero or positive", field=field, error_type="out_of_range")


def validate_count(value: int, field: str) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValidationIssue(f"{field} must be a non-negative integer", field=field, error_type="out_of_range")


def validate_enum_value(value: Optional[str], field: str, enum_cls: Type) -> Optional[str]:
    """Return the canonical enum value, or None when no filter was supplied."""
    if value is None:
        return None
    allowed = [member.value for member in enum_cls]
    if value not in allowed:
        raise ValidationIssue(
            f"{field} must be one of {', '.join(allowed)}",
            field=field,
            error_type="invalid_choice",
        )
    return value


def normalize_to_bound(value: Optional[str]) -> Optional[str]:
    """Widen a date-only upper bound to the last millisecond of that day."""
    if value is None:
        return None
    text = value.strip()
    if DATE_ONLY_REGEX.match(text):
        return f"{text}{END_OF_DAY_SUFFIX}"
    return text


def parse_iso_datetime(value: Optional[str], field: str) -> Optional[datetime]:
    """
    Parse an ISO-8601 date or date-time into an aware UTC datetime.

    Values without an offset are taken as UTC.
    """
    if value is None:
        return None
    if not isinstance(value, str) or not ISO_DATE_REGEX.match(value.strip()):
        raise ValidationIssue(
            f"{field} must be an ISO-8601 date or date-time",
            field=field,
            error_type="invalid_date",
        )
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_REGEX.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValidationIssue(
            f"{field} is not a valid calendar date",
            field=field,
            error_type="invalid_date",
        ) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_search_pattern(search: Optional[str]) -> Optional[str]:
    """Trim, cap, and escape free-text search into a contains-pattern."""
    if search is None:
        return None
    term = search.strip()
    if not term:
        return None
    term = term[:MAX_SEARCH_LENGTH]
    return f"%{escape_like(term)}%"


__all__ = [
    "ISO_DATE_REGEX",
    "END_OF_DAY_SUFFIX",
    "validate_required_text",
    "validate_limit",
    "validate_offset",
    "validate_count",
    "validate_enum_value",
    "normalize_to_bound",
    "parse_iso_datetime",
    "escape_like",
    "build_search_pattern",
]

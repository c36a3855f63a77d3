from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation


_PHONE_REGEX = re.compile(r"^\+?\d{7,15}$", re.ASCII)
_EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_SKIP_VALUES = {"-", "—"}
_UNLIMITED_VALUES = {"-", "∞", "ilimitado", "unlimited"}
_DIGITS_REGEX = re.compile(r"\d+", re.ASCII)
_COLOR_REGEX = re.compile(r"[0-9a-f]{6}")


def is_skip(raw: str | None) -> bool:
    """True when the user asked to leave an optional field empty."""
    return raw is None or raw.strip() in _SKIP_VALUES


def normalize_phone(raw: str) -> str | None:
    """
    Basic phone normalization and validation.

    Accepts digits and an optional leading '+', ignoring spaces and dashes.
    A bare 9-digit number is treated as Portuguese and gets the +351 prefix.
    Returns None if the value looks invalid.
    """

    value = raw.strip().replace(" ", "").replace("-", "")
    if not _PHONE_REGEX.match(value):
        return None
    if not value.startswith("+") and len(value) == 9:
        return f"+351{value}"
    return value


def normalize_email(raw: str) -> str | None:
    value = raw.strip().lower()
    if not _EMAIL_REGEX.match(value):
        return None
    return value


def parse_price(raw: str) -> Decimal | None:
    """Parse a non-negative amount; both '45,5' and '45.50' are accepted."""
    value = raw.strip().replace("€", "").replace(" ", "").replace(",", ".")
    try:
        amount = Decimal(value)
        if not amount.is_finite() or amount < 0:
            return None
        return amount.quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


def parse_positive_int(raw: str) -> int | None:
    value = raw.strip()
    if not _DIGITS_REGEX.fullmatch(value):
        return None
    number = int(value)
    return number if number > 0 else None


def parse_optional_int(raw: str) -> tuple[bool, int | None]:
    """
    Parse a limit where '-' or '∞' means unlimited.

    Returns (ok, value); value is None for unlimited.
    """

    value = raw.strip().lower()
    if value in _UNLIMITED_VALUES:
        return True, None
    if not _DIGITS_REGEX.fullmatch(value):
        return False, None
    return True, int(value)


def parse_date(raw: str) -> date | None:
    value = raw.strip()
    for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d.%m.%Y"):
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def parse_color(raw: str) -> str | None:
    """'#1e90ff' or '1E90FF' -> '#1e90ff'."""
    value = raw.strip().lower().lstrip("#")
    if not _COLOR_REGEX.fullmatch(value):
        return None
    return f"#{value}"

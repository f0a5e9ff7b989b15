"""Value parsers shared by the intake normalizers."""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import structlog

from ledgersync.core.models import ZERO

logger = structlog.get_logger(__name__)

_CURRENCY_SYMBOLS = re.compile(r"[$€£¥\s]|USD|EUR|GBP", re.IGNORECASE)
_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    """Convert a JSON scalar to Decimal without passing through binary float math"""
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        logger.warning("decimal_parse_failed", raw_value=str(value))
        return default


def parse_price(price_text: Any) -> Decimal:
    """
    Parse a locale-formatted currency string.

    Handles "$ 1,750.00", "$1750", "1750.00" and decimal-comma forms such
    as "1.750,00 €". Unparseable input yields 0.00 and a warning.
    """
    if price_text is None or price_text == "":
        return ZERO
    if isinstance(price_text, (int, Decimal)):
        return Decimal(price_text)

    cleaned = _CURRENCY_SYMBOLS.sub("", str(price_text)).strip()

    last_comma = cleaned.rfind(",")
    last_dot = cleaned.rfind(".")
    if last_comma > last_dot and len(cleaned) - last_comma - 1 in (1, 2):
        # Decimal comma: dots (if any) group thousands
        cleaned = cleaned.replace(".", "").replace(",", ".")
    else:
        cleaned = cleaned.replace(",", "")

    try:
        return Decimal(cleaned)
    except InvalidOperation:
        logger.warning("price_parse_failed", price_text=str(price_text))
        return ZERO


def parse_count(value: Any) -> int:
    """Parse a non-negative integer count; blanks and garbage become 0"""
    if value is None or value == "":
        return 0
    try:
        parsed = int(str(value).strip())
    except ValueError:
        return 0
    return parsed if parsed > 0 else 0


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.warning("timestamp_parse_failed", raw_value=text)
        return None


def normalize_name(value: Any) -> str:
    """Trim and title-case each space-separated word"""
    if not value:
        return ""
    words = str(value).strip().split(" ")
    return " ".join(word[:1].upper() + word[1:].lower() for word in words)


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and bool(_EMAIL_PATTERN.match(email))

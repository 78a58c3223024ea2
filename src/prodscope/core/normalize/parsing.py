"""
Parsing utilities for extracted product values.

Handles:
- Money amounts in US (1,234.56) and European (1.234,56) styles
- Currency detection from symbols and ISO codes
- Availability text and schema.org URLs
- Whitespace/HTML cleanup and title cleanup
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


# =============================================================================
# Money Parsing
# =============================================================================


@dataclass
class ParsedMoney:
    """Result of parsing a monetary value."""

    amount: float | None
    currency: str | None
    original: str
    confidence: float


# Longest symbols first so "C$" is not read as "$"
CURRENCY_SYMBOLS = {
    "CA$": "CAD",
    "AU$": "AUD",
    "US$": "USD",
    "NZ$": "NZD",
    "HK$": "HKD",
    "R$": "BRL",
    "S$": "SGD",
    "C$": "CAD",
    "A$": "AUD",
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "¥": "JPY",
    "₹": "INR",
    "₩": "KRW",
    "₽": "RUB",
    "zł": "PLN",
}

CURRENCY_CODES = {
    "USD", "EUR", "GBP", "JPY", "CAD", "AUD", "INR", "CHF", "CNY",
    "SEK", "NOK", "DKK", "NZD", "HKD", "SGD", "KRW", "BRL", "PLN", "MXN",
}

_CODE_RE = re.compile(r"\b(" + "|".join(sorted(CURRENCY_CODES)) + r")\b")
_NUMBER_RE = re.compile(r"\d{1,3}(?:[ \u00a0\u202f]\d{3})+(?:[.,]\d{1,2})?(?!\d)|\d[\d.,']*")


def detect_currency(text: str | None) -> str | None:
    """Return the ISO code implied by a symbol or code in ``text``."""
    if not text:
        return None
    code_match = _CODE_RE.search(text.upper())
    if code_match:
        return code_match.group(1)
    for symbol, code in CURRENCY_SYMBOLS.items():
        if symbol in text:
            return code
    return None


def parse_money(
    value: str | float | int | Decimal | None,
    *,
    default_currency: str | None = None,
) -> ParsedMoney:
    """Parse a monetary value from various formats.

    Handles:
    - Currency symbols ($1,234.56, 1.234,56 €)
    - Currency codes (USD 1234.56)
    - Plain numbers (1234.56)
    - Ranges (returns the lower bound)

    Args:
        value: String or number to parse
        default_currency: Currency code when not detected

    Returns:
        ParsedMoney with parsed amount and currency
    """
    if value is None or isinstance(value, bool):
        return ParsedMoney(amount=None, currency=default_currency, original="", confidence=0.0)

    if isinstance(value, (int, float, Decimal)):
        return ParsedMoney(
            amount=float(value),
            currency=default_currency,
            original=str(value),
            confidence=1.0,
        )

    original = str(value).strip()
    if not original:
        return ParsedMoney(amount=None, currency=default_currency, original=original, confidence=0.0)

    detected = detect_currency(original)
    currency = detected or default_currency
    confidence = 0.9 if detected else 0.8

    number_match = _NUMBER_RE.search(original)
    if not number_match:
        return ParsedMoney(amount=None, currency=currency, original=original, confidence=0.0)

    amount = _parse_numeric(number_match.group())
    if amount is None:
        return ParsedMoney(amount=None, currency=currency, original=original, confidence=0.0)

    return ParsedMoney(amount=amount, currency=currency, original=original, confidence=confidence)


def parse_price(value: str | float | int | Decimal | None) -> float | None:
    """Numeric amount of a price-like value, or None."""
    return parse_money(value).amount


def _parse_numeric(text: str) -> float | None:
    """Parse a numeric string, working out which separator is the decimal one.

    When both separators appear, the last one is the decimal separator.
    A lone separator followed by exactly three digits is a thousands
    separator when it repeats (1,234,567) or when it is a comma (1,234);
    a lone period with three digits (1.234) stays a decimal point.
    """
    text = re.sub(r"[\s'\u00a0\u202f]", "", text).strip(".,")
    if not text:
        return None

    last_comma = text.rfind(",")
    last_period = text.rfind(".")

    if last_comma >= 0 and last_period >= 0:
        if last_comma > last_period:
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif last_comma >= 0:
        groups = text.split(",")
        if all(len(g) == 3 for g in groups[1:]) and len(groups[0]) <= 3:
            text = text.replace(",", "")
        elif len(groups) == 2:
            text = text.replace(",", ".")
        else:
            return None
    elif last_period >= 0:
        groups = text.split(".")
        if len(groups) > 2:
            if all(len(g) == 3 for g in groups[1:]):
                text = text.replace(".", "")
            else:
                return None

    try:
        return float(text)
    except ValueError:
        return None


# =============================================================================
# Availability Parsing
# =============================================================================


class Availability(str, Enum):
    """Normalized stock states."""

    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    PREORDER = "preorder"
    LIMITED = "limited"
    DISCONTINUED = "discontinued"


# Checked in order; "out of stock" must win over "in stock"
AVAILABILITY_PATTERNS: list[tuple[Availability, list[str]]] = [
    (Availability.DISCONTINUED, ["discontinued", "no longer available", "no longer sold"]),
    (
        Availability.OUT_OF_STOCK,
        ["out of stock", "sold out", "soldout", "unavailable", "not available", "oos", "no stock"],
    ),
    (
        Availability.PREORDER,
        ["pre order", "preorder", "pre-order", "presale", "pre sale", "backorder", "back order", "coming soon"],
    ),
    (
        Availability.LIMITED,
        ["limited", "low stock", "only a few left", "few left", "almost gone", "last one"],
    ),
    (Availability.IN_STOCK, ["in stock", "instock", "available", "online only", "in store only", "ships"]),
]

_ONLY_N_LEFT_RE = re.compile(r"\bonly\s+\d+\s+left\b")


def parse_availability(value: str | bool | None) -> Availability:
    """Normalize availability text, booleans and schema.org URLs.

    Ambiguous or missing values default to in stock.

    Examples:
        >>> parse_availability("https://schema.org/OutOfStock").value
        'out_of_stock'
        >>> parse_availability("Only 2 left!").value
        'limited'
    """
    if isinstance(value, bool):
        return Availability.IN_STOCK if value else Availability.OUT_OF_STOCK
    if not value:
        return Availability.IN_STOCK

    text = str(value).strip()
    for member in Availability:
        if text.lower() == member.value:
            return member

    text = text.rsplit("/", 1)[-1] if "schema.org" in text.lower() else text
    # Split CamelCase schema names: OutOfStock -> Out Of Stock
    text = re.sub(r"(?<=[a-z])(?=[A-Z])", " ", text)
    text = re.sub(r"[_\-]+", " ", text).lower()
    text = normalize_whitespace(text)

    if _ONLY_N_LEFT_RE.search(text):
        return Availability.LIMITED

    for availability, patterns in AVAILABILITY_PATTERNS:
        for pattern in patterns:
            if re.search(rf"\b{re.escape(pattern)}\b", text):
                return availability

    return Availability.IN_STOCK


# =============================================================================
# Text Utilities
# =============================================================================


def normalize_whitespace(text: str | None) -> str:
    """Normalize whitespace in text."""
    if not text:
        return ""
    return " ".join(text.split())


def clean_html_text(text: str | None) -> str:
    """Clean text extracted from HTML: unescape entities, drop tags, collapse whitespace."""
    if not text:
        return ""
    text = html.unescape(text)
    text = re.sub(r"<[^>]+>", " ", text)
    return normalize_whitespace(text)


_TITLE_PREFIX_RE = re.compile(r"^(buy|shop|get|order)\s+", re.IGNORECASE)
_TITLE_SUFFIX_RE = re.compile(r"\s+[|\-–—:·]\s+[^|\-–—:·]{1,40}$")
_TITLE_ONLINE_RE = re.compile(r"\s+(online|now)$", re.IGNORECASE)


def clean_title(title: str | None) -> str:
    """Strip trailing site-name suffixes and Buy/Shop prefixes from a page title.

    Examples:
        >>> clean_title("Buy Linen Shirt | Acme Store")
        'Linen Shirt'
        >>> clean_title("Shop Wool Coat Online - Brand")
        'Wool Coat'
    """
    title = clean_html_text(title)
    if not title:
        return ""

    stripped = _TITLE_SUFFIX_RE.sub("", title)
    if stripped:
        title = stripped
    title = _TITLE_PREFIX_RE.sub("", title)
    title = _TITLE_ONLINE_RE.sub("", title)
    return title.strip()

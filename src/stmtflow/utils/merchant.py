"""Merchant name normalization."""

import re

_PAYMENT_PREFIX = re.compile(
    r"^(?:(?:eftpos|pos|paypal|square|visa purchase|visa debit|card purchase)\b|sq\s*\*)\s*[-:*]?\s*",
    re.IGNORECASE,
)
_COMPANY_SUFFIX = re.compile(r"\s*\b(?:pty\s*ltd|p/l|ltd|inc|corp|llc)\.?$", re.IGNORECASE)
_CARD_TAIL = re.compile(r"(?:\s+\d{2}/\d{2}.*|\s+\*\d+.*|\s+card\s+\d+.*|\s+\d{3,}.*)$", re.IGNORECASE)
_NON_WORD = re.compile(r"[^a-z0-9\s]")
_SPACES = re.compile(r"\s+")
_DIGITS = re.compile(r"\d+")


def standardize_merchant(name: str) -> str:
    """Normalize a merchant name for matching.

    Lowercases, strips payment-channel prefixes and company suffixes, drops
    punctuation and collapses whitespace.

    >>> standardize_merchant("EFTPOS Woolworths Pty Ltd")
    'woolworths'
    """
    if not name:
        return ""
    value = name.strip()
    value = _PAYMENT_PREFIX.sub("", value)
    value = _COMPANY_SUFFIX.sub("", value)
    value = _NON_WORD.sub(" ", value.lower())
    return _SPACES.sub(" ", value).strip()


def extract_merchant(description: str) -> str:
    """Pull a normalized merchant name out of a transaction description.

    Trailing dates, card numbers and terminal ids are removed before
    standardizing.

    >>> extract_merchant("EFTPOS Purchase - Woolworths 1234 Sydney")
    'purchase woolworths'
    """
    if not description:
        return ""
    value = _PAYMENT_PREFIX.sub("", description.strip())
    value = _CARD_TAIL.sub("", value)
    return standardize_merchant(value)


def description_pattern(description: str) -> str:
    """Reduce a description to a pattern shared by recurring transactions.

    Lowercases, replaces digit runs with "#" and collapses whitespace, so
    "Netflix 0412" and "NETFLIX 0513" share the pattern "netflix #".
    """
    if not description:
        return ""
    value = _DIGITS.sub("#", description.lower())
    return _SPACES.sub(" ", value).strip()

"""Description normalization and fuzzy string similarity.

Pure functions shared by the transaction matcher, the recurring pattern
detector and the pattern lifecycle manager. Normalized descriptions double
as merchant keys, so any change here changes which patterns are detected.
"""

import re

from rapidfuzz.distance import Levenshtein

UNKNOWN_MERCHANT = "Unknown Merchant"

_WHITESPACE = re.compile(r"\s+")
_TYPE_PREFIX = re.compile(r"^(?:purchase|payment|pos|debit|eftpos)\s+")
_REFERENCE = re.compile(r"#\s*[\w-]+|\b(?:ref|id)\b:?\s*[\w-]+")
_ISO_DATE = re.compile(r"\b\d{4}-\d{1,2}-\d{1,2}\b")
_DATE = re.compile(r"\d{1,2}[/-]\d{1,2}(?:[/-]\d{2,4})?")
_TIME = re.compile(r"\d{1,2}:\d{2}(?::\d{2})?(?:\s*(?:am|pm))?")
_TRAILING_NUMBER = re.compile(r"\s+\d+$")


def _collapse(value: str) -> str:
    return _WHITESPACE.sub(" ", value).strip()


def normalize_description(text: str | None) -> str:
    """Reduce a bank description to a stable merchant key.

    >>> normalize_description("POS NETFLIX.COM 12/03 #4471")
    'netflix.com'
    """
    if not text:
        return ""

    value = _collapse(text.lower())
    value = _TYPE_PREFIX.sub("", value)
    value = _REFERENCE.sub("", value)
    value = _ISO_DATE.sub("", value)
    value = _DATE.sub("", value)
    value = _TIME.sub("", value)
    value = _collapse(value)
    value = _TRAILING_NUMBER.sub("", value)
    return _collapse(value)


def format_merchant_name(text: str | None) -> str:
    """Display name for a merchant: normalized, then title-cased per word."""
    normalized = normalize_description(text)
    if not normalized:
        return UNKNOWN_MERCHANT
    return " ".join(word[:1].upper() + word[1:] for word in normalized.split(" "))


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance with unit insert, delete and substitute costs."""
    return int(Levenshtein.distance(a, b))


def string_similarity(a: str | None, b: str | None) -> float:
    """Similarity in [0, 1] derived from the Levenshtein distance.

    Two empty strings are identical (1.0); exactly one empty string is a
    complete mismatch (0.0).
    """
    a = a or ""
    b = b or ""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    longest = max(len(a), len(b))
    return 1.0 - levenshtein_distance(a, b) / longest

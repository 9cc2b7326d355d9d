"""Utility functions and helpers."""

from .exceptions import (
    raise_bad_request,
    raise_conflict,
    raise_not_found,
    raise_unauthorized,
)
from .similarity import (
    format_merchant_name,
    levenshtein_distance,
    normalize_description,
    string_similarity,
)

__all__ = [
    "format_merchant_name",
    "levenshtein_distance",
    "normalize_description",
    "raise_bad_request",
    "raise_conflict",
    "raise_not_found",
    "raise_unauthorized",
    "string_similarity",
]

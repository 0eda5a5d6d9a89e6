"""
Failure Classifier — pure text matchers over provider error strings.

Deterministic and side-effect free. Matching is case-insensitive substring
search, so the order of markers does not matter.
"""

from enum import Enum
from typing import Optional, Tuple

RATE_LIMIT_MARKERS: Tuple[str, ...] = (
    "rate limit",
    "rate_limit",
    "ratelimit",
    "quota",
    "429",
    "resource_exhausted",
    "too many requests",
)

AUTH_SCOPE_MARKERS: Tuple[str, ...] = (
    "401",
    "insufficient permissions",
    "missing scopes",
    "api.responses.write",
    "unauthorized",
)


class FailureKind(str, Enum):
    RATE_LIMIT = "rate_limit"
    AUTH_SCOPE = "auth_scope"
    NONE = "none"


def _matches(text: Optional[str], markers: Tuple[str, ...]) -> bool:
    if not text:
        return False
    lowered = text.lower()
    return any(marker in lowered for marker in markers)


def is_rate_limit_like(text: Optional[str]) -> bool:
    """True when the text looks like a rate-limit / quota rejection."""
    return _matches(text, RATE_LIMIT_MARKERS)


def is_auth_scope_like(text: Optional[str]) -> bool:
    """True when the text looks like an authorization or missing-scope rejection."""
    return _matches(text, AUTH_SCOPE_MARKERS)


def classify_failure(text: Optional[str]) -> FailureKind:
    """Classify an error string. Auth wins over rate-limit: it carries the longer penalty."""
    if is_auth_scope_like(text):
        return FailureKind.AUTH_SCOPE
    if is_rate_limit_like(text):
        return FailureKind.RATE_LIMIT
    return FailureKind.NONE

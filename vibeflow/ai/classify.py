from __future__ import annotations

import re

import httpx

from vibeflow.ai.errors import EmptyResultError, FailureClassification


_CREDENTIAL_PHRASES = ("api key not valid", "api_key_invalid", "invalid api key")
_UNAVAILABLE_PHRASES = ("service unavailable", "overloaded", "internal error")
_RATE_LIMIT_PHRASES = ("rate limit exceeded", "quota exceeded")
_UNAVAILABLE_CODE_RE = re.compile(r"\b503\b")

_UNAVAILABLE_CODES = {500, 502, 503, 504}
_UNAVAILABLE_STATUSES = {"UNAVAILABLE", "INTERNAL", "ABORTED"}


def _status_code(error: BaseException) -> int | None:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    code = getattr(error, "status_code", None)
    if isinstance(code, int):
        return code
    return None


def _status_keyword(error: BaseException) -> str:
    status = getattr(error, "status", None)
    if isinstance(status, str):
        return status.strip().upper()
    return ""


def classify(error: BaseException) -> FailureClassification:
    """Assign a failed attempt to exactly one category.

    Order matters: a rejected credential wins over any retriable-sounding text,
    and the empty-result sentinel is checked before the quota phrases.
    """
    code = _status_code(error)
    status = _status_keyword(error)
    message = str(error).lower()

    if code == 401 or status == "UNAUTHENTICATED" or any(p in message for p in _CREDENTIAL_PHRASES):
        return FailureClassification.INVALID_CREDENTIAL

    if isinstance(error, EmptyResultError):
        return FailureClassification.EMPTY_RESULT

    if (
        code in _UNAVAILABLE_CODES
        or status in _UNAVAILABLE_STATUSES
        or any(p in message for p in _UNAVAILABLE_PHRASES)
        or _UNAVAILABLE_CODE_RE.search(message)
    ):
        return FailureClassification.SERVICE_UNAVAILABLE

    if code == 429 or status == "RESOURCE_EXHAUSTED" or any(p in message for p in _RATE_LIMIT_PHRASES):
        return FailureClassification.RATE_LIMITED

    if code == 400 or status == "INVALID_ARGUMENT":
        return FailureClassification.INVALID_INPUT

    return FailureClassification.UNKNOWN

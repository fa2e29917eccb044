from __future__ import annotations

from enum import Enum


class FailureClassification(str, Enum):
    INVALID_CREDENTIAL = "INVALID_CREDENTIAL"
    RATE_LIMITED = "RATE_LIMITED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    EMPTY_RESULT = "EMPTY_RESULT"
    INVALID_INPUT = "INVALID_INPUT"
    UNKNOWN = "UNKNOWN"

    @property
    def terminal(self) -> bool:
        """Retrying cannot change the outcome of these."""
        return self in _TERMINAL


_TERMINAL = frozenset({FailureClassification.INVALID_CREDENTIAL, FailureClassification.INVALID_INPUT})


# Public status reported to callers; EMPTY_RESULT/UNKNOWN collapse into INTERNAL.
_PUBLIC_STATUS = {
    FailureClassification.INVALID_CREDENTIAL: "UNAUTHENTICATED",
    FailureClassification.INVALID_INPUT: "INVALID_ARGUMENT",
    FailureClassification.RATE_LIMITED: "RESOURCE_EXHAUSTED",
    FailureClassification.SERVICE_UNAVAILABLE: "UNAVAILABLE",
    FailureClassification.EMPTY_RESULT: "INTERNAL",
    FailureClassification.UNKNOWN: "INTERNAL",
}

GUIDANCE_CHECK_CONFIG = "check_config"
GUIDANCE_TRY_LATER = "try_later"


class UpstreamError(Exception):
    """Error reported by the generation endpoint (HTTP status plus API status keyword)."""

    def __init__(self, message: str, status_code: int | None = None, status: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.status = status


class EmptyResultError(Exception):
    def __init__(self, operation: str):
        super().__init__(f"{operation} returned an empty result")
        self.operation = operation


class TerminalError(Exception):
    """The single error surfaced to a caller once a generation call gives up.

    ``classification`` is the last classification observed; ``status`` is the
    coarser public code shown to users.
    """

    def __init__(
        self,
        classification: FailureClassification,
        message: str,
        *,
        operation: str,
        platform: str | None = None,
        attempts: int = 0,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.classification = classification
        self.message = message
        self.operation = operation
        self.platform = platform
        self.attempts = attempts
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @property
    def status(self) -> str:
        return _PUBLIC_STATUS[self.classification]

    @property
    def guidance(self) -> str:
        if self.classification.terminal:
            return GUIDANCE_CHECK_CONFIG
        return GUIDANCE_TRY_LATER

    def __repr__(self) -> str:
        return (
            f"TerminalError(classification={self.classification.value}, operation={self.operation!r}, "
            f"platform={self.platform!r}, attempts={self.attempts})"
        )

from __future__ import annotations


ERROR_HTTP = "HTTP_ERROR"
ERROR_TIMEOUT = "TIMEOUT"
ERROR_NOT_HTML = "NOT_HTML"
ERROR_UNKNOWN = "UNKNOWN"

_REASONS = {
    ERROR_HTTP: "the site returned an error",
    ERROR_TIMEOUT: "the site took too long to respond",
    ERROR_NOT_HTML: "the link does not point to a readable page",
    ERROR_UNKNOWN: "the page could not be downloaded",
}


class FetchError(Exception):
    """A URL could not be turned into text."""

    def __init__(self, error_type: str, detail: str = "", status_code: int | None = None):
        super().__init__(f"{error_type}: {detail}" if detail else error_type)
        self.error_type = error_type
        self.detail = detail
        self.status_code = status_code

    @property
    def reason(self) -> str:
        return self.detail or _REASONS.get(self.error_type, self.error_type)

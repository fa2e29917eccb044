from __future__ import annotations

import logging
import time

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential_jitter, retry_if_exception_type

from vibeflow.content.errors import (
    FetchError,
    ERROR_HTTP,
    ERROR_NOT_HTML,
    ERROR_TIMEOUT,
    ERROR_UNKNOWN,
)
from vibeflow.content.parser import (
    MIN_BODY_CHARS,
    MIN_NON_HTML_CHARS,
    SOURCE_HTTP,
    ParsedContent,
    extract_main_text,
)
from vibeflow.ratelimit import HostRateLimiter


logger = logging.getLogger(__name__)


def _redact_detail(detail: str) -> str:
    detail = detail.strip()
    if len(detail) > 240:
        detail = detail[:240] + "…"
    return detail


class HttpContentFetcher:
    def __init__(
        self,
        limiter: HostRateLimiter,
        timeout_seconds: int,
        user_agent: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._limiter = limiter
        self._client = httpx.AsyncClient(
            follow_redirects=True,
            timeout=httpx.Timeout(timeout_seconds),
            headers={
                "User-Agent": user_agent,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                "Accept-Language": "en-US,en;q=0.5",
            },
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, httpx.ReadTimeout)),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    async def _get(self, url: str) -> httpx.Response:
        return await self._client.get(url)

    async def fetch(self, url: str) -> ParsedContent:
        await self._limiter.acquire(url)
        started = time.perf_counter()

        try:
            resp = await self._get(url)
        except httpx.TimeoutException as e:
            raise FetchError(ERROR_TIMEOUT, _redact_detail(str(e) or "request timed out")) from e
        except httpx.TransportError as e:
            raise FetchError(ERROR_HTTP, _redact_detail(str(e))) from e
        except httpx.HTTPError as e:
            raise FetchError(ERROR_UNKNOWN, _redact_detail(str(e))) from e

        if resp.status_code >= 400:
            raise FetchError(
                ERROR_HTTP,
                f"{resp.status_code} {resp.reason_phrase}. Check that the URL is correct and publicly accessible",
                status_code=resp.status_code,
            )

        content_type = (resp.headers.get("content-type") or "").lower()
        if "text/html" not in content_type:
            text = resp.text.strip()
            if len(text) < MIN_NON_HTML_CHARS:
                raise FetchError(ERROR_NOT_HTML, "content is not HTML and contains very little text")
            return ParsedContent(title="Web Content (Non-HTML)", body=text, is_placeholder=False, source=SOURCE_HTTP)

        title, body = extract_main_text(resp.text)
        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info("fetched %s chars=%s duration_ms=%s", url, len(body), duration_ms)

        if len(body) < MIN_BODY_CHARS:
            logger.warning("extracted body is very short url=%s chars=%s", url, len(body))
            return ParsedContent(
                title=title or "Web Content (Short)",
                body=body or f"Could only extract very little text from {url}. Summarization might be limited.",
                is_placeholder=True,
                source=SOURCE_HTTP,
            )

        return ParsedContent(title=title, body=body, is_placeholder=False, source=SOURCE_HTTP)
